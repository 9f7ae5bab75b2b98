"""
oiproc: selection, filtering and merging of optical-interferometry (OIFITS) data.

This package loads OIFITS files into an in-memory model, queries
collections of files by target, instrument mode, night, baseline and
numerical ranges, and merges files of a single target into one.

Main components:
    - model: Tables, files, identities, ranges, masks and the query engine
    - processing: Filters, selectors, selector results and the merger
    - io: OIFITS reader and writer
    - config: Configuration schema and YAML loading
    - cli: Command-line interface
"""

__version__ = "0.1.0"
__author__ = "oiproc Team"
