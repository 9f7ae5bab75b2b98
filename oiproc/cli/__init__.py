"""Command-line interface for oiproc."""
