"""OIFITS file reading and writing."""

from oiproc.io.fits_io import load_oifits, write_oifits


__all__ = ["load_oifits", "write_oifits"]
