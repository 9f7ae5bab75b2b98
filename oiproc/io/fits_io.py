"""
OIFITS reader and writer.

Maps the binary table extensions of an OIFITS file to the in-memory
model and back:
    - OI_TARGET, OI_WAVELENGTH, OI_ARRAY, OI_CORR: metadata tables
    - OI_VIS, OI_VIS2, OI_T3, OI_FLUX: data tables

Header keywords other than the structural FITS ones are kept on the
tables. Image HDUs, checksums and standard validation are not handled.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import numpy as np

from oiproc.model.oifits import OIFitsFile, OIFitsStandard
from oiproc.model.tables import TABLE_TYPES, FitsTable


logger = logging.getLogger(__name__)

KEYWORD_OI_REVN = "OI_REVN"
KEYWORD_CONTENT = "CONTENT"
CONTENT_OIFITS2 = "OIFITS2"

# Header keywords generated by the FITS layer itself
_STRUCTURAL_KEYWORDS = re.compile(
    r"^(XTENSION|BITPIX|NAXIS\d*|PCOUNT|GCOUNT|TFIELDS|EXTNAME|"
    r"TTYPE\d+|TFORM\d+|TUNIT\d+|TDIM\d+|TNULL\d+|TSCAL\d+|TZERO\d+|"
    r"CHECKSUM|DATASUM|COMMENT|HISTORY)$"
)


def load_oifits(path: Path | str) -> OIFitsFile:
    """
    Read an OIFITS file.

    Args:
        path: File to read.

    Returns:
        The file model, not yet analyzed.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the file holds no OIFITS table.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"OIFITS file not found: {path}")

    # Import astropy here to avoid import-time dependency
    from astropy.io import fits

    with fits.open(path) as hdul:
        content = str(hdul[0].header.get(KEYWORD_CONTENT, "")).strip().upper()
        tables: list[FitsTable] = []
        revisions: set[int] = set()

        for hdu in hdul[1:]:
            ext_name = str(hdu.header.get("EXTNAME", "")).strip().upper()
            table_type = TABLE_TYPES.get(ext_name)
            if table_type is None or not isinstance(hdu, fits.BinTableHDU):
                logger.debug(f"{path.name}: ignoring extension '{ext_name}'")
                continue

            keywords = {
                key: value
                for key, value in hdu.header.items()
                if key and not _STRUCTURAL_KEYWORDS.match(key)
            }
            if KEYWORD_OI_REVN in keywords:
                revisions.add(int(keywords[KEYWORD_OI_REVN]))

            columns = {}
            if hdu.data is not None:
                for name in hdu.columns.names:
                    columns[name.upper()] = _read_column(hdu.data[name])
            tables.append(table_type(keywords, columns))

    if not tables:
        raise ValueError(f"Not an OIFITS file (no OI table): {path}")

    is_v2 = content == CONTENT_OIFITS2 or any(rev >= 2 for rev in revisions)
    version = OIFitsStandard.VERSION_2 if is_v2 else OIFitsStandard.VERSION_1

    oi_fits = OIFitsFile(version, file_path=path.resolve())
    for table in tables:
        oi_fits.add_table(table)

    logger.info(f"Loaded {oi_fits}")
    return oi_fits


def _read_column(values) -> np.ndarray:
    array = np.array(values)
    if array.dtype.kind in ("S", "U"):
        return np.array([str(v).strip() for v in array.astype(str)], dtype=str)
    if array.dtype.kind == "f":
        return array.astype(np.float64)
    return array


def write_oifits(oi_fits: OIFitsFile, path: Path | str, overwrite: bool = False) -> Path:
    """
    Write an OIFITS file.

    Args:
        oi_fits: File model to write.
        path: Destination path.
        overwrite: Whether to replace an existing file.

    Returns:
        The written path.
    """
    path = Path(path)

    from astropy.io import fits

    primary = fits.PrimaryHDU()
    if oi_fits.is_oifits2:
        primary.header[KEYWORD_CONTENT] = CONTENT_OIFITS2

    hdus = [primary]
    for table in oi_fits.tables:
        hdu = fits.BinTableHDU.from_columns(
            [_fits_column(fits, name, values) for name, values in table.columns.items()],
            name=table.EXT_NAME,
        )
        hdu.header[KEYWORD_OI_REVN] = table.OI_REVN if oi_fits.is_oifits2 else 1
        for key, value in table.keywords.items():
            if key != KEYWORD_OI_REVN and value is not None:
                hdu.header[key] = value
        hdus.append(hdu)

    fits.HDUList(hdus).writeto(path, overwrite=overwrite)
    logger.info(f"Wrote {oi_fits} to {path}")
    return path


def _fits_column(fits, name: str, values: np.ndarray):
    values = np.asarray(values)
    repeat = "" if values.ndim == 1 else str(int(np.prod(values.shape[1:])))

    if values.dtype.kind in ("S", "U", "O"):
        strings = values.astype(str)
        width = max((len(s) for s in strings.ravel()), default=1) or 1
        return fits.Column(name=name, format=f"{width}A", array=strings)
    if values.dtype.kind == "b":
        code = "L"
    elif values.dtype.kind in ("i", "u"):
        code = "I" if values.dtype.itemsize <= 2 else "J"
    elif values.dtype.kind == "c":
        code = "M"
    else:
        code = "D"

    dim = None
    if values.ndim > 2:
        dim = "(" + ",".join(str(n) for n in reversed(values.shape[1:])) + ")"
    return fits.Column(name=name, format=f"{repeat}{code}", array=values, dim=dim)
