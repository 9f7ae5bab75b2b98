"""
Sparse boolean membership over table rows or row x channel cells.

An IndexMask is one of three kinds:
    - FULL: every row/cell accepted (shared sentinel, no storage)
    - NONE: nothing accepted (shared sentinel, no storage)
    - EXPLICIT: a numpy boolean bitmap sized to the table

2D explicit masks carry two extra marker columns per row, at
index_none and index_full, flagging rows with no accepted cell and rows
whose cells are all accepted. Consumers test these first before falling
back to per-cell lookups.

Masks are never mutated once registered on a selector result.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
from numpy.typing import NDArray


class MaskKind(str, Enum):
    """Tag of an IndexMask."""

    FULL = "full"
    NONE = "none"
    EXPLICIT = "explicit"


class IndexMask:
    """
    Row (1D) or row x channel (2D) acceptance mask.

    Use the FULL / NONE class sentinels for the trivial cases and the
    constructor for explicit bitmaps.

    Example:
        >>> mask = IndexMask(4)
        >>> mask.set_accept(2, True)
        >>> mask.accept(2), mask.accept(0)
        (True, False)
    """

    FULL: IndexMask
    NONE: IndexMask

    __slots__ = ("kind", "n_rows", "n_cols", "bits")

    def __init__(self, n_rows: int, n_cols: int | None = None, kind: MaskKind = MaskKind.EXPLICIT):
        self.kind = kind
        self.n_rows = n_rows
        self.n_cols = n_cols

        if kind is MaskKind.EXPLICIT:
            shape = (n_rows,) if n_cols is None else (n_rows, n_cols)
            self.bits: NDArray[np.bool_] | None = np.zeros(shape, dtype=bool)
        else:
            self.bits = None

    @classmethod
    def from_array(cls, bits: NDArray[np.bool_]) -> IndexMask:
        """Wrap an existing boolean array (1D rows or 2D cells with markers)."""
        bits = np.asarray(bits, dtype=bool)
        n_cols = bits.shape[1] if bits.ndim == 2 else None
        mask = cls(bits.shape[0], n_cols)
        mask.bits = bits
        return mask

    # --- kind ---

    @property
    def is_full(self) -> bool:
        return self.kind is MaskKind.FULL

    @property
    def is_none(self) -> bool:
        return self.kind is MaskKind.NONE

    @property
    def is_2d(self) -> bool:
        return self.n_cols is not None

    @staticmethod
    def is_not_full(mask: IndexMask | None) -> bool:
        """True only for a present, non-FULL mask."""
        return mask is not None and not mask.is_full

    # --- marker columns (2D only) ---

    @property
    def index_none(self) -> int:
        """Marker column set when a row has no accepted cell."""
        return self.n_cols - 2

    @property
    def index_full(self) -> int:
        """Marker column set when every cell of a row is accepted."""
        return self.n_cols - 1

    @property
    def n_channels(self) -> int:
        """Number of data channels of a 2D mask (markers excluded)."""
        return self.n_cols - 2

    # --- access ---

    def accept(self, row: int, col: int | None = None) -> bool:
        """Test a row (1D) or a cell (2D)."""
        if self.kind is MaskKind.FULL:
            return True
        if self.kind is MaskKind.NONE:
            return False
        if col is None:
            return bool(self.bits[row])
        return bool(self.bits[row, col])

    def is_row_none(self, row: int) -> bool:
        """True if the 2D mask marks row as having no accepted cell."""
        if self.kind is MaskKind.FULL:
            return False
        if self.kind is MaskKind.NONE:
            return True
        return bool(self.bits[row, self.index_none])

    def is_row_full(self, row: int) -> bool:
        """True if the 2D mask marks row as fully accepted."""
        if self.kind is MaskKind.FULL:
            return True
        if self.kind is MaskKind.NONE:
            return False
        return bool(self.bits[row, self.index_full])

    def set_accept(self, row: int, col_or_value, value: bool | None = None) -> None:
        """
        Set a row (set_accept(row, value)) or a cell
        (set_accept(row, col, value)) of an explicit mask.
        """
        if self.kind is not MaskKind.EXPLICIT:
            raise ValueError(f"Cannot modify a {self.kind.value} mask")
        if value is None:
            self.bits[row] = bool(col_or_value)
        else:
            self.bits[row, col_or_value] = bool(value)

    def cardinality(self) -> int:
        """Number of accepted rows (1D) or cells excluding markers (2D)."""
        if self.kind is not MaskKind.EXPLICIT:
            raise ValueError(f"Cardinality undefined for a {self.kind.value} mask")
        if self.n_cols is None:
            return int(np.count_nonzero(self.bits))
        return int(np.count_nonzero(self.bits[:, : self.index_none]))

    def as_array(self, n_rows: int, n_channels: int | None = None) -> NDArray[np.bool_]:
        """
        Dense boolean view of this mask for a table of the given shape,
        marker columns excluded.
        """
        shape = (n_rows,) if n_channels is None else (n_rows, n_channels)
        if self.kind is MaskKind.FULL:
            return np.ones(shape, dtype=bool)
        if self.kind is MaskKind.NONE:
            return np.zeros(shape, dtype=bool)
        if self.n_cols is None:
            return self.bits.copy()
        return self.bits[:, : self.index_none].copy()

    def __repr__(self) -> str:
        if self.kind is not MaskKind.EXPLICIT:
            return f"IndexMask.{self.kind.name}"
        if self.n_cols is None:
            return f"IndexMask(rows={self.n_rows}, accepted={self.cardinality()})"
        return (
            f"IndexMask(rows={self.n_rows}, channels={self.n_channels}, "
            f"accepted={self.cardinality()})"
        )


IndexMask.FULL = IndexMask(0, kind=MaskKind.FULL)
IndexMask.NONE = IndexMask(0, kind=MaskKind.NONE)
