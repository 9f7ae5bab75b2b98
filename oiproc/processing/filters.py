"""
Column filters applied to OIFITS tables.

Every filter follows a three-state protocol per table:

    state = filter.prepare(table)   # once per table
    if state is FilterState.MASK:
        filter.accept(row, col)     # per row (1D) or per cell (2D)
    filter.reset()                  # before the next table

prepare() first decides from coarse summaries (column ranges, distinct
values) whether the whole table is rejected (INVALID) or accepted
(FULL); only otherwise is the full column resolved and cached for
accept(). A missing column or a non-finite summary fails open (FULL).

Filters keep per-table state between prepare() and reset(): an instance
must finish one table before preparing the next and is not thread-safe.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import IntEnum
from typing import Generic, TypeVar

import numpy as np
from numpy.typing import NDArray

from oiproc.model.identity import NightIdMatcher, StaNamesDir, TargetIdMatcher, TargetManager
from oiproc.model.range import Range, get_matching_selected, match_fully
from oiproc.model.tables import (
    COLUMN_NIGHT_ID,
    COLUMN_STA_CONF,
    COLUMN_STA_INDEX,
    COLUMN_TARGET_ID,
    FitsTable,
    OIData,
)


logger = logging.getLogger(__name__)

K = TypeVar("K")


class FilterState(IntEnum):
    """Table-level verdict; ordered so the chain state is the minimum."""

    INVALID = 0
    MASK = 1
    FULL = 2


class FitsTableFilter(Generic[K]):
    """
    Base filter on one column.

    Attributes:
        column_name: Filtered column.
        accepted_values: Values to include (or exclude).
        include: Polarity, False for an excluding filter.
    """

    def __init__(self, column_name: str, accepted_values: Sequence[K], include: bool = True) -> None:
        self.column_name = column_name
        self.accepted_values = list(accepted_values)
        self.include = include

    @property
    def is_2d(self) -> bool:
        return False

    def reset(self) -> None:
        """Clear per-table state."""

    def prepare(self, table: FitsTable) -> FilterState:
        raise NotImplementedError

    def accept(self, row: int, col: int = 0) -> bool:
        """Only valid after prepare() returned MASK."""
        raise NotImplementedError

    def accept_rows(self, n_rows: int) -> NDArray[np.bool_]:
        """Vectorized accept() over all rows."""
        return np.fromiter((self.accept(i) for i in range(n_rows)), dtype=bool, count=n_rows)

    def accept_cells(self, n_rows: int, n_cols: int) -> NDArray[np.bool_]:
        """Vectorized accept() over all rows x channels."""
        cells = np.zeros((n_rows, n_cols), dtype=bool)
        for i in range(n_rows):
            for j in range(n_cols):
                cells[i, j] = self.accept(i, j)
        return cells

    def _missing_column(self, table: FitsTable) -> FilterState:
        logger.warning(f"Column {self.column_name} missing in {table!r}, filter ignored")
        return FilterState.FULL

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(column={self.column_name}, "
            f"{'include' if self.include else 'exclude'}={self.accepted_values})"
        )


def reset_filters(filters: Sequence[FitsTableFilter]) -> None:
    """Reset a whole filter battery between tables."""
    for table_filter in filters:
        table_filter.reset()


# =============================================================================
# Numeric range filters
# =============================================================================


class _RangeFilter(FitsTableFilter[Range]):

    def __init__(self, column_name: str, accepted_values: Sequence[Range], include: bool = True) -> None:
        super().__init__(column_name, accepted_values, include)
        self.range_matchings: set[Range] = set()

    def reset(self) -> None:
        self.range_matchings.clear()

    def _contains(self, values: np.ndarray) -> NDArray[np.bool_]:
        inside = np.zeros(values.shape, dtype=bool)
        for r in self.range_matchings:
            lo = -np.inf if np.isnan(r.min) else r.min
            hi = np.inf if np.isnan(r.max) else r.max
            inside |= (values >= lo) & (values <= hi)
        return inside

    def _contains_value(self, value: float) -> bool:
        return any(r.contains(value) for r in self.range_matchings)


class Double1DFilter(_RangeFilter):
    """
    Range filter on a per-row numerical column (MJD, INT_TIME, ...).

    When no accepted range overlaps the table range the table is INVALID
    whatever the polarity (unlike Double2DFilter).
    """

    def __init__(self, column_name: str, accepted_values: Sequence[Range], include: bool = True) -> None:
        super().__init__(column_name, accepted_values, include)
        self.table_column_1d: NDArray[np.float64] | None = None

    def reset(self) -> None:
        super().reset()
        self.table_column_1d = None

    def prepare(self, table: FitsTable) -> FilterState:
        table_range = table.get_column_range(self.column_name)
        logger.debug(f"prepare: table range: {table_range}")

        if not table_range.is_finite():
            return FilterState.FULL

        get_matching_selected(self.accepted_values, table_range, self.range_matchings)

        if not self.range_matchings:
            logger.debug(f"Skip {table!r}, no matching range")
            return FilterState.INVALID

        logger.debug(f"prepare: matching ranges: {self.range_matchings}")

        if match_fully(self.range_matchings, table_range):
            return FilterState.FULL if self.include else FilterState.INVALID

        self.table_column_1d = table.get_column_as_double(self.column_name)
        if self.table_column_1d is None:
            return self._missing_column(table)
        return FilterState.MASK

    def accept(self, row: int, col: int = 0) -> bool:
        return self._contains_value(self.table_column_1d[row]) == self.include

    def accept_rows(self, n_rows: int) -> NDArray[np.bool_]:
        return self._contains(self.table_column_1d[:n_rows]) == self.include


class Double2DFilter(_RangeFilter):
    """Range filter on a per-row x channel numerical column (VIS2DATA, EFF_WAVE, ...)."""

    def __init__(self, column_name: str, accepted_values: Sequence[Range], include: bool = True) -> None:
        super().__init__(column_name, accepted_values, include)
        self.table_column_2d: NDArray[np.float64] | None = None

    @property
    def is_2d(self) -> bool:
        return True

    def reset(self) -> None:
        super().reset()
        self.table_column_2d = None

    def prepare(self, table: FitsTable) -> FilterState:
        table_range = table.get_column_range(self.column_name)
        logger.debug(f"prepare: table range: {table_range}")

        if not table_range.is_finite():
            # missing column or no data
            return FilterState.FULL

        get_matching_selected(self.accepted_values, table_range, self.range_matchings)

        if not self.range_matchings:
            logger.debug(f"Skip {table!r}, no matching range")
            return FilterState.INVALID if self.include else FilterState.FULL

        logger.debug(f"prepare: matching ranges: {self.range_matchings}")

        if match_fully(self.range_matchings, table_range):
            return FilterState.FULL if self.include else FilterState.INVALID

        self.table_column_2d = table.get_column_as_doubles(self.column_name)
        if self.table_column_2d is None:
            return self._missing_column(table)
        return FilterState.MASK

    def accept(self, row: int, col: int = 0) -> bool:
        return self._contains_value(self.table_column_2d[row, col]) == self.include

    def accept_cells(self, n_rows: int, n_cols: int) -> NDArray[np.bool_]:
        return self._contains(self.table_column_2d[:n_rows, :n_cols]) == self.include


# =============================================================================
# Identifier filters
# =============================================================================


class NightIdFilter(FitsTableFilter[int]):
    """Filter on the night identifier derived from MJD."""

    def __init__(self, night_ids: Sequence[int] | int, include: bool = True) -> None:
        if isinstance(night_ids, int):
            night_ids = [night_ids]
        super().__init__(COLUMN_NIGHT_ID, [int(n) for n in night_ids], include)
        self.night_id_matcher = NightIdMatcher(self.accepted_values)
        self.night_ids: NDArray[np.int64] | None = None

    def reset(self) -> None:
        self.night_ids = None

    def prepare(self, table: FitsTable) -> FilterState:
        oi_data: OIData = table
        distinct = oi_data.get_distinct_night_id()

        if not distinct:
            return self._missing_column(table)

        matched = {n for n in distinct if self.night_id_matcher.match(n)}

        if len(matched) == len(distinct):
            return FilterState.FULL if self.include else FilterState.INVALID
        if not matched:
            logger.debug(f"Skip {table!r}, no matching night")
            return FilterState.INVALID if self.include else FilterState.FULL

        self.night_ids = oi_data.get_night_id()
        if self.night_ids is None:
            return self._missing_column(table)
        return FilterState.MASK

    def accept(self, row: int, col: int = 0) -> bool:
        return self.night_id_matcher.match(self.night_ids[row]) == self.include

    def accept_rows(self, n_rows: int) -> NDArray[np.bool_]:
        ids = np.fromiter(self.night_id_matcher.ids, dtype=np.int64)
        return np.isin(self.night_ids[:n_rows], ids) == self.include


class _StaTupleFilter(FitsTableFilter[str]):
    """Filter on station tuples compared by value."""

    def __init__(self, column_name: str, names: Sequence[str], include: bool = True) -> None:
        super().__init__(column_name, names, include)
        self.sta_matchings: set[tuple[int, ...]] = set()
        self.sta_column: NDArray[np.int16] | None = None

    def reset(self) -> None:
        self.sta_matchings.clear()
        self.sta_column = None

    def _collect(self, oi_data: OIData) -> None:
        raise NotImplementedError

    def _distinct(self, oi_data: OIData) -> set[tuple[int, ...]]:
        raise NotImplementedError

    def _resolve(self, oi_data: OIData) -> NDArray[np.int16] | None:
        raise NotImplementedError

    def prepare(self, table: FitsTable) -> FilterState:
        oi_data: OIData = table
        self._collect(oi_data)

        if not self.sta_matchings:
            logger.debug(f"Skip {table!r}, no matching {self.column_name}")
            return FilterState.INVALID if self.include else FilterState.FULL

        logger.debug(f"{self.column_name} matchings: {self.sta_matchings}")

        if len(self._distinct(oi_data)) <= len(self.sta_matchings):
            return FilterState.FULL if self.include else FilterState.INVALID

        self.sta_column = self._resolve(oi_data)
        if self.sta_column is None:
            return self._missing_column(table)
        return FilterState.MASK

    def accept(self, row: int, col: int = 0) -> bool:
        return (tuple(int(v) for v in self.sta_column[row]) in self.sta_matchings) == self.include

    def accept_rows(self, n_rows: int) -> NDArray[np.bool_]:
        rows = self.sta_column[:n_rows].tolist()
        found = np.fromiter((tuple(r) in self.sta_matchings for r in rows), dtype=bool, count=n_rows)
        return found == self.include


class StaConfFilter(_StaTupleFilter):
    """Filter on station configurations ('A0-B1-C2-D0')."""

    def __init__(self, confs: Sequence[str], include: bool = True) -> None:
        super().__init__(COLUMN_STA_CONF, confs, include)

    def _collect(self, oi_data: OIData) -> None:
        logger.debug(f"distinct StaConfs: {oi_data.get_distinct_sta_conf()}")
        oi_data.get_matching_sta_confs(self.accepted_values, self.sta_matchings)

    def _distinct(self, oi_data: OIData) -> set[tuple[int, ...]]:
        return oi_data.get_distinct_sta_conf()

    def _resolve(self, oi_data: OIData) -> NDArray[np.int16] | None:
        return oi_data.get_sta_conf()


class StaIndexFilter(_StaTupleFilter):
    """Filter on baselines or triangles ('A0-B1')."""

    def __init__(
        self,
        used_sta_names_map: Mapping[str, StaNamesDir] | None,
        baselines: Sequence[str],
        include: bool = True,
    ) -> None:
        super().__init__(COLUMN_STA_INDEX, baselines, include)
        self.used_sta_names_map = used_sta_names_map

    def _collect(self, oi_data: OIData) -> None:
        logger.debug(f"distinct StaIndexes: {oi_data.get_distinct_sta_index()}")
        oi_data.get_matching_sta_indexes(self.used_sta_names_map, self.accepted_values, self.sta_matchings)

    def _distinct(self, oi_data: OIData) -> set[tuple[int, ...]]:
        return oi_data.get_distinct_sta_index()

    def _resolve(self, oi_data: OIData) -> NDArray[np.int16] | None:
        return oi_data.get_sta_index()


class TargetUIDFilter(FitsTableFilter[str]):
    """Filter on global target UIDs (always inclusive)."""

    def __init__(
        self, tm: TargetManager, target_uids: Sequence[str] | str, granule_matched: bool = True
    ) -> None:
        if isinstance(target_uids, str):
            target_uids = [target_uids]
        super().__init__(COLUMN_TARGET_ID, target_uids, include=True)
        self.tm = tm
        self.granule_matched = granule_matched
        self.target_id_matcher: TargetIdMatcher | None = None
        self.target_ids: NDArray[np.int16] | None = None

    def reset(self) -> None:
        self.target_id_matcher = None
        self.target_ids = None

    def prepare(self, table: FitsTable) -> FilterState:
        oi_data: OIData = table

        if self.granule_matched and oi_data.has_single_target():
            # the granule already matched the selected target
            return FilterState.FULL

        self.target_id_matcher = oi_data.get_target_id_matcher(self.tm, self.accepted_values)

        if self.target_id_matcher is None:
            logger.debug(f"Skip {table!r}, no matching target UID")
            return FilterState.INVALID

        if self.target_id_matcher.match_all(oi_data.get_distinct_target_id()):
            return FilterState.FULL

        self.target_ids = oi_data.get_target_id()
        if self.target_ids is None:
            return self._missing_column(table)
        return FilterState.MASK

    def accept(self, row: int, col: int = 0) -> bool:
        return self.target_id_matcher.match(self.target_ids[row])

    def accept_rows(self, n_rows: int) -> NDArray[np.bool_]:
        ids = np.fromiter(self.target_id_matcher.ids, dtype=np.int64)
        return np.isin(self.target_ids[:n_rows], ids)
