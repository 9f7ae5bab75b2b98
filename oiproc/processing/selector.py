"""
Declarative selection criteria over an OIFITS collection.

A Selector is a plain data bag read by the query engine
(OIFitsCollection.find_oi_data) and by the merger (match()).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from oiproc.model.identity import normalize_name
from oiproc.model.range import Range, match_range
from oiproc.model.tables import (
    COLUMN_EFF_BAND,
    COLUMN_EFF_WAVE,
    COLUMN_MJD,
    COLUMN_NIGHT_ID,
    COLUMN_STA_CONF,
    COLUMN_STA_INDEX,
    COLUMN_TARGET_ID,
    OIData,
    sorted_sta_names,
)


logger = logging.getLogger(__name__)


FILTER_TARGET_ID = COLUMN_TARGET_ID
FILTER_NIGHT_ID = COLUMN_NIGHT_ID
FILTER_EFFWAVE = COLUMN_EFF_WAVE
FILTER_EFFBAND = COLUMN_EFF_BAND
FILTER_MJD = COLUMN_MJD
FILTER_STAINDEX = COLUMN_STA_INDEX
FILTER_STACONF = COLUMN_STA_CONF

# Columns with a dedicated filter in the engine
SPECIAL_COLUMN_NAMES = (FILTER_TARGET_ID, FILTER_NIGHT_ID, FILTER_STAINDEX, FILTER_STACONF, FILTER_MJD)


@dataclass
class FilterValues:
    """Values to include and/or exclude for one column."""

    column_name: str
    include_values: list | None = None
    exclude_values: list | None = None

    def is_empty(self) -> bool:
        return self.include_values is None and self.exclude_values is None


class Selector:
    """
    Selection criteria; every unset criterion matches everything.

    Attributes:
        target_uid: Global target UID.
        ins_mode_uid: Global instrument-mode UID.
        night_id: Night identifier.
        tables: File path -> accepted extension numbers (empty = all).
        baselines: Baseline or triangle names ('A0-B1').
        mjd_ranges: Accepted MJD ranges.
        wavelength_ranges: Accepted EFF_WAVE ranges.
        filters: Generic column filters, in insertion order.

    Example:
        >>> selector = Selector()
        >>> selector.target_uid = "HD1234"
        >>> selector.mjd_ranges = [Range(58000.0, 58010.0)]
        >>> result = collection.find_oi_data(selector)
    """

    def __init__(self) -> None:
        self.target_uid: str | None = None
        self.ins_mode_uid: str | None = None
        self.night_id: int | None = None
        self.tables: dict[str, list[int]] = {}
        self.baselines: list[str] | None = None
        self.mjd_ranges: list[Range] | None = None
        self.wavelength_ranges: list[Range] | None = None
        self.filters: dict[str, FilterValues] = {}

    def reset(self) -> None:
        self.target_uid = None
        self.ins_mode_uid = None
        self.night_id = None
        self.tables.clear()
        self.baselines = None
        self.mjd_ranges = None
        self.wavelength_ranges = None
        self.filters.clear()

    def is_empty(self) -> bool:
        return (
            self.target_uid is None
            and self.ins_mode_uid is None
            and self.night_id is None
            and not self.has_table()
            and not self.baselines
            and not self.mjd_ranges
            and not self.wavelength_ranges
            and not self.has_filters()
        )

    # --- tables ---

    def has_table(self) -> bool:
        return bool(self.tables)

    def add_table(self, oifits_path: str, ext_nb: int | None = None) -> None:
        """Accept ext_nb of the given file, or the whole file if ext_nb is None."""
        ext_nbs = self.tables.setdefault(str(oifits_path), [])
        if ext_nb is not None:
            ext_nbs.append(int(ext_nb))

    def get_tables(self, oifits_path: str) -> list[int] | None:
        return self.tables.get(str(oifits_path))

    # --- generic filters ---

    def has_filters(self) -> bool:
        return bool(self.filters)

    def has_filter(self, column_name: str) -> bool:
        return column_name in self.filters

    def get_filter_values(self, column_name: str) -> FilterValues | None:
        return self.filters.get(column_name)

    def _get_or_create_filter_values(self, column_name: str) -> FilterValues:
        return self.filters.setdefault(column_name, FilterValues(column_name))

    def add_filter(self, column_name: str, include_values: Sequence[Any] | None) -> bool:
        return self.add_including_filter(column_name, include_values)

    def add_including_filter(self, column_name: str, include_values: Sequence[Any] | None) -> bool:
        if not include_values:
            return False
        self._get_or_create_filter_values(column_name).include_values = list(include_values)
        return True

    def add_excluding_filter(self, column_name: str, exclude_values: Sequence[Any] | None) -> bool:
        if not exclude_values:
            return False
        self._get_or_create_filter_values(column_name).exclude_values = list(exclude_values)
        return True

    def remove_filter(self, column_name: str) -> bool:
        return self.filters.pop(column_name, None) is not None

    # --- coarse predicate ---

    def match(self, oi_data: OIData) -> bool:
        """
        Coarse table-level test of every set criterion, using only the
        table summaries (names, distinct values, column ranges).
        """
        if self.has_table():
            ext_nbs = self.tables.get(oi_data.file_id)
            if ext_nbs is None or (ext_nbs and oi_data.ext_nb not in ext_nbs):
                return False

        if self.target_uid is not None:
            oi_target = oi_data.oi_target
            if oi_target is None:
                return False
            names = {
                normalize_name(oi_target.get_target_by_id(tid).name)
                for tid in oi_data.get_distinct_target_id()
                if oi_target.get_target_by_id(tid) is not None
            }
            if normalize_name(self.target_uid) not in names:
                return False

        if self.ins_mode_uid is not None and normalize_name(oi_data.ins_name) != normalize_name(self.ins_mode_uid):
            return False

        if self.night_id is not None and self.night_id not in oi_data.get_distinct_night_id():
            return False

        if self.baselines:
            wanted = {sorted_sta_names(b) for b in self.baselines}
            if not any(sorted_sta_names(names) in wanted for names in oi_data.get_distinct_sta_names()):
                return False

        if self.mjd_ranges and not _overlaps(self.mjd_ranges, oi_data.get_column_range(COLUMN_MJD)):
            return False

        if self.wavelength_ranges and not _overlaps(self.wavelength_ranges, oi_data.get_column_range(COLUMN_EFF_WAVE)):
            return False

        for column_name, filter_values in self.filters.items():
            if is_range_filter(column_name) and filter_values.include_values:
                if not _overlaps(filter_values.include_values, oi_data.get_column_range(column_name)):
                    return False

        return True

    def __repr__(self) -> str:
        parts = []
        if self.target_uid is not None:
            parts.append(f"target_uid={self.target_uid}")
        if self.ins_mode_uid is not None:
            parts.append(f"ins_mode_uid={self.ins_mode_uid}")
        if self.night_id is not None:
            parts.append(f"night_id={self.night_id}")
        if self.tables:
            parts.append(f"tables={self.tables}")
        if self.baselines:
            parts.append(f"baselines={self.baselines}")
        if self.mjd_ranges:
            parts.append(f"mjd_ranges={self.mjd_ranges}")
        if self.wavelength_ranges:
            parts.append(f"wavelength_ranges={self.wavelength_ranges}")
        if self.filters:
            parts.append(f"filters={list(self.filters.values())}")
        return f"Selector({', '.join(parts)})"


def _overlaps(ranges: Iterable[Range], table_range: Range) -> bool:
    # a missing summary never rejects a table
    if not table_range.is_finite():
        return True
    return match_range(ranges, table_range)


def is_range_filter(name: str) -> bool:
    """True if the column is filtered by numerical ranges."""
    return name not in (FILTER_TARGET_ID, FILTER_NIGHT_ID, FILTER_STAINDEX, FILTER_STACONF)


def is_custom_filter(name: str) -> bool:
    """True if the column has a dedicated filter in the engine."""
    return name in SPECIAL_COLUMN_NAMES or is_custom_filter_on_wavelengths(name)


def is_custom_filter_on_wavelengths(name: str) -> bool:
    """True if the column is filtered on the OI_WAVELENGTH tables."""
    return name in (FILTER_EFFWAVE, FILTER_EFFBAND)
