"""
Results of a query on an OIFITS collection.

BaseSelectorResult accumulates the matched granules and data tables and
exposes memoized views over them; SelectorResult adds the filter
batteries and the per-table masks produced by the query engine.

Views are computed on first access and never invalidated: populate a
result completely before reading from it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from oiproc.model.identity import Granule, InstrumentMode, NightId, StaNamesDir, Target
from oiproc.model.index_mask import IndexMask
from oiproc.model.range import Range
from oiproc.model.tables import FitsTable, OIData, OIWavelength
from oiproc.processing.filters import FitsTableFilter, reset_filters
from oiproc.processing.selector import Selector

if TYPE_CHECKING:
    from oiproc.model.collection import OIFitsCollection


logger = logging.getLogger(__name__)

TableKey = tuple


def _table_sort_key(table: FitsTable) -> tuple:
    return (table.file_id or "", table.ext_nb or 0)


class BaseSelectorResult:
    """
    Matched granules and data tables of a query.

    Attributes:
        collection: Queried collection.
        selector: Query criteria, None for a target-only query.
    """

    def __init__(self, collection: OIFitsCollection, selector: Selector | None = None) -> None:
        self.collection = collection
        self.selector = selector
        self.granules: set[Granule] = set()
        self._oi_datas: dict[TableKey, OIData] = {}
        self._oi_datas_discarded: dict[TableKey, OIData] = {}
        self.used_sta_names_map: dict[str, StaNamesDir] | None = None

        self._sorted_oi_datas: list[OIData] | None = None
        self._sorted_oi_datas_discarded: list[OIData] | None = None
        self._sorted_file_ids: list[str] | None = None
        self._sorted_targets: list[Target] | None = None
        self._sorted_ins_modes: list[InstrumentMode] | None = None
        self._sorted_night_ids: list[NightId] | None = None
        self._distinct_sta_names: list[str] | None = None
        self._distinct_sta_confs: list[str] | None = None
        self._wavelength_range: Range | None = None

    def is_empty(self) -> bool:
        return not self.granules

    def add(self, granule: Granule, oi_data: OIData) -> None:
        """Record a selected data table of the given granule."""
        self.granules.add(granule)
        self._oi_datas.setdefault(oi_data.key, oi_data)

    # --- granule views ---

    def get_distinct_targets(self) -> list[Target]:
        if self._sorted_targets is None:
            targets = {g.target for g in self.granules if g.target is not None}
            self._sorted_targets = sorted(targets, key=lambda t: t.uid)
        return self._sorted_targets

    def get_distinct_instrument_modes(self) -> list[InstrumentMode]:
        if self._sorted_ins_modes is None:
            ins_modes = {g.ins_mode for g in self.granules if g.ins_mode is not None}
            self._sorted_ins_modes = sorted(ins_modes, key=lambda m: m.uid)
        return self._sorted_ins_modes

    def get_distinct_night_ids(self) -> list[NightId]:
        if self._sorted_night_ids is None:
            self._sorted_night_ids = sorted({g.night for g in self.granules if g.night is not None})
        return self._sorted_night_ids

    def get_distinct_sta_names(self) -> list[str]:
        if self._distinct_sta_names is None:
            self._distinct_sta_names = sorted(set().union(*(g.distinct_sta_names for g in self.granules)))
        return self._distinct_sta_names

    def get_distinct_sta_confs(self) -> list[str]:
        if self._distinct_sta_confs is None:
            self._distinct_sta_confs = sorted(set().union(*(g.distinct_sta_confs for g in self.granules)))
        return self._distinct_sta_confs

    def get_wavelength_range(self) -> Range:
        if self._wavelength_range is None:
            self._wavelength_range = InstrumentMode.get_wavelength_range(self.get_distinct_instrument_modes())
        return self._wavelength_range

    # --- selected tables ---

    @property
    def oi_datas(self) -> list[OIData]:
        """Selected tables in selection order."""
        return list(self._oi_datas.values())

    def get_sorted_oi_datas(self) -> list[OIData]:
        if self._sorted_oi_datas is None:
            self._sorted_oi_datas = sorted(self._oi_datas.values(), key=_table_sort_key)
        return self._sorted_oi_datas

    def get_sorted_file_ids(self) -> list[str]:
        if self._sorted_file_ids is None:
            self._sorted_file_ids = sorted({t.file_id for t in self._oi_datas.values() if t.file_id})
        return self._sorted_file_ids

    # --- discarded tables ---

    def add_discarded(self, oi_data: OIData) -> None:
        self._oi_datas_discarded.setdefault(oi_data.key, oi_data)

    def is_discarded(self, oi_data: OIData) -> bool:
        return oi_data.key in self._oi_datas_discarded

    def get_sorted_oi_datas_discarded(self) -> list[OIData]:
        if self._sorted_oi_datas_discarded is None:
            self._sorted_oi_datas_discarded = sorted(self._oi_datas_discarded.values(), key=_table_sort_key)
        return self._sorted_oi_datas_discarded

    # --- statistics ---

    @property
    def nb_measurements(self) -> int:
        return sum(t.nb_measurements for t in self._oi_datas.values())

    @property
    def nb_data_points(self) -> int:
        return sum(t.nb_data_points for t in self._oi_datas.values())

    @property
    def nb_data_points_not_flagged(self) -> int:
        return sum(t.nb_data_points_not_flagged for t in self._oi_datas.values())

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(granules={len(self.granules)}, "
            f"tables={len(self._oi_datas)}, discarded={len(self._oi_datas_discarded)})"
        )


class SelectorResult(BaseSelectorResult):
    """
    Query result with filter batteries and per-table masks.

    Masks are keyed by table key; a missing mask means the table was not
    filtered (fully accepted) at that level.
    """

    def __init__(self, collection: OIFitsCollection, selector: Selector | None = None) -> None:
        super().__init__(collection, selector)
        self.wavelength_filters: list[FitsTableFilter] = []
        self.data_filters_1d: list[FitsTableFilter] = []
        self.data_filters_2d: list[FitsTableFilter] = []
        self.filters_used: list[FitsTableFilter] = []
        self._masks_wavelength: dict[TableKey, IndexMask] = {}
        self._masks_1d: dict[TableKey, IndexMask] = {}
        self._masks_2d: dict[TableKey, IndexMask] = {}

    @property
    def has_wavelength_filters(self) -> bool:
        return bool(self.wavelength_filters)

    @property
    def has_data_filters(self) -> bool:
        return bool(self.data_filters_1d or self.data_filters_2d)

    def add_filter_used(self, table_filter: FitsTableFilter) -> None:
        if table_filter not in self.filters_used:
            self.filters_used.append(table_filter)

    def reset_filters(self) -> None:
        """Reset every battery so the filters can serve another pass."""
        reset_filters(self.wavelength_filters)
        reset_filters(self.data_filters_1d)
        reset_filters(self.data_filters_2d)

    def dump_filters_as_string(self) -> str:
        """One line per filter actually used by the query."""
        return "\n".join(repr(f) for f in self.filters_used)

    # --- wavelength masks ---

    def put_wavelength_mask(self, oi_wavelength: OIWavelength, mask: IndexMask) -> None:
        self._masks_wavelength[oi_wavelength.key] = mask

    def get_wavelength_mask(self, oi_wavelength: OIWavelength) -> IndexMask | None:
        return self._masks_wavelength.get(oi_wavelength.key)

    def get_wavelength_mask_not_full(self, oi_wavelength: OIWavelength) -> IndexMask | None:
        mask = self.get_wavelength_mask(oi_wavelength)
        return mask if IndexMask.is_not_full(mask) else None

    # --- row masks ---

    def put_data_mask_1d(self, oi_data: OIData, mask: IndexMask) -> None:
        self._masks_1d[oi_data.key] = mask

    def get_data_mask_1d(self, oi_data: OIData) -> IndexMask | None:
        return self._masks_1d.get(oi_data.key)

    def get_data_mask_1d_not_full(self, oi_data: OIData) -> IndexMask | None:
        mask = self.get_data_mask_1d(oi_data)
        return mask if IndexMask.is_not_full(mask) else None

    # --- cell masks ---

    def put_data_mask_2d(self, oi_data: OIData, mask: IndexMask) -> None:
        self._masks_2d[oi_data.key] = mask

    def get_data_mask_2d(self, oi_data: OIData) -> IndexMask | None:
        return self._masks_2d.get(oi_data.key)

    def get_data_mask_2d_not_full(self, oi_data: OIData) -> IndexMask | None:
        mask = self.get_data_mask_2d(oi_data)
        return mask if IndexMask.is_not_full(mask) else None
