"""
Collection of OIFITS files and the query engine over it.

analyze() resolves the targets and instrument modes of every file to
global aliases and groups data tables by global granule
(target x instrument mode x night). find_oi_data() then evaluates a
Selector in three stages:

    1. granule pre-selection (target, instrument mode, night, plus coarse
       baseline / MJD / wavelength overlap)
    2. table selection (file path -> extension numbers)
    3. per table, the wavelength channel mask, the row mask and the
       row x channel mask computed by the filter batteries

Tables left without any accepted row or cell are dropped from the result.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence

import numpy as np

from oiproc.model.identity import (
    Granule,
    InstrumentMode,
    InstrumentModeManager,
    NightId,
    StaNamesDir,
    Target,
    TargetManager,
)
from oiproc.model.index_mask import IndexMask
from oiproc.model.oifits import OIFitsFile
from oiproc.model.range import UNDEFINED_RANGE, Range, match_range
from oiproc.model.tables import FitsTable, OIData, is_numerical_column_1d, sorted_sta_names
from oiproc.processing.filters import (
    Double1DFilter,
    Double2DFilter,
    FilterState,
    FitsTableFilter,
    NightIdFilter,
    StaConfFilter,
    StaIndexFilter,
    TargetUIDFilter,
)
from oiproc.processing.selector import (
    FILTER_EFFWAVE,
    FILTER_MJD,
    FILTER_NIGHT_ID,
    FILTER_STACONF,
    FILTER_STAINDEX,
    FILTER_TARGET_ID,
    Selector,
    is_custom_filter,
    is_custom_filter_on_wavelengths,
)
from oiproc.processing.selector_result import BaseSelectorResult, SelectorResult


logger = logging.getLogger(__name__)

# Keep a selector whose target / instrument-mode UID is unknown when the
# other criteria select a single target / instrument mode.
FIX_BAD_UID_FOR_SINGLE_MATCH = True


class OIFitsCollection:
    """
    Set of OIFITS files queried as a whole.

    Example:
        >>> collection = OIFitsCollection.create([oi_fits_1, oi_fits_2])
        >>> selector = Selector()
        >>> selector.target_uid = "HD1234"
        >>> result = collection.find_oi_data(selector)
        >>> result.get_sorted_oi_datas()
    """

    def __init__(self) -> None:
        self.files: dict[str, OIFitsFile] = {}
        self.tm = TargetManager()
        self.imm = InstrumentModeManager()
        self.used_sta_names_map: dict[str, StaNamesDir] = {}
        self._real_sta_names: dict[str, str] = {}
        self.oi_data_per_granule: dict[Granule, list[OIData]] = {}
        self._sorted_granules: list[Granule] | None = None

    @classmethod
    def create(cls, oi_fits_files: Iterable[OIFitsFile]) -> OIFitsCollection:
        """Build and analyze a collection."""
        collection = cls()
        for oi_fits in oi_fits_files:
            collection.add_oifits_file(oi_fits)
        collection.analyze()
        return collection

    # --- files ---

    def is_empty(self) -> bool:
        return not self.files

    def add_oifits_file(self, oi_fits: OIFitsFile) -> None:
        """Add or replace a file; call analyze() afterwards."""
        if oi_fits.file_id in self.files:
            logger.info(f"Replacing {oi_fits.name} in collection")
        self.files[oi_fits.file_id] = oi_fits

    def remove_oifits_file(self, oi_fits: OIFitsFile) -> OIFitsFile | None:
        return self.files.pop(oi_fits.file_id, None)

    def get_oifits_file(self, file_id: str) -> OIFitsFile | None:
        return self.files.get(str(file_id))

    def get_sorted_oifits_files(self) -> list[OIFitsFile]:
        return [self.files[k] for k in sorted(self.files)]

    @property
    def all_oi_datas(self) -> list[OIData]:
        return [t for oi_fits in self.get_sorted_oifits_files() for t in oi_fits.oi_datas]

    def clear_cache(self) -> None:
        self.tm.clear()
        self.imm.clear()
        self.used_sta_names_map.clear()
        self._real_sta_names.clear()
        self.oi_data_per_granule.clear()
        self._sorted_granules = None

    # --- analysis ---

    def analyze(self) -> None:
        """Resolve global targets and instrument modes and build global granules."""
        self.clear_cache()
        start = time.time()
        oi_fits_files = self.get_sorted_oifits_files()

        for oi_fits in oi_fits_files:
            oi_fits.analyze()
            for oi_wavelength in oi_fits.oi_wavelengths:
                self.imm.register(oi_wavelength.get_instrument_mode())
            if oi_fits.oi_target is not None:
                for target in oi_fits.oi_target.get_target_set():
                    self.tm.register(target)
            self.used_sta_names_map.update(oi_fits.used_sta_names_map)

        self.imm.dump()
        self.tm.dump()

        for real, sta_dir in self.used_sta_names_map.items():
            self._real_sta_names.setdefault(sta_dir.sta_names, real)

        distinct: dict[Granule, Granule] = {}
        n_tables = 0
        nb_data_points = 0
        nb_data_points_not_flagged = 0

        for oi_fits in oi_fits_files:
            for local, oi_datas in oi_fits.oi_data_per_granule.items():
                key = Granule(self.tm.get_global(local.target), self.imm.get_global(local.ins_mode), local.night)
                granule = distinct.setdefault(key, key)

                for sta_names in local.distinct_sta_names:
                    real = self._real_sta_names.get(sorted_sta_names(sta_names))
                    if real is not None:
                        granule.distinct_sta_names.add(real)
                granule.distinct_sta_confs.update(local.distinct_sta_confs)
                granule.update_mjd_range(local.mjd_range)

                tables = self.oi_data_per_granule.setdefault(granule, [])
                for oi_data in oi_datas:
                    if all(t.key != oi_data.key for t in tables):
                        tables.append(oi_data)
                        n_tables += 1
                        nb_data_points += oi_data.nb_data_points
                        nb_data_points_not_flagged += oi_data.nb_data_points_not_flagged

        logger.info(
            f"analyze: {len(self.oi_data_per_granule)} granules {len(oi_fits_files)} files, "
            f"{n_tables} oidata ({nb_data_points_not_flagged} not flagged / {nb_data_points} data points) "
            f"in {(time.time() - start) * 1e3:.1f} ms"
        )

    def get_sorted_granules(self) -> list[Granule]:
        if self._sorted_granules is None:
            self._sorted_granules = sorted(self.oi_data_per_granule, key=Granule.sort_key)
        return self._sorted_granules

    def get_distinct_targets(self) -> list[Target]:
        return sorted(self.tm.get_globals(), key=lambda t: t.uid)

    def get_distinct_instrument_modes(self) -> list[InstrumentMode]:
        return sorted(self.imm.get_globals(), key=lambda m: m.uid)

    def get_distinct_night_ids(self) -> list[NightId]:
        return sorted({g.night for g in self.oi_data_per_granule if g.night is not None})

    def get_column_range(self, name: str) -> Range:
        """[min, max] of a column over every data table, UNDEFINED_RANGE if absent."""
        ranges = [t.get_column_range(name) for t in self.all_oi_datas]
        ranges = [r for r in ranges if r.is_finite()]
        if not ranges:
            return UNDEFINED_RANGE
        return Range(min(r.min for r in ranges), max(r.max for r in ranges))

    # --- queries ---

    def find_target_oi_data(self, target_uid: str) -> BaseSelectorResult | None:
        """All data tables of the given target, None if there is none."""
        selector = Selector()
        selector.target_uid = target_uid

        if self.is_empty():
            return None

        start = time.time()
        result = None
        granules = self._find_granules(selector, self.get_sorted_granules())

        if granules:
            result = BaseSelectorResult(self, selector)
            for granule in granules:
                for oi_data in self.oi_data_per_granule.get(granule, ()):
                    result.add(granule, oi_data)
            if result.is_empty():
                result = None

        logger.info(f"find_target_oi_data: duration = {(time.time() - start) * 1e3:.1f} ms")
        if result is None:
            logger.debug(f"find_target_oi_data: no result matching {selector}")
        else:
            logger.info(
                f"find_target_oi_data: {len(result.granules)} granules "
                f"{len(result.get_sorted_file_ids())} files, {len(result.get_sorted_oi_datas())} oidata"
            )
        return result

    def find_oi_data(self, selector: Selector | None) -> SelectorResult | None:
        """
        Evaluate the selector against the collection.

        Returns:
            The selected tables with their masks, or None if nothing matches.
        """
        logger.debug(f"find_oi_data: selector = {selector}")

        if self.is_empty():
            return None

        target_result = None
        if selector is not None and selector.target_uid is not None:
            target_result = self.find_target_oi_data(selector.target_uid)

        if target_result is not None and target_result.is_empty():
            return None

        start = time.time()
        result = None

        to_process = self.get_sorted_granules()
        if target_result is not None:
            to_process = sorted(target_result.granules, key=Granule.sort_key)

        granules = self._find_granules(selector, to_process)

        if granules:
            result = SelectorResult(self, selector)
            result.used_sta_names_map = self.used_sta_names_map

            if selector is not None:
                self._build_filters(selector, result)

            for granule in granules:
                for oi_data in self.oi_data_per_granule.get(granule, ()):
                    if selector is None or not selector.has_table():
                        self._filter_oi_data(result, granule, oi_data)
                        continue

                    ext_nbs = selector.get_tables(oi_data.file_id)
                    # None means the file is not selected, empty means all its tables
                    if ext_nbs is not None and (not ext_nbs or oi_data.ext_nb in ext_nbs):
                        self._filter_oi_data(result, granule, oi_data)

            result.reset_filters()
            if result.is_empty():
                result = None

        logger.info(f"find_oi_data: duration = {(time.time() - start) * 1e3:.1f} ms")
        if result is None:
            logger.debug(f"find_oi_data: no result matching {selector}")
        else:
            logger.info(f"find_oi_data: filters: {result.dump_filters_as_string()}")
            logger.info(
                f"find_oi_data: {len(result.granules)} granules {len(result.get_sorted_file_ids())} files, "
                f"{len(result.get_sorted_oi_datas())} oidata"
            )
            logger.info(
                f"find_oi_data: {result.nb_data_points_not_flagged} not flagged / "
                f"{result.nb_data_points} data points"
            )
        return result

    # --- granule pre-selection ---

    def _find_granules(self, selector: Selector | None, to_process: Sequence[Granule]) -> list[Granule] | None:
        granules = list(to_process)

        if selector is None or selector.is_empty():
            return granules

        bad_target_uid = False
        bad_ins_mode_uid = False

        target = None
        if selector.target_uid is not None:
            target = self.tm.get_global_by_uid(selector.target_uid)
            if target is None:
                if not FIX_BAD_UID_FOR_SINGLE_MATCH:
                    return None
                bad_target_uid = True
                logger.warning(f"Bad UID, discarding target UID: [{selector.target_uid}]")

        ins_mode = None
        if selector.ins_mode_uid is not None:
            ins_mode = self.imm.get_global_by_uid(selector.ins_mode_uid)
            if ins_mode is None:
                if not FIX_BAD_UID_FOR_SINGLE_MATCH:
                    return None
                bad_ins_mode_uid = True
                logger.warning(f"Bad UID, discarding instrument mode UID: [{selector.ins_mode_uid}]")

        night = NightId(selector.night_id) if selector.night_id is not None else None
        pattern = Granule(target, ins_mode, night)

        granules = [g for g in granules if g.match(pattern) and _match_granule_extra(selector, g)]

        if granules and bad_target_uid:
            targets = {g.target for g in granules}
            if len(targets) != 1:
                logger.warning(
                    f"Multiple target match (incompatible with target UID: {selector.target_uid}): {targets}"
                )
                return None
        if granules and bad_ins_mode_uid:
            ins_modes = {g.ins_mode for g in granules}
            if len(ins_modes) != 1:
                logger.warning(
                    f"Multiple instrument mode match (incompatible with instrument mode UID: "
                    f"{selector.ins_mode_uid}): {ins_modes}"
                )
                return None
        return granules

    # --- filter batteries ---

    def _build_filters(self, selector: Selector, result: SelectorResult) -> None:
        filters_1d = result.data_filters_1d
        filters_2d = result.data_filters_2d
        filters_wl = result.wavelength_filters
        filters_1d.clear()
        filters_2d.clear()
        filters_wl.clear()

        if selector.target_uid is not None:
            filters_1d.append(TargetUIDFilter(self.tm, selector.target_uid))
        values = selector.get_filter_values(FILTER_TARGET_ID)
        if values is not None and values.include_values:
            filters_1d.append(
                TargetUIDFilter(self.tm, [str(v) for v in values.include_values], granule_matched=False)
            )

        if selector.night_id is not None:
            filters_1d.append(NightIdFilter(selector.night_id))
        values = selector.get_filter_values(FILTER_NIGHT_ID)
        if values is not None:
            _add_polar(filters_1d, values, lambda v, inc: NightIdFilter([int(n) for n in v], inc))

        if selector.baselines:
            filters_1d.append(StaIndexFilter(self.used_sta_names_map, selector.baselines))
        values = selector.get_filter_values(FILTER_STAINDEX)
        if values is not None:
            _add_polar(filters_1d, values, lambda v, inc: StaIndexFilter(self.used_sta_names_map, v, inc))

        values = selector.get_filter_values(FILTER_STACONF)
        if values is not None:
            _add_polar(filters_1d, values, StaConfFilter)

        if selector.mjd_ranges:
            filters_1d.append(Double1DFilter(FILTER_MJD, selector.mjd_ranges))
        values = selector.get_filter_values(FILTER_MJD)
        if values is not None:
            _add_polar(filters_1d, values, lambda v, inc: Double1DFilter(FILTER_MJD, v, inc))

        if selector.wavelength_ranges:
            filters_wl.append(Double1DFilter(FILTER_EFFWAVE, selector.wavelength_ranges))

        for column_name, values in selector.filters.items():
            if is_custom_filter_on_wavelengths(column_name):
                _add_polar(filters_wl, values, lambda v, inc, c=column_name: Double1DFilter(c, v, inc))
            elif not is_custom_filter(column_name):
                if is_numerical_column_1d(column_name):
                    _add_polar(filters_1d, values, lambda v, inc, c=column_name: Double1DFilter(c, v, inc))
                else:
                    _add_polar(filters_2d, values, lambda v, inc, c=column_name: Double2DFilter(c, v, inc))

        logger.debug(f"filters 1D: {filters_1d}")
        logger.debug(f"filters 2D: {filters_2d}")
        logger.debug(f"filters WL: {filters_wl}")

    # --- table filtering ---

    def _filter_oi_data(self, result: SelectorResult, granule: Granule, oi_data: OIData) -> None:
        logger.debug(f"filter_oi_data: {oi_data!r}")
        oi_wavelength = oi_data.oi_wavelength

        # 1. wavelength channels
        if result.has_wavelength_filters:
            if oi_wavelength is None:
                logger.debug(f"No OI_WAVELENGTH for {oi_data!r}")
                result.add_discarded(oi_data)
                return
            mask_wavelength = result.get_wavelength_mask(oi_wavelength)
            if mask_wavelength is None:
                mask_wavelength = compute_mask_1d(oi_wavelength, result.wavelength_filters, result)
                if mask_wavelength is None:
                    # keep the verdict for the other tables sharing this wavelength table
                    result.put_wavelength_mask(oi_wavelength, IndexMask.NONE)
                    result.add_discarded(oi_data)
                    return
                logger.debug(f"wavelength mask: {mask_wavelength}")
                result.put_wavelength_mask(oi_wavelength, mask_wavelength)
            elif mask_wavelength.is_none:
                result.add_discarded(oi_data)
                return
        else:
            mask_wavelength = IndexMask.FULL
            if oi_wavelength is not None and result.get_wavelength_mask(oi_wavelength) is None:
                result.put_wavelength_mask(oi_wavelength, mask_wavelength)

        # 2. rows
        mask_rows = None
        if result.data_filters_1d:
            mask_rows = compute_mask_1d(oi_data, result.data_filters_1d, result)
            if mask_rows is None:
                result.add_discarded(oi_data)
                return
            logger.debug(f"row mask: {mask_rows}")
            result.put_data_mask_1d(oi_data, mask_rows)

        # 3. cells
        if result.data_filters_2d:
            mask_2d = compute_mask_2d(
                oi_data,
                mask_rows if IndexMask.is_not_full(mask_rows) else None,
                mask_wavelength if IndexMask.is_not_full(mask_wavelength) else None,
                result.data_filters_2d,
                result,
            )
            if mask_2d is None:
                result.add_discarded(oi_data)
                return
            logger.debug(f"cell mask: {mask_2d}")
            result.put_data_mask_2d(oi_data, mask_2d)

        result.add(granule, oi_data)


def _add_polar(filters: list[FitsTableFilter], values, factory) -> None:
    if values.include_values:
        filters.append(factory(values.include_values, True))
    if values.exclude_values:
        filters.append(factory(values.exclude_values, False))


def _match_granule_extra(selector: Selector, candidate: Granule) -> bool:
    """Coarse baseline / MJD / wavelength test on a granule."""
    if candidate.distinct_sta_names:
        names = {sorted_sta_names(n) for n in candidate.distinct_sta_names}
        include = list(selector.baselines or [])
        exclude = []
        values = selector.get_filter_values(FILTER_STAINDEX)
        if values is not None:
            include += values.include_values or []
            exclude = values.exclude_values or []
        if include and not any(sorted_sta_names(b) in names for b in include):
            return False
        if exclude and names <= {sorted_sta_names(b) for b in exclude}:
            return False

    if candidate.mjd_range.is_finite():
        if not _match_ranges(selector, selector.mjd_ranges, FILTER_MJD, candidate.mjd_range):
            return False

    if candidate.ins_mode is not None and candidate.ins_mode.wavelength_range.is_finite():
        if not _match_ranges(selector, selector.wavelength_ranges, FILTER_EFFWAVE, candidate.ins_mode.wavelength_range):
            return False

    return True


def _match_ranges(selector: Selector, ranges: list[Range] | None, column_name: str, candidate: Range) -> bool:
    include = list(ranges or [])
    exclude = []
    values = selector.get_filter_values(column_name)
    if values is not None:
        include += values.include_values or []
        exclude = values.exclude_values or []
    if include and not match_range(include, candidate):
        return False
    if exclude and any(r.overlap_fully(candidate) for r in exclude):
        return False
    return True


def _prepare_chain(
    table: FitsTable,
    filters: Sequence[FitsTableFilter],
    result: SelectorResult | None = None,
) -> tuple[FilterState, list[FitsTableFilter]]:
    """
    Prepare every filter of a battery on table.

    Returns:
        The chain state (minimum of the filter states, stopping at the
        first INVALID) and the filters that need per-row evaluation.
    """
    chain_state = FilterState.FULL
    used: list[FitsTableFilter] = []

    for table_filter in filters:
        state = table_filter.prepare(table)
        logger.debug(f"{table_filter} => {state.name}")

        if state < chain_state:
            chain_state = state
            if chain_state is FilterState.INVALID:
                logger.debug(f"Skip {table!r}, not matching filters")
                return chain_state, []
        if state is FilterState.MASK:
            used.append(table_filter)

    if result is not None:
        for table_filter in used:
            result.add_filter_used(table_filter)
    return chain_state, used


def compute_mask_1d(
    table: FitsTable,
    filters: Sequence[FitsTableFilter],
    result: SelectorResult | None = None,
) -> IndexMask | None:
    """
    Row mask of a table through a battery of 1D filters.

    Returns:
        None if no row remains, IndexMask.FULL if every row is kept,
        else an explicit row mask.
    """
    logger.debug(f"compute_mask_1d: filters = {filters}")

    chain_state, used = _prepare_chain(table, filters, result)
    if chain_state is FilterState.INVALID:
        return None

    if chain_state is FilterState.FULL:
        return IndexMask.FULL

    n_rows = table.nb_rows
    keep = np.ones(n_rows, dtype=bool)
    for table_filter in used:
        keep &= table_filter.accept_rows(n_rows)

    n_keep = int(np.count_nonzero(keep))
    logger.debug(f"compute_mask_1d: kept rows: {n_keep} / {n_rows}")

    if n_keep == 0:
        return None
    if n_keep == n_rows:
        return IndexMask.FULL
    return IndexMask.from_array(keep)


def compute_mask_2d(
    oi_data: OIData,
    mask_rows: IndexMask | None,
    mask_wavelength: IndexMask | None,
    filters: Sequence[FitsTableFilter],
    result: SelectorResult | None = None,
) -> IndexMask | None:
    """
    Row x channel mask of a data table through a battery of 2D filters,
    restricted to the rows and channels accepted by the optional masks.

    Each row of an explicit mask carries a NONE marker (no accepted cell)
    or a FULL marker (every accepted channel kept).

    Returns:
        None if no cell remains, IndexMask.FULL if every accepted cell is
        kept, else an explicit mask.
    """
    logger.debug(f"compute_mask_2d: filters = {filters}")

    chain_state, used = _prepare_chain(oi_data, filters, result)
    if chain_state is FilterState.INVALID:
        return None

    n_waves = oi_data.nb_waves
    if chain_state is FilterState.FULL or n_waves == 0:
        # missing column or no data
        return IndexMask.FULL

    n_rows = oi_data.nb_rows
    rows_ok = mask_rows.as_array(n_rows) if mask_rows is not None else np.ones(n_rows, dtype=bool)
    waves_ok = mask_wavelength.as_array(n_waves) if mask_wavelength is not None else np.ones(n_waves, dtype=bool)
    accepted_rows = int(np.count_nonzero(rows_ok))
    accepted_waves = int(np.count_nonzero(waves_ok))

    cells = np.ones((n_rows, n_waves), dtype=bool)
    for table_filter in used:
        cells &= table_filter.accept_cells(n_rows, n_waves)
    cells &= rows_ok[:, np.newaxis] & waves_ok[np.newaxis, :]

    keep_per_row = np.count_nonzero(cells, axis=1)
    n_keep = int(keep_per_row.sum())
    all_cells = accepted_rows * accepted_waves
    logger.debug(f"compute_mask_2d: kept cells: {n_keep} / {all_cells}")

    if n_keep == 0:
        return None
    if n_keep == all_cells:
        return IndexMask.FULL

    mask = IndexMask(n_rows, n_waves + 2)
    mask.bits[:, :n_waves] = cells
    mask.bits[:, mask.index_none] = rows_ok & (keep_per_row == 0)
    mask.bits[:, mask.index_full] = rows_ok & (keep_per_row > 0) & (keep_per_row == accepted_waves)
    return mask
