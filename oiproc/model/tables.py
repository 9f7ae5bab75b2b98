"""
In-memory OIFITS tables.

Each table stores its header keywords in a dict and its columns as
numpy arrays. Data tables (OI_VIS, OI_VIS2, OI_T3, OI_FLUX) expose the
coarse summaries (column ranges, distinct values) and resolved columns
consumed by the selection filters.

Table layout:
    - OI_TARGET: TARGET_ID, TARGET, RAEP0, DECEP0
    - OI_WAVELENGTH (INSNAME): EFF_WAVE, EFF_BAND
    - OI_ARRAY (ARRNAME): TEL_NAME, STA_NAME, STA_INDEX, DIAMETER
    - OI_CORR (CORRNAME): IINDX, JINDX, CORR
    - data tables (INSNAME, ARRNAME, CORRNAME): TARGET_ID, TIME, MJD,
      INT_TIME, STA_INDEX, FLAG and their measurement columns
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np
from numpy.typing import NDArray

from oiproc.model.identity import (
    InstrumentMode,
    StaNamesDir,
    Target,
    TargetIdMatcher,
    TargetManager,
)
from oiproc.model.range import UNDEFINED_RANGE, Range


logger = logging.getLogger(__name__)


# Keywords
KEYWORD_INSNAME = "INSNAME"
KEYWORD_ARRNAME = "ARRNAME"
KEYWORD_CORRNAME = "CORRNAME"
KEYWORD_DATE_OBS = "DATE-OBS"

# Columns
COLUMN_TARGET_ID = "TARGET_ID"
COLUMN_TARGET = "TARGET"
COLUMN_RAEP0 = "RAEP0"
COLUMN_DECEP0 = "DECEP0"
COLUMN_EFF_WAVE = "EFF_WAVE"
COLUMN_EFF_BAND = "EFF_BAND"
COLUMN_TEL_NAME = "TEL_NAME"
COLUMN_STA_NAME = "STA_NAME"
COLUMN_STA_INDEX = "STA_INDEX"
COLUMN_DIAMETER = "DIAMETER"
COLUMN_IINDX = "IINDX"
COLUMN_JINDX = "JINDX"
COLUMN_CORR = "CORR"
COLUMN_TIME = "TIME"
COLUMN_MJD = "MJD"
COLUMN_INT_TIME = "INT_TIME"
COLUMN_FLAG = "FLAG"
COLUMN_UCOORD = "UCOORD"
COLUMN_VCOORD = "VCOORD"

# Derived columns
COLUMN_NIGHT_ID = "NIGHT_ID"
COLUMN_STA_CONF = "STA_CONF"

# Numerical columns holding one value per row in every data table
COMMON_COLUMNS_1D = (COLUMN_TARGET_ID, COLUMN_TIME, COLUMN_MJD, COLUMN_INT_TIME, COLUMN_NIGHT_ID)


class FitsTable:
    """
    Base binary table: keywords, columns and cached summaries.

    Attributes:
        keywords: Header keyword values.
        columns: Column arrays, first axis is the row.
        ext_nb: Extension number inside the owning file (1-based).
        file_id: Key of the owning file, None until added to a file.
    """

    EXT_NAME = ""
    # OI_REVN written under OIFITS 2
    OI_REVN = 2

    def __init__(
        self,
        keywords: Mapping[str, Any] | None = None,
        columns: Mapping[str, Any] | None = None,
    ) -> None:
        self.keywords: dict[str, Any] = dict(keywords or {})
        self.columns: dict[str, np.ndarray] = {}
        self.ext_nb: int | None = None
        self.file_id: str | None = None
        self._derived: dict[str, np.ndarray] = {}
        self._column_ranges: dict[str, Range] = {}

        for name, values in (columns or {}).items():
            self.columns[name] = np.asarray(values)

    @property
    def key(self) -> tuple[str | None, int | None]:
        """Identity of this table across a collection."""
        return (self.file_id, self.ext_nb)

    @property
    def nb_rows(self) -> int:
        for values in self.columns.values():
            return int(values.shape[0])
        return 0

    # --- keywords ---

    def get_keyword(self, name: str, default: Any = None) -> Any:
        return self.keywords.get(name, default)

    def set_keyword(self, name: str, value: Any) -> None:
        self.keywords[name] = value

    # --- columns ---

    def set_column(self, name: str, values: Any) -> None:
        self.columns[name] = np.asarray(values)
        self.clear_cache()

    def has_column(self, name: str) -> bool:
        return name in self.columns or self.get_derived_column(name) is not None

    def get_column(self, name: str) -> np.ndarray | None:
        """Stored column, else derived column, else None."""
        values = self.columns.get(name)
        if values is None:
            values = self.get_derived_column(name)
        return values

    def get_derived_column(self, name: str) -> np.ndarray | None:
        """Computed column; none by default."""
        return None

    def get_column_as_double(self, name: str) -> NDArray[np.float64] | None:
        """Column as float64 with one value per row, None if absent or not 1D."""
        values = self.get_column(name)
        if values is None or values.ndim != 1 or not _is_numeric(values):
            return None
        return values.astype(np.float64, copy=False)

    def get_column_as_doubles(self, name: str) -> NDArray[np.float64] | None:
        """Column as float64 with one value per row x channel, None if absent or not 2D."""
        values = self.get_column(name)
        if values is None or values.ndim != 2 or not _is_numeric(values):
            return None
        return values.astype(np.float64, copy=False)

    def get_column_short(self, name: str) -> NDArray[np.int16] | None:
        values = self.get_column(name)
        if values is None or values.ndim != 1:
            return None
        return values.astype(np.int16, copy=False)

    def get_column_shorts(self, name: str) -> NDArray[np.int16] | None:
        values = self.columns.get(name)
        if values is None or values.ndim != 2:
            return None
        return values.astype(np.int16, copy=False)

    def get_column_derived_shorts(self, name: str) -> NDArray[np.int16] | None:
        values = self.get_derived_column(name)
        if values is None or values.ndim != 2:
            return None
        return values.astype(np.int16, copy=False)

    def get_column_range(self, name: str) -> Range:
        """
        Coarse [min, max] summary over the finite values of a column.

        Returns:
            The cached range, or UNDEFINED_RANGE if the column is
            missing, empty or holds no finite value.
        """
        range_ = self._column_ranges.get(name)
        if range_ is None:
            range_ = self._compute_column_range(name)
            self._column_ranges[name] = range_
        return range_

    def _compute_column_range(self, name: str) -> Range:
        values = self.get_column(name)
        if values is None or values.size == 0 or not _is_numeric(values):
            return UNDEFINED_RANGE
        finite = values[np.isfinite(values)]
        if finite.size == 0:
            return UNDEFINED_RANGE
        return Range(float(finite.min()), float(finite.max()))

    def clear_cache(self) -> None:
        self._derived.clear()
        self._column_ranges.clear()

    def copy(self) -> FitsTable:
        """Deep copy without owner."""
        other = copy.copy(self)
        other.keywords = copy.deepcopy(self.keywords)
        other.columns = {name: values.copy() for name, values in self.columns.items()}
        other.ext_nb = None
        other.file_id = None
        other._derived = {}
        other._column_ranges = {}
        return other

    def __repr__(self) -> str:
        return f"{type(self).__name__}#{self.ext_nb}[{self.file_id}]({self.nb_rows} rows)"


def _is_numeric(values: np.ndarray) -> bool:
    return np.issubdtype(values.dtype, np.number) or values.dtype == np.bool_


# =============================================================================
# Metadata tables
# =============================================================================


class OITarget(FitsTable):
    """OI_TARGET: one row per observed target."""

    EXT_NAME = "OI_TARGET"

    @property
    def nb_targets(self) -> int:
        return self.nb_rows

    @property
    def target_ids(self) -> NDArray[np.int16]:
        return self.columns[COLUMN_TARGET_ID].astype(np.int16, copy=False)

    @property
    def target_names(self) -> list[str]:
        return [str(name).strip() for name in self.columns.get(COLUMN_TARGET, [])]

    def get_target(self, row: int) -> Target:
        ra = self.columns.get(COLUMN_RAEP0)
        dec = self.columns.get(COLUMN_DECEP0)
        return Target(
            name=self.target_names[row],
            ra=float(ra[row]) if ra is not None else 0.0,
            dec=float(dec[row]) if dec is not None else 0.0,
        )

    def get_target_set(self) -> list[Target]:
        return [self.get_target(i) for i in range(self.nb_rows)]

    def get_target_by_id(self, target_id: int) -> Target | None:
        for row, tid in enumerate(self.target_ids):
            if tid == target_id:
                return self.get_target(row)
        return None


class OIWavelength(FitsTable):
    """OI_WAVELENGTH: effective wavelength and bandwidth per channel."""

    EXT_NAME = "OI_WAVELENGTH"

    @property
    def ins_name(self) -> str:
        return self.get_keyword(KEYWORD_INSNAME, "")

    @ins_name.setter
    def ins_name(self, value: str) -> None:
        self.set_keyword(KEYWORD_INSNAME, value)

    @property
    def eff_wave(self) -> NDArray[np.float64]:
        return self.columns[COLUMN_EFF_WAVE].astype(np.float64, copy=False)

    @property
    def eff_band(self) -> NDArray[np.float64] | None:
        values = self.columns.get(COLUMN_EFF_BAND)
        return None if values is None else values.astype(np.float64, copy=False)

    def get_instrument_mode(self) -> InstrumentMode:
        wave_range = self.get_column_range(COLUMN_EFF_WAVE)
        return InstrumentMode(
            ins_name=self.ins_name,
            nb_channels=self.nb_rows,
            lambda_min=wave_range.min if wave_range.is_finite() else float("nan"),
            lambda_max=wave_range.max if wave_range.is_finite() else float("nan"),
        )


class OIArray(FitsTable):
    """OI_ARRAY: telescope stations of an interferometer."""

    EXT_NAME = "OI_ARRAY"

    @property
    def arr_name(self) -> str:
        return self.get_keyword(KEYWORD_ARRNAME, "")

    @arr_name.setter
    def arr_name(self, value: str) -> None:
        self.set_keyword(KEYWORD_ARRNAME, value)

    def get_sta_names_by_index(self) -> dict[int, str]:
        indexes = self.columns.get(COLUMN_STA_INDEX)
        names = self.columns.get(COLUMN_STA_NAME)
        if indexes is None or names is None:
            return {}
        return {int(idx): str(name).strip() for idx, name in zip(indexes, names)}


class OICorr(FitsTable):
    """OI_CORR (OIFITS 2): correlation matrix elements."""

    EXT_NAME = "OI_CORR"
    OI_REVN = 1

    @property
    def corr_name(self) -> str:
        return self.get_keyword(KEYWORD_CORRNAME, "")

    @corr_name.setter
    def corr_name(self, value: str) -> None:
        self.set_keyword(KEYWORD_CORRNAME, value)


# =============================================================================
# Data tables
# =============================================================================


class OIData(FitsTable):
    """
    Base of measurement tables (one row per measurement, one cell per
    wavelength channel).

    The owning file links each data table to its OI_TARGET,
    OI_WAVELENGTH and OI_ARRAY tables (see OIFitsFile.analyze()); names
    stay the persistent references.
    """

    NB_STATIONS = 2
    COLUMNS_1D: tuple[str, ...] = ()
    COLUMNS_2D: tuple[str, ...] = ()

    def __init__(
        self,
        keywords: Mapping[str, Any] | None = None,
        columns: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(keywords, columns)
        self.oi_target: OITarget | None = None
        self.oi_wavelength: OIWavelength | None = None
        self.oi_array: OIArray | None = None
        self._distinct: dict[str, set] = {}

    # --- references ---

    @property
    def ins_name(self) -> str:
        return self.get_keyword(KEYWORD_INSNAME, "")

    @ins_name.setter
    def ins_name(self, value: str) -> None:
        self.set_keyword(KEYWORD_INSNAME, value)

    @property
    def arr_name(self) -> str | None:
        return self.get_keyword(KEYWORD_ARRNAME)

    @arr_name.setter
    def arr_name(self, value: str | None) -> None:
        self.set_keyword(KEYWORD_ARRNAME, value)

    @property
    def corr_name(self) -> str | None:
        return self.get_keyword(KEYWORD_CORRNAME)

    @corr_name.setter
    def corr_name(self, value: str | None) -> None:
        if value is None:
            self.keywords.pop(KEYWORD_CORRNAME, None)
        else:
            self.set_keyword(KEYWORD_CORRNAME, value)

    # --- dimensions ---

    @property
    def nb_waves(self) -> int:
        if self.oi_wavelength is not None:
            return self.oi_wavelength.nb_rows
        for name in self.COLUMNS_2D + (COLUMN_FLAG,):
            values = self.columns.get(name)
            if values is not None and values.ndim == 2:
                return int(values.shape[1])
        return 0

    @property
    def nb_measurements(self) -> int:
        return self.nb_rows

    @property
    def nb_data_points(self) -> int:
        return self.nb_rows * self.nb_waves

    @property
    def nb_data_points_not_flagged(self) -> int:
        flags = self.get_flag()
        if flags is None:
            return self.nb_data_points
        return int(np.count_nonzero(~flags))

    # --- columns ---

    def get_target_id(self) -> NDArray[np.int16] | None:
        return self.get_column_short(COLUMN_TARGET_ID)

    def get_mjd(self) -> NDArray[np.float64] | None:
        return self.get_column_as_double(COLUMN_MJD)

    def get_int_time(self) -> NDArray[np.float64] | None:
        return self.get_column_as_double(COLUMN_INT_TIME)

    def get_night_id(self) -> NDArray[np.int64] | None:
        values = self.get_derived_column(COLUMN_NIGHT_ID)
        return None if values is None else values.astype(np.int64, copy=False)

    def get_sta_index(self) -> NDArray[np.int16] | None:
        return self.get_column_shorts(COLUMN_STA_INDEX)

    def get_sta_conf(self) -> NDArray[np.int16] | None:
        return self.get_column_derived_shorts(COLUMN_STA_CONF)

    def get_flag(self) -> NDArray[np.bool_] | None:
        values = self.columns.get(COLUMN_FLAG)
        if values is None or values.ndim != 2:
            return None
        return values.astype(bool, copy=False)

    def get_derived_column(self, name: str) -> np.ndarray | None:
        values = self._derived.get(name)
        if values is None:
            values = self._compute_derived_column(name)
            if values is not None:
                self._derived[name] = values
        return values

    def _compute_derived_column(self, name: str) -> np.ndarray | None:
        if name == COLUMN_NIGHT_ID:
            mjds = self.columns.get(COLUMN_MJD)
            if mjds is None:
                return None
            # TODO: shift by the array longitude so a night never spans two ids
            return np.round(mjds.astype(np.float64)).astype(np.int64)

        if name == COLUMN_STA_CONF:
            return self._compute_sta_conf()

        if name in (COLUMN_EFF_WAVE, COLUMN_EFF_BAND):
            if self.oi_wavelength is None:
                return None
            per_channel = self.oi_wavelength.columns.get(name)
            if per_channel is None:
                return None
            return np.broadcast_to(per_channel.astype(np.float64), (self.nb_rows, per_channel.shape[0]))

        return None

    def _compute_sta_conf(self) -> NDArray[np.int16] | None:
        """
        Station configuration per row: sorted station indexes seen at the
        same MJD in this table, padded with -1 to a common width.
        """
        sta_index = self.columns.get(COLUMN_STA_INDEX)
        mjds = self.columns.get(COLUMN_MJD)
        if sta_index is None or mjds is None:
            return None

        sta_index = sta_index.reshape(self.nb_rows, -1)
        confs_by_mjd: dict[float, set[int]] = {}
        for mjd, stations in zip(mjds, sta_index):
            confs_by_mjd.setdefault(float(mjd), set()).update(int(s) for s in stations)

        width = max((len(c) for c in confs_by_mjd.values()), default=0)
        conf = np.full((self.nb_rows, width), -1, dtype=np.int16)
        for row, mjd in enumerate(mjds):
            stations = sorted(confs_by_mjd[float(mjd)])
            conf[row, : len(stations)] = stations
        return conf

    def _compute_column_range(self, name: str) -> Range:
        if name in (COLUMN_EFF_WAVE, COLUMN_EFF_BAND) and name not in self.columns:
            if self.oi_wavelength is None:
                return UNDEFINED_RANGE
            return self.oi_wavelength.get_column_range(name)
        return super()._compute_column_range(name)

    def clear_cache(self) -> None:
        super().clear_cache()
        self._distinct.clear()

    def copy(self) -> OIData:
        other = super().copy()
        other.oi_target = None
        other.oi_wavelength = None
        other.oi_array = None
        other._distinct = {}
        return other

    # --- coarse summaries ---

    def _distinct_values(self, name: str, values: np.ndarray | None) -> set:
        distinct = self._distinct.get(name)
        if distinct is None:
            if values is None:
                distinct = set()
            elif values.ndim == 1:
                distinct = {int(v) for v in np.unique(values)}
            else:
                distinct = {tuple(int(v) for v in row) for row in np.unique(values, axis=0)}
            self._distinct[name] = distinct
        return distinct

    def get_distinct_target_id(self) -> set[int]:
        return self._distinct_values(COLUMN_TARGET_ID, self.get_target_id())

    def get_distinct_night_id(self) -> set[int]:
        return self._distinct_values(COLUMN_NIGHT_ID, self.get_night_id())

    def get_distinct_sta_index(self) -> set[tuple[int, ...]]:
        return self._distinct_values(COLUMN_STA_INDEX, self.get_sta_index())

    def get_distinct_sta_conf(self) -> set[tuple[int, ...]]:
        return self._distinct_values(COLUMN_STA_CONF, self.get_sta_conf())

    def has_single_target(self) -> bool:
        return len(self.get_distinct_target_id()) == 1

    def has_single_night(self) -> bool:
        return len(self.get_distinct_night_id()) == 1

    # --- station names ---

    def get_sta_names(self, sta_indexes: Iterable[int]) -> str:
        """Station names joined by '-', unknown indexes kept as numbers."""
        names = self.oi_array.get_sta_names_by_index() if self.oi_array is not None else {}
        return "-".join(names.get(int(i), str(int(i))) for i in sta_indexes if int(i) >= 0)

    def get_distinct_sta_names(self) -> set[str]:
        return {self.get_sta_names(t) for t in self.get_distinct_sta_index()}

    def get_distinct_sta_conf_names(self) -> set[str]:
        return {self.get_sta_names(t) for t in self.get_distinct_sta_conf()}

    def get_used_sta_names_map(self) -> dict[str, StaNamesDir]:
        """Real station names of every baseline mapped to their sorted key."""
        used = {}
        for real in self.get_distinct_sta_names():
            key = sorted_sta_names(real)
            used[real] = StaNamesDir(sta_names=key, orientation=(key == real))
        return used

    # --- matchers ---

    def get_target_id_matcher(self, tm: TargetManager, target_uids: Iterable[str]) -> TargetIdMatcher | None:
        """
        Matcher over the local TARGET_ID values whose global target has one
        of the given UIDs, None if no local target matches.
        """
        if self.oi_target is None:
            return None
        uids = set(target_uids)
        ids = []
        for row, target in enumerate(self.oi_target.get_target_set()):
            global_target = tm.get_global(target) or target
            if global_target.uid in uids or any(tm.match(uid, target.name) for uid in uids):
                ids.append(int(self.oi_target.target_ids[row]))
        return TargetIdMatcher(ids) if ids else None

    def get_matching_sta_confs(self, confs: Iterable[str], matching: set[tuple[int, ...]]) -> None:
        """Fill matching with distinct STA_CONF tuples named by confs."""
        matching.clear()
        wanted = {sorted_sta_names(conf) for conf in confs}
        for sta_conf in self.get_distinct_sta_conf():
            if sorted_sta_names(self.get_sta_names(sta_conf)) in wanted:
                matching.add(sta_conf)

    def get_matching_sta_indexes(
        self,
        used_sta_names_map: Mapping[str, StaNamesDir] | None,
        baselines: Iterable[str],
        matching: set[tuple[int, ...]],
    ) -> None:
        """Fill matching with distinct STA_INDEX tuples named by baselines."""
        matching.clear()
        wanted = set()
        for baseline in baselines:
            sta_dir = used_sta_names_map.get(baseline) if used_sta_names_map else None
            wanted.add(sta_dir.sta_names if sta_dir is not None else sorted_sta_names(baseline))

        for sta_index in self.get_distinct_sta_index():
            if sorted_sta_names(self.get_sta_names(sta_index)) in wanted:
                matching.add(sta_index)


def sorted_sta_names(sta_names: str) -> str:
    """Order-independent key of a '-' separated station list."""
    return "-".join(sorted(name.strip() for name in sta_names.split("-") if name.strip()))


class OIVis(OIData):
    """OI_VIS: complex visibilities."""

    EXT_NAME = "OI_VIS"
    NB_STATIONS = 2
    COLUMNS_1D = (COLUMN_UCOORD, COLUMN_VCOORD)
    COLUMNS_2D = ("VISAMP", "VISAMPERR", "VISPHI", "VISPHIERR")


class OIVis2(OIData):
    """OI_VIS2: squared visibilities."""

    EXT_NAME = "OI_VIS2"
    NB_STATIONS = 2
    COLUMNS_1D = (COLUMN_UCOORD, COLUMN_VCOORD)
    COLUMNS_2D = ("VIS2DATA", "VIS2ERR")


class OIT3(OIData):
    """OI_T3: triple products."""

    EXT_NAME = "OI_T3"
    NB_STATIONS = 3
    COLUMNS_1D = ("U1COORD", "V1COORD", "U2COORD", "V2COORD")
    COLUMNS_2D = ("T3AMP", "T3AMPERR", "T3PHI", "T3PHIERR")


class OIFlux(OIData):
    """OI_FLUX (OIFITS 2): total or correlated flux."""

    EXT_NAME = "OI_FLUX"
    OI_REVN = 1
    NB_STATIONS = 1
    COLUMNS_2D = ("FLUXDATA", "FLUXERR")


DATA_TABLE_TYPES: dict[str, type[OIData]] = {
    cls.EXT_NAME: cls for cls in (OIVis, OIVis2, OIT3, OIFlux)
}

TABLE_TYPES: dict[str, type[FitsTable]] = {
    OITarget.EXT_NAME: OITarget,
    OIWavelength.EXT_NAME: OIWavelength,
    OIArray.EXT_NAME: OIArray,
    OICorr.EXT_NAME: OICorr,
    **DATA_TABLE_TYPES,
}


def is_numerical_column_1d(name: str) -> bool:
    """True if name is a per-row numerical column of some data table."""
    if name in COMMON_COLUMNS_1D:
        return True
    return any(name in cls.COLUMNS_1D for cls in DATA_TABLE_TYPES.values())
