"""
OIFITS file model: an ordered set of tables plus the per-file analysis
(table links, granules and station names) the selection engine uses.
"""

from __future__ import annotations

import itertools
import logging
from enum import IntEnum
from pathlib import Path

from oiproc.model.identity import Granule, NightId, StaNamesDir
from oiproc.model.tables import (
    FitsTable,
    OIArray,
    OICorr,
    OIData,
    OITarget,
    OIWavelength,
)


logger = logging.getLogger(__name__)

_file_ids = itertools.count(1)


class OIFitsStandard(IntEnum):
    """Supported OIFITS standard versions."""

    VERSION_1 = 1
    VERSION_2 = 2


class OIFitsFile:
    """
    In-memory OIFITS file.

    Attributes:
        version: OIFITS standard of the file.
        file_path: Source path, None for files built in memory.
        file_id: Key shared by the tables of this file.
        tables: Tables in extension order.

    Example:
        >>> oi_fits = OIFitsFile(OIFitsStandard.VERSION_2)
        >>> oi_fits.add_table(oi_target)
        >>> oi_fits.analyze()
    """

    def __init__(
        self,
        version: OIFitsStandard = OIFitsStandard.VERSION_1,
        file_path: str | Path | None = None,
    ) -> None:
        self.version = OIFitsStandard(version)
        self.file_path = str(file_path) if file_path is not None else None
        self.file_id = self.file_path or f"oifits-{next(_file_ids)}"
        self.tables: list[FitsTable] = []
        self._oi_data_per_granule: dict[Granule, list[OIData]] | None = None
        self._used_sta_names_map: dict[str, StaNamesDir] | None = None

    @property
    def is_oifits2(self) -> bool:
        return self.version == OIFitsStandard.VERSION_2

    @property
    def name(self) -> str:
        return Path(self.file_path).name if self.file_path else self.file_id

    # --- tables ---

    def add_table(self, table: FitsTable) -> FitsTable:
        """Append table, taking ownership of it."""
        table.file_id = self.file_id
        table.ext_nb = len(self.tables) + 1
        self.tables.append(table)
        self._oi_data_per_granule = None
        self._used_sta_names_map = None
        return table

    def copy_table(self, table: FitsTable) -> FitsTable:
        """Append a deep copy of table (from any file) and return the copy."""
        return self.add_table(table.copy())

    def _tables_of(self, cls: type) -> list:
        return [t for t in self.tables if isinstance(t, cls)]

    @property
    def oi_target(self) -> OITarget | None:
        targets = self._tables_of(OITarget)
        return targets[0] if targets else None

    @property
    def oi_wavelengths(self) -> list[OIWavelength]:
        return self._tables_of(OIWavelength)

    @property
    def oi_arrays(self) -> list[OIArray]:
        return self._tables_of(OIArray)

    @property
    def oi_corrs(self) -> list[OICorr]:
        return self._tables_of(OICorr)

    @property
    def oi_datas(self) -> list[OIData]:
        return self._tables_of(OIData)

    def get_oi_wavelength(self, ins_name: str | None) -> OIWavelength | None:
        return next((t for t in self.oi_wavelengths if t.ins_name == ins_name), None)

    def get_oi_array(self, arr_name: str | None) -> OIArray | None:
        return next((t for t in self.oi_arrays if t.arr_name == arr_name), None)

    def get_oi_corr(self, corr_name: str | None) -> OICorr | None:
        return next((t for t in self.oi_corrs if t.corr_name == corr_name), None)

    def get_table(self, ext_nb: int) -> FitsTable | None:
        if 1 <= ext_nb <= len(self.tables):
            return self.tables[ext_nb - 1]
        return None

    # --- analysis ---

    def link_tables(self) -> None:
        """Resolve the target, wavelength and array table of every data table."""
        oi_target = self.oi_target
        for oi_data in self.oi_datas:
            oi_data.oi_target = oi_target
            oi_data.oi_wavelength = self.get_oi_wavelength(oi_data.ins_name)
            oi_data.oi_array = self.get_oi_array(oi_data.arr_name)
            oi_data.clear_cache()

    def analyze(self) -> None:
        """Link tables and group data tables per local granule."""
        self.link_tables()

        per_granule: dict[Granule, list[OIData]] = {}
        distinct: dict[Granule, Granule] = {}
        used_sta_names: dict[str, StaNamesDir] = {}

        for oi_data in self.oi_datas:
            ins_mode = oi_data.oi_wavelength.get_instrument_mode() if oi_data.oi_wavelength else None
            if ins_mode is None:
                logger.warning(f"{self.name}: no OI_WAVELENGTH '{oi_data.ins_name}' for {oi_data!r}")

            for target_id in sorted(oi_data.get_distinct_target_id()):
                target = self.oi_target.get_target_by_id(target_id) if self.oi_target else None

                for night_id in sorted(oi_data.get_distinct_night_id()):
                    key = Granule(target, ins_mode, NightId(night_id))
                    granule = distinct.setdefault(key, key)
                    granule.distinct_sta_names.update(oi_data.get_distinct_sta_names())
                    granule.distinct_sta_confs.update(oi_data.get_distinct_sta_conf_names())
                    granule.update_mjd_range(oi_data.get_column_range("MJD"))
                    per_granule.setdefault(granule, []).append(oi_data)

            used_sta_names.update(oi_data.get_used_sta_names_map())

        self._oi_data_per_granule = per_granule
        self._used_sta_names_map = used_sta_names

        logger.debug(f"{self.name}: {len(per_granule)} granules, {len(self.oi_datas)} data tables")

    @property
    def oi_data_per_granule(self) -> dict[Granule, list[OIData]]:
        if self._oi_data_per_granule is None:
            self.analyze()
        return self._oi_data_per_granule

    @property
    def used_sta_names_map(self) -> dict[str, StaNamesDir]:
        if self._used_sta_names_map is None:
            self.analyze()
        return self._used_sta_names_map

    def __repr__(self) -> str:
        return f"OIFitsFile({self.name}, v{int(self.version)}, {len(self.tables)} tables)"
