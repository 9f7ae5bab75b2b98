"""
Merge several OIFITS files of one target into a single file.

Each input contributes its data tables accepted by the optional
selector, together with the OI_WAVELENGTH / OI_ARRAY / OI_CORR tables
they reference. Metadata tables whose name is already taken in the
result are renamed NAME_1, NAME_2, ... and the copied data tables are
re-pointed to the new names.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from oiproc.model.oifits import OIFitsFile, OIFitsStandard
from oiproc.model.tables import COLUMN_TARGET_ID, FitsTable, OIData, OIFlux
from oiproc.processing.selector import Selector


logger = logging.getLogger(__name__)


@dataclass
class MergeContext:
    """
    Scratch state of one merge.

    The name maps and used-name sets describe the input being processed
    and are cleared before each input.
    """

    result: OIFitsFile
    map_ins_names: dict[str, str] = field(default_factory=dict)
    map_arr_names: dict[str, str] = field(default_factory=dict)
    map_corr_names: dict[str, str] = field(default_factory=dict)
    used_ins_names: set[str] = field(default_factory=set)
    used_arr_names: set[str] = field(default_factory=set)
    used_corr_names: set[str] = field(default_factory=set)
    oi_datas: list[OIData] = field(default_factory=list)
    target_name: str | None = None

    def reset_input(self) -> None:
        self.map_ins_names.clear()
        self.map_arr_names.clear()
        self.map_corr_names.clear()
        self.used_ins_names.clear()
        self.used_arr_names.clear()
        self.used_corr_names.clear()
        self.oi_datas.clear()


class Merger:
    """
    Merges OIFITS files sharing a single target.

    Example:
        >>> merged = Merger.process([oi_fits_1, oi_fits_2])
        >>> merged = Merger.process(inputs, selector=selector, standard=OIFitsStandard.VERSION_2)
    """

    @staticmethod
    def process(
        inputs: Sequence[OIFitsFile],
        selector: Selector | None = None,
        standard: OIFitsStandard | int | None = None,
    ) -> OIFitsFile:
        """
        Merge inputs into a new file.

        Args:
            inputs: Files to merge, in order.
            selector: Optional coarse table filter (Selector.match).
            standard: Output standard, defaults to the highest input standard.

        Returns:
            The merged file.

        Raises:
            ValueError: If inputs is empty, or an input does not hold exactly
                one named target, or the inputs have different targets.
        """
        if not inputs:
            raise ValueError("Merge: Missing inputs, at least one OIFITS file is required")

        if standard is None:
            standard = max(oi_fits.version for oi_fits in inputs)
        ctx = MergeContext(result=OIFitsFile(OIFitsStandard(standard)))

        logger.info(f"Merging {len(inputs)} files into OIFITS {int(ctx.result.version)}")

        for oi_fits in inputs:
            ctx.reset_input()
            oi_fits.link_tables()
            _collect_data(ctx, oi_fits, selector)
            _merge_target(ctx, oi_fits)
            _merge_metadata(ctx, oi_fits)
            _merge_data(ctx, oi_fits)

        logger.info(f"Merged {len(ctx.result.oi_datas)} data tables of target '{ctx.target_name}'")
        return ctx.result


def _collect_data(ctx: MergeContext, oi_fits: OIFitsFile, selector: Selector | None) -> None:
    is_v2 = ctx.result.is_oifits2

    for oi_data in oi_fits.oi_datas:
        if selector is not None and not selector.match(oi_data):
            logger.debug(f"Skip {oi_data!r}, not matching selector")
            continue
        if isinstance(oi_data, OIFlux) and not is_v2:
            logger.warning(f"Skip {oi_data!r}, OI_FLUX requires OIFITS 2 output")
            continue

        ctx.oi_datas.append(oi_data)
        ctx.used_ins_names.add(oi_data.ins_name)
        if oi_data.arr_name:
            ctx.used_arr_names.add(oi_data.arr_name)
        if is_v2 and oi_data.corr_name:
            ctx.used_corr_names.add(oi_data.corr_name)

    logger.debug(f"{oi_fits.name}: {len(ctx.oi_datas)} data tables retained")


def _merge_target(ctx: MergeContext, oi_fits: OIFitsFile) -> None:
    oi_target = oi_fits.oi_target

    if oi_target is None or oi_target.nb_rows < 1:
        raise ValueError(f"Merge: target for {oi_fits.name} is missing or empty")
    if oi_target.nb_rows > 1:
        raise ValueError(f"Merge: more than one target in {oi_fits.name}")

    name = oi_target.target_names[0]
    if not name:
        raise ValueError(f"Merge: empty target name in {oi_fits.name}")

    if ctx.target_name is None:
        ctx.result.copy_table(oi_target)
        ctx.target_name = name
        logger.info(f"Target name: {name}")
    elif name != ctx.target_name:
        raise ValueError(
            f"Merge: target mismatch, {oi_fits.name} has target '{name}' instead of '{ctx.target_name}'"
        )


def _copy_renamed(ctx: MergeContext, table: FitsTable, name_attr: str, lookup, mapping: dict[str, str]) -> None:
    old_name = getattr(table, name_attr)
    new_name = old_name
    idx = 0
    while lookup(new_name) is not None:
        idx += 1
        new_name = f"{old_name}_{idx}"

    copied = ctx.result.copy_table(table)
    setattr(copied, name_attr, new_name)
    mapping[old_name] = new_name


def _merge_metadata(ctx: MergeContext, oi_fits: OIFitsFile) -> None:
    result = ctx.result

    for oi_wavelength in oi_fits.oi_wavelengths:
        if oi_wavelength.ins_name in ctx.used_ins_names:
            _copy_renamed(ctx, oi_wavelength, "ins_name", result.get_oi_wavelength, ctx.map_ins_names)

    for oi_array in oi_fits.oi_arrays:
        if oi_array.arr_name in ctx.used_arr_names:
            _copy_renamed(ctx, oi_array, "arr_name", result.get_oi_array, ctx.map_arr_names)

    if result.is_oifits2:
        for oi_corr in oi_fits.oi_corrs:
            if oi_corr.corr_name in ctx.used_corr_names:
                _copy_renamed(ctx, oi_corr, "corr_name", result.get_oi_corr, ctx.map_corr_names)

    logger.info(f"{oi_fits.name}: insnames {ctx.map_ins_names}, arrnames {ctx.map_arr_names}, corrnames {ctx.map_corr_names}")


def _merge_data(ctx: MergeContext, oi_fits: OIFitsFile) -> None:
    result = ctx.result
    target_id = int(result.oi_target.target_ids[0])

    for oi_data in ctx.oi_datas:
        new_ins_name = ctx.map_ins_names.get(oi_data.ins_name)
        if new_ins_name is None:
            logger.warning(f"{oi_fits.name}: skip {oi_data!r}, no OI_WAVELENGTH '{oi_data.ins_name}'")
            continue

        new_arr_name = None
        if oi_data.arr_name:
            new_arr_name = ctx.map_arr_names.get(oi_data.arr_name)
            if new_arr_name is None:
                logger.warning(f"{oi_fits.name}: skip {oi_data!r}, no OI_ARRAY '{oi_data.arr_name}'")
                continue

        new_corr_name = None
        if result.is_oifits2 and oi_data.corr_name:
            new_corr_name = ctx.map_corr_names.get(oi_data.corr_name)
            if new_corr_name is None:
                logger.warning(f"{oi_fits.name}: skip {oi_data!r}, no OI_CORR '{oi_data.corr_name}'")
                continue

        copied = result.copy_table(oi_data)
        copied.ins_name = new_ins_name
        if new_arr_name is not None:
            copied.arr_name = new_arr_name
        copied.corr_name = new_corr_name
        copied.set_column(COLUMN_TARGET_ID, np.full(copied.nb_rows, target_id, dtype=np.int16))
