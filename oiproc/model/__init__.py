"""
In-memory OIFITS model, range algebra and masks.

The query engine lives in oiproc.model.collection (import it from there,
it depends on oiproc.processing).
"""

from oiproc.model.identity import (
    Granule,
    InstrumentMode,
    InstrumentModeManager,
    NightId,
    StaNamesDir,
    Target,
    TargetManager,
)
from oiproc.model.index_mask import IndexMask, MaskKind
from oiproc.model.oifits import OIFitsFile, OIFitsStandard
from oiproc.model.range import UNDEFINED_RANGE, DefaultRangeFactory, PooledRangeFactory, Range
from oiproc.model.tables import (
    OIT3,
    FitsTable,
    OIArray,
    OICorr,
    OIData,
    OIFlux,
    OITarget,
    OIVis,
    OIVis2,
    OIWavelength,
)


__all__ = [
    # Files and tables
    "OIFitsFile",
    "OIFitsStandard",
    "FitsTable",
    "OITarget",
    "OIWavelength",
    "OIArray",
    "OICorr",
    "OIData",
    "OIVis",
    "OIVis2",
    "OIT3",
    "OIFlux",
    # Identities
    "Target",
    "TargetManager",
    "InstrumentMode",
    "InstrumentModeManager",
    "NightId",
    "StaNamesDir",
    "Granule",
    # Ranges and masks
    "Range",
    "UNDEFINED_RANGE",
    "DefaultRangeFactory",
    "PooledRangeFactory",
    "IndexMask",
    "MaskKind",
]
