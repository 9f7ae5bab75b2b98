"""Column filters, selection criteria, query results and merging."""

from oiproc.processing.filters import (
    Double1DFilter,
    Double2DFilter,
    FilterState,
    FitsTableFilter,
    NightIdFilter,
    StaConfFilter,
    StaIndexFilter,
    TargetUIDFilter,
    reset_filters,
)
from oiproc.processing.merger import MergeContext, Merger
from oiproc.processing.selector import FilterValues, Selector
from oiproc.processing.selector_result import BaseSelectorResult, SelectorResult


__all__ = [
    # Filters
    "FilterState",
    "FitsTableFilter",
    "Double1DFilter",
    "Double2DFilter",
    "NightIdFilter",
    "StaConfFilter",
    "StaIndexFilter",
    "TargetUIDFilter",
    "reset_filters",
    # Selection
    "Selector",
    "FilterValues",
    "BaseSelectorResult",
    "SelectorResult",
    # Merge
    "Merger",
    "MergeContext",
]
