"""Configuration management for oiproc selections and merges."""

from oiproc.config.schema import (
    ColumnFilterConfig,
    MergeConfig,
    RangeConfig,
    SelectorConfig,
)


__all__ = [
    "MergeConfig",
    "SelectorConfig",
    "ColumnFilterConfig",
    "RangeConfig",
]
