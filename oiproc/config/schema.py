"""
Pydantic configuration schemas for OIFITS selections and merge jobs.

A MergeConfig describes one merge run: the input files, the output
path and standard, and an optional selection. Configurations are
usually stored as YAML:

    inputs: [night1.fits, night2.fits]
    output: merged.fits
    standard: 2
    selector:
      target_uid: HD1234
      baselines: [A0-B1]
      mjd_ranges:
        - {min: 58000.0, max: 58010.5}
      filters:
        - column: VIS2DATA
          exclude:
            - {min: -1.0, max: 0.0}

All configurations use Pydantic v2 for validation and serialization.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from oiproc.model.range import Range
from oiproc.processing.selector import Selector, is_range_filter


class RangeConfig(BaseModel):
    """Closed numerical interval [min, max]."""

    min: float = Field(description="Lower bound")
    max: float = Field(description="Upper bound")

    @model_validator(mode="after")
    def validate_bounds(self) -> RangeConfig:
        """Ensure min <= max."""
        if self.min > self.max:
            raise ValueError(f"min ({self.min}) must be <= max ({self.max})")
        return self

    def to_range(self) -> Range:
        return Range(self.min, self.max)

    @classmethod
    def from_range(cls, range_: Range) -> RangeConfig:
        return cls(min=range_.min, max=range_.max)


class ColumnFilterConfig(BaseModel):
    """Include and/or exclude values of one column.

    Numerical columns take ranges; STA_INDEX, STA_CONF, NIGHT_ID and
    TARGET_ID take plain values.

    Attributes:
        column: Column name (e.g. VIS2DATA, MJD, EFF_WAVE, STA_CONF).
        include: Values or ranges to keep.
        exclude: Values or ranges to drop.
    """

    column: str = Field(min_length=1, description="Column name")
    include: list[RangeConfig | str] | None = Field(default=None, description="Values to include")
    exclude: list[RangeConfig | str] | None = Field(default=None, description="Values to exclude")

    @field_validator("column")
    @classmethod
    def normalize_column(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def validate_values(self) -> ColumnFilterConfig:
        """Require values of the kind expected by the column."""
        if not self.include and not self.exclude:
            raise ValueError(f"Filter on {self.column} needs include or exclude values")

        expected = RangeConfig if is_range_filter(self.column) else str
        for value in (self.include or []) + (self.exclude or []):
            if not isinstance(value, expected):
                kind = "ranges" if expected is RangeConfig else "names"
                raise ValueError(f"Filter on {self.column} expects {kind}, got {value!r}")
        return self

    def _convert(self, values: list[RangeConfig | str] | None) -> list | None:
        if not values:
            return None
        return [v.to_range() if isinstance(v, RangeConfig) else v for v in values]

    def include_values(self) -> list | None:
        return self._convert(self.include)

    def exclude_values(self) -> list | None:
        return self._convert(self.exclude)


class SelectorConfig(BaseModel):
    """Selection criteria.

    Attributes:
        target_uid: Global target UID (normalized target name).
        ins_mode_uid: Global instrument mode UID (normalized INSNAME).
        night_id: Night identifier (rounded MJD).
        tables: File path -> extension numbers (empty list = whole file).
        baselines: Baselines or triangles to keep ('A0-B1').
        mjd_ranges: MJD ranges to keep.
        wavelength_ranges: EFF_WAVE ranges to keep (meters).
        filters: Generic column filters.
    """

    target_uid: str | None = Field(default=None, description="Target UID")
    ins_mode_uid: str | None = Field(default=None, description="Instrument mode UID")
    night_id: int | None = Field(default=None, description="Night identifier")
    tables: dict[str, list[int]] = Field(default_factory=dict, description="Extensions per file")
    baselines: list[str] | None = Field(default=None, description="Baselines")
    mjd_ranges: list[RangeConfig] | None = Field(default=None, description="MJD ranges")
    wavelength_ranges: list[RangeConfig] | None = Field(default=None, description="Wavelength ranges")
    filters: list[ColumnFilterConfig] = Field(default_factory=list, description="Column filters")

    @field_validator("target_uid", "ins_mode_uid")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    def to_selector(self) -> Selector:
        """Build the Selector described by this configuration."""
        selector = Selector()
        selector.target_uid = self.target_uid
        selector.ins_mode_uid = self.ins_mode_uid
        selector.night_id = self.night_id
        for path, ext_nbs in self.tables.items():
            selector.add_table(path)
            for ext_nb in ext_nbs:
                selector.add_table(path, ext_nb)
        selector.baselines = list(self.baselines) if self.baselines else None
        if self.mjd_ranges:
            selector.mjd_ranges = [r.to_range() for r in self.mjd_ranges]
        if self.wavelength_ranges:
            selector.wavelength_ranges = [r.to_range() for r in self.wavelength_ranges]
        for column_filter in self.filters:
            selector.add_including_filter(column_filter.column, column_filter.include_values())
            selector.add_excluding_filter(column_filter.column, column_filter.exclude_values())
        return selector

    @classmethod
    def from_selector(cls, selector: Selector) -> SelectorConfig:
        """Describe an existing Selector."""

        def ranges(values):
            return [RangeConfig.from_range(r) for r in values] if values else None

        def config_values(values):
            if not values:
                return None
            return [RangeConfig.from_range(v) if isinstance(v, Range) else str(v) for v in values]

        return cls(
            target_uid=selector.target_uid,
            ins_mode_uid=selector.ins_mode_uid,
            night_id=selector.night_id,
            tables={path: list(ext_nbs) for path, ext_nbs in selector.tables.items()},
            baselines=list(selector.baselines) if selector.baselines else None,
            mjd_ranges=ranges(selector.mjd_ranges),
            wavelength_ranges=ranges(selector.wavelength_ranges),
            filters=[
                ColumnFilterConfig(
                    column=name,
                    include=config_values(values.include_values),
                    exclude=config_values(values.exclude_values),
                )
                for name, values in selector.filters.items()
                if not values.is_empty()
            ],
        )


class MergeConfig(BaseModel):
    """Configuration of a merge run.

    Attributes:
        inputs: OIFITS files to merge, in order.
        output: Path of the merged file.
        standard: Output OIFITS standard, highest input standard if None.
        selector: Optional selection applied to every input.
        overwrite: Whether to replace an existing output file.
    """

    inputs: list[Path] = Field(min_length=1, description="Input OIFITS files")
    output: Path = Field(description="Merged OIFITS file")
    standard: Literal[1, 2] | None = Field(default=None, description="Output OIFITS standard")
    selector: SelectorConfig | None = Field(default=None, description="Selection criteria")
    overwrite: bool = Field(default=False, description="Overwrite existing output")

    def save_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save the YAML file.
        """
        import yaml

        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load_yaml(cls, path: str | Path) -> MergeConfig:
        """Load configuration from a YAML file.

        Relative input and output paths are resolved against the
        directory of the YAML file.

        Args:
            path: Path to the YAML file.

        Returns:
            MergeConfig instance.
        """
        import yaml

        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls(**data)
        base = path.parent
        config.inputs = [p if p.is_absolute() else base / p for p in config.inputs]
        if not config.output.is_absolute():
            config.output = base / config.output
        if config.selector is not None and config.selector.tables:
            # table selections are keyed by absolute file path, like loaded files
            config.selector.tables = {
                str((base / p).resolve()): ext_nbs for p, ext_nbs in config.selector.tables.items()
            }
        return config
