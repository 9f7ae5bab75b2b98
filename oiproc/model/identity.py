"""
Identity resolution for targets, instrument modes and nights.

Targets and instrument modes found in different files are aliases of
one global entity when their normalized names are equal. The managers
register every local entity and resolve it to its global counterpart,
whose UID is the key used by selectors.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field

from oiproc.model.range import UNDEFINED_RANGE, Range


logger = logging.getLogger(__name__)


def normalize_name(name: str | None) -> str:
    """Upper-case name without blanks, dashes or underscores."""
    if name is None:
        return ""
    return "".join(ch for ch in name.upper() if ch not in " _-\t")


@dataclass(frozen=True)
class Target:
    """Observation target (one OI_TARGET row)."""

    name: str
    ra: float = 0.0
    dec: float = 0.0

    @property
    def uid(self) -> str:
        return normalize_name(self.name)


@dataclass(frozen=True)
class InstrumentMode:
    """Wavelength-channel configuration shared by data tables."""

    ins_name: str
    nb_channels: int = 0
    lambda_min: float = float("nan")
    lambda_max: float = float("nan")

    @property
    def uid(self) -> str:
        return normalize_name(self.ins_name)

    @property
    def wavelength_range(self) -> Range:
        return Range(self.lambda_min, self.lambda_max)

    @staticmethod
    def get_wavelength_range(ins_modes: Iterable[InstrumentMode]) -> Range:
        """Overall [min, max] wavelength range, UNDEFINED_RANGE if empty."""
        lo, hi = float("inf"), float("-inf")
        for ins_mode in ins_modes:
            lo = min(lo, ins_mode.lambda_min)
            hi = max(hi, ins_mode.lambda_max)
        if lo > hi:
            return UNDEFINED_RANGE
        return Range(lo, hi)


class _AliasManager:
    """Registry mapping local entities to the first registered alias."""

    kind = "entity"

    def __init__(self) -> None:
        self._globals: dict[str, object] = {}

    def clear(self) -> None:
        self._globals.clear()

    def register(self, local):
        """Register local and return its global counterpart."""
        return self._globals.setdefault(local.uid, local)

    def get_global(self, local):
        return self._globals.get(local.uid) if local is not None else None

    def get_global_by_uid(self, uid: str | None):
        return self._globals.get(normalize_name(uid)) if uid else None

    def get_globals(self) -> list:
        return list(self._globals.values())

    def dump(self) -> None:
        logger.debug(f"{self.kind} manager: {sorted(self._globals)}")


class TargetManager(_AliasManager):
    """Global target registry."""

    kind = "target"

    def get_global(self, local: Target | None) -> Target | None:
        return super().get_global(local)

    def get_global_by_uid(self, uid: str | None) -> Target | None:
        return super().get_global_by_uid(uid)

    def match(self, uid: str, name: str) -> bool:
        """True if name designates the global target identified by uid."""
        return normalize_name(uid) == normalize_name(name)


class InstrumentModeManager(_AliasManager):
    """Global instrument-mode registry."""

    kind = "instrument mode"

    def get_global(self, local: InstrumentMode | None) -> InstrumentMode | None:
        return super().get_global(local)

    def get_global_by_uid(self, uid: str | None) -> InstrumentMode | None:
        return super().get_global_by_uid(uid)


@dataclass(frozen=True, order=True)
class NightId:
    """Observation night identifier (rounded MJD)."""

    night_id: int

    def __str__(self) -> str:
        return str(self.night_id)


class _IdMatcher:
    """Membership test over a small set of integer identifiers."""

    def __init__(self, ids: Collection[int]) -> None:
        self.ids = frozenset(int(i) for i in ids)

    def match(self, id_: int) -> bool:
        return int(id_) in self.ids

    def match_all(self, ids: Iterable[int]) -> bool:
        return all(self.match(i) for i in ids)

    def __repr__(self) -> str:
        return f"{type(self).__name__}{sorted(self.ids)}"


class NightIdMatcher(_IdMatcher):
    """Matches rows by night identifier."""


class TargetIdMatcher(_IdMatcher):
    """Matches rows by file-local TARGET_ID."""


@dataclass(frozen=True)
class StaNamesDir:
    """Real station names of a baseline and their orientation."""

    sta_names: str
    orientation: bool = True


@dataclass(unsafe_hash=True)
class Granule:
    """
    Grouping key (target x instrument mode x night) of data tables.

    Only the three key fields take part in equality and hashing; the
    remaining fields accumulate summaries of the grouped tables.
    """

    target: Target | None = None
    ins_mode: InstrumentMode | None = None
    night: NightId | None = None
    distinct_sta_names: set[str] = field(default_factory=set, compare=False, hash=False, repr=False)
    distinct_sta_confs: set[str] = field(default_factory=set, compare=False, hash=False, repr=False)
    mjd_range: Range = field(default_factory=lambda: UNDEFINED_RANGE, compare=False, hash=False, repr=False)

    def is_empty(self) -> bool:
        return self.target is None and self.ins_mode is None and self.night is None

    def update_mjd_range(self, other: Range) -> None:
        if not other.is_finite():
            return
        if self.mjd_range.is_finite():
            self.mjd_range = Range(min(self.mjd_range.min, other.min), max(self.mjd_range.max, other.max))
        else:
            self.mjd_range = Range(other.min, other.max)

    def match(self, pattern: Granule) -> bool:
        """True if every key field set on pattern equals this granule's."""
        if pattern.target is not None and pattern.target != self.target:
            return False
        if pattern.ins_mode is not None and pattern.ins_mode != self.ins_mode:
            return False
        if pattern.night is not None and pattern.night != self.night:
            return False
        return True

    def sort_key(self) -> tuple:
        return (
            self.target.uid if self.target else "",
            self.ins_mode.uid if self.ins_mode else "",
            self.night.night_id if self.night else 0,
        )
