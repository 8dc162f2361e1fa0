"""Phase / deload state machine for periodized plans.

Two plan shapes are supported:

* ``EventAnchored`` plans count down to a target event and move through
  BASE -> BUILD -> PEAK -> TAPER, with phase lengths allocated once from
  ``total_weeks``.
* ``RollingCycle`` plans have no event and repeat a twelve week block of
  ACCUMULATION (4) -> INTENSIFICATION (4) -> REALIZATION (3) -> DELOAD (1).

Everything here is pure: no I/O, no clocks other than those passed in.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from core.services.errors import DataError, PlanCompleteError

EVENT_ANCHORED = "event_anchored"
ROLLING_CYCLE = "rolling_cycle"


class Phase(str, Enum):
    BASE = "base"
    BUILD = "build"
    PEAK = "peak"
    TAPER = "taper"
    ACCUMULATION = "accumulation"
    INTENSIFICATION = "intensification"
    REALIZATION = "realization"
    DELOAD = "deload"


EVENT_PHASES = (Phase.BASE, Phase.BUILD, Phase.PEAK, Phase.TAPER)
ROLLING_PHASES = (Phase.ACCUMULATION, Phase.INTENSIFICATION, Phase.REALIZATION, Phase.DELOAD)


@dataclass(frozen=True)
class PhaseProfile:
    volume_multiplier: float
    intensity_multiplier: float
    rpe_range: str
    focus: str
    key_principles: tuple[str, ...]


PHASE_PROFILES: dict[Phase, PhaseProfile] = {
    Phase.BASE: PhaseProfile(
        1.0, 0.7, "5-7",
        "Building aerobic foundation, technique focus, moderate volume",
        ("High volume, lower intensity", "Movement pattern proficiency", "General fitness base building", "Injury prevention focus"),
    ),
    Phase.BUILD: PhaseProfile(
        1.2, 0.85, "7-8",
        "Sport-specific training, progressive overload, peak volume",
        ("Progressive overload", "Sport-specific movements", "Peak training volume", "Competition pattern simulation"),
    ),
    Phase.PEAK: PhaseProfile(
        0.8, 1.0, "8-9",
        "Competition simulation, high intensity, reduced volume",
        ("High intensity, low volume", "Competition simulation", "Mental preparation", "Final skill refinement"),
    ),
    Phase.TAPER: PhaseProfile(
        0.5, 0.7, "5-6",
        "Recovery focus, maintenance, freshness for competition",
        ("Dramatic volume reduction", "Maintain training frequency", "Recovery and regeneration"),
    ),
    Phase.ACCUMULATION: PhaseProfile(
        1.1, 0.75, "6-7",
        "Volume accumulation at moderate intensity",
        ("Higher volume, moderate load", "Build work capacity", "Consistent exercise selection"),
    ),
    Phase.INTENSIFICATION: PhaseProfile(
        0.9, 0.9, "7-8",
        "Heavier loads with reduced volume",
        ("Increase load", "Reduce accessory volume", "Quality over quantity"),
    ),
    Phase.REALIZATION: PhaseProfile(
        0.8, 1.0, "8-9",
        "Express strength and speed built in the block",
        ("Top sets and tests", "Low volume, high intensity", "Full recovery between efforts"),
    ),
    Phase.DELOAD: PhaseProfile(
        0.6, 0.7, "5-6",
        "Planned recovery week",
        ("Reduce volume 40-50%", "Keep movement patterns", "Technique refinement"),
    ),
}


@dataclass(frozen=True)
class PeriodizationConfig:
    taper_ratio: float = 0.10
    peak_ratio: float = 0.15
    base_deload_every: int = 4
    build_deload_every: int = 3
    rolling_block_weeks: tuple[int, int, int, int] = (4, 4, 3, 1)

    @classmethod
    def from_settings(cls, settings) -> "PeriodizationConfig":
        return cls(
            taper_ratio=settings.taper_ratio,
            peak_ratio=settings.peak_ratio,
            base_deload_every=settings.base_deload_every,
            build_deload_every=settings.build_deload_every,
            rolling_block_weeks=tuple(settings.rolling_block_weeks),
        )


@dataclass(frozen=True)
class PhaseWindow:
    phase: Phase
    start_week: int
    end_week: int

    @property
    def weeks(self) -> int:
        return self.end_week - self.start_week + 1

    def contains(self, week: int) -> bool:
        return self.start_week <= week <= self.end_week


@dataclass(frozen=True)
class EventAnchored:
    current_week: int
    total_weeks: int
    phase: Phase
    kind: ClassVar[str] = EVENT_ANCHORED


@dataclass(frozen=True)
class RollingCycle:
    current_week: int
    total_weeks: int
    phase: Phase
    kind: ClassVar[str] = ROLLING_CYCLE


Periodization = Union[EventAnchored, RollingCycle]

_KINDS = {EVENT_ANCHORED: EventAnchored, ROLLING_CYCLE: RollingCycle}


def _parse_phase(value: Any) -> Phase:
    try:
        return Phase(str(value or "").strip().lower())
    except ValueError:
        raise DataError(f"Unknown periodization phase: {value!r}") from None


def periodization_from_dict(data: Optional[dict[str, Any]]) -> Periodization:
    """Parse a stored periodization record into its tagged form.

    Records written before rolling plans existed carry no ``kind`` and are
    read as event anchored.
    """
    if not data:
        raise DataError("Plan has no periodization")
    kind = data.get("kind") or EVENT_ANCHORED
    cls = _KINDS.get(kind)
    if cls is None:
        raise DataError(f"Unknown periodization kind: {kind!r}")
    try:
        current_week = int(data["current_week"])
        total_weeks = int(data["total_weeks"])
    except (KeyError, TypeError, ValueError):
        raise DataError("Periodization is missing current_week/total_weeks") from None
    if not 1 <= current_week <= total_weeks:
        raise DataError(f"current_week {current_week} outside 1..{total_weeks}")
    return cls(current_week=current_week, total_weeks=total_weeks, phase=_parse_phase(data.get("phase")))


def calculate_current_week(created_at: dt.datetime, now: dt.datetime) -> int:
    """Calendar week a plan should be on; week 1 spans days [0, 7)."""
    elapsed_days = (now - created_at).total_seconds() / 86400
    return max(1, math.floor(elapsed_days / 7) + 1)


def total_weeks_until(target_date: dt.date, today: dt.date) -> int:
    return max(1, math.ceil((target_date - today).days / 7))


def _ceil_share(total: int, ratio: float) -> int:
    # round() first so 20 * 0.15 stays 3 rather than drifting to 3.0000000000000004
    return math.ceil(round(total * ratio, 6))


class PhaseStateMachine:
    def __init__(self, config: Optional[PeriodizationConfig] = None):
        self.config = config or PeriodizationConfig()

    def allocation(self, total_weeks: int) -> tuple[PhaseWindow, ...]:
        """Event-anchored phase windows, TAPER last; empty phases are omitted."""
        if total_weeks < 1:
            raise DataError("total_weeks must be at least 1")
        taper = min(total_weeks, max(1, _ceil_share(total_weeks, self.config.taper_ratio)))
        peak = min(total_weeks - taper, max(1, _ceil_share(total_weeks, self.config.peak_ratio)))
        remainder = total_weeks - taper - peak
        build = remainder // 2
        base = remainder - build

        windows: list[PhaseWindow] = []
        start = 1
        for phase, weeks in ((Phase.BASE, base), (Phase.BUILD, build), (Phase.PEAK, peak), (Phase.TAPER, taper)):
            if weeks <= 0:
                continue
            windows.append(PhaseWindow(phase, start, start + weeks - 1))
            start += weeks
        return tuple(windows)

    def window_for_week(self, kind: str, week: int, total_weeks: int) -> PhaseWindow:
        if kind == ROLLING_CYCLE:
            return self._rolling_window(week, total_weeks)
        for window in self.allocation(total_weeks):
            if window.contains(week):
                return window
        # Past the last window only happens for week > total_weeks.
        raise PlanCompleteError(f"Week {week} is beyond plan length {total_weeks}")

    def _rolling_window(self, week: int, total_weeks: int) -> PhaseWindow:
        block = self.config.rolling_block_weeks
        offset = (week - 1) % sum(block)
        block_start = week - offset
        for phase, weeks in zip(ROLLING_PHASES, block):
            if offset < weeks:
                # The last block of a finite plan may be cut short.
                return PhaseWindow(phase, block_start, min(block_start + weeks - 1, max(total_weeks, week)))
            offset -= weeks
            block_start += weeks
        raise DataError(f"Invalid rolling block {block!r}")

    def phase_for_week(self, kind: str, week: int, total_weeks: int) -> Phase:
        return self.window_for_week(kind, week, total_weeks).phase

    def is_deload_week(self, week: int, total_weeks: int, kind: str = EVENT_ANCHORED) -> bool:
        if week < 1 or week > total_weeks:
            return False
        if kind == ROLLING_CYCLE:
            return self.phase_for_week(kind, week, total_weeks) is Phase.DELOAD
        window = self.window_for_week(kind, week, total_weeks)
        cadence = {
            Phase.BASE: self.config.base_deload_every,
            Phase.BUILD: self.config.build_deload_every,
        }.get(window.phase, 0)
        if cadence <= 0:
            return False
        week_in_phase = week - window.start_week + 1
        return week_in_phase % cadence == 0

    def advance(self, periodization: Periodization) -> tuple[Periodization, bool]:
        """Move to the next week. Raises PlanCompleteError on the final week."""
        if periodization.current_week >= periodization.total_weeks:
            raise PlanCompleteError(
                f"Plan is complete ({periodization.current_week}/{periodization.total_weeks})"
            )
        next_week = periodization.current_week + 1
        phase = self.phase_for_week(periodization.kind, next_week, periodization.total_weeks)
        advanced = replace(periodization, current_week=next_week, phase=phase)
        return advanced, phase is not periodization.phase

    def weeks_until_event(self, periodization: Periodization, week: Optional[int] = None) -> Optional[int]:
        if periodization.kind != EVENT_ANCHORED:
            return None
        return periodization.total_weeks - (week if week is not None else periodization.current_week)

    def initial(self, kind: str, total_weeks: int) -> Periodization:
        cls = _KINDS.get(kind)
        if cls is None:
            raise DataError(f"Unknown periodization kind: {kind!r}")
        return cls(current_week=1, total_weeks=total_weeks, phase=self.phase_for_week(kind, 1, total_weeks))

    def to_record(self, periodization: Periodization) -> dict[str, Any]:
        """Serialise for storage on the plan, including the current phase window."""
        window = self.window_for_week(periodization.kind, periodization.current_week, periodization.total_weeks)
        return {
            "kind": periodization.kind,
            "current_week": periodization.current_week,
            "total_weeks": periodization.total_weeks,
            "phase": periodization.phase.value,
            "phase_description": PHASE_PROFILES[periodization.phase].focus,
            "phase_start_week": window.start_week,
            "phase_end_week": window.end_week,
            "weeks_in_phase": window.weeks,
        }
