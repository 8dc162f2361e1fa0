from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from core.services.periodization import PHASE_PROFILES, Phase

MAX_KEY_EXERCISES = 10
EVENT_URGENCY_WEEKS = 2


@dataclass(frozen=True)
class PreviousWeek:
    week_number: int
    phase: str
    weekly_plan: Any
    is_deload_week: bool = False


@dataclass(frozen=True)
class ProgressionContext:
    """What the week generator needs to progress from the prior week.

    ``progression_mode`` is ``"progress"`` when the previous week is the
    reference to build on, ``"deload"`` when volume should drop instead, and
    ``"initial"`` when there is no prior week to reference.
    """

    target_week: int
    total_weeks: int
    new_phase: Phase
    phase_changed: bool
    is_deload: bool
    weeks_until_event: Optional[int]
    event_imminent: bool
    progression_mode: str
    previous_week: Optional[PreviousWeek]
    key_exercises: tuple[str, ...]
    progress_percent: int

    def to_payload(self) -> dict[str, Any]:
        profile = PHASE_PROFILES[self.new_phase]
        previous = None
        if self.previous_week is not None:
            previous = {
                "week_number": self.previous_week.week_number,
                "phase": self.previous_week.phase,
                "is_deload_week": self.previous_week.is_deload_week,
                "weekly_plan": self.previous_week.weekly_plan if self.progression_mode == "progress" else None,
            }
        return {
            "target_week": self.target_week,
            "total_weeks": self.total_weeks,
            "phase": self.new_phase.value,
            "phase_changed": self.phase_changed,
            "is_deload": self.is_deload,
            "weeks_until_event": self.weeks_until_event,
            "event_imminent": self.event_imminent,
            "progression_mode": self.progression_mode,
            "progress_percent": self.progress_percent,
            "phase_profile": {
                "volume_multiplier": profile.volume_multiplier,
                "intensity_multiplier": profile.intensity_multiplier,
                "rpe_range": profile.rpe_range,
                "focus": profile.focus,
                "key_principles": list(profile.key_principles),
            },
            "previous_week": previous,
            "key_exercises": list(self.key_exercises),
        }


def extract_key_exercises(weekly_plan: Any, limit: int = MAX_KEY_EXERCISES) -> tuple[str, ...]:
    """Unique ``main`` exercise names in day -> blocks -> exercises order."""
    if not isinstance(weekly_plan, list):
        return ()
    seen: list[str] = []
    for day in weekly_plan:
        if not isinstance(day, dict):
            continue
        for block in day.get("blocks") or []:
            if not isinstance(block, dict):
                continue
            for exercise in block.get("exercises") or []:
                if not isinstance(exercise, dict) or exercise.get("category") != "main":
                    continue
                name = str(exercise.get("exercise_name") or "").strip()
                if name and name not in seen:
                    seen.append(name)
                    if len(seen) >= limit:
                        return tuple(seen)
    return tuple(seen)


def build_progression_context(
    previous_week: Optional[PreviousWeek],
    new_phase: Phase,
    phase_changed: bool,
    is_deload: bool,
    target_week: int,
    total_weeks: int,
    weeks_until_event: Optional[int],
    urgency_weeks: int = EVENT_URGENCY_WEEKS,
) -> ProgressionContext:
    if is_deload:
        mode = "deload"
    elif previous_week is None:
        mode = "initial"
    else:
        mode = "progress"

    key_exercises: tuple[str, ...] = ()
    if mode == "progress" and previous_week is not None:
        key_exercises = extract_key_exercises(previous_week.weekly_plan)

    return ProgressionContext(
        target_week=target_week,
        total_weeks=total_weeks,
        new_phase=new_phase,
        phase_changed=phase_changed,
        is_deload=is_deload,
        weeks_until_event=weeks_until_event,
        event_imminent=weeks_until_event is not None and weeks_until_event <= urgency_weeks,
        progression_mode=mode,
        previous_week=previous_week,
        key_exercises=key_exercises,
        progress_percent=round(target_week / total_weeks * 100) if total_weeks else 0,
    )
