"""Tests for progression context building."""

from __future__ import annotations

from conftest import sample_week

from core.services.periodization import Phase
from core.services.progression import (
    MAX_KEY_EXERCISES,
    PreviousWeek,
    build_progression_context,
    extract_key_exercises,
)


def _previous(plan=None, week=4):
    return PreviousWeek(week_number=week, phase="base", weekly_plan=plan if plan is not None else sample_week("Back Squat", "Deadlift"))


def test_progress_mode_carries_previous_week_and_key_exercises():
    ctx = build_progression_context(_previous(), Phase.BASE, False, False, 5, 12, 7)
    assert ctx.progression_mode == "progress"
    assert ctx.key_exercises == ("Back Squat", "Deadlift")
    assert ctx.event_imminent is False
    payload = ctx.to_payload()
    assert payload["previous_week"]["week_number"] == 4
    assert payload["previous_week"]["weekly_plan"] is not None
    assert payload["phase"] == "base"
    assert payload["phase_profile"]["rpe_range"] == "5-7"


def test_deload_mode_overrides_progression():
    ctx = build_progression_context(_previous(), Phase.BUILD, False, True, 7, 12, 5)
    assert ctx.progression_mode == "deload"
    assert ctx.key_exercises == ()
    assert ctx.to_payload()["previous_week"]["weekly_plan"] is None


def test_initial_mode_without_previous_week():
    ctx = build_progression_context(None, Phase.BASE, False, False, 2, 12, 10)
    assert ctx.progression_mode == "initial"
    assert ctx.to_payload()["previous_week"] is None


def test_event_imminent_within_urgency_window():
    assert build_progression_context(None, Phase.TAPER, True, False, 10, 12, 2).event_imminent is True
    assert build_progression_context(None, Phase.PEAK, False, False, 9, 12, 3).event_imminent is False
    assert build_progression_context(None, Phase.PEAK, False, False, 9, 12, 3, urgency_weeks=3).event_imminent is True


def test_rolling_plans_are_never_event_imminent():
    ctx = build_progression_context(None, Phase.DELOAD, True, True, 4, 52, None)
    assert ctx.event_imminent is False
    assert ctx.weeks_until_event is None


def test_progress_percent():
    assert build_progression_context(None, Phase.BUILD, False, False, 6, 12, 6).progress_percent == 50
    assert build_progression_context(None, Phase.TAPER, False, False, 12, 12, 0).progress_percent == 100


def test_extract_key_exercises_keeps_first_seen_main_lifts():
    plan = sample_week("Back Squat", "Bench Press") + sample_week("Bench Press", "Pull Up")
    assert extract_key_exercises(plan) == ("Back Squat", "Bench Press", "Pull Up")


def test_extract_key_exercises_caps_result():
    names = [f"Lift {i}" for i in range(MAX_KEY_EXERCISES + 5)]
    assert len(extract_key_exercises(sample_week(*names))) == MAX_KEY_EXERCISES


def test_extract_key_exercises_tolerates_odd_shapes():
    assert extract_key_exercises(None) == ()
    assert extract_key_exercises({"days": []}) == ()
    assert extract_key_exercises([{"blocks": None}, "rest", {"blocks": [{"exercises": [None]}]}]) == ()
