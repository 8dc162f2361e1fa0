"""Tests for the catch-up scanner."""

from __future__ import annotations

import asyncio
import datetime as dt

from conftest import START, FakeClock

from core.services.catch_up import CatchUpScanner, candidate_for_plan
from core.services.periodization import Phase
from core.services.records import PlanRecord


def _plan(current_week=1, total_weeks=12, created_at=START, periodization="default"):
    if periodization == "default":
        periodization = {"current_week": current_week, "total_weeks": total_weeks, "phase": "base"}
    return PlanRecord(id=7, user_id="user-1", created_at=created_at, weekly_plan=[], periodization=periodization)


def test_candidate_after_first_week_elapses():
    candidate = candidate_for_plan(_plan(), START + dt.timedelta(days=8))
    assert candidate is not None
    assert candidate.plan_id == 7
    assert candidate.current_week == 1
    assert candidate.calculated_week == 2
    assert candidate.next_week_to_generate == 2
    assert candidate.phase is Phase.BASE
    assert candidate.total_weeks == 12


def test_no_candidate_within_current_week():
    assert candidate_for_plan(_plan(), START + dt.timedelta(days=6)) is None
    assert candidate_for_plan(_plan(current_week=3), START + dt.timedelta(days=15)) is None


def test_far_behind_plan_advances_one_week_at_a_time():
    candidate = candidate_for_plan(_plan(current_week=2), START + dt.timedelta(days=40))
    assert candidate.calculated_week == 6
    assert candidate.next_week_to_generate == 3


def test_completed_plan_is_never_a_candidate():
    assert candidate_for_plan(_plan(current_week=12), START + dt.timedelta(days=200)) is None


def test_plan_without_periodization_is_ignored():
    assert candidate_for_plan(_plan(periodization=None), START + dt.timedelta(days=30)) is None


def test_scan_returns_only_due_plans(repository, seed_plan):
    due = seed_plan(user_id="due", created_at=START - dt.timedelta(days=8))
    seed_plan(user_id="fresh", created_at=START - dt.timedelta(days=2))
    seed_plan(user_id="finished", current_week=12, phase="taper", created_at=START - dt.timedelta(days=120))
    seed_plan(user_id="plain", periodization=None)

    candidates = asyncio.run(CatchUpScanner(repository, FakeClock()).scan())
    assert [c.plan_id for c in candidates] == [due]
    assert candidates[0].user_id == "due"


def test_scan_skips_unreadable_periodization(repository, seed_plan):
    seed_plan(user_id="broken", periodization={"current_week": 5, "total_weeks": 2, "phase": "base"})
    good = seed_plan(user_id="good", created_at=START - dt.timedelta(days=9))

    candidates = asyncio.run(CatchUpScanner(repository, FakeClock()).scan())
    assert [c.plan_id for c in candidates] == [good]
