"""Tests for week history archiving and user notifications."""

from __future__ import annotations

import asyncio

from conftest import sample_week

from core.services.history import HistoryArchiver
from core.services.notifications import Notifier, compose_notification
from core.services.periodization import Phase
from core.services.records import NotificationType


def test_archive_writes_once(repository, clock, seed_plan):
    plan_id = seed_plan()
    archiver = HistoryArchiver(repository, clock)

    async def scenario():
        first = await archiver.archive(plan_id, "user-1", 1, "base", sample_week("Back Squat"), False)
        second = await archiver.archive(plan_id, "user-1", 1, "base", sample_week("Changed"), True)
        return first, second, await repository.get_history_snapshot(plan_id, 1)

    first, second, snapshot = asyncio.run(scenario())
    assert first is True
    assert second is False
    assert snapshot.weekly_plan == sample_week("Back Squat")
    assert snapshot.is_deload_week is False
    assert snapshot.completed_at == clock.now


def test_previous_week_prefers_snapshot(repository, clock, seed_plan):
    plan_id = seed_plan(weekly_plan=sample_week("Live Lift"))
    archiver = HistoryArchiver(repository, clock)

    async def scenario():
        plan = await repository.get_plan(plan_id)
        live = await archiver.previous_week(plan, 1, "base")
        await archiver.archive(plan_id, "user-1", 1, "base", sample_week("Archived Lift"), True)
        archived = await archiver.previous_week(plan, 1, "base")
        return live, archived

    live, archived = asyncio.run(scenario())
    assert live.weekly_plan == sample_week("Live Lift")
    assert live.is_deload_week is False
    assert archived.weekly_plan == sample_week("Archived Lift")
    assert archived.is_deload_week is True


def test_previous_week_missing_when_plan_is_empty(repository, clock, seed_plan):
    plan_id = seed_plan(weekly_plan=[])
    archiver = HistoryArchiver(repository, clock)

    async def scenario():
        plan = await repository.get_plan(plan_id)
        return await archiver.previous_week(plan, 1, "base")

    assert asyncio.run(scenario()) is None


def test_list_weeks_newest_first(repository, clock, seed_plan):
    plan_id = seed_plan()
    archiver = HistoryArchiver(repository, clock)

    async def scenario():
        for week in (1, 2, 3):
            await archiver.archive(plan_id, "user-1", week, "base", sample_week(f"Lift {week}"))
        return await archiver.list_weeks(plan_id, limit=2)

    weeks = asyncio.run(scenario())
    assert [w.week_number for w in weeks] == [3, 2]


def test_compose_notification_precedence():
    phase_change = compose_notification("u", 11, Phase.TAPER, True, True)
    assert phase_change.type is NotificationType.PHASE_CHANGE
    assert phase_change.title == "New Phase: TAPER"
    assert phase_change.body == "Week 11 is ready! You've entered the TAPER phase."

    deload = compose_notification("u", 4, Phase.BASE, False, True)
    assert deload.type is NotificationType.DELOAD_REMINDER
    assert deload.title == "Deload Week"

    regular = compose_notification("u", 2, Phase.BASE, False, False)
    assert regular.type is NotificationType.NEW_WEEK_READY
    assert regular.title == "Week 2 Ready"
    assert regular.payload == {"week_number": 2, "phase": "base", "is_deload_week": False}


def test_notifier_persists_and_marks_read(repository, clock):
    notifier = Notifier(repository, clock)

    async def scenario():
        first = await notifier.notify_week_ready("user-1", 2, Phase.BASE, False, False)
        clock.advance(minutes=1)
        second = await notifier.notify_week_ready("user-1", 3, Phase.BASE, False, False)
        await notifier.notify_week_ready("user-2", 2, Phase.BASE, False, False)
        marked = await notifier.mark_read(first.id, "user-1")
        wrong_user = await notifier.mark_read(second.id, "user-2")
        everything = await notifier.list_for_user("user-1")
        unread = await notifier.list_for_user("user-1", unread_only=True)
        return marked, wrong_user, everything, unread

    marked, wrong_user, everything, unread = asyncio.run(scenario())
    assert marked is True
    assert wrong_user is False
    assert [n.payload["week_number"] for n in everything] == [3, 2]
    assert [n.read for n in everything] == [False, True]
    assert [n.payload["week_number"] for n in unread] == [3]
    assert unread[0].type is NotificationType.NEW_WEEK_READY
