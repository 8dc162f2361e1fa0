from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Optional

from core.models import utcnow
from core.services.progression import PreviousWeek
from core.services.records import PlanRecord, WeekSnapshot
from core.services.repository import PlanRepository

logger = logging.getLogger(__name__)


class HistoryArchiver:
    """Write-once snapshots of weeks a plan has moved past."""

    def __init__(self, repository: PlanRepository, clock: Callable[[], dt.datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    async def archive(
        self,
        plan_id: int,
        user_id: str,
        week_number: int,
        phase: str,
        weekly_plan: Any,
        is_deload_week: bool = False,
    ) -> bool:
        snapshot = WeekSnapshot(
            plan_id=plan_id,
            user_id=user_id,
            week_number=week_number,
            phase=phase,
            weekly_plan=weekly_plan,
            is_deload_week=is_deload_week,
            completed_at=self.clock(),
        )
        written = await self.repository.put_history_snapshot(snapshot)
        if written:
            logger.info("Saved week %s to history for plan %s", week_number, plan_id)
        else:
            logger.debug("Week %s already in history for plan %s", week_number, plan_id)
        return written

    async def previous_week(self, plan: PlanRecord, current_week: int, current_phase: str) -> Optional[PreviousWeek]:
        """The week being superseded, preferring its archived snapshot.

        Falls back to the plan's live content, which is the only copy of
        week 1 until its first successor is generated.
        """
        snapshot = await self.repository.get_history_snapshot(plan.id, current_week)
        if snapshot is not None:
            return PreviousWeek(
                week_number=snapshot.week_number,
                phase=snapshot.phase,
                weekly_plan=snapshot.weekly_plan,
                is_deload_week=snapshot.is_deload_week,
            )
        if plan.weekly_plan:
            return PreviousWeek(week_number=current_week, phase=current_phase, weekly_plan=plan.weekly_plan)
        return None

    async def list_weeks(self, plan_id: int, limit: int = 12) -> list[WeekSnapshot]:
        return await self.repository.list_history(plan_id, limit)
