from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.models import utcnow
from core.services.errors import DataError
from core.services.periodization import Phase, calculate_current_week, periodization_from_dict
from core.services.records import PlanRecord
from core.services.repository import PlanRepository

logger = logging.getLogger(__name__)


@dataclass
class GenerationCandidate:
    plan_id: int
    user_id: str
    current_week: int
    calculated_week: int
    next_week_to_generate: int
    phase: Phase
    total_weeks: int


def candidate_for_plan(plan: PlanRecord, now: dt.datetime) -> Optional[GenerationCandidate]:
    """At most one week ahead of the stored week, and never past the plan's end."""
    if not plan.periodization or plan.created_at is None:
        return None
    periodization = periodization_from_dict(plan.periodization)
    calculated_week = calculate_current_week(plan.created_at, now)
    stored_week = periodization.current_week
    if calculated_week <= stored_week:
        return None
    next_week = stored_week + 1
    if next_week > periodization.total_weeks:
        return None
    return GenerationCandidate(
        plan_id=plan.id,
        user_id=plan.user_id,
        current_week=stored_week,
        calculated_week=calculated_week,
        next_week_to_generate=next_week,
        phase=periodization.phase,
        total_weeks=periodization.total_weeks,
    )


class CatchUpScanner:
    def __init__(self, repository: PlanRepository, clock: Callable[[], dt.datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    async def scan(self) -> list[GenerationCandidate]:
        now = self.clock()
        candidates: list[GenerationCandidate] = []
        for plan in await self.repository.list_periodized_plans():
            try:
                candidate = candidate_for_plan(plan, now)
            except DataError as exc:
                logger.warning("Skipping plan %s with unreadable periodization: %s", plan.id, exc.reason)
                continue
            if candidate is not None:
                candidates.append(candidate)
        logger.info("Found %d plans needing next week generation", len(candidates))
        return candidates
