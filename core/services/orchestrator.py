"""Next-week generation workflow for periodized plans.

Per (plan, target week): check lease -> acquire lease -> load plan and
preferences -> advance phase state -> archive the outgoing week -> build the
progression context -> call the generator -> persist -> release lease ->
notify. Claiming happens inline so a scan can report what it queued; the
generation itself runs as a background task under a concurrency bound, and a
failure in one task never reaches another.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.config import Settings
from core.logging_config import log_context
from core.models import utcnow
from core.services.catch_up import CatchUpScanner
from core.services.errors import DataError, GeneratorError, PersistenceError, SchedulerError
from core.services.generator import HttpWeekGenerator, WeekGenerator
from core.services.history import HistoryArchiver
from core.services.leases import LeaseManager
from core.services.notifications import Notifier
from core.services.periodization import PeriodizationConfig, PhaseStateMachine, periodization_from_dict
from core.services.progression import EVENT_URGENCY_WEEKS, build_progression_context
from core.services.records import LeaseGrant, LeaseStatus
from core.services.repository import PlanRepository, SqlPlanRepository

logger = logging.getLogger(__name__)

COMPLETED = "completed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class GenerationOutcome:
    plan_id: int
    target_week: int
    status: str
    reason: Optional[str] = None
    phase: Optional[str] = None
    phase_changed: bool = False
    is_deload: bool = False


@dataclass
class TriggerResult:
    queued: bool
    target_week: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class ScanSummary:
    candidates: int = 0
    queued: int = 0
    skipped: int = 0
    failed_to_queue: int = 0


class GenerationOrchestrator:
    def __init__(
        self,
        repository: PlanRepository,
        generator: WeekGenerator,
        leases: LeaseManager,
        state_machine: PhaseStateMachine,
        *,
        scanner: Optional[CatchUpScanner] = None,
        archiver: Optional[HistoryArchiver] = None,
        notifier: Optional[Notifier] = None,
        max_concurrency: int = 4,
        urgency_weeks: int = EVENT_URGENCY_WEEKS,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        self.repository = repository
        self.generator = generator
        self.leases = leases
        self.state_machine = state_machine
        self.scanner = scanner or CatchUpScanner(repository, clock)
        self.archiver = archiver or HistoryArchiver(repository, clock)
        self.notifier = notifier or Notifier(repository, clock)
        self.urgency_weeks = urgency_weeks
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # -- lease claim (steps 1-2) --

    async def _claim(self, plan_id: int, user_id: str, target_week: int) -> tuple[Optional[LeaseGrant], Optional[GenerationOutcome]]:
        check = await self.leases.check(plan_id, target_week)
        if check.locked and not check.expired:
            reason = "Already generated" if check.already_generated else "Generation in progress"
            logger.debug("Skipping plan %s week %s: %s", plan_id, target_week, reason)
            return None, GenerationOutcome(plan_id, target_week, SKIPPED, reason)
        if check.expired:
            logger.info("Reclaiming expired lease for plan %s week %s", plan_id, target_week)

        grant = await self.leases.acquire(plan_id, user_id, target_week)
        if not grant.acquired:
            # Lost the race to an overlapping scan between check and acquire.
            return None, GenerationOutcome(plan_id, target_week, SKIPPED, "Generation in progress")
        return grant, None

    # -- generation (steps 3-11) --

    async def process(self, plan_id: int, user_id: str, target_week: int) -> GenerationOutcome:
        """Claim and generate inline, returning once the week is done or abandoned."""
        grant, skipped = await self._claim(plan_id, user_id, target_week)
        if skipped is not None:
            return skipped
        return await self.generate(plan_id, target_week, grant)

    async def generate(self, plan_id: int, target_week: int, grant: LeaseGrant) -> GenerationOutcome:
        with log_context(plan_id=plan_id, target_week=target_week, lease_id=grant.lease_id):
            logger.info("Generating week %s for plan %s", target_week, plan_id)
            try:
                return await self._generate(plan_id, target_week, grant)
            except SchedulerError as exc:
                level = logging.WARNING if isinstance(exc, DataError) else logging.ERROR
                logger.log(level, "Failed to generate week %s for plan %s: %s", target_week, plan_id, exc.reason)
                await self._release(grant, LeaseStatus.FAILED, exc.reason)
                return GenerationOutcome(plan_id, target_week, FAILED, exc.reason)
            except Exception as exc:
                logger.exception("Unexpected error generating week %s for plan %s", target_week, plan_id)
                reason = str(exc) or type(exc).__name__
                await self._release(grant, LeaseStatus.FAILED, reason)
                return GenerationOutcome(plan_id, target_week, FAILED, reason)

    async def _release(self, grant: LeaseGrant, status: LeaseStatus, error: Optional[str] = None) -> bool:
        # Fenced on this attempt's start time so a reclaimed lease is left alone.
        return await self.leases.release(grant.lease_id, status, error, started_at=grant.started_at)

    async def _generate(self, plan_id: int, target_week: int, grant: LeaseGrant) -> GenerationOutcome:
        plan = await self.repository.get_plan(plan_id)
        if plan is None:
            raise DataError(f"Plan {plan_id} not found")
        if not plan.periodization:
            raise DataError("Plan has no periodization")
        preferences = await self.repository.get_user_preferences(plan.user_id)
        if not preferences:
            raise DataError("No training preferences")

        current = periodization_from_dict(plan.periodization)
        if current.current_week + 1 != target_week:
            raise DataError(f"Plan is on week {current.current_week}, cannot generate week {target_week}")

        machine = self.state_machine
        previous = await self.archiver.previous_week(plan, current.current_week, current.phase.value)
        advanced, phase_changed = machine.advance(current)
        is_deload = machine.is_deload_week(target_week, current.total_weeks, current.kind)

        await self.archiver.archive(
            plan.id,
            plan.user_id,
            current.current_week,
            current.phase.value,
            plan.weekly_plan,
            machine.is_deload_week(current.current_week, current.total_weeks, current.kind),
        )

        context = build_progression_context(
            previous,
            advanced.phase,
            phase_changed,
            is_deload,
            target_week,
            current.total_weeks,
            machine.weeks_until_event(advanced),
            self.urgency_weeks,
        )

        try:
            weekly_plan = await self.generator.generate(preferences, context)
        except GeneratorError:
            raise
        except Exception as exc:
            raise GeneratorError(str(exc) or type(exc).__name__) from exc
        if not weekly_plan:
            raise GeneratorError("Generator failed to produce a valid plan")

        try:
            saved = await self.repository.patch_plan_week(
                plan.id, weekly_plan, machine.to_record(advanced), expected_week=current.current_week
            )
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to save week {target_week}: {exc}") from exc
        if not saved:
            raise PersistenceError(f"Plan {plan.id} moved off week {current.current_week} during generation")

        await self._release(grant, LeaseStatus.COMPLETED)
        logger.info(
            "Generated week %s for plan %s (phase=%s, deload=%s)",
            target_week,
            plan.id,
            advanced.phase.value,
            is_deload,
        )

        try:
            await self.notifier.notify_week_ready(plan.user_id, target_week, advanced.phase, phase_changed, is_deload)
        except Exception:
            # The week is saved and the lease completed; a lost notification must not undo that.
            logger.exception("Failed to create notification for plan %s week %s", plan.id, target_week)

        return GenerationOutcome(
            plan.id,
            target_week,
            COMPLETED,
            phase=advanced.phase.value,
            phase_changed=phase_changed,
            is_deload=is_deload,
        )

    # -- dispatch --

    async def _generate_bounded(self, plan_id: int, target_week: int, grant: LeaseGrant) -> GenerationOutcome:
        async with self._semaphore:
            try:
                return await self.generate(plan_id, target_week, grant)
            except Exception as exc:
                # Releasing the lease itself failed; it will expire and be retried.
                logger.exception("Generation task for plan %s week %s crashed", plan_id, target_week)
                return GenerationOutcome(plan_id, target_week, FAILED, str(exc) or type(exc).__name__)

    def dispatch(self, plan_id: int, target_week: int, grant: LeaseGrant) -> asyncio.Task:
        task = asyncio.create_task(
            self._generate_bounded(plan_id, target_week, grant),
            name=f"generate-plan-{plan_id}-week-{target_week}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight generations (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    # -- entry points --

    async def scan_and_dispatch(self) -> ScanSummary:
        candidates = await self.scanner.scan()
        summary = ScanSummary(candidates=len(candidates))
        for candidate in candidates:
            try:
                grant, skipped = await self._claim(
                    candidate.plan_id, candidate.user_id, candidate.next_week_to_generate
                )
            except Exception:
                logger.exception("Failed to queue generation for plan %s", candidate.plan_id)
                summary.failed_to_queue += 1
                continue
            if skipped is not None:
                summary.skipped += 1
                continue
            self.dispatch(candidate.plan_id, candidate.next_week_to_generate, grant)
            summary.queued += 1
        logger.info(
            "Queued %d plans, skipped %d (already in progress/generated)",
            summary.queued,
            summary.skipped,
        )
        return summary

    async def trigger_next_week(self, plan_id: int, user_id: str) -> TriggerResult:
        """Queue the plan's next week; refusals and storage failures come back as reasons."""
        try:
            plan = await self.repository.get_plan(plan_id)
        except Exception:
            logger.exception("Failed to load plan %s for manual trigger", plan_id)
            return TriggerResult(queued=False, reason="Could not load plan")
        if plan is None or plan.user_id != user_id:
            return TriggerResult(queued=False, reason="Plan not found or access denied")
        if not plan.periodization:
            return TriggerResult(queued=False, reason="Plan does not have periodization enabled")
        try:
            current = periodization_from_dict(plan.periodization)
        except DataError as exc:
            return TriggerResult(queued=False, reason=exc.reason)

        next_week = current.current_week + 1
        if next_week > current.total_weeks:
            return TriggerResult(queued=False, target_week=next_week, reason="Plan complete")

        try:
            grant, skipped = await self._claim(plan.id, plan.user_id, next_week)
        except Exception:
            logger.exception("Failed to claim week %s for plan %s", next_week, plan.id)
            return TriggerResult(queued=False, target_week=next_week, reason="Could not claim generation lease")
        if skipped is not None:
            return TriggerResult(queued=False, target_week=next_week, reason=skipped.reason)
        self.dispatch(plan.id, next_week, grant)
        return TriggerResult(queued=True, target_week=next_week)


    async def sweep_expired_leases(self) -> int:
        return await self.leases.sweep_expired()


def build_orchestrator(
    settings: Settings,
    generator: Optional[WeekGenerator] = None,
    repository: Optional[PlanRepository] = None,
    clock: Callable[[], dt.datetime] = utcnow,
) -> GenerationOrchestrator:
    repository = repository or SqlPlanRepository()
    generator = generator or HttpWeekGenerator(settings.generator_url, settings.generator_timeout_seconds)
    return GenerationOrchestrator(
        repository,
        generator,
        LeaseManager(repository, dt.timedelta(minutes=settings.lease_duration_minutes), clock),
        PhaseStateMachine(PeriodizationConfig.from_settings(settings)),
        max_concurrency=settings.max_concurrent_generations,
        urgency_weeks=settings.event_urgency_weeks,
        clock=clock,
    )
