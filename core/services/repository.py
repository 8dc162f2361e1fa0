"""Storage access for the plan advancement scheduler.

``PlanRepository`` is the async seam the services depend on. The SQLAlchemy
implementation runs each operation in a worker thread inside its own
``session_scope`` transaction, so the event loop only ever awaits.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.db import session_scope
from core.models import GenerationLease, Notification, Plan, UserPreference, WeekHistory
from core.services.errors import PersistenceError
from core.services.records import (
    LeaseGrant,
    LeaseRecord,
    LeaseStatus,
    NotificationEvent,
    NotificationType,
    PlanRecord,
    WeekSnapshot,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlanRepository(ABC):
    """Everything the scheduler reads from or writes to storage."""

    @abstractmethod
    async def list_periodized_plans(self) -> list[PlanRecord]: ...

    @abstractmethod
    async def get_plan(self, plan_id: int) -> Optional[PlanRecord]: ...

    @abstractmethod
    async def get_user_preferences(self, user_id: str) -> Optional[dict[str, Any]]: ...

    @abstractmethod
    async def patch_plan_week(
        self, plan_id: int, weekly_plan: Any, periodization: dict[str, Any], expected_week: int
    ) -> bool:
        """Write new week content and periodization together.

        Returns False, writing nothing, if the stored ``current_week`` is no
        longer ``expected_week``.
        """

    @abstractmethod
    async def get_history_snapshot(self, plan_id: int, week_number: int) -> Optional[WeekSnapshot]: ...

    @abstractmethod
    async def put_history_snapshot(self, snapshot: WeekSnapshot) -> bool:
        """Insert unless ``(plan_id, week_number)`` exists. Returns True if a row was written."""

    @abstractmethod
    async def list_history(self, plan_id: int, limit: int = 12) -> list[WeekSnapshot]: ...

    @abstractmethod
    async def claim_lease(
        self, plan_id: int, user_id: str, target_week: int, now: dt.datetime, stale_before: dt.datetime
    ) -> LeaseGrant:
        """Atomically insert a lease, or re-open one that is failed or started before ``stale_before``."""

    @abstractmethod
    async def update_lease(
        self,
        lease_id: int,
        status: LeaseStatus,
        completed_at: dt.datetime,
        error: Optional[str] = None,
        started_at: Optional[dt.datetime] = None,
    ) -> bool:
        """Move a lease to a terminal status; with ``started_at``, only for that attempt."""

    @abstractmethod
    async def query_lease(self, plan_id: int, target_week: int) -> Optional[LeaseRecord]: ...

    @abstractmethod
    async def query_expired_leases(self, older_than: dt.datetime) -> list[LeaseRecord]: ...

    @abstractmethod
    async def expire_lease(self, lease_id: int, older_than: dt.datetime, completed_at: dt.datetime, error: str) -> bool:
        """Mark an ``in_progress`` lease failed only if it is still older than ``older_than``."""

    @abstractmethod
    async def insert_notification(self, event: NotificationEvent) -> int: ...

    @abstractmethod
    async def list_notifications(self, user_id: str, limit: int = 20, unread_only: bool = False) -> list[NotificationEvent]: ...

    @abstractmethod
    async def mark_notification_read(self, notification_id: int, user_id: str, read_at: dt.datetime) -> bool: ...


def _plan_record(row: Plan) -> PlanRecord:
    return PlanRecord(
        id=row.id,
        user_id=row.user_id,
        created_at=row.created_at,
        weekly_plan=row.weekly_plan,
        periodization=row.periodization,
    )


def _lease_record(row: GenerationLease) -> LeaseRecord:
    return LeaseRecord(
        id=row.id,
        plan_id=row.plan_id,
        user_id=row.user_id,
        target_week=row.target_week,
        status=LeaseStatus(row.status),
        started_at=row.started_at,
        completed_at=row.completed_at,
        error=row.error,
    )


def _snapshot(row: WeekHistory) -> WeekSnapshot:
    return WeekSnapshot(
        plan_id=row.plan_id,
        user_id=row.user_id,
        week_number=row.week_number,
        phase=row.phase,
        weekly_plan=row.weekly_plan,
        is_deload_week=row.is_deload_week,
        completed_at=row.completed_at,
    )


def _notification(row: Notification) -> NotificationEvent:
    return NotificationEvent(
        id=row.id,
        user_id=row.user_id,
        type=NotificationType(row.type),
        title=row.title,
        body=row.body,
        payload=row.payload or {},
        read=row.read,
        created_at=row.created_at,
    )


class SqlPlanRepository(PlanRepository):
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._factory = session_factory

    async def _run(self, fn: Callable[..., T], *args) -> T:
        return await asyncio.to_thread(self._in_session, fn, *args)

    def _in_session(self, fn: Callable[..., T], *args) -> T:
        with session_scope(self._factory) as s:
            return fn(s, *args)

    # -- plans --

    async def list_periodized_plans(self) -> list[PlanRecord]:
        def _list(s: Session) -> list[PlanRecord]:
            rows = s.execute(select(Plan).where(Plan.periodization.is_not(None)).order_by(Plan.id)).scalars().all()
            # JSON null is stored for some drivers instead of SQL NULL.
            return [_plan_record(r) for r in rows if r.periodization]

        return await self._run(_list)

    async def get_plan(self, plan_id: int) -> Optional[PlanRecord]:
        def _get(s: Session, pid: int) -> Optional[PlanRecord]:
            row = s.get(Plan, pid)
            return _plan_record(row) if row else None

        return await self._run(_get, plan_id)

    async def get_user_preferences(self, user_id: str) -> Optional[dict[str, Any]]:
        def _get(s: Session, uid: str) -> Optional[dict[str, Any]]:
            row = s.execute(select(UserPreference).where(UserPreference.user_id == uid)).scalar_one_or_none()
            return dict(row.training_preferences) if row and row.training_preferences else None

        return await self._run(_get, user_id)

    async def patch_plan_week(
        self, plan_id: int, weekly_plan: Any, periodization: dict[str, Any], expected_week: int
    ) -> bool:
        def _patch(s: Session) -> bool:
            row = s.get(Plan, plan_id, with_for_update=True)
            if row is None or not row.periodization:
                return False
            if int(row.periodization.get("current_week", 0)) != expected_week:
                return False
            row.weekly_plan = weekly_plan
            row.periodization = dict(periodization)
            return True

        try:
            return await self._run(_patch)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update plan {plan_id}: {exc}") from exc

    # -- history --

    async def get_history_snapshot(self, plan_id: int, week_number: int) -> Optional[WeekSnapshot]:
        def _get(s: Session) -> Optional[WeekSnapshot]:
            row = s.execute(
                select(WeekHistory).where(WeekHistory.plan_id == plan_id, WeekHistory.week_number == week_number)
            ).scalar_one_or_none()
            return _snapshot(row) if row else None

        return await self._run(_get)

    async def put_history_snapshot(self, snapshot: WeekSnapshot) -> bool:
        def _put(s: Session) -> bool:
            exists = s.execute(
                select(WeekHistory.id).where(
                    WeekHistory.plan_id == snapshot.plan_id, WeekHistory.week_number == snapshot.week_number
                )
            ).first()
            if exists:
                return False
            s.add(
                WeekHistory(
                    plan_id=snapshot.plan_id,
                    user_id=snapshot.user_id,
                    week_number=snapshot.week_number,
                    phase=snapshot.phase,
                    weekly_plan=snapshot.weekly_plan,
                    is_deload_week=snapshot.is_deload_week,
                    completed_at=snapshot.completed_at,
                )
            )
            s.flush()
            return True

        try:
            return await self._run(_put)
        except IntegrityError:
            # A concurrent writer archived the same week first.
            return False
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to archive week {snapshot.week_number} of plan {snapshot.plan_id}: {exc}") from exc

    async def list_history(self, plan_id: int, limit: int = 12) -> list[WeekSnapshot]:
        def _list(s: Session) -> list[WeekSnapshot]:
            rows = s.execute(
                select(WeekHistory)
                .where(WeekHistory.plan_id == plan_id)
                .order_by(WeekHistory.week_number.desc())
                .limit(limit)
            ).scalars().all()
            return [_snapshot(r) for r in rows]

        return await self._run(_list)

    # -- leases --

    async def claim_lease(
        self, plan_id: int, user_id: str, target_week: int, now: dt.datetime, stale_before: dt.datetime
    ) -> LeaseGrant:
        return await asyncio.to_thread(self._claim_lease, plan_id, user_id, target_week, now, stale_before)

    def _claim_lease(
        self, plan_id: int, user_id: str, target_week: int, now: dt.datetime, stale_before: dt.datetime
    ) -> LeaseGrant:
        try:
            with session_scope(self._factory) as s:
                lease = GenerationLease(
                    plan_id=plan_id,
                    user_id=user_id,
                    target_week=target_week,
                    status=LeaseStatus.IN_PROGRESS.value,
                    started_at=now,
                )
                s.add(lease)
                s.flush()
                return LeaseGrant(lease_id=lease.id, acquired=True, started_at=now)
        except IntegrityError:
            logger.debug("Lease row exists for plan %s week %s, attempting reclaim", plan_id, target_week)

        key = and_(GenerationLease.plan_id == plan_id, GenerationLease.target_week == target_week)
        reclaimable = or_(
            GenerationLease.status == LeaseStatus.FAILED.value,
            and_(
                GenerationLease.status == LeaseStatus.IN_PROGRESS.value,
                GenerationLease.started_at <= stale_before,
            ),
        )
        with session_scope(self._factory) as s:
            result = s.execute(
                update(GenerationLease)
                .where(key, reclaimable)
                .values(
                    status=LeaseStatus.IN_PROGRESS.value,
                    user_id=user_id,
                    started_at=now,
                    completed_at=None,
                    error=None,
                )
                .execution_options(synchronize_session=False)
            )
            lease_id, started_at = s.execute(select(GenerationLease.id, GenerationLease.started_at).where(key)).one()
            return LeaseGrant(lease_id=lease_id, acquired=result.rowcount == 1, started_at=started_at)

    async def update_lease(
        self,
        lease_id: int,
        status: LeaseStatus,
        completed_at: dt.datetime,
        error: Optional[str] = None,
        started_at: Optional[dt.datetime] = None,
    ) -> bool:
        def _update(s: Session) -> bool:
            allowed_from = [LeaseStatus.IN_PROGRESS.value]
            if status is LeaseStatus.COMPLETED:
                # A sweep may have timed the lease out while the week was still being saved.
                allowed_from.append(LeaseStatus.FAILED.value)
            q = update(GenerationLease).where(GenerationLease.id == lease_id, GenerationLease.status.in_(allowed_from))
            if started_at is not None:
                q = q.where(GenerationLease.started_at == started_at)
            result = s.execute(
                q.values(status=status.value, completed_at=completed_at, error=error)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

        return await self._run(_update)

    async def query_lease(self, plan_id: int, target_week: int) -> Optional[LeaseRecord]:
        def _get(s: Session) -> Optional[LeaseRecord]:
            row = s.execute(
                select(GenerationLease).where(
                    GenerationLease.plan_id == plan_id, GenerationLease.target_week == target_week
                )
            ).scalar_one_or_none()
            return _lease_record(row) if row else None

        return await self._run(_get)

    async def query_expired_leases(self, older_than: dt.datetime) -> list[LeaseRecord]:
        def _list(s: Session) -> list[LeaseRecord]:
            rows = s.execute(
                select(GenerationLease)
                .where(
                    GenerationLease.status == LeaseStatus.IN_PROGRESS.value,
                    GenerationLease.started_at <= older_than,
                )
                .order_by(GenerationLease.started_at)
            ).scalars().all()
            return [_lease_record(r) for r in rows]

        return await self._run(_list)

    async def expire_lease(self, lease_id: int, older_than: dt.datetime, completed_at: dt.datetime, error: str) -> bool:
        def _expire(s: Session) -> bool:
            result = s.execute(
                update(GenerationLease)
                .where(
                    GenerationLease.id == lease_id,
                    GenerationLease.status == LeaseStatus.IN_PROGRESS.value,
                    GenerationLease.started_at <= older_than,
                )
                .values(status=LeaseStatus.FAILED.value, completed_at=completed_at, error=error)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

        return await self._run(_expire)

    # -- notifications --

    async def insert_notification(self, event: NotificationEvent) -> int:
        def _insert(s: Session) -> int:
            row = Notification(
                user_id=event.user_id,
                type=event.type.value,
                title=event.title,
                body=event.body,
                payload=dict(event.payload),
                read=event.read,
            )
            if event.created_at is not None:
                row.created_at = event.created_at
            s.add(row)
            s.flush()
            return row.id

        return await self._run(_insert)

    async def list_notifications(self, user_id: str, limit: int = 20, unread_only: bool = False) -> list[NotificationEvent]:
        def _list(s: Session) -> list[NotificationEvent]:
            q = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                q = q.where(Notification.read.is_(False))
            rows = s.execute(q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)).scalars().all()
            return [_notification(r) for r in rows]

        return await self._run(_list)

    async def mark_notification_read(self, notification_id: int, user_id: str, read_at: dt.datetime) -> bool:
        def _mark(s: Session) -> bool:
            row = s.get(Notification, notification_id)
            if row is None or row.user_id != user_id:
                return False
            row.read = True
            row.read_at = read_at
            return True

        return await self._run(_mark)
