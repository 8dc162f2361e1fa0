"""Generation leases: one time-bounded exclusivity record per (plan, target week).

A lease stands in for a lock. ``in_progress`` leases older than the lease
duration are treated as abandoned by every reader, ``failed`` leases may be
retried, and ``completed`` leases are permanent.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.models import utcnow
from core.services.records import LeaseGrant, LeaseRecord, LeaseStatus
from core.services.repository import PlanRepository

logger = logging.getLogger(__name__)

DEFAULT_LEASE_DURATION = dt.timedelta(minutes=30)
TIMEOUT_ERROR = "Lease expired (timeout)"


@dataclass
class LeaseCheck:
    locked: bool
    already_generated: bool = False
    expired: bool = False
    lease: Optional[LeaseRecord] = None

    @property
    def previously_failed(self) -> bool:
        return self.lease is not None and self.lease.status is LeaseStatus.FAILED


class LeaseManager:
    def __init__(
        self,
        repository: PlanRepository,
        lease_duration: dt.timedelta = DEFAULT_LEASE_DURATION,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        self.repository = repository
        self.lease_duration = lease_duration
        self.clock = clock

    def is_expired(self, lease: LeaseRecord, now: Optional[dt.datetime] = None) -> bool:
        if lease.status is not LeaseStatus.IN_PROGRESS:
            return False
        return (now or self.clock()) - lease.started_at >= self.lease_duration

    async def check(self, plan_id: int, target_week: int) -> LeaseCheck:
        lease = await self.repository.query_lease(plan_id, target_week)
        if lease is None:
            return LeaseCheck(locked=False)
        if lease.status is LeaseStatus.COMPLETED:
            return LeaseCheck(locked=True, already_generated=True, lease=lease)
        if lease.status is LeaseStatus.IN_PROGRESS:
            if self.is_expired(lease):
                return LeaseCheck(locked=False, expired=True, lease=lease)
            return LeaseCheck(locked=True, lease=lease)
        return LeaseCheck(locked=False, lease=lease)

    async def acquire(self, plan_id: int, user_id: str, target_week: int) -> LeaseGrant:
        """Claim the (plan, week) slot.

        A held, non-expired lease or a completed one is left as is and its id
        returned with ``acquired=False``; callers must not generate then.
        """
        now = self.clock()
        grant = await self.repository.claim_lease(plan_id, user_id, target_week, now, now - self.lease_duration)
        if grant.acquired:
            logger.info(
                "Lease %s acquired for plan %s week %s",
                grant.lease_id,
                plan_id,
                target_week,
                extra={"ctx_plan_id": plan_id, "ctx_target_week": target_week},
            )
        else:
            logger.debug("Lease for plan %s week %s is held elsewhere", plan_id, target_week)
        return grant

    async def release(
        self,
        lease_id: int,
        status: LeaseStatus,
        error: Optional[str] = None,
        started_at: Optional[dt.datetime] = None,
    ) -> bool:
        """Finish an attempt. Pass the grant's ``started_at`` to fence out reclaimed leases."""
        if status is LeaseStatus.IN_PROGRESS:
            raise ValueError("release requires a terminal status")
        changed = await self.repository.update_lease(lease_id, status, self.clock(), error, started_at)
        if not changed:
            logger.debug("Lease %s already terminal or reclaimed, release(%s) ignored", lease_id, status.value)
        return changed

    async def sweep_expired(self) -> int:
        """Mark every in-progress lease older than the lease duration as failed."""
        now = self.clock()
        cutoff = now - self.lease_duration
        swept = 0
        for lease in await self.repository.query_expired_leases(cutoff):
            if await self.repository.expire_lease(lease.id, cutoff, now, TIMEOUT_ERROR):
                swept += 1
        if swept:
            logger.info("Swept %d expired generation leases", swept)
        return swept
