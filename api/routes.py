from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_orchestrator
from api.schemas import (
    LeaseCheckOut,
    LeaseOut,
    MessageOut,
    NotificationOut,
    ScanOut,
    SweepOut,
    TriggerInput,
    TriggerOut,
    WeekHistoryOut,
)
from core.services.orchestrator import GenerationOrchestrator
from core.services.records import LeaseRecord

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1")

Orchestrator = Annotated[GenerationOrchestrator, Depends(get_orchestrator)]


def _lease_out(lease: Optional[LeaseRecord]) -> Optional[LeaseOut]:
    if lease is None:
        return None
    return LeaseOut(
        id=lease.id,
        plan_id=lease.plan_id,
        target_week=lease.target_week,
        status=lease.status.value,
        started_at=lease.started_at,
        completed_at=lease.completed_at,
        error=lease.error,
    )


@router.get("/health", tags=["system"])
def health():
    return {"status": "ok"}


@router.post("/plans/{plan_id}/generate-next-week", response_model=TriggerOut, tags=["plans"])
async def generate_next_week(plan_id: int, body: TriggerInput, orchestrator: Orchestrator):
    result = await orchestrator.trigger_next_week(plan_id, body.user_id)
    logger.info(
        "Manual generation trigger for plan %s: queued=%s reason=%s",
        plan_id,
        result.queued,
        result.reason,
        extra={"ctx_plan_id": plan_id, "ctx_target_week": result.target_week},
    )
    return TriggerOut(queued=result.queued, target_week=result.target_week, reason=result.reason)


@router.get("/plans/{plan_id}/leases/{target_week}", response_model=LeaseCheckOut, tags=["plans"])
async def get_lease(plan_id: int, target_week: int, orchestrator: Orchestrator):
    check = await orchestrator.leases.check(plan_id, target_week)
    return LeaseCheckOut(
        locked=check.locked,
        already_generated=check.already_generated,
        expired=check.expired,
        lease=_lease_out(check.lease),
    )


@router.get("/plans/{plan_id}/history", response_model=list[WeekHistoryOut], tags=["plans"])
async def plan_history(plan_id: int, orchestrator: Orchestrator, limit: int = Query(12, ge=1, le=104)):
    weeks = await orchestrator.archiver.list_weeks(plan_id, limit)
    return [WeekHistoryOut.model_validate(w) for w in weeks]


@router.post("/jobs/scan", response_model=ScanOut, tags=["jobs"])
async def run_scan(orchestrator: Orchestrator):
    summary = await orchestrator.scan_and_dispatch()
    return ScanOut(
        candidates=summary.candidates,
        queued=summary.queued,
        skipped=summary.skipped,
        failed_to_queue=summary.failed_to_queue,
    )


@router.post("/jobs/sweep-leases", response_model=SweepOut, tags=["jobs"])
async def sweep_leases(orchestrator: Orchestrator):
    return SweepOut(reclaimed=await orchestrator.sweep_expired_leases())


@router.get("/users/{user_id}/notifications", response_model=list[NotificationOut], tags=["notifications"])
async def list_notifications(
    user_id: str,
    orchestrator: Orchestrator,
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
):
    events = await orchestrator.notifier.list_for_user(user_id, limit=limit, unread_only=unread_only)
    return [
        NotificationOut(
            id=e.id,
            type=e.type.value,
            title=e.title,
            body=e.body,
            payload=e.payload,
            read=e.read,
            created_at=e.created_at,
        )
        for e in events
    ]


@router.post("/users/{user_id}/notifications/{notification_id}/read", response_model=MessageOut, tags=["notifications"])
async def mark_notification_read(user_id: str, notification_id: int, orchestrator: Orchestrator):
    if not await orchestrator.notifier.mark_read(notification_id, user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return MessageOut(message="ok")
