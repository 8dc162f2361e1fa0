"""Plain records passed between the repository and the scheduler services."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class LeaseStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(str, Enum):
    NEW_WEEK_READY = "new_week_ready"
    PHASE_CHANGE = "phase_change"
    DELOAD_REMINDER = "deload_reminder"


@dataclass
class PlanRecord:
    id: int
    user_id: str
    created_at: dt.datetime
    weekly_plan: Any
    periodization: Optional[dict[str, Any]]


@dataclass
class LeaseRecord:
    id: int
    plan_id: int
    user_id: str
    target_week: int
    status: LeaseStatus
    started_at: dt.datetime
    completed_at: Optional[dt.datetime] = None
    error: Optional[str] = None


@dataclass
class LeaseGrant:
    """Result of an atomic claim: ``acquired`` is False when another run holds the key.

    ``started_at`` identifies the attempt. A lease row is reused across retries,
    so releases are fenced on it to keep a superseded run from touching the
    attempt that replaced it.
    """

    lease_id: int
    acquired: bool
    started_at: Optional[dt.datetime] = None


@dataclass
class WeekSnapshot:
    plan_id: int
    user_id: str
    week_number: int
    phase: str
    weekly_plan: Any
    is_deload_week: bool
    completed_at: dt.datetime


@dataclass
class NotificationEvent:
    user_id: str
    type: NotificationType
    title: str
    body: str
    payload: dict[str, Any] = field(default_factory=dict)
    read: bool = False
    id: Optional[int] = None
    created_at: Optional[dt.datetime] = None
