from __future__ import annotations

from datetime import datetime as dt_datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TriggerInput(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)


class TriggerOut(BaseModel):
    queued: bool
    target_week: Optional[int] = None
    reason: Optional[str] = None


class ScanOut(BaseModel):
    candidates: int
    queued: int
    skipped: int
    failed_to_queue: int = 0


class SweepOut(BaseModel):
    reclaimed: int


class LeaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    plan_id: int
    target_week: int
    status: str
    started_at: dt_datetime
    completed_at: Optional[dt_datetime] = None
    error: Optional[str] = None


class LeaseCheckOut(BaseModel):
    locked: bool
    already_generated: bool
    expired: bool
    lease: Optional[LeaseOut] = None


class WeekHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    week_number: int
    phase: str
    weekly_plan: Any = None
    is_deload_week: bool
    completed_at: dt_datetime


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str
    body: str
    payload: dict[str, Any] = Field(default_factory=dict)
    read: bool
    created_at: Optional[dt_datetime] = None


class MessageOut(BaseModel):
    message: str
