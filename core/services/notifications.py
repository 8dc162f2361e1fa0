from __future__ import annotations

import datetime as dt
import logging
from typing import Callable

from core.models import utcnow
from core.services.periodization import Phase
from core.services.records import NotificationEvent, NotificationType
from core.services.repository import PlanRepository

logger = logging.getLogger(__name__)


def compose_notification(user_id: str, week_number: int, phase: Phase, phase_changed: bool, is_deload: bool) -> NotificationEvent:
    label = phase.value.upper()
    if phase_changed:
        kind = NotificationType.PHASE_CHANGE
        title = f"New Phase: {label}"
        body = f"Week {week_number} is ready! You've entered the {label} phase."
    elif is_deload:
        kind = NotificationType.DELOAD_REMINDER
        title = "Deload Week"
        body = f"Week {week_number} is a deload week. Focus on recovery and technique."
    else:
        kind = NotificationType.NEW_WEEK_READY
        title = f"Week {week_number} Ready"
        body = f"Your new training week has been generated. {label} phase continues."
    return NotificationEvent(
        user_id=user_id,
        type=kind,
        title=title,
        body=body,
        payload={"week_number": week_number, "phase": phase.value, "is_deload_week": is_deload},
    )


class Notifier:
    def __init__(self, repository: PlanRepository, clock: Callable[[], dt.datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    async def notify_week_ready(
        self, user_id: str, week_number: int, phase: Phase, phase_changed: bool, is_deload: bool
    ) -> NotificationEvent:
        event = compose_notification(user_id, week_number, phase, phase_changed, is_deload)
        event.created_at = self.clock()
        event.id = await self.repository.insert_notification(event)
        logger.info("Created %s notification for user %s: %s", event.type.value, user_id, event.title)
        return event

    async def list_for_user(self, user_id: str, limit: int = 20, unread_only: bool = False) -> list[NotificationEvent]:
        return await self.repository.list_notifications(user_id, limit=limit, unread_only=unread_only)

    async def mark_read(self, notification_id: int, user_id: str) -> bool:
        return await self.repository.mark_notification_read(notification_id, user_id, self.clock())
