from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from ..common.datetime_utils import now_local
from ..core.constants import EXPIRY_REMINDER_LEAD_DAYS
from ..core.enums import ReminderKind
from .model import ScheduledReminder
from .repository import ReminderRepository

logger = logging.getLogger(__name__)


class ReminderService:
    """Schedules future reminders; delivery belongs to the Notification Dispatcher.

    Scheduling is best effort: failures are logged and never reach the caller.
    """

    def __init__(self, reminders: ReminderRepository, *, lead_days: int = EXPIRY_REMINDER_LEAD_DAYS):
        self._reminders = reminders
        self._lead = timedelta(days=int(lead_days))

    def schedule_expiry_reminder(
        self,
        *,
        member_id: int,
        end_date: datetime,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        now = now or now_local()
        fire_at = end_date - self._lead
        if fire_at <= now:
            return None

        try:
            reminder_id = self._reminders.schedule_reminder(
                member_id=int(member_id),
                kind=ReminderKind.SUBSCRIPTION_EXPIRY,
                fire_at=fire_at,
                payload={"expiryDate": end_date.isoformat()},
            )
        except Exception:
            logger.exception("Could not schedule expiry reminder for member %s", member_id)
            return None

        logger.info("Expiry reminder %s for member %s at %s", reminder_id, member_id, fire_at.isoformat())
        return reminder_id

    def list_due(self, *, now: Optional[datetime] = None, limit: int = 200) -> Sequence[ScheduledReminder]:
        return self._reminders.list_due(now=now or now_local(), limit=limit)

    def mark_dispatched(self, *, reminder_id: int, now: Optional[datetime] = None) -> bool:
        return self._reminders.mark_dispatched(reminder_id=int(reminder_id), dispatched_at=now or now_local())
