from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

from ..core.enums import ReminderKind
from .model import ScheduledReminder


class ReminderRepository(Protocol):
    """Boundary towards the external Notification Dispatcher."""

    def schedule_reminder(
        self,
        *,
        member_id: int,
        kind: ReminderKind,
        fire_at: datetime,
        payload: Mapping[str, Any],
    ) -> int:
        raise NotImplementedError

    def list_due(self, *, now: datetime, limit: int = 200) -> Sequence[ScheduledReminder]:
        """Pending reminders with fire_at <= now, oldest first."""

        raise NotImplementedError

    def mark_dispatched(self, *, reminder_id: int, dispatched_at: datetime) -> bool:
        raise NotImplementedError
