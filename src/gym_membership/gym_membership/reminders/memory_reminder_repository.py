from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Mapping, Sequence

from ..core.enums import ReminderKind, ReminderStatus
from .model import ScheduledReminder
from .repository import ReminderRepository


class InMemoryReminderRepository(ReminderRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._rows: dict[int, ScheduledReminder] = {}

    def schedule_reminder(
        self,
        *,
        member_id: int,
        kind: ReminderKind,
        fire_at: datetime,
        payload: Mapping[str, Any],
    ) -> int:
        with self._lock:
            reminder_id = next(self._ids)
            self._rows[reminder_id] = ScheduledReminder(
                reminder_id=reminder_id,
                member_id=int(member_id),
                kind=kind,
                fire_at=fire_at,
                payload=dict(payload),
            )
            return reminder_id

    def list_due(self, *, now: datetime, limit: int = 200) -> Sequence[ScheduledReminder]:
        with self._lock:
            due = [r for r in self._rows.values() if r.status == ReminderStatus.PENDING and r.fire_at <= now]
        due.sort(key=lambda r: (r.fire_at, r.reminder_id))
        return due[: int(limit)]

    def mark_dispatched(self, *, reminder_id: int, dispatched_at: datetime) -> bool:
        with self._lock:
            row = self._rows.get(int(reminder_id))
            if not row or row.status != ReminderStatus.PENDING:
                return False
            self._rows[row.reminder_id] = replace(row, status=ReminderStatus.DISPATCHED, dispatched_at=dispatched_at)
            return True

    def all(self) -> list[ScheduledReminder]:
        with self._lock:
            return sorted(self._rows.values(), key=lambda r: r.reminder_id)
