from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Sequence

from ..core.enums import ReminderKind, ReminderStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall
from .model import ScheduledReminder
from .repository import ReminderRepository


class MySQLReminderRepository(ReminderRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def schedule_reminder(
        self,
        *,
        member_id: int,
        kind: ReminderKind,
        fire_at: datetime,
        payload: Mapping[str, Any],
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO scheduled_reminders(member_id, kind, fire_at, payload, status)
                VALUES(%s,%s,%s,%s,%s)
                """,
                (
                    int(member_id),
                    kind.value,
                    fire_at,
                    json.dumps(dict(payload), default=str),
                    ReminderStatus.PENDING.value,
                ),
            )
            return int(cur.lastrowid)

    def list_due(self, *, now: datetime, limit: int = 200) -> Sequence[ScheduledReminder]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT reminder_id, member_id, kind, fire_at, payload, status, dispatched_at
                FROM scheduled_reminders
                WHERE status=%s AND fire_at <= %s
                ORDER BY fire_at ASC, reminder_id ASC
                LIMIT %s
                """,
                (ReminderStatus.PENDING.value, now, int(limit)),
            )
            return [
                ScheduledReminder(
                    reminder_id=int(r["reminder_id"]),
                    member_id=int(r["member_id"]),
                    kind=ReminderKind(r["kind"]),
                    fire_at=r["fire_at"],
                    payload=json.loads(r["payload"]) if r.get("payload") else {},
                    status=ReminderStatus(r["status"]),
                    dispatched_at=r.get("dispatched_at"),
                )
                for r in fetchall(cur)
            ]

    def mark_dispatched(self, *, reminder_id: int, dispatched_at: datetime) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE scheduled_reminders
                SET status=%s, dispatched_at=%s
                WHERE reminder_id=%s AND status=%s
                """,
                (ReminderStatus.DISPATCHED.value, dispatched_at, int(reminder_id), ReminderStatus.PENDING.value),
            )
            return cur.rowcount > 0
