from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from ..core.enums import ReminderKind, ReminderStatus


@dataclass(frozen=True)
class ScheduledReminder:
    reminder_id: int
    member_id: int
    kind: ReminderKind
    fire_at: datetime
    payload: Mapping[str, Any] = field(default_factory=dict)
    status: ReminderStatus = ReminderStatus.PENDING
    dispatched_at: Optional[datetime] = None
