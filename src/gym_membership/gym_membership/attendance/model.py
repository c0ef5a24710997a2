from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from ..core.enums import AttendanceStatus, RecoveryStatus


@dataclass(frozen=True)
class AttendanceRoster:
    """Read-model returned after (re)generating a session's roster."""

    session_id: int
    group_id: int
    date: datetime
    attendance_list: Mapping[int, AttendanceStatus] = field(default_factory=dict)


@dataclass(frozen=True)
class AttendanceMarkResult:
    session_id: int
    updated: Mapping[int, AttendanceStatus] = field(default_factory=dict)
    resolved_recoveries: Mapping[int, RecoveryStatus] = field(default_factory=dict)
