from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.enums import AbsenceStatus, RecoveryStatus


@dataclass(frozen=True)
class Absence:
    """A member's declared non-attendance at one of their group's sessions."""

    absence_id: int
    member_id: int
    session_id: int
    date: datetime
    reason: str
    status: AbsenceStatus
    created_at: datetime
    notes: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == AbsenceStatus.PENDING_RECOVERY


@dataclass(frozen=True)
class Recovery:
    """A make-up attendance booked on another group's session."""

    recovery_id: int
    member_id: int
    absence_id: int
    original_session_id: int
    recovery_session_id: int
    recovery_date: datetime
    temporary_group_id: int
    status: RecoveryStatus
    scheduled_at: datetime

    @property
    def counts_against_quota(self) -> bool:
        return self.status not in {RecoveryStatus.MISSED, RecoveryStatus.CANCELLED}


@dataclass(frozen=True)
class RecoveryEligibility:
    eligible: bool
    remaining_recoveries: int
    recoveries_this_month: int = 0
    absences_pending_recovery: int = 0
    reason: Optional[str] = None


@dataclass(frozen=True)
class RecoverySlot:
    """Read-model for the slot search."""

    session_id: int
    group_id: int
    group_name: str
    date: datetime
    ends_at: Optional[datetime]
    available_slots: int
