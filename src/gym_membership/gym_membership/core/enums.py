from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Caller capability issued by the upstream auth layer."""

    ADMIN = "admin"
    MEMBER = "member"


class SubscriptionType(str, Enum):
    BASIC = "basic"
    FITNESS = "fitness"
    NUTRITION = "nutrition"
    COMPLETE = "complete"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PENDING_RENEWAL = "pending_renewal"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"


class AttendanceStatus(str, Enum):
    """Per-member status stored in a session roster."""

    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"
    RECOVERING = "recovering"


class AbsenceStatus(str, Enum):
    PENDING_RECOVERY = "pending_recovery"
    SCHEDULED_RECOVERY = "scheduled_recovery"


class RecoveryStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    MISSED = "missed"
    CANCELLED = "cancelled"


class ReminderKind(str, Enum):
    SUBSCRIPTION_EXPIRY = "subscription_expiry"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"


# Statuses an admin may record through MarkAttendance ("recovering" is set by booking only).
MARKABLE_ATTENDANCE_STATUSES = frozenset(
    {
        AttendanceStatus.PRESENT,
        AttendanceStatus.ABSENT,
        AttendanceStatus.LATE,
        AttendanceStatus.EXCUSED,
    }
)
