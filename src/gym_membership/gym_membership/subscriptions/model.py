from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..core.enums import SubscriptionType
from ..members.model import Subscription


@dataclass(frozen=True)
class RenewalResult:
    subscription: Subscription
    paid: bool
    new_end_date: Optional[datetime] = None
    total_due: Optional[Decimal] = None


@dataclass(frozen=True)
class ExpiringSubscription:
    """Read-model: an active subscription ending within the threshold."""

    member_id: int
    full_name: str
    email: Optional[str]
    type: SubscriptionType
    end_date: datetime
    days_until_expiry: int


@dataclass(frozen=True)
class SweepReport:
    expired_member_ids: list[int] = field(default_factory=list)
    skipped_member_ids: list[int] = field(default_factory=list)
    failed_member_ids: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_member_ids
