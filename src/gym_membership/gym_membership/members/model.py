from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional

from ..core.enums import PaymentStatus, SubscriptionStatus, SubscriptionType


@dataclass(frozen=True)
class Permissions:
    """Capability flags derived from a subscription type (never stored)."""

    can_access_fitness_plans: bool = False
    can_access_nutrition_plans: bool = False
    can_upload_meal_photos: bool = False
    can_track_progress: bool = False
    can_schedule_recoveries: bool = False

    def as_dict(self) -> dict:
        return {
            "canAccessFitnessPlans": self.can_access_fitness_plans,
            "canAccessNutritionPlans": self.can_access_nutrition_plans,
            "canUploadMealPhotos": self.can_upload_meal_photos,
            "canTrackProgress": self.can_track_progress,
            "canScheduleRecoveries": self.can_schedule_recoveries,
        }


_FITNESS = {SubscriptionType.FITNESS, SubscriptionType.COMPLETE}
_NUTRITION = {SubscriptionType.NUTRITION, SubscriptionType.COMPLETE}


def permissions_for(subscription_type: Optional[SubscriptionType]) -> Permissions:
    if subscription_type is None:
        return Permissions()
    return Permissions(
        can_access_fitness_plans=subscription_type in _FITNESS,
        can_access_nutrition_plans=subscription_type in _NUTRITION,
        can_upload_meal_photos=subscription_type in _NUTRITION,
        can_track_progress=subscription_type != SubscriptionType.BASIC,
        can_schedule_recoveries=subscription_type in _FITNESS,
    )


@dataclass(frozen=True)
class Subscription:
    type: SubscriptionType
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    total_due: Decimal = Decimal("0")

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


@dataclass(frozen=True)
class Member:
    """Domain entity: a gym member (the Member aggregate root).

    Absences, recoveries and payments are sub-collections keyed by member_id,
    they are not embedded here.
    """

    member_id: int
    full_name: str
    email: Optional[str] = None
    gym_id: Optional[int] = None
    fitness_level: Optional[str] = None
    group_id: Optional[int] = None
    subscription: Optional[Subscription] = None

    @property
    def permissions(self) -> Permissions:
        return permissions_for(self.subscription.type if self.subscription else None)

    @property
    def has_active_subscription(self) -> bool:
        return bool(self.subscription and self.subscription.is_active)


@dataclass(frozen=True)
class PaymentRecord:
    payment_id: int
    member_id: int
    paid_at: datetime
    amount: Optional[Decimal]
    status: PaymentStatus
    confirmed_by: Optional[int] = None


@dataclass(frozen=True)
class Gym:
    """Gym configuration: monthly price per subscription type."""

    gym_id: int
    name: str
    plan_prices: Mapping[SubscriptionType, Decimal] = field(default_factory=dict)

    def monthly_price(self, subscription_type: SubscriptionType) -> Optional[Decimal]:
        return self.plan_prices.get(subscription_type)
