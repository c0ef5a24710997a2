from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional

import pytest

from src.gym_membership.gym_membership.core.enums import AttendanceStatus, SubscriptionStatus, SubscriptionType
from src.gym_membership.gym_membership.directory.memory_store import InMemoryDirectoryStore
from src.gym_membership.gym_membership.groups.model import Group
from src.gym_membership.gym_membership.members.model import Gym, Member, Subscription
from src.gym_membership.gym_membership.sessions.model import Session, TemporaryMember

NOW = datetime(2024, 3, 10, 9, 0, 0)

PRICES = {
    SubscriptionType.BASIC: Decimal("30"),
    SubscriptionType.FITNESS: Decimal("50"),
    SubscriptionType.NUTRITION: Decimal("45"),
    SubscriptionType.COMPLETE: Decimal("70"),
}


class GymWorld:
    """Small gym: two intermediate groups, one advanced group."""

    def __init__(self, store: InMemoryDirectoryStore):
        self.store = store
        store.put_gym(Gym(gym_id=1, name="Downtown", plan_prices=dict(PRICES)))
        store.put_group(Group(group_id=1, name="Morning Intermediate", difficulty_level="intermediate", max_capacity=10))
        store.put_group(Group(group_id=2, name="Evening Intermediate", difficulty_level="intermediate", max_capacity=10))
        store.put_group(Group(group_id=3, name="Advanced", difficulty_level="advanced", max_capacity=10))

    def add_member(
        self,
        member_id: int,
        *,
        sub_type: Optional[SubscriptionType] = SubscriptionType.FITNESS,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        group_id: Optional[int] = 1,
        fitness_level: str = "intermediate",
        end_date: datetime = datetime(2024, 4, 10, 0, 0, 0),
    ) -> Member:
        subscription = None
        if sub_type is not None:
            subscription = Subscription(
                type=sub_type,
                status=status,
                start_date=datetime(2024, 3, 10, 0, 0, 0),
                end_date=end_date,
            )
        return self.store.put_member(
            Member(
                member_id=member_id,
                full_name=f"Member {member_id}",
                email=f"m{member_id}@example.com",
                gym_id=1,
                fitness_level=fitness_level,
                group_id=group_id,
                subscription=subscription,
            )
        )

    def add_session(
        self,
        session_id: int,
        group_id: int,
        date: datetime,
        *,
        attendance: Optional[Mapping[int, AttendanceStatus]] = None,
        temporary: tuple[TemporaryMember, ...] = (),
    ) -> Session:
        return self.store.put_session(
            Session(
                session_id=session_id,
                group_id=group_id,
                date=date,
                ends_at=date.replace(hour=date.hour + 1),
                attendance_list=dict(attendance or {}),
                temporary_members=temporary,
            )
        )


@pytest.fixture
def store():
    return InMemoryDirectoryStore(max_attempts=3)


@pytest.fixture
def world(store):
    return GymWorld(store)
