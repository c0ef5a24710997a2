from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional, Protocol, Sequence, TypeVar

from ..core.enums import AbsenceStatus, PaymentStatus, RecoveryStatus, SubscriptionStatus
from ..groups.model import Group
from ..members.model import Gym, Member, PaymentRecord
from ..recovery.model import Absence, Recovery
from ..sessions.model import Session
from .model import AggregateKey

T = TypeVar("T")


class DirectoryTransaction(Protocol):
    """Reads and writes scoped to the aggregates a transaction declared.

    Absences, recoveries and payments belong to the Member aggregate, so their
    member key must be in scope. Writes become visible to others only on commit.
    """

    def get_member(self, member_id: int) -> Optional[Member]:
        raise NotImplementedError

    def save_member(self, member: Member) -> None:
        raise NotImplementedError

    def get_session(self, session_id: int) -> Optional[Session]:
        raise NotImplementedError

    def save_session(self, session: Session) -> None:
        raise NotImplementedError

    def list_absences(self, member_id: int) -> Sequence[Absence]:
        raise NotImplementedError

    def add_absence(
        self,
        *,
        member_id: int,
        session_id: int,
        date: datetime,
        reason: str,
        status: AbsenceStatus,
        created_at: datetime,
        notes: Optional[str] = None,
    ) -> Absence:
        raise NotImplementedError

    def update_absence(self, absence: Absence) -> None:
        raise NotImplementedError

    def list_recoveries(self, member_id: int) -> Sequence[Recovery]:
        raise NotImplementedError

    def add_recovery(
        self,
        *,
        member_id: int,
        absence_id: int,
        original_session_id: int,
        recovery_session_id: int,
        recovery_date: datetime,
        temporary_group_id: int,
        status: RecoveryStatus,
        scheduled_at: datetime,
    ) -> Recovery:
        raise NotImplementedError

    def update_recovery(self, recovery: Recovery) -> None:
        raise NotImplementedError

    def list_payments(self, member_id: int) -> Sequence[PaymentRecord]:
        raise NotImplementedError

    def add_payment(
        self,
        *,
        member_id: int,
        paid_at: datetime,
        amount: Optional[Decimal],
        status: PaymentStatus,
        confirmed_by: Optional[int] = None,
    ) -> PaymentRecord:
        raise NotImplementedError


class DirectoryStore(Protocol):
    """Durable storage for Member, Group and Session records.

    Note (DIP): services depend on this interface, not on a concrete database.
    """

    def get_member(self, member_id: int) -> Optional[Member]:
        raise NotImplementedError

    def get_group(self, group_id: int) -> Optional[Group]:
        raise NotImplementedError

    def get_session(self, session_id: int) -> Optional[Session]:
        raise NotImplementedError

    def get_gym(self, gym_id: int) -> Optional[Gym]:
        raise NotImplementedError

    def list_sessions_between(
        self,
        *,
        start: datetime,
        end: datetime,
        group_id: Optional[int] = None,
    ) -> Sequence[Session]:
        """Sessions with start <= date <= end, ordered by date ascending."""

        raise NotImplementedError

    def list_members_by_subscription(
        self,
        *,
        status: SubscriptionStatus,
        end_from: Optional[datetime] = None,
        end_to: Optional[datetime] = None,
    ) -> Sequence[Member]:
        """Members whose subscription has `status` and end_from <= end_date <= end_to."""

        raise NotImplementedError

    def list_absences(
        self,
        member_id: int,
        *,
        status: Optional[AbsenceStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[Absence]:
        raise NotImplementedError

    def list_recoveries(
        self,
        member_id: int,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[Recovery]:
        """Recoveries with start <= recovery_date < end."""

        raise NotImplementedError

    def list_payments(self, member_id: int) -> Sequence[PaymentRecord]:
        raise NotImplementedError

    def with_transaction(
        self,
        keys: Iterable[AggregateKey],
        fn: Callable[[DirectoryTransaction], T],
        *,
        timeout: Optional[float] = None,
    ) -> T:
        """Run fn atomically over `keys`.

        Conflicts are retried a bounded number of times before ConflictError;
        exceptions raised by fn roll back and propagate; a timeout that elapses
        before commit raises DeadlineExceededError with nothing applied.
        """

        raise NotImplementedError
