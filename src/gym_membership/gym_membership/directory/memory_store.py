from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from ..core.constants import DEFAULT_TX_MAX_ATTEMPTS
from ..core.enums import AbsenceStatus, PaymentStatus, RecoveryStatus, SubscriptionStatus
from ..core.exceptions import InvalidArgumentError, NotFoundError
from ..groups.model import Group
from ..members.model import Gym, Member, PaymentRecord
from ..recovery.model import Absence, Recovery
from ..sessions.model import Session
from .model import AggregateKey, member_key, session_key
from .repository import DirectoryStore, DirectoryTransaction
from .transaction import TransactionConflict, check_deadline, normalize_keys, run_with_retries

T = TypeVar("T")


def _in_range(value: datetime, start: Optional[datetime], end: Optional[datetime], *, end_inclusive: bool) -> bool:
    if start is not None and value < start:
        return False
    if end is not None:
        return value <= end if end_inclusive else value < end
    return True


class InMemoryTransaction(DirectoryTransaction):
    """Buffers writes until the store commits them.

    Reads see the transaction's own writes first, then the committed state.
    """

    def __init__(self, store: "InMemoryDirectoryStore", keys: tuple[AggregateKey, ...]):
        self._store = store
        self._keys = set(keys)
        self.members: dict[int, Member] = {}
        self.sessions: dict[int, Session] = {}
        self.absences: dict[int, Absence] = {}
        self.recoveries: dict[int, Recovery] = {}
        self.payments: list[PaymentRecord] = []

    @property
    def written_keys(self) -> set[AggregateKey]:
        keys = {member_key(m) for m in self.members}
        keys |= {session_key(s) for s in self.sessions}
        keys |= {member_key(a.member_id) for a in self.absences.values()}
        keys |= {member_key(r.member_id) for r in self.recoveries.values()}
        keys |= {member_key(p.member_id) for p in self.payments}
        return keys

    def _require(self, key: AggregateKey) -> None:
        if key not in self._keys:
            raise InvalidArgumentError(f"{key} is outside the transaction scope")

    def get_member(self, member_id: int) -> Optional[Member]:
        self._require(member_key(member_id))
        if member_id in self.members:
            return self.members[member_id]
        return self._store.get_member(member_id)

    def save_member(self, member: Member) -> None:
        self._require(member_key(member.member_id))
        self.members[member.member_id] = member

    def get_session(self, session_id: int) -> Optional[Session]:
        self._require(session_key(session_id))
        if session_id in self.sessions:
            return self.sessions[session_id]
        return self._store.get_session(session_id)

    def save_session(self, session: Session) -> None:
        self._require(session_key(session.session_id))
        self.sessions[session.session_id] = session

    def list_absences(self, member_id: int) -> Sequence[Absence]:
        self._require(member_key(member_id))
        merged = {a.absence_id: a for a in self._store.list_absences(member_id)}
        merged.update({k: a for k, a in self.absences.items() if a.member_id == member_id})
        return sorted(merged.values(), key=lambda a: (a.date, a.absence_id))

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
        self._require(member_key(member_id))
        absence = Absence(
            absence_id=self._store.next_id(),
            member_id=member_id,
            session_id=session_id,
            date=date,
            reason=reason,
            status=status,
            created_at=created_at,
            notes=notes,
        )
        self.absences[absence.absence_id] = absence
        return absence

    def update_absence(self, absence: Absence) -> None:
        self._require(member_key(absence.member_id))
        self.absences[absence.absence_id] = absence

    def list_recoveries(self, member_id: int) -> Sequence[Recovery]:
        self._require(member_key(member_id))
        merged = {r.recovery_id: r for r in self._store.list_recoveries(member_id)}
        merged.update({k: r for k, r in self.recoveries.items() if r.member_id == member_id})
        return sorted(merged.values(), key=lambda r: (r.recovery_date, r.recovery_id))

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
        self._require(member_key(member_id))
        recovery = Recovery(
            recovery_id=self._store.next_id(),
            member_id=member_id,
            absence_id=absence_id,
            original_session_id=original_session_id,
            recovery_session_id=recovery_session_id,
            recovery_date=recovery_date,
            temporary_group_id=temporary_group_id,
            status=status,
            scheduled_at=scheduled_at,
        )
        self.recoveries[recovery.recovery_id] = recovery
        return recovery

    def update_recovery(self, recovery: Recovery) -> None:
        self._require(member_key(recovery.member_id))
        self.recoveries[recovery.recovery_id] = recovery

    def list_payments(self, member_id: int) -> Sequence[PaymentRecord]:
        self._require(member_key(member_id))
        return list(self._store.list_payments(member_id)) + [p for p in self.payments if p.member_id == member_id]

    def add_payment(
        self,
        *,
        member_id: int,
        paid_at: datetime,
        amount: Optional[Decimal],
        status: PaymentStatus,
        confirmed_by: Optional[int] = None,
    ) -> PaymentRecord:
        self._require(member_key(member_id))
        record = PaymentRecord(
            payment_id=self._store.next_id(),
            member_id=member_id,
            paid_at=paid_at,
            amount=amount,
            status=status,
            confirmed_by=confirmed_by,
        )
        self.payments.append(record)
        return record


class InMemoryDirectoryStore(DirectoryStore):
    """Process-local Directory Store with optimistic, versioned transactions.

    Every aggregate key carries a version; a commit checks that none of the
    scoped keys moved since the attempt started, then applies all buffered
    writes at once. Used by the `memory` backend and by tests.
    """

    def __init__(self, *, max_attempts: int = DEFAULT_TX_MAX_ATTEMPTS):
        self._lock = threading.RLock()
        self._max_attempts = int(max_attempts)
        self._ids = itertools.count(1)
        self._versions: dict[AggregateKey, int] = {}

        self._members: dict[int, Member] = {}
        self._groups: dict[int, Group] = {}
        self._sessions: dict[int, Session] = {}
        self._gyms: dict[int, Gym] = {}
        self._absences: dict[int, dict[int, Absence]] = {}
        self._recoveries: dict[int, dict[int, Recovery]] = {}
        self._payments: dict[int, list[PaymentRecord]] = {}

    def next_id(self) -> int:
        with self._lock:
            return next(self._ids)

    def version_of(self, key: AggregateKey) -> int:
        with self._lock:
            return self._versions.get(key, 0)

    def _bump(self, key: AggregateKey) -> None:
        self._versions[key] = self._versions.get(key, 0) + 1

    # Records written by the external admin workflow (and fixtures).
    def put_member(self, member: Member) -> Member:
        with self._lock:
            self._members[member.member_id] = member
            self._bump(member_key(member.member_id))
        return member

    def put_group(self, group: Group) -> Group:
        with self._lock:
            self._groups[group.group_id] = group
        return group

    def put_session(self, session: Session) -> Session:
        with self._lock:
            self._sessions[session.session_id] = session
            self._bump(session_key(session.session_id))
        return session

    def put_gym(self, gym: Gym) -> Gym:
        with self._lock:
            self._gyms[gym.gym_id] = gym
        return gym

    def get_member(self, member_id: int) -> Optional[Member]:
        with self._lock:
            return self._members.get(int(member_id))

    def get_group(self, group_id: int) -> Optional[Group]:
        # Membership is derived from each member's current group_id.
        with self._lock:
            group = self._groups.get(int(group_id))
            if group is None:
                return None
            member_ids = frozenset(m.member_id for m in self._members.values() if m.group_id == group.group_id)
        return replace(group, member_ids=member_ids)

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(int(session_id))

    def get_gym(self, gym_id: int) -> Optional[Gym]:
        with self._lock:
            return self._gyms.get(int(gym_id))

    def list_sessions_between(
        self,
        *,
        start: datetime,
        end: datetime,
        group_id: Optional[int] = None,
    ) -> Sequence[Session]:
        with self._lock:
            rows = [
                s
                for s in self._sessions.values()
                if start <= s.date <= end and (group_id is None or s.group_id == group_id)
            ]
        return sorted(rows, key=lambda s: (s.date, s.session_id))

    def list_members_by_subscription(
        self,
        *,
        status: SubscriptionStatus,
        end_from: Optional[datetime] = None,
        end_to: Optional[datetime] = None,
    ) -> Sequence[Member]:
        with self._lock:
            members = list(self._members.values())
        return [
            m
            for m in members
            if m.subscription
            and m.subscription.status == status
            and _in_range(m.subscription.end_date, end_from, end_to, end_inclusive=True)
        ]

    def list_absences(
        self,
        member_id: int,
        *,
        status: Optional[AbsenceStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[Absence]:
        with self._lock:
            rows = list(self._absences.get(int(member_id), {}).values())
        rows = [
            a
            for a in rows
            if (status is None or a.status == status) and _in_range(a.date, start, end, end_inclusive=True)
        ]
        return sorted(rows, key=lambda a: (a.date, a.absence_id))

    def list_recoveries(
        self,
        member_id: int,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[Recovery]:
        with self._lock:
            rows = list(self._recoveries.get(int(member_id), {}).values())
        rows = [r for r in rows if _in_range(r.recovery_date, start, end, end_inclusive=False)]
        return sorted(rows, key=lambda r: (r.recovery_date, r.recovery_id))

    def list_payments(self, member_id: int) -> Sequence[PaymentRecord]:
        with self._lock:
            return list(self._payments.get(int(member_id), []))

    def _begin(self, keys: tuple[AggregateKey, ...]) -> InMemoryTransaction:
        return InMemoryTransaction(self, keys)

    def _commit(self, tx: InMemoryTransaction, snapshot: dict[AggregateKey, int]) -> None:
        with self._lock:
            for key, version in snapshot.items():
                if self._versions.get(key, 0) != version:
                    raise TransactionConflict(f"{key} changed since the transaction started")

            for member in tx.members.values():
                if member.member_id not in self._members:
                    raise NotFoundError(f"Member {member.member_id} does not exist")
            for session in tx.sessions.values():
                if session.session_id not in self._sessions:
                    raise NotFoundError(f"Session {session.session_id} does not exist")

            for member in tx.members.values():
                self._members[member.member_id] = member
            self._sessions.update(tx.sessions)
            for absence in tx.absences.values():
                self._absences.setdefault(absence.member_id, {})[absence.absence_id] = absence
            for recovery in tx.recoveries.values():
                self._recoveries.setdefault(recovery.member_id, {})[recovery.recovery_id] = recovery
            for payment in tx.payments:
                self._payments.setdefault(payment.member_id, []).append(payment)

            for key in tx.written_keys:
                self._bump(key)

    def with_transaction(
        self,
        keys: Iterable[AggregateKey],
        fn: Callable[[DirectoryTransaction], T],
        *,
        timeout: Optional[float] = None,
    ) -> T:
        scoped = normalize_keys(keys)

        def attempt(deadline: Optional[float]) -> T:
            with self._lock:
                snapshot = {k: self._versions.get(k, 0) for k in scoped}
            tx = self._begin(scoped)
            result = fn(tx)
            check_deadline(deadline)
            self._commit(tx, snapshot)
            return result

        return run_with_retries(attempt, keys=scoped, max_attempts=self._max_attempts, timeout=timeout)
