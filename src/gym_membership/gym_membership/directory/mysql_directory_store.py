from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

import mysql.connector

from ..core.constants import DEFAULT_TX_MAX_ATTEMPTS
from ..core.enums import (
    AbsenceStatus,
    AttendanceStatus,
    PaymentStatus,
    RecoveryStatus,
    SubscriptionStatus,
    SubscriptionType,
)
from ..core.exceptions import InvalidArgumentError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import RETRYABLE_ERRNOS, db_cursor, db_transaction, fetchall, fetchone, placeholders
from ..groups.model import Group
from ..members.model import Gym, Member, PaymentRecord, Subscription
from ..recovery.model import Absence, Recovery
from ..sessions.model import Session, TemporaryMember
from .model import AggregateKey, AggregateKind, member_key, session_key
from .repository import DirectoryStore, DirectoryTransaction
from .transaction import TransactionConflict, check_deadline, normalize_keys, run_with_retries

T = TypeVar("T")

_MEMBER_COLUMNS = "member_id, full_name, email, gym_id, fitness_level, group_id, sub_type, sub_status, sub_start, sub_end, total_due"
_ABSENCE_COLUMNS = "absence_id, member_id, session_id, absence_date, reason, notes, status, created_at"
_RECOVERY_COLUMNS = (
    "recovery_id, member_id, absence_id, original_session_id, recovery_session_id, "
    "recovery_date, temporary_group_id, status, scheduled_at"
)
_PAYMENT_COLUMNS = "payment_id, member_id, paid_at, amount, status, confirmed_by"


def _member_from_row(r: dict) -> Member:
    subscription = None
    if r.get("sub_type"):
        subscription = Subscription(
            type=SubscriptionType(r["sub_type"]),
            status=SubscriptionStatus(r["sub_status"]),
            start_date=r["sub_start"],
            end_date=r["sub_end"],
            total_due=Decimal(r.get("total_due") or 0),
        )
    return Member(
        member_id=int(r["member_id"]),
        full_name=r["full_name"],
        email=r.get("email"),
        gym_id=int(r["gym_id"]) if r.get("gym_id") is not None else None,
        fitness_level=r.get("fitness_level"),
        group_id=int(r["group_id"]) if r.get("group_id") is not None else None,
        subscription=subscription,
    )


def _absence_from_row(r: dict) -> Absence:
    return Absence(
        absence_id=int(r["absence_id"]),
        member_id=int(r["member_id"]),
        session_id=int(r["session_id"]),
        date=r["absence_date"],
        reason=r.get("reason") or "",
        status=AbsenceStatus(r["status"]),
        created_at=r["created_at"],
        notes=r.get("notes"),
    )


def _recovery_from_row(r: dict) -> Recovery:
    return Recovery(
        recovery_id=int(r["recovery_id"]),
        member_id=int(r["member_id"]),
        absence_id=int(r["absence_id"]),
        original_session_id=int(r["original_session_id"]),
        recovery_session_id=int(r["recovery_session_id"]),
        recovery_date=r["recovery_date"],
        temporary_group_id=int(r["temporary_group_id"]),
        status=RecoveryStatus(r["status"]),
        scheduled_at=r["scheduled_at"],
    )


def _payment_from_row(r: dict) -> PaymentRecord:
    return PaymentRecord(
        payment_id=int(r["payment_id"]),
        member_id=int(r["member_id"]),
        paid_at=r["paid_at"],
        amount=Decimal(r["amount"]) if r.get("amount") is not None else None,
        status=PaymentStatus(r["status"]),
        confirmed_by=int(r["confirmed_by"]) if r.get("confirmed_by") is not None else None,
    )


def _load_member(cur, member_id: int, *, for_update: bool = False) -> Optional[Member]:
    lock = " FOR UPDATE" if for_update else ""
    cur.execute(f"SELECT {_MEMBER_COLUMNS} FROM members WHERE member_id=%s{lock}", (int(member_id),))
    r = fetchone(cur)
    return _member_from_row(r) if r else None


def _load_sessions(cur, where: str, params: Sequence[Any]) -> list[Session]:
    cur.execute(
        f"SELECT session_id, group_id, starts_at, ends_at FROM sessions WHERE {where} ORDER BY starts_at ASC, session_id ASC",
        tuple(params),
    )
    rows = fetchall(cur)
    if not rows:
        return []

    ids = [int(r["session_id"]) for r in rows]
    roster: dict[int, dict[int, AttendanceStatus]] = {i: {} for i in ids}
    temps: dict[int, list[TemporaryMember]] = {i: [] for i in ids}

    cur.execute(
        f"SELECT session_id, member_id, status FROM session_attendance WHERE session_id IN ({placeholders(ids)})",
        tuple(ids),
    )
    for a in fetchall(cur):
        roster[int(a["session_id"])][int(a["member_id"])] = AttendanceStatus(a["status"])

    cur.execute(
        f"""
        SELECT session_id, member_id, original_group_id
        FROM session_temporary_members
        WHERE session_id IN ({placeholders(ids)})
        ORDER BY session_id, member_id
        """,
        tuple(ids),
    )
    for t in fetchall(cur):
        original = t.get("original_group_id")
        temps[int(t["session_id"])].append(
            TemporaryMember(member_id=int(t["member_id"]), original_group_id=int(original) if original is not None else None)
        )

    return [
        Session(
            session_id=int(r["session_id"]),
            group_id=int(r["group_id"]),
            date=r["starts_at"],
            ends_at=r.get("ends_at"),
            attendance_list=roster[int(r["session_id"])],
            temporary_members=tuple(temps[int(r["session_id"])]),
        )
        for r in rows
    ]


class MySQLDirectoryTransaction(DirectoryTransaction):
    """Runs on the cursor of one open InnoDB transaction whose keys are already locked."""

    def __init__(self, cur, keys: tuple[AggregateKey, ...]):
        self._cur = cur
        self._keys = set(keys)

    def _require(self, key: AggregateKey) -> None:
        if key not in self._keys:
            raise InvalidArgumentError(f"{key} is outside the transaction scope")

    def get_member(self, member_id: int) -> Optional[Member]:
        self._require(member_key(member_id))
        return _load_member(self._cur, member_id)

    def save_member(self, member: Member) -> None:
        self._require(member_key(member.member_id))
        sub = member.subscription
        self._cur.execute(
            """
            UPDATE members
            SET full_name=%s, email=%s, gym_id=%s, fitness_level=%s, group_id=%s,
                sub_type=%s, sub_status=%s, sub_start=%s, sub_end=%s, total_due=%s
            WHERE member_id=%s
            """,
            (
                member.full_name,
                member.email,
                member.gym_id,
                member.fitness_level,
                member.group_id,
                sub.type.value if sub else None,
                sub.status.value if sub else None,
                sub.start_date if sub else None,
                sub.end_date if sub else None,
                sub.total_due if sub else Decimal("0"),
                int(member.member_id),
            ),
        )

    def get_session(self, session_id: int) -> Optional[Session]:
        self._require(session_key(session_id))
        rows = _load_sessions(self._cur, "session_id=%s", (int(session_id),))
        return rows[0] if rows else None

    def save_session(self, session: Session) -> None:
        self._require(session_key(session.session_id))
        sid = int(session.session_id)
        self._cur.execute(
            "UPDATE sessions SET group_id=%s, starts_at=%s, ends_at=%s WHERE session_id=%s",
            (int(session.group_id), session.date, session.ends_at, sid),
        )
        self._cur.execute("DELETE FROM session_attendance WHERE session_id=%s", (sid,))
        if session.attendance_list:
            self._cur.executemany(
                "INSERT INTO session_attendance(session_id, member_id, status) VALUES(%s,%s,%s)",
                [(sid, int(m), AttendanceStatus(s).value) for m, s in session.attendance_list.items()],
            )
        self._cur.execute("DELETE FROM session_temporary_members WHERE session_id=%s", (sid,))
        if session.temporary_members:
            self._cur.executemany(
                "INSERT INTO session_temporary_members(session_id, member_id, original_group_id) VALUES(%s,%s,%s)",
                [(sid, int(t.member_id), t.original_group_id) for t in session.temporary_members],
            )

    def list_absences(self, member_id: int) -> Sequence[Absence]:
        self._require(member_key(member_id))
        self._cur.execute(
            f"SELECT {_ABSENCE_COLUMNS} FROM absences WHERE member_id=%s ORDER BY absence_date, absence_id",
            (int(member_id),),
        )
        return [_absence_from_row(r) for r in fetchall(self._cur)]

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
        self._cur.execute(
            """
            INSERT INTO absences(member_id, session_id, absence_date, reason, notes, status, created_at)
            VALUES(%s,%s,%s,%s,%s,%s,%s)
            """,
            (int(member_id), int(session_id), date, reason, notes, status.value, created_at),
        )
        return Absence(
            absence_id=int(self._cur.lastrowid),
            member_id=int(member_id),
            session_id=int(session_id),
            date=date,
            reason=reason,
            status=status,
            created_at=created_at,
            notes=notes,
        )

    def update_absence(self, absence: Absence) -> None:
        self._require(member_key(absence.member_id))
        self._cur.execute(
            "UPDATE absences SET status=%s, reason=%s, notes=%s WHERE absence_id=%s AND member_id=%s",
            (absence.status.value, absence.reason, absence.notes, int(absence.absence_id), int(absence.member_id)),
        )

    def list_recoveries(self, member_id: int) -> Sequence[Recovery]:
        self._require(member_key(member_id))
        self._cur.execute(
            f"SELECT {_RECOVERY_COLUMNS} FROM recoveries WHERE member_id=%s ORDER BY recovery_date, recovery_id",
            (int(member_id),),
        )
        return [_recovery_from_row(r) for r in fetchall(self._cur)]

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
        self._cur.execute(
            """
            INSERT INTO recoveries(
                member_id, absence_id, original_session_id, recovery_session_id,
                recovery_date, temporary_group_id, status, scheduled_at
            )
            VALUES(%s,%s,%s,%s,%s,%s,%s,%s)
            """,
            (
                int(member_id),
                int(absence_id),
                int(original_session_id),
                int(recovery_session_id),
                recovery_date,
                int(temporary_group_id),
                status.value,
                scheduled_at,
            ),
        )
        return Recovery(
            recovery_id=int(self._cur.lastrowid),
            member_id=int(member_id),
            absence_id=int(absence_id),
            original_session_id=int(original_session_id),
            recovery_session_id=int(recovery_session_id),
            recovery_date=recovery_date,
            temporary_group_id=int(temporary_group_id),
            status=status,
            scheduled_at=scheduled_at,
        )

    def update_recovery(self, recovery: Recovery) -> None:
        self._require(member_key(recovery.member_id))
        self._cur.execute(
            "UPDATE recoveries SET status=%s WHERE recovery_id=%s AND member_id=%s",
            (recovery.status.value, int(recovery.recovery_id), int(recovery.member_id)),
        )

    def list_payments(self, member_id: int) -> Sequence[PaymentRecord]:
        self._require(member_key(member_id))
        self._cur.execute(
            f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE member_id=%s ORDER BY paid_at, payment_id",
            (int(member_id),),
        )
        return [_payment_from_row(r) for r in fetchall(self._cur)]

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
        self._cur.execute(
            "INSERT INTO payments(member_id, paid_at, amount, status, confirmed_by) VALUES(%s,%s,%s,%s,%s)",
            (int(member_id), paid_at, amount, status.value, confirmed_by),
        )
        return PaymentRecord(
            payment_id=int(self._cur.lastrowid),
            member_id=int(member_id),
            paid_at=paid_at,
            amount=amount,
            status=status,
            confirmed_by=confirmed_by,
        )


class MySQLDirectoryStore(DirectoryStore):
    def __init__(self, conn_factory: DatabaseConnection, *, max_attempts: int = DEFAULT_TX_MAX_ATTEMPTS):
        self._conn_factory = conn_factory
        self._max_attempts = int(max_attempts)

    def get_member(self, member_id: int) -> Optional[Member]:
        with db_cursor(self._conn_factory) as (_, cur):
            return _load_member(cur, member_id)

    def get_group(self, group_id: int) -> Optional[Group]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT group_id, group_name, difficulty_level, max_capacity, is_active
                FROM training_groups
                WHERE group_id=%s
                """,
                (int(group_id),),
            )
            r = fetchone(cur)
            if not r:
                return None
            cur.execute("SELECT member_id FROM members WHERE group_id=%s", (int(group_id),))
            member_ids = frozenset(int(m["member_id"]) for m in fetchall(cur))
            return Group(
                group_id=int(r["group_id"]),
                name=r["group_name"],
                difficulty_level=r.get("difficulty_level"),
                max_capacity=int(r["max_capacity"]),
                member_ids=member_ids,
                active=bool(r["is_active"]),
            )

    def get_session(self, session_id: int) -> Optional[Session]:
        with db_cursor(self._conn_factory) as (_, cur):
            rows = _load_sessions(cur, "session_id=%s", (int(session_id),))
            return rows[0] if rows else None

    def get_gym(self, gym_id: int) -> Optional[Gym]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT gym_id, gym_name FROM gyms WHERE gym_id=%s", (int(gym_id),))
            r = fetchone(cur)
            if not r:
                return None
            cur.execute(
                "SELECT subscription_type, monthly_price FROM gym_plan_prices WHERE gym_id=%s",
                (int(gym_id),),
            )
            prices = {SubscriptionType(p["subscription_type"]): Decimal(p["monthly_price"]) for p in fetchall(cur)}
            return Gym(gym_id=int(r["gym_id"]), name=r["gym_name"], plan_prices=prices)

    def list_sessions_between(
        self,
        *,
        start: datetime,
        end: datetime,
        group_id: Optional[int] = None,
    ) -> Sequence[Session]:
        clauses = ["starts_at BETWEEN %s AND %s"]
        params: list[object] = [start, end]
        if group_id is not None:
            clauses.append("group_id=%s")
            params.append(int(group_id))

        with db_cursor(self._conn_factory) as (_, cur):
            return _load_sessions(cur, " AND ".join(clauses), params)

    def list_members_by_subscription(
        self,
        *,
        status: SubscriptionStatus,
        end_from: Optional[datetime] = None,
        end_to: Optional[datetime] = None,
    ) -> Sequence[Member]:
        clauses = ["sub_status=%s"]
        params: list[object] = [status.value]
        if end_from is not None:
            clauses.append("sub_end >= %s")
            params.append(end_from)
        if end_to is not None:
            clauses.append("sub_end <= %s")
            params.append(end_to)

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_MEMBER_COLUMNS} FROM members WHERE {' AND '.join(clauses)} ORDER BY sub_end, member_id",
                tuple(params),
            )
            return [_member_from_row(r) for r in fetchall(cur)]

    def list_absences(
        self,
        member_id: int,
        *,
        status: Optional[AbsenceStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[Absence]:
        clauses = ["member_id=%s"]
        params: list[object] = [int(member_id)]
        if status is not None:
            clauses.append("status=%s")
            params.append(status.value)
        if start is not None:
            clauses.append("absence_date >= %s")
            params.append(start)
        if end is not None:
            clauses.append("absence_date <= %s")
            params.append(end)

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_ABSENCE_COLUMNS} FROM absences WHERE {' AND '.join(clauses)} ORDER BY absence_date, absence_id",
                tuple(params),
            )
            return [_absence_from_row(r) for r in fetchall(cur)]

    def list_recoveries(
        self,
        member_id: int,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[Recovery]:
        clauses = ["member_id=%s"]
        params: list[object] = [int(member_id)]
        if start is not None:
            clauses.append("recovery_date >= %s")
            params.append(start)
        if end is not None:
            clauses.append("recovery_date < %s")
            params.append(end)

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_RECOVERY_COLUMNS} FROM recoveries WHERE {' AND '.join(clauses)} ORDER BY recovery_date, recovery_id",
                tuple(params),
            )
            return [_recovery_from_row(r) for r in fetchall(cur)]

    def list_payments(self, member_id: int) -> Sequence[PaymentRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE member_id=%s ORDER BY paid_at, payment_id",
                (int(member_id),),
            )
            return [_payment_from_row(r) for r in fetchall(cur)]

    @staticmethod
    def _lock(cur, keys: tuple[AggregateKey, ...]) -> None:
        # Keys arrive sorted (members before sessions, ascending ids).
        for kind, table, column in (
            (AggregateKind.MEMBER, "members", "member_id"),
            (AggregateKind.SESSION, "sessions", "session_id"),
        ):
            ids = [k.id for k in keys if k.kind == kind]
            if ids:
                cur.execute(
                    f"SELECT {column} FROM {table} WHERE {column} IN ({placeholders(ids)}) ORDER BY {column} FOR UPDATE",
                    tuple(ids),
                )
                fetchall(cur)

    def with_transaction(
        self,
        keys: Iterable[AggregateKey],
        fn: Callable[[DirectoryTransaction], T],
        *,
        timeout: Optional[float] = None,
    ) -> T:
        scoped = normalize_keys(keys)

        def attempt(deadline: Optional[float]) -> T:
            try:
                with db_transaction(self._conn_factory) as (_, cur):
                    self._lock(cur, scoped)
                    result = fn(MySQLDirectoryTransaction(cur, scoped))
                    check_deadline(deadline)
                    return result
            except mysql.connector.Error as exc:
                if getattr(exc, "errno", None) in RETRYABLE_ERRNOS:
                    raise TransactionConflict(str(exc)) from exc
                raise

        return run_with_retries(attempt, keys=scoped, max_attempts=self._max_attempts, timeout=timeout)
