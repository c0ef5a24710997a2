from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from ..common.datetime_utils import month_bounds, now_local, same_calendar_month, to_local_naive
from ..core.constants import DEFAULT_RECOVERY_WINDOW_DAYS, MONTHLY_RECOVERY_QUOTA
from ..core.enums import AbsenceStatus, AttendanceStatus, RecoveryStatus
from ..core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    InvalidSessionError,
    InvalidStateError,
    NoPendingAbsenceError,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    SessionFullError,
    SubscriptionInactiveError,
)
from ..directory.model import member_key, session_key
from ..directory.repository import DirectoryStore, DirectoryTransaction
from ..groups.model import Group
from ..members.model import Member
from ..sessions.model import TemporaryMember
from .model import Absence, Recovery, RecoveryEligibility, RecoverySlot

logger = logging.getLogger(__name__)


class RecoveryService:
    """Absence -> recovery workflow and the monthly recovery quota.

    Every write touching both a member and a session runs in one Directory
    Store transaction scoped to exactly those two aggregates.
    """

    def __init__(
        self,
        directory: DirectoryStore,
        *,
        monthly_quota: int = MONTHLY_RECOVERY_QUOTA,
        window_days: int = DEFAULT_RECOVERY_WINDOW_DAYS,
        tx_timeout: Optional[float] = None,
    ):
        self._directory = directory
        self._quota = int(monthly_quota)
        self._window = timedelta(days=int(window_days))
        self._tx_timeout = tx_timeout

    def _get_member(self, member_id: int) -> Member:
        member = self._directory.get_member(member_id)
        if not member:
            raise NotFoundError(f"Member {member_id} does not exist")
        return member

    def _count_in_month(self, recoveries: Iterable[Recovery], instant: datetime) -> int:
        return sum(
            1 for r in recoveries if r.counts_against_quota and same_calendar_month(r.recovery_date, instant)
        )

    def record_absence(
        self,
        *,
        member_id: int,
        session_id: int,
        reason: str = "",
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Absence:
        now = now or now_local()
        if reason is not None and not isinstance(reason, str):
            raise InvalidArgumentError("reason must be a string")
        reason = (reason or "").strip()

        def apply(tx: DirectoryTransaction) -> Absence:
            member = tx.get_member(member_id)
            if not member:
                raise NotFoundError(f"Member {member_id} does not exist")
            session = tx.get_session(session_id)
            if not session:
                raise NotFoundError(f"Session {session_id} does not exist")

            if not member.has_active_subscription:
                raise SubscriptionInactiveError("Member does not have an active subscription")
            if session.date <= now:
                raise InvalidStateError("Absences can only be recorded for future sessions")
            if member.group_id != session.group_id:
                raise InvalidStateError("Member is not part of this session's group")
            if any(a.session_id == session.session_id for a in tx.list_absences(member.member_id)):
                raise InvalidStateError("An absence is already recorded for this session")

            absence = tx.add_absence(
                member_id=member.member_id,
                session_id=session.session_id,
                date=session.date,
                reason=reason,
                status=AbsenceStatus.PENDING_RECOVERY,
                created_at=now,
                notes=notes,
            )
            tx.save_session(session.with_attendance({member.member_id: AttendanceStatus.ABSENT}))
            return absence

        absence = self._directory.with_transaction(
            [member_key(member_id), session_key(session_id)], apply, timeout=self._tx_timeout
        )
        logger.info("Absence %s recorded for member %s on session %s", absence.absence_id, member_id, session_id)
        return absence

    def list_available_recovery_slots(
        self,
        *,
        member_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> list[RecoverySlot]:
        now = to_local_naive(now) if now else now_local()
        member = self._get_member(member_id)
        start = to_local_naive(start) if start else now
        end = to_local_naive(end) if end else now + self._window
        if end < start:
            raise InvalidArgumentError("End of the date range is before its start")

        groups: dict[int, Optional[Group]] = {}
        slots: list[RecoverySlot] = []

        for session in self._directory.list_sessions_between(start=start, end=end):
            if session.group_id == member.group_id:
                continue

            if session.group_id not in groups:
                groups[session.group_id] = self._directory.get_group(session.group_id)
            group = groups[session.group_id]
            if not group or not group.active:
                continue
            if group.difficulty_level is None or group.difficulty_level != member.fitness_level:
                continue

            remaining = session.remaining_capacity(group.max_capacity)
            if remaining <= 0:
                continue

            slots.append(
                RecoverySlot(
                    session_id=session.session_id,
                    group_id=group.group_id,
                    group_name=group.name,
                    date=session.date,
                    ends_at=session.ends_at,
                    available_slots=remaining,
                )
            )

        slots.sort(key=lambda s: (s.date, s.session_id))
        return slots

    def schedule_recovery(
        self,
        *,
        member_id: int,
        original_session_id: int,
        recovery_session_id: int,
        now: Optional[datetime] = None,
    ) -> Recovery:
        now = now or now_local()

        def apply(tx: DirectoryTransaction) -> Recovery:
            member = tx.get_member(member_id)
            if not member:
                raise NotFoundError(f"Member {member_id} does not exist")
            if not member.has_active_subscription:
                raise SubscriptionInactiveError("Member does not have an active subscription")
            if not member.permissions.can_schedule_recoveries:
                raise PermissionDeniedError("Subscription type does not allow scheduling recoveries")

            absence = next(
                (
                    a
                    for a in tx.list_absences(member.member_id)
                    if a.session_id == int(original_session_id) and a.is_pending
                ),
                None,
            )
            if not absence:
                raise NoPendingAbsenceError("No absence pending recovery for the original session")

            recoveries = tx.list_recoveries(member.member_id)
            if self._count_in_month(recoveries, now) >= self._quota:
                raise QuotaExceededError(f"Monthly limit of {self._quota} recoveries reached")

            target = tx.get_session(recovery_session_id)
            if not target:
                raise InvalidSessionError("Recovery session does not exist")
            if target.date <= now:
                raise InvalidSessionError("Recovery session is not in the future")
            if target.group_id == member.group_id:
                raise InvalidSessionError("Recoveries must be booked in another group's session")
            if (
                not same_calendar_month(target.date, now)
                and self._count_in_month(recoveries, target.date) >= self._quota
            ):
                raise QuotaExceededError(f"Monthly limit of {self._quota} recoveries reached for that month")

            group = self._directory.get_group(target.group_id)
            if not group:
                raise NotFoundError(f"Group {target.group_id} does not exist")
            if member.member_id in target.temporary_member_ids:
                raise InvalidStateError("Member already has a recovery booked in this session")
            if target.remaining_capacity(group.max_capacity) <= 0:
                raise SessionFullError("Recovery session is full")

            recovery = tx.add_recovery(
                member_id=member.member_id,
                absence_id=absence.absence_id,
                original_session_id=absence.session_id,
                recovery_session_id=target.session_id,
                recovery_date=target.date,
                temporary_group_id=target.group_id,
                status=RecoveryStatus.SCHEDULED,
                scheduled_at=now,
            )
            tx.update_absence(replace(absence, status=AbsenceStatus.SCHEDULED_RECOVERY))
            booked = target.with_temporary_member(
                TemporaryMember(member_id=member.member_id, original_group_id=member.group_id)
            )
            tx.save_session(booked.with_attendance({member.member_id: AttendanceStatus.RECOVERING}))
            return recovery

        recovery = self._directory.with_transaction(
            [member_key(member_id), session_key(recovery_session_id)], apply, timeout=self._tx_timeout
        )
        logger.info(
            "Recovery %s booked for member %s in session %s (absence %s)",
            recovery.recovery_id,
            member_id,
            recovery_session_id,
            recovery.absence_id,
        )
        return recovery

    @staticmethod
    def _scheduled_recovery_for(recoveries: Iterable[Recovery], absence_id: int) -> Optional[Recovery]:
        return next(
            (r for r in recoveries if r.absence_id == absence_id and r.status == RecoveryStatus.SCHEDULED),
            None,
        )

    def cancel_recovery(self, *, member_id: int, absence_id: int, now: Optional[datetime] = None) -> Absence:
        now = now or now_local()
        self._get_member(member_id)

        absence = next((a for a in self._directory.list_absences(member_id) if a.absence_id == int(absence_id)), None)
        if not absence:
            raise NotFoundError(f"Absence {absence_id} does not exist")
        if absence.status != AbsenceStatus.SCHEDULED_RECOVERY:
            raise InvalidStateError("Absence has no scheduled recovery")

        booked = self._scheduled_recovery_for(self._directory.list_recoveries(member_id), absence.absence_id)
        if not booked:
            raise InvalidStateError("Absence has no scheduled recovery")
        if booked.recovery_date <= now:
            raise InvalidStateError("Recovery session has already started")

        def apply(tx: DirectoryTransaction) -> Absence:
            current = next((a for a in tx.list_absences(member_id) if a.absence_id == absence.absence_id), None)
            if not current or current.status != AbsenceStatus.SCHEDULED_RECOVERY:
                raise InvalidStateError("Absence has no scheduled recovery")
            recovery = self._scheduled_recovery_for(tx.list_recoveries(member_id), current.absence_id)
            if not recovery or recovery.recovery_session_id != booked.recovery_session_id:
                raise ConflictError("Recovery changed while cancelling; retry the request")

            tx.update_recovery(replace(recovery, status=RecoveryStatus.CANCELLED))
            reopened = replace(current, status=AbsenceStatus.PENDING_RECOVERY)
            tx.update_absence(reopened)

            session = tx.get_session(recovery.recovery_session_id)
            if session:
                tx.save_session(session.without_member(int(member_id)))
            return reopened

        reopened = self._directory.with_transaction(
            [member_key(member_id), session_key(booked.recovery_session_id)], apply, timeout=self._tx_timeout
        )
        logger.info(
            "Recovery %s cancelled for member %s; absence %s pending again",
            booked.recovery_id,
            member_id,
            absence_id,
        )
        return reopened

    def get_recovery_eligibility(self, *, member_id: int, now: Optional[datetime] = None) -> RecoveryEligibility:
        now = now or now_local()
        member = self._get_member(member_id)

        if not member.has_active_subscription:
            return RecoveryEligibility(
                eligible=False,
                remaining_recoveries=0,
                reason="Member does not have an active subscription",
            )
        if not member.permissions.can_schedule_recoveries:
            return RecoveryEligibility(
                eligible=False,
                remaining_recoveries=0,
                reason="Subscription type does not allow scheduling recoveries",
            )

        month_start, next_month = month_bounds(now)
        used = self._count_in_month(
            self._directory.list_recoveries(member_id, start=month_start, end=next_month), now
        )
        remaining = max(0, self._quota - used)
        pending = len(self._directory.list_absences(member_id, status=AbsenceStatus.PENDING_RECOVERY))

        return RecoveryEligibility(
            eligible=remaining > 0,
            remaining_recoveries=remaining,
            recoveries_this_month=used,
            absences_pending_recovery=pending,
            reason=None if remaining > 0 else "Monthly recovery quota reached",
        )

    def get_absence_history(
        self,
        *,
        member_id: int,
        status: Optional[AbsenceStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Sequence[Absence]:
        self._get_member(member_id)
        start = to_local_naive(start) if start else None
        end = to_local_naive(end) if end else None
        rows = self._directory.list_absences(member_id, status=status, start=start, end=end)
        return sorted(rows, key=lambda a: (a.date, a.absence_id), reverse=True)
