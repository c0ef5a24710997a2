from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Mapping, Optional

from ..common.datetime_utils import now_local
from ..common.validators import require_enum
from ..core.enums import MARKABLE_ATTENDANCE_STATUSES, AttendanceStatus, RecoveryStatus
from ..core.exceptions import FutureSessionError, InvalidArgumentError, NotFoundError, PartialResolutionError
from ..directory.model import member_key, session_key
from ..directory.repository import DirectoryStore, DirectoryTransaction
from .model import AttendanceMarkResult, AttendanceRoster

logger = logging.getLogger(__name__)


class AttendanceLedgerService:
    def __init__(self, directory: DirectoryStore, *, tx_timeout: Optional[float] = None):
        self._directory = directory
        self._tx_timeout = tx_timeout

    def generate_attendance_roster(self, *, session_id: int) -> AttendanceRoster:
        """Rebuild the roster from group membership, absences and recoveries.

        Overwrites whatever was stored, so calling it twice gives the same roster.
        """

        session = self._directory.get_session(session_id)
        if not session:
            raise NotFoundError(f"Session {session_id} does not exist")
        group = self._directory.get_group(session.group_id)
        if not group:
            raise NotFoundError(f"Group {session.group_id} does not exist")

        member_ids = sorted(group.member_ids)
        keys = [session_key(session_id)] + [member_key(m) for m in member_ids]

        def apply(tx: DirectoryTransaction) -> AttendanceRoster:
            current = tx.get_session(session_id)
            if not current:
                raise NotFoundError(f"Session {session_id} does not exist")

            roster: dict[int, AttendanceStatus] = {}
            for member_id in member_ids:
                if not tx.get_member(member_id):
                    continue
                absent = any(a.session_id == current.session_id for a in tx.list_absences(member_id))
                roster[member_id] = AttendanceStatus.ABSENT if absent else AttendanceStatus.PRESENT
            for temporary in current.temporary_members:
                roster[temporary.member_id] = AttendanceStatus.RECOVERING

            tx.save_session(current.with_roster(roster))
            return AttendanceRoster(
                session_id=current.session_id,
                group_id=current.group_id,
                date=current.date,
                attendance_list=roster,
            )

        return self._directory.with_transaction(keys, apply, timeout=self._tx_timeout)

    @staticmethod
    def _parse_statuses(status_by_member: Mapping) -> dict[int, AttendanceStatus]:
        if not status_by_member:
            raise InvalidArgumentError("No attendance statuses given")

        parsed: dict[int, AttendanceStatus] = {}
        for raw_id, raw_status in status_by_member.items():
            try:
                member_id = int(raw_id)
            except (TypeError, ValueError):
                raise InvalidArgumentError(f"Invalid member id: {raw_id!r}")
            status = require_enum(
                AttendanceStatus, raw_status, f"status for member {member_id}", error=InvalidArgumentError
            )
            if status not in MARKABLE_ATTENDANCE_STATUSES:
                raise InvalidArgumentError(f"Invalid status for member {member_id}: {status.value}")
            parsed[member_id] = status
        return parsed

    def _resolve_recovery(self, *, member_id: int, session_id: int, outcome: RecoveryStatus) -> bool:
        def apply(tx: DirectoryTransaction) -> bool:
            resolved = False
            for recovery in tx.list_recoveries(member_id):
                if recovery.recovery_session_id == session_id and recovery.status == RecoveryStatus.SCHEDULED:
                    tx.update_recovery(replace(recovery, status=outcome))
                    resolved = True
            return resolved

        return self._directory.with_transaction([member_key(member_id)], apply, timeout=self._tx_timeout)

    def mark_attendance(
        self,
        *,
        session_id: int,
        status_by_member: Mapping,
        now: Optional[datetime] = None,
    ) -> AttendanceMarkResult:
        """Store attendance, then resolve recoveries of temporary members.

        The session update and each member's recovery resolution commit
        separately. If any resolution fails the call raises
        PartialResolutionError; re-running it finishes the remaining ones.
        """

        now = now or now_local()
        statuses = self._parse_statuses(status_by_member)

        session = self._directory.get_session(session_id)
        if not session:
            raise NotFoundError(f"Session {session_id} does not exist")
        if session.date > now:
            raise FutureSessionError("Attendance cannot be marked for a future session")

        def apply(tx: DirectoryTransaction):
            current = tx.get_session(session_id)
            if not current:
                raise NotFoundError(f"Session {session_id} does not exist")
            tx.save_session(current.with_attendance(statuses))
            return current.temporary_members

        temporary_members = self._directory.with_transaction([session_key(session_id)], apply, timeout=self._tx_timeout)

        resolved: dict[int, RecoveryStatus] = {}
        unresolved: list[int] = []
        for temporary in temporary_members:
            if temporary.member_id not in statuses:
                continue
            outcome = (
                RecoveryStatus.COMPLETED
                if statuses[temporary.member_id] == AttendanceStatus.PRESENT
                else RecoveryStatus.MISSED
            )
            try:
                if self._resolve_recovery(member_id=temporary.member_id, session_id=int(session_id), outcome=outcome):
                    resolved[temporary.member_id] = outcome
            except Exception:
                logger.exception(
                    "Could not resolve recovery of member %s for session %s", temporary.member_id, session_id
                )
                unresolved.append(temporary.member_id)

        if unresolved:
            logger.warning("Attendance for session %s stored; %d recoveries unresolved", session_id, len(unresolved))
            raise PartialResolutionError(
                f"Attendance stored but recoveries of members {unresolved} were not resolved; re-run to finish",
                unresolved_member_ids=unresolved,
            )

        logger.info("Attendance marked for session %s (%d entries)", session_id, len(statuses))
        return AttendanceMarkResult(session_id=int(session_id), updated=statuses, resolved_recoveries=resolved)
