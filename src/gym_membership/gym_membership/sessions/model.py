from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Mapping, Optional

from ..core.enums import AttendanceStatus


@dataclass(frozen=True)
class TemporaryMember:
    """A member attending this one session through a recovery."""

    member_id: int
    original_group_id: Optional[int]


@dataclass(frozen=True)
class Session:
    """Domain entity: one dated instance of a Group (the Session aggregate root)."""

    session_id: int
    group_id: int
    date: datetime
    ends_at: Optional[datetime] = None
    attendance_list: Mapping[int, AttendanceStatus] = field(default_factory=dict)
    temporary_members: tuple[TemporaryMember, ...] = ()

    @property
    def occupancy(self) -> int:
        return len(self.attendance_list) + len(self.temporary_members)

    def remaining_capacity(self, max_capacity: int) -> int:
        return int(max_capacity) - self.occupancy

    @property
    def temporary_member_ids(self) -> set[int]:
        return {t.member_id for t in self.temporary_members}

    def with_attendance(self, updates: Mapping[int, AttendanceStatus]) -> "Session":
        merged = dict(self.attendance_list)
        merged.update(updates)
        return replace(self, attendance_list=merged)

    def with_roster(self, roster: Mapping[int, AttendanceStatus]) -> "Session":
        return replace(self, attendance_list=dict(roster))

    def with_temporary_member(self, member: TemporaryMember) -> "Session":
        if member.member_id in self.temporary_member_ids:
            return self
        return replace(self, temporary_members=self.temporary_members + (member,))

    def without_member(self, member_id: int) -> "Session":
        """Drop a member from both the roster and the temporary members."""
        roster = {k: v for k, v in self.attendance_list.items() if k != member_id}
        temps = tuple(t for t in self.temporary_members if t.member_id != member_id)
        return replace(self, attendance_list=roster, temporary_members=temps)
