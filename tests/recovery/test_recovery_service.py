from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.gym_membership.gym_membership.core.enums import (
    AbsenceStatus,
    AttendanceStatus,
    RecoveryStatus,
    SubscriptionStatus,
    SubscriptionType,
)
from src.gym_membership.gym_membership.core.exceptions import (
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
from src.gym_membership.gym_membership.groups.model import Group
from src.gym_membership.gym_membership.recovery.service import RecoveryService
from src.gym_membership.gym_membership.sessions.model import TemporaryMember

NOW = datetime(2024, 3, 10, 9, 0, 0)


@pytest.fixture
def service(store):
    return RecoveryService(store, monthly_quota=2, window_days=14)


@pytest.fixture
def gym(world):
    world.add_member(100)
    world.add_session(11, 1, datetime(2024, 3, 12, 10, 0))
    world.add_session(12, 1, datetime(2024, 3, 14, 10, 0))
    world.add_session(13, 1, datetime(2024, 3, 16, 10, 0))
    world.add_session(21, 2, datetime(2024, 3, 13, 18, 0))
    world.add_session(22, 2, datetime(2024, 3, 15, 18, 0))
    world.add_session(23, 2, datetime(2024, 3, 18, 18, 0))
    world.add_session(31, 3, datetime(2024, 3, 13, 18, 0))
    return world


def _absent(service, session_id, member_id=100):
    return service.record_absence(member_id=member_id, session_id=session_id, reason="travel", now=NOW)


def test_record_absence_marks_member_absent_on_the_session(service, gym, store):
    absence = _absent(service, 11)

    assert absence.status == AbsenceStatus.PENDING_RECOVERY
    assert absence.date == datetime(2024, 3, 12, 10, 0)
    assert store.get_session(11).attendance_list[100] == AttendanceStatus.ABSENT
    assert [a.absence_id for a in store.list_absences(100)] == [absence.absence_id]


def test_record_absence_rejects_past_foreign_and_duplicate_sessions(service, gym, world):
    world.add_session(10, 1, datetime(2024, 3, 1, 10, 0))

    with pytest.raises(InvalidStateError):
        _absent(service, 10)
    with pytest.raises(InvalidStateError):
        _absent(service, 21)

    _absent(service, 11)
    with pytest.raises(InvalidStateError):
        _absent(service, 11)


def test_record_absence_requires_active_subscription_and_existing_session(service, gym, world):
    world.add_member(101, status=SubscriptionStatus.EXPIRED)

    with pytest.raises(SubscriptionInactiveError):
        _absent(service, 11, member_id=101)
    with pytest.raises(NotFoundError):
        _absent(service, 999)


def test_quota_allows_two_recoveries_per_month(service, gym):
    for session_id in (11, 12, 13):
        _absent(service, session_id)

    service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)
    eligibility = service.get_recovery_eligibility(member_id=100, now=NOW)
    assert eligibility.eligible is True
    assert eligibility.remaining_recoveries == 1
    assert eligibility.recoveries_this_month == 1
    assert eligibility.absences_pending_recovery == 2

    service.schedule_recovery(member_id=100, original_session_id=12, recovery_session_id=22, now=NOW)
    eligibility = service.get_recovery_eligibility(member_id=100, now=NOW)
    assert eligibility.eligible is False
    assert eligibility.remaining_recoveries == 0

    with pytest.raises(QuotaExceededError):
        service.schedule_recovery(member_id=100, original_session_id=13, recovery_session_id=23, now=NOW)


def test_schedule_recovery_applies_all_effects(service, gym, store):
    absence = _absent(service, 11)

    recovery = service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)

    assert recovery.status == RecoveryStatus.SCHEDULED
    assert recovery.absence_id == absence.absence_id
    assert recovery.recovery_date == datetime(2024, 3, 13, 18, 0)
    assert recovery.temporary_group_id == 2

    target = store.get_session(21)
    assert target.temporary_members == (TemporaryMember(member_id=100, original_group_id=1),)
    assert target.attendance_list[100] == AttendanceStatus.RECOVERING
    assert store.list_absences(100)[0].status == AbsenceStatus.SCHEDULED_RECOVERY
    assert [r.recovery_id for r in store.list_recoveries(100)] == [recovery.recovery_id]


def test_schedule_recovery_checks_preconditions_in_order(service, gym, world):
    # Full target and no pending absence: the absence check wins.
    world.add_session(24, 2, datetime(2024, 3, 20, 18, 0), attendance={i: AttendanceStatus.PRESENT for i in range(500, 510)})
    with pytest.raises(NoPendingAbsenceError):
        service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=24, now=NOW)

    for session_id in (11, 12, 13):
        _absent(service, session_id)
    service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)
    service.schedule_recovery(member_id=100, original_session_id=12, recovery_session_id=22, now=NOW)

    # Quota reached and target does not exist: the quota check wins.
    with pytest.raises(QuotaExceededError):
        service.schedule_recovery(member_id=100, original_session_id=13, recovery_session_id=999, now=NOW)


def test_schedule_recovery_rejects_bad_targets(service, gym, world):
    world.add_session(20, 2, datetime(2024, 3, 9, 18, 0))
    _absent(service, 11)

    with pytest.raises(InvalidSessionError):
        service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=999, now=NOW)
    with pytest.raises(InvalidSessionError):
        service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=20, now=NOW)
    with pytest.raises(InvalidSessionError):
        service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=12, now=NOW)


def test_schedule_recovery_into_full_session_changes_nothing(service, gym, world, store):
    full = world.add_session(
        24,
        2,
        datetime(2024, 3, 20, 18, 0),
        attendance={i: AttendanceStatus.PRESENT for i in range(200, 209)},
        temporary=(TemporaryMember(member_id=300, original_group_id=1),),
    )
    _absent(service, 11)

    with pytest.raises(SessionFullError):
        service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=24, now=NOW)

    assert store.get_session(24) == full
    assert store.list_absences(100)[0].status == AbsenceStatus.PENDING_RECOVERY
    assert list(store.list_recoveries(100)) == []


def test_schedule_recovery_requires_capability(service, gym, world):
    world.add_member(101, sub_type=SubscriptionType.NUTRITION)
    world.add_member(102, status=SubscriptionStatus.PENDING_RENEWAL)
    _absent(service, 11, member_id=101)

    with pytest.raises(PermissionDeniedError):
        service.schedule_recovery(member_id=101, original_session_id=11, recovery_session_id=21, now=NOW)
    with pytest.raises(SubscriptionInactiveError):
        service.schedule_recovery(member_id=102, original_session_id=11, recovery_session_id=21, now=NOW)


def test_quota_of_target_month_is_checked(service, world):
    late_march = datetime(2024, 3, 28, 9, 0)
    world.add_member(100)
    for sid, day in ((41, 1), (42, 2), (43, 3)):
        world.add_session(sid, 1, datetime(2024, 4, day, 10, 0))
    for sid, day in ((51, 4), (52, 5), (53, 6)):
        world.add_session(sid, 2, datetime(2024, 4, day, 18, 0))
    for sid in (41, 42, 43):
        service.record_absence(member_id=100, session_id=sid, now=late_march)

    service.schedule_recovery(member_id=100, original_session_id=41, recovery_session_id=51, now=late_march)
    service.schedule_recovery(member_id=100, original_session_id=42, recovery_session_id=52, now=late_march)

    # Nothing booked in March, but April is already at the limit.
    assert service.get_recovery_eligibility(member_id=100, now=late_march).remaining_recoveries == 2
    with pytest.raises(QuotaExceededError):
        service.schedule_recovery(member_id=100, original_session_id=43, recovery_session_id=53, now=late_march)


def test_slot_search_filters_group_level_and_capacity(service, gym, world):
    world.add_session(
        24,
        2,
        datetime(2024, 3, 20, 18, 0),
        attendance={i: AttendanceStatus.PRESENT for i in range(200, 209)},
        temporary=(TemporaryMember(member_id=300, original_group_id=1),),
    )
    world.add_session(25, 2, datetime(2024, 4, 30, 18, 0))

    slots = service.list_available_recovery_slots(member_id=100, now=NOW)

    assert [s.session_id for s in slots] == [21, 22, 23]
    assert all(s.available_slots == 10 for s in slots)
    assert slots[0].group_name == "Evening Intermediate"
    assert slots[0].ends_at == datetime(2024, 3, 13, 19, 0)


def test_slot_search_reports_remaining_capacity(service, gym, world):
    world.add_session(26, 2, datetime(2024, 3, 19, 18, 0), attendance={i: AttendanceStatus.PRESENT for i in range(200, 203)})

    slots = service.list_available_recovery_slots(
        member_id=100, start=datetime(2024, 3, 19), end=datetime(2024, 3, 20), now=NOW
    )

    assert [(s.session_id, s.available_slots) for s in slots] == [(26, 7)]


def test_cancel_recovery_reopens_absence_and_frees_slot(service, gym, store):
    absence = _absent(service, 11)
    service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)

    reopened = service.cancel_recovery(member_id=100, absence_id=absence.absence_id, now=NOW)

    assert reopened.status == AbsenceStatus.PENDING_RECOVERY
    target = store.get_session(21)
    assert target.temporary_members == ()
    assert 100 not in target.attendance_list
    assert store.list_recoveries(100)[0].status == RecoveryStatus.CANCELLED
    assert service.get_recovery_eligibility(member_id=100, now=NOW).remaining_recoveries == 2

    again = service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=22, now=NOW)
    assert again.recovery_session_id == 22


def test_cancel_recovery_rejects_unscheduled_and_started(service, gym, store):
    absence = _absent(service, 11)
    with pytest.raises(InvalidStateError):
        service.cancel_recovery(member_id=100, absence_id=absence.absence_id, now=NOW)

    # Rejected cancel leaves the absence open and the roster entry absent.
    assert store.list_absences(100)[0].status == AbsenceStatus.PENDING_RECOVERY
    assert store.get_session(11).attendance_list[100] == AttendanceStatus.ABSENT

    service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)
    with pytest.raises(InvalidStateError):
        service.cancel_recovery(member_id=100, absence_id=absence.absence_id, now=datetime(2024, 3, 13, 18, 30))
    with pytest.raises(NotFoundError):
        service.cancel_recovery(member_id=100, absence_id=12345, now=NOW)


def test_eligibility_without_recovery_capability(service, world):
    world.add_member(101, sub_type=SubscriptionType.BASIC)
    world.add_member(102, status=SubscriptionStatus.EXPIRED)

    basic = service.get_recovery_eligibility(member_id=101, now=NOW)
    expired = service.get_recovery_eligibility(member_id=102, now=NOW)

    assert (basic.eligible, basic.remaining_recoveries) == (False, 0)
    assert basic.reason
    assert (expired.eligible, expired.remaining_recoveries) == (False, 0)


def test_absence_history_is_newest_first_and_filterable(service, gym):
    for session_id in (11, 12, 13):
        _absent(service, session_id)
    service.schedule_recovery(member_id=100, original_session_id=12, recovery_session_id=22, now=NOW)

    history = service.get_absence_history(member_id=100)
    assert [a.session_id for a in history] == [13, 12, 11]

    pending = service.get_absence_history(member_id=100, status=AbsenceStatus.PENDING_RECOVERY)
    assert [a.session_id for a in pending] == [13, 11]

    ranged = service.get_absence_history(member_id=100, start=datetime(2024, 3, 13), end=datetime(2024, 3, 15))
    assert [a.session_id for a in ranged] == [12]


def test_record_absence_rejects_non_string_reason(service, gym, store):
    with pytest.raises(InvalidArgumentError):
        service.record_absence(member_id=100, session_id=11, reason=5, now=NOW)

    assert list(store.list_absences(100)) == []


def test_slot_search_skips_inactive_and_unlevelled_groups(service, world, store):
    world.add_member(100)
    world.add_member(101, fitness_level=None)
    store.put_group(Group(group_id=4, name="Retired", difficulty_level="intermediate", max_capacity=10, active=False))
    store.put_group(Group(group_id=5, name="Open Gym", difficulty_level=None, max_capacity=10))
    world.add_session(41, 4, datetime(2024, 3, 13, 18, 0))
    world.add_session(51, 5, datetime(2024, 3, 14, 18, 0))
    world.add_session(21, 2, datetime(2024, 3, 15, 18, 0))

    assert [s.session_id for s in service.list_available_recovery_slots(member_id=100, now=NOW)] == [21]
    assert service.list_available_recovery_slots(member_id=101, now=NOW) == []


def test_slot_search_accepts_offset_aware_range(service, gym):
    start = datetime(2024, 3, 13, tzinfo=timezone.utc)
    end = datetime(2024, 3, 16, tzinfo=timezone.utc)

    slots = service.list_available_recovery_slots(member_id=100, start=start, end=end, now=NOW)

    ids = {s.session_id for s in slots}
    assert 21 in ids and ids <= {21, 22}
    assert all(s.date.tzinfo is None for s in slots)
