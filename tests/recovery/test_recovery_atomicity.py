from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from types import SimpleNamespace

import pytest

from src.gym_membership.gym_membership.core.enums import AbsenceStatus, AttendanceStatus
from src.gym_membership.gym_membership.core.exceptions import ConflictError, DeadlineExceededError, SessionFullError
from src.gym_membership.gym_membership.directory import transaction as transaction_module
from src.gym_membership.gym_membership.directory.memory_store import InMemoryDirectoryStore, InMemoryTransaction
from src.gym_membership.gym_membership.directory.transaction import TransactionConflict
from src.gym_membership.gym_membership.recovery.service import RecoveryService

NOW = datetime(2024, 3, 10, 9, 0, 0)


class FailingSessionWrite(InMemoryTransaction):
    def save_session(self, session):
        raise RuntimeError("session write failed")


class FaultyStore(InMemoryDirectoryStore):
    """Lets a test break session writes, force conflicts or race a commit."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.fail_session_writes = False
        self.always_conflict = False
        self.before_commit = None
        self.commit_attempts = 0

    def _begin(self, keys):
        if self.fail_session_writes:
            return FailingSessionWrite(self, keys)
        return super()._begin(keys)

    def _commit(self, tx, snapshot):
        self.commit_attempts += 1
        if self.always_conflict:
            raise TransactionConflict("forced")
        if self.before_commit:
            hook, self.before_commit = self.before_commit, None
            hook()
        super()._commit(tx, snapshot)


@pytest.fixture
def store():
    return FaultyStore(max_attempts=3)


@pytest.fixture
def booked(world, store):
    world.add_member(100)
    world.add_session(11, 1, datetime(2024, 3, 12, 10, 0))
    world.add_session(21, 2, datetime(2024, 3, 13, 18, 0))
    service = RecoveryService(store, monthly_quota=2)
    service.record_absence(member_id=100, session_id=11, now=NOW)
    store.commit_attempts = 0
    return service


def _assert_untouched(store, target_before):
    assert store.get_session(21) == target_before
    assert [a.status for a in store.list_absences(100)] == [AbsenceStatus.PENDING_RECOVERY]
    assert list(store.list_recoveries(100)) == []


def test_failed_session_write_leaves_member_untouched(booked, store):
    before = store.get_session(21)
    store.fail_session_writes = True

    with pytest.raises(RuntimeError):
        booked.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)

    _assert_untouched(store, before)


def test_persistent_conflict_surfaces_after_bounded_retries(booked, store):
    before = store.get_session(21)
    store.always_conflict = True

    with pytest.raises(ConflictError):
        booked.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)

    assert store.commit_attempts == 3
    store.always_conflict = False
    _assert_untouched(store, before)


def test_concurrent_booking_takes_last_slot(booked, store):
    # Another member fills the session between our read and our commit.
    def fill():
        current = store.get_session(21)
        store.put_session(replace(current, attendance_list={i: AttendanceStatus.PRESENT for i in range(200, 210)}))

    store.before_commit = fill

    with pytest.raises(SessionFullError):
        booked.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)

    assert store.commit_attempts == 1
    assert 100 not in store.get_session(21).attendance_list
    assert list(store.list_recoveries(100)) == []


def test_conflict_then_success_commits_once(booked, store):
    store.before_commit = lambda: store.put_member(store.get_member(100))

    recovery = booked.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)

    assert store.commit_attempts == 2
    assert [r.recovery_id for r in store.list_recoveries(100)] == [recovery.recovery_id]
    assert store.get_session(21).temporary_member_ids == {100}


def test_deadline_exceeded_before_commit_applies_nothing(booked, store, monkeypatch):
    ticks = [0.0, 0.0, 10.0]
    clock = SimpleNamespace(monotonic=lambda: ticks.pop(0) if len(ticks) > 1 else ticks[0])
    monkeypatch.setattr(transaction_module, "time", clock)
    service = RecoveryService(store, monthly_quota=2, tx_timeout=5.0)
    before = store.get_session(21)

    with pytest.raises(DeadlineExceededError):
        service.schedule_recovery(member_id=100, original_session_id=11, recovery_session_id=21, now=NOW)

    assert store.commit_attempts == 0
    _assert_untouched(store, before)
