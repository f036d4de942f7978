# tests/services/test_assignments.py
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from rolegate.core.errors import InvalidTransition
from rolegate.models import AssignmentStatus, RoleAssignment
from rolegate.services.assignments import RoleAssignmentTracker


class SteppingClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock():
    return SteppingClock()


@pytest.fixture()
def tracker(db_session, clock):
    return RoleAssignmentTracker(db_session, clock=clock)


def _count_rows(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(RoleAssignment)).scalar_one()


def _activate(tracker, **overrides):
    kwargs = {"subject_id": "u1", "server_id": "s1", "role_id": "r1", "rule_id": 7}
    kwargs.update(overrides)
    return tracker.activate(**kwargs)


def test_first_activation_creates_active_row(tracker, db_session, clock):
    result = _activate(tracker, address="0xabc", role_name="Holder")

    assert result.created
    row = tracker.repo.get("u1", "s1", "r1")
    assert row.assignment_status is AssignmentStatus.ACTIVE
    assert row.rule_id == 7
    assert row.address == "0xabc"
    assert row.verified_at.replace(tzinfo=UTC) == clock.now
    assert row.last_checked_at.replace(tzinfo=UTC) == clock.now


def test_repeat_activation_refreshes_without_duplicate(tracker, db_session, clock):
    first = _activate(tracker)
    verified_at = tracker.repo.get("u1", "s1", "r1").verified_at
    clock.advance(hours=1)

    second = _activate(tracker, role_name="Renamed")

    assert second.assignment_id == first.assignment_id
    assert second.previous_status is AssignmentStatus.ACTIVE
    row = tracker.repo.get("u1", "s1", "r1")
    assert row.verified_at == verified_at
    assert row.last_checked_at.replace(tzinfo=UTC) == clock.now
    assert row.role_name == "Renamed"
    assert _count_rows(db_session) == 1


def test_scenario_d_revoked_assignment_is_reactivated_in_place(tracker, db_session, clock):
    first = _activate(tracker)
    tracker.revoke(first.assignment_id)
    assert tracker.repo.get("u1", "s1", "r1").assignment_status is AssignmentStatus.REVOKED

    clock.advance(days=2)
    again = _activate(tracker)

    assert again.assignment_id == first.assignment_id
    assert again.reactivated
    row = tracker.repo.get("u1", "s1", "r1")
    assert row.assignment_status is AssignmentStatus.ACTIVE
    assert row.verified_at.replace(tzinfo=UTC) == clock.now
    assert _count_rows(db_session) == 1


def test_expired_assignment_is_reactivated(tracker, db_session):
    first = _activate(tracker)
    tracker.expire(first.assignment_id)

    again = _activate(tracker)

    assert again.previous_status is AssignmentStatus.EXPIRED
    assert tracker.repo.get("u1", "s1", "r1").assignment_status is AssignmentStatus.ACTIVE
    assert _count_rows(db_session) == 1


def test_revoke_requires_active(tracker):
    first = _activate(tracker)
    tracker.revoke(first.assignment_id)

    with pytest.raises(InvalidTransition):
        tracker.revoke(first.assignment_id)
    with pytest.raises(InvalidTransition):
        tracker.expire(first.assignment_id)
    with pytest.raises(InvalidTransition):
        tracker.revoke(999_999)


def test_mark_checked_only_touches_active(tracker, clock):
    first = _activate(tracker)
    clock.advance(minutes=30)

    assert tracker.mark_checked(first.assignment_id) is True
    assert tracker.repo.get("u1", "s1", "r1").last_checked_at.replace(tzinfo=UTC) == clock.now

    tracker.revoke(first.assignment_id)
    assert tracker.mark_checked(first.assignment_id) is False


def test_active_is_ordered_by_last_checked(tracker, clock):
    a = _activate(tracker, role_id="r-a")
    clock.advance(minutes=1)
    b = _activate(tracker, role_id="r-b")
    clock.advance(minutes=1)
    tracker.mark_checked(a.assignment_id)

    assert [row.id for row in tracker.active()] == [b.assignment_id, a.assignment_id]


def test_due_for_expiry_uses_expires_at(tracker, clock):
    _activate(tracker, role_id="r-a", expires_at=clock.now + timedelta(hours=1))
    _activate(tracker, role_id="r-b")

    assert tracker.due_for_expiry() == []
    clock.advance(hours=2)
    assert [row.role_id for row in tracker.due_for_expiry()] == ["r-a"]


def test_status_counts(tracker):
    first = _activate(tracker, role_id="r-a")
    _activate(tracker, role_id="r-b")
    tracker.revoke(first.assignment_id)

    assert tracker.status_counts() == {"active": 1, "expired": 0, "revoked": 1}
