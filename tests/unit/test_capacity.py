from datetime import datetime, timedelta

import pytest

from app.errors import ConflictError, InvalidStateError
from app.services import capacity
from app.services.capacity import (
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    BOOKING_WAITLISTED,
    BOOKING_NO_SHOW,
    SESSION_SCHEDULED,
    SESSION_IN_PROGRESS,
    SESSION_COMPLETED,
    SESSION_CANCELLED,
)


def make_session(capacity_=2, booked=0, waitlist=0, status=SESSION_SCHEDULED):
    return {
        "id": 1,
        "capacity": capacity_,
        "booked_count": booked,
        "waitlist_count": waitlist,
        "status": status,
    }


def make_class(waitlist_enabled=True, max_waitlist_size=None):
    return {"waitlist_enabled": waitlist_enabled, "max_waitlist_size": max_waitlist_size}


def make_booking(booking_id, status, position=None, minutes=0):
    return {
        "id": booking_id,
        "status": status,
        "waitlist_position": position,
        "created_at": datetime(2026, 3, 1, 8, 0) + timedelta(minutes=minutes),
    }


class TestAllocate:
    def test_two_confirmed_then_waitlisted(self):
        session = make_session(capacity_=2)
        gym_class = make_class()

        assert capacity.allocate(session, gym_class) == (BOOKING_CONFIRMED, None)
        assert capacity.allocate(session, gym_class) == (BOOKING_CONFIRMED, None)
        assert capacity.allocate(session, gym_class) == (BOOKING_WAITLISTED, 1)

        assert session["booked_count"] == 2
        assert session["waitlist_count"] == 1

    def test_full_without_waitlist(self):
        session = make_session(capacity_=1, booked=1)
        with pytest.raises(ConflictError) as exc:
            capacity.allocate(session, make_class(waitlist_enabled=False))
        assert exc.value.error_code == "SESSION_FULL"
        assert session["waitlist_count"] == 0

    def test_waitlist_limit(self):
        session = make_session(capacity_=1, booked=1, waitlist=2)
        with pytest.raises(ConflictError):
            capacity.allocate(session, make_class(max_waitlist_size=2))

    def test_unlimited_waitlist(self):
        session = make_session(capacity_=1, booked=1, waitlist=40)
        assert capacity.allocate(session, make_class()) == (BOOKING_WAITLISTED, 41)


class TestReleaseAndPromote:
    def test_release_confirmed_with_waitlist(self):
        session = make_session(capacity_=2, booked=2, waitlist=1)
        assert capacity.release(session, BOOKING_CONFIRMED) is True
        assert session["booked_count"] == 1

    def test_release_confirmed_without_waitlist(self):
        session = make_session(capacity_=2, booked=2)
        assert capacity.release(session, BOOKING_CONFIRMED) is False

    def test_release_waitlisted(self):
        session = make_session(capacity_=2, booked=2, waitlist=2)
        assert capacity.release(session, BOOKING_WAITLISTED) is False
        assert session["booked_count"] == 2
        assert session["waitlist_count"] == 1

    def test_counters_never_negative(self):
        session = make_session(booked=0, waitlist=0)
        capacity.release(session, BOOKING_CONFIRMED)
        capacity.release(session, BOOKING_WAITLISTED)
        assert session["booked_count"] == 0
        assert session["waitlist_count"] == 0

    def test_promote_moves_counters(self):
        session = make_session(capacity_=2, booked=1, waitlist=1)
        booking = make_booking(3, BOOKING_WAITLISTED, position=1)

        capacity.promote(session, booking)

        assert booking["status"] == BOOKING_CONFIRMED
        assert booking["waitlist_position"] is None
        assert session["booked_count"] == 2
        assert session["waitlist_count"] == 0

    def test_promote_requires_free_seat(self):
        session = make_session(capacity_=2, booked=2, waitlist=1)
        with pytest.raises(ConflictError):
            capacity.promote(session, make_booking(3, BOOKING_WAITLISTED, position=1))

    def test_promote_rejects_confirmed(self):
        with pytest.raises(InvalidStateError):
            capacity.promote(make_session(booked=0), make_booking(3, BOOKING_CONFIRMED))

    def test_next_in_waitlist_is_earliest(self):
        bookings = [
            make_booking(7, BOOKING_WAITLISTED, position=2, minutes=5),
            make_booking(4, BOOKING_CONFIRMED, minutes=0),
            make_booking(9, BOOKING_WAITLISTED, position=1, minutes=1),
        ]
        assert capacity.next_in_waitlist(bookings)["id"] == 9

    def test_next_in_waitlist_ties_break_on_id(self):
        bookings = [
            make_booking(12, BOOKING_WAITLISTED, minutes=1),
            make_booking(11, BOOKING_WAITLISTED, minutes=1),
        ]
        assert capacity.next_in_waitlist(bookings)["id"] == 11

    def test_next_in_waitlist_empty(self):
        assert capacity.next_in_waitlist([make_booking(1, BOOKING_CONFIRMED)]) is None


def test_renumber_closes_gaps():
    bookings = [
        make_booking(1, BOOKING_WAITLISTED, position=2, minutes=1),
        make_booking(2, BOOKING_CANCELLED, minutes=0),
        make_booking(3, BOOKING_WAITLISTED, position=3, minutes=2),
    ]

    changed = capacity.renumber_waitlist(bookings)

    assert changed == [(1, 1), (3, 2)]
    assert [b["waitlist_position"] for b in bookings] == [1, None, 2]


def test_renumber_no_changes():
    bookings = [make_booking(1, BOOKING_WAITLISTED, position=1)]
    assert capacity.renumber_waitlist(bookings) == []


@pytest.mark.parametrize(
    "status, operation, allowed",
    [
        (BOOKING_CONFIRMED, "cancel", True),
        (BOOKING_WAITLISTED, "cancel", True),
        (BOOKING_CANCELLED, "cancel", False),
        (BOOKING_WAITLISTED, "check_in", False),
        (BOOKING_CONFIRMED, "delete", False),
        (BOOKING_NO_SHOW, "delete", True),
    ],
)
def test_booking_transitions(status, operation, allowed):
    booking = {"status": status}
    if allowed:
        capacity.ensure_booking_transition(booking, operation)
    else:
        with pytest.raises(InvalidStateError) as exc:
            capacity.ensure_booking_transition(booking, operation)
        assert exc.value.error_code == "INVALID_BOOKING_STATE"


@pytest.mark.parametrize(
    "status, operation, allowed",
    [
        (SESSION_SCHEDULED, "start", True),
        (SESSION_IN_PROGRESS, "complete", True),
        (SESSION_SCHEDULED, "complete", False),
        (SESSION_COMPLETED, "cancel", False),
        (SESSION_CANCELLED, "delete", True),
        (SESSION_COMPLETED, "delete", False),
        (SESSION_IN_PROGRESS, "update", False),
    ],
)
def test_session_transitions(status, operation, allowed):
    session = make_session(status=status)
    if allowed:
        capacity.ensure_session_transition(session, operation)
    else:
        with pytest.raises(InvalidStateError) as exc:
            capacity.ensure_session_transition(session, operation)
        assert exc.value.status_code == 409


def test_only_scheduled_sessions_are_bookable():
    capacity.ensure_bookable(make_session())
    with pytest.raises(InvalidStateError) as exc:
        capacity.ensure_bookable(make_session(status=SESSION_IN_PROGRESS))
    assert exc.value.error_code == "SESSION_NOT_BOOKABLE"


def test_capacity_cannot_drop_below_confirmed():
    session = make_session(capacity_=10, booked=6)
    capacity.ensure_capacity_change(session, 6)
    with pytest.raises(ConflictError) as exc:
        capacity.ensure_capacity_change(session, 5)
    assert exc.value.error_code == "CAPACITY_BELOW_BOOKINGS"


def test_available_spots():
    assert capacity.available_spots(make_session(capacity_=5, booked=3)) == 2
    assert capacity.available_spots(make_session(capacity_=5, booked=7)) == 0
