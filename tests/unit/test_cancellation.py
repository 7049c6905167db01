from datetime import date, datetime
from decimal import Decimal

import pytest

from app.errors import ForbiddenError
from app.services import bookings


@pytest.fixture
def ledger(monkeypatch):
    """Stub the row access around bookings._cancel and record what it writes."""
    state = {
        "session": {
            "id": 5,
            "gym_class_id": 10,
            "session_date": date(2026, 5, 4),
            "start_time": "18:00:00",
            "capacity": 2,
            "booked_count": 2,
            "waitlist_count": 0,
        },
        "booking": {
            "id": 31,
            "session_id": 5,
            "member_id": 7,
            "status": "confirmed",
            "payment_source": "membership_included",
            "subscription_id": 70,
            "class_deducted": 1,
        },
        "gym_class": {
            "id": 10,
            "cancellation_deadline_hours": 2,
            "late_cancellation_fee": Decimal("20.00"),
        },
        "refunds": [],
        "updates": [],
    }
    monkeypatch.setattr(bookings, "_lock_for_booking", lambda *args: (state["session"], state["booking"]))
    monkeypatch.setattr(bookings, "get_gym_class_row", lambda *args: state["gym_class"])
    monkeypatch.setattr(bookings, "update_row", lambda cursor, table, row_id, values: state["updates"].append(values))
    monkeypatch.setattr(bookings, "save_session_counters", lambda *args: None)
    monkeypatch.setattr(bookings, "waitlisted_bookings", lambda *args, **kwargs: [])
    monkeypatch.setattr(bookings, "renumber_session_waitlist", lambda *args: None)
    monkeypatch.setattr(bookings, "fill_from_waitlist", lambda *args: [])
    monkeypatch.setattr(bookings.payments, "refund_debit", lambda cursor, tenant_id, booking: state["refunds"].append(booking["id"]))
    return state


def cancel(now, actor_member_id=None):
    return bookings._cancel(None, 1, 31, "sick", actor_member_id, now)


def test_timely_cancellation_refunds(ledger):
    cancel(datetime(2026, 5, 4, 15, 0))

    assert ledger["refunds"] == [31]
    values = ledger["updates"][0]
    assert values["status"] == "cancelled"
    assert values["is_late_cancellation"] is False
    assert "late_cancellation_fee" not in values
    assert ledger["session"]["booked_count"] == 1


def test_late_cancellation_keeps_credit_and_records_fee(ledger):
    cancel(datetime(2026, 5, 4, 16, 30))

    assert ledger["refunds"] == []
    values = ledger["updates"][0]
    assert values["is_late_cancellation"] is True
    assert values["late_cancellation_fee"] == Decimal("20.00")
    assert ledger["session"]["booked_count"] == 1


def test_waitlisted_booking_is_never_late(ledger):
    ledger["booking"]["status"] = "waitlisted"
    ledger["session"]["waitlist_count"] = 1

    cancel(datetime(2026, 5, 4, 17, 30))

    assert ledger["refunds"] == [31]
    assert ledger["updates"][0]["is_late_cancellation"] is False
    assert ledger["session"]["waitlist_count"] == 0
    assert ledger["session"]["booked_count"] == 2


def test_member_cannot_cancel_someone_elses_booking(ledger):
    with pytest.raises(ForbiddenError):
        cancel(datetime(2026, 5, 4, 15, 0), actor_member_id=8)
    assert ledger["updates"] == []
