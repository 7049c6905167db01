from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.errors import ForbiddenError, InvalidRequestError, NotFoundError
from app.services import payments

NOW = datetime(2026, 5, 1, 9, 0)


class FakeCursor:
    """Answers the class_packs lookup made while resolving a class pack source."""

    def __init__(self, class_pack=None):
        self.class_pack = class_pack
        self.queries = []

    def execute(self, query, params=None):
        self.queries.append((query, params))

    def fetchone(self):
        return self.class_pack


def gym_class(pricing_model="hybrid", **extra):
    row = {
        "id": 10,
        "category_id": 2,
        "pricing_model": pricing_model,
        "drop_in_price": Decimal("50.00"),
        "tax_rate": Decimal("15.00"),
        "access_policy": "members_only",
        "deducts_class_from_plan": 1,
    }
    row.update(extra)
    return row


@pytest.fixture
def subscription(monkeypatch):
    """Active subscription returned for the member; set to None to drop it."""
    state = {"row": {"id": 70, "classes_remaining": None}}
    monkeypatch.setattr(payments, "get_active_subscription", lambda *args, **kwargs: state["row"])
    return state


@pytest.fixture
def balance(monkeypatch):
    state = {
        "row": {
            "id": 300,
            "member_id": 7,
            "class_pack_id": 40,
            "status": "active",
            "classes_purchased": 5,
            "classes_used": 1,
            "classes_remaining": 4,
            "expires_at": NOW + timedelta(days=10),
        },
        "category": {"id": 900, "credits_remaining": 2},
    }

    def get_balance_row(cursor, tenant_id, balance_id, for_update=False):
        if state["row"] is None:
            raise NotFoundError("CLASS_PACK_BALANCE_NOT_FOUND", "Class pack balance not found")
        return state["row"]

    monkeypatch.setattr(payments, "get_balance_row", get_balance_row)
    monkeypatch.setattr(payments, "get_category_balance_row", lambda *args, **kwargs: state["category"])
    return state


def resolve(cursor, cls, source, **kwargs):
    return payments.resolve_source(cursor, 1, 7, cls, source, now=NOW, **kwargs)


def error_code_of(excinfo):
    return excinfo.value.error_code


class TestMembership:
    def test_included(self, subscription):
        plan = resolve(FakeCursor(), gym_class(), "membership_included")
        assert plan["subscription_id"] == 70
        assert plan["paid_amount"] is None

    def test_members_only_class_needs_subscription(self, subscription):
        subscription["row"] = None
        with pytest.raises(InvalidRequestError) as exc:
            resolve(FakeCursor(), gym_class(), "pay_per_entry")
        assert error_code_of(exc) == "MEMBERSHIP_REQUIRED"

    def test_open_class_without_subscription(self, subscription):
        subscription["row"] = None
        with pytest.raises(InvalidRequestError) as exc:
            resolve(FakeCursor(), gym_class(access_policy="open_to_all"), "membership_included")
        assert error_code_of(exc) == "PAYMENT_SOURCE_INVALID"

    def test_class_not_in_membership(self, subscription):
        with pytest.raises(InvalidRequestError) as exc:
            resolve(FakeCursor(), gym_class("class_pack_only"), "membership_included")
        assert error_code_of(exc) == "PAYMENT_SOURCE_INVALID"

    def test_quota_exhausted(self, subscription):
        subscription["row"] = {"id": 70, "classes_remaining": 0}
        with pytest.raises(InvalidRequestError):
            resolve(FakeCursor(), gym_class(), "membership_included")

    def test_quota_ignored_when_class_does_not_deduct(self, subscription):
        subscription["row"] = {"id": 70, "classes_remaining": 0}
        plan = resolve(FakeCursor(), gym_class(deducts_class_from_plan=0), "membership_included")
        assert plan["subscription_id"] == 70


class TestClassPack:
    def test_flat_pack(self, subscription, balance):
        cursor = FakeCursor({"allocation_mode": "flat", "valid_class_ids": "10,11"})
        plan = resolve(cursor, gym_class(), "class_pack", class_pack_balance_id=300)
        assert plan["class_pack_balance_id"] == 300
        assert plan["category_balance_id"] is None

    def test_balance_id_required(self, subscription, balance):
        with pytest.raises(InvalidRequestError):
            resolve(FakeCursor(), gym_class(), "class_pack")

    def test_unknown_balance(self, subscription, balance):
        balance["row"] = None
        with pytest.raises(InvalidRequestError) as exc:
            resolve(FakeCursor(), gym_class(), "class_pack", class_pack_balance_id=300)
        assert error_code_of(exc) == "PAYMENT_SOURCE_INVALID"

    def test_other_members_balance(self, subscription, balance):
        balance["row"]["member_id"] = 8
        with pytest.raises(InvalidRequestError):
            resolve(FakeCursor(), gym_class(), "class_pack", class_pack_balance_id=300)

    def test_expired_balance(self, subscription, balance):
        balance["row"]["expires_at"] = NOW - timedelta(seconds=1)
        with pytest.raises(InvalidRequestError):
            resolve(FakeCursor(), gym_class(), "class_pack", class_pack_balance_id=300)

    def test_pack_not_valid_for_class(self, subscription, balance):
        cursor = FakeCursor({"allocation_mode": "flat", "valid_class_ids": "11"})
        with pytest.raises(InvalidRequestError):
            resolve(cursor, gym_class(), "class_pack", class_pack_balance_id=300)

    def test_per_category_pack(self, subscription, balance):
        cursor = FakeCursor({"allocation_mode": "per_category", "valid_class_ids": None})
        plan = resolve(cursor, gym_class(), "class_pack", class_pack_balance_id=300)
        assert plan["category_balance_id"] == 900

    def test_per_category_without_credits(self, subscription, balance):
        balance["category"] = {"id": 900, "credits_remaining": 0}
        cursor = FakeCursor({"allocation_mode": "per_category", "valid_class_ids": None})
        with pytest.raises(InvalidRequestError):
            resolve(cursor, gym_class(), "class_pack", class_pack_balance_id=300)

    def test_membership_only_class(self, subscription, balance):
        with pytest.raises(InvalidRequestError):
            resolve(FakeCursor(), gym_class("included_in_membership"), "class_pack", class_pack_balance_id=300)


class TestOtherSources:
    def test_pay_per_entry_records_price_with_tax(self, subscription):
        plan = resolve(FakeCursor(), gym_class(), "pay_per_entry")
        assert plan["paid_amount"] == Decimal("57.50")

    def test_pay_per_entry_not_accepted(self, subscription):
        with pytest.raises(InvalidRequestError):
            resolve(FakeCursor(), gym_class("included_in_membership"), "pay_per_entry")

    def test_complimentary_staff_only(self, subscription):
        with pytest.raises(ForbiddenError):
            resolve(FakeCursor(), gym_class(), "complimentary")

    def test_complimentary_skips_membership_check(self, subscription):
        subscription["row"] = None
        plan = resolve(FakeCursor(), gym_class(), "complimentary", allow_complimentary=True)
        assert plan["payment_source"] == "complimentary"
        assert plan["subscription_id"] is None

    def test_unknown_source(self, subscription):
        with pytest.raises(InvalidRequestError) as exc:
            resolve(FakeCursor(), gym_class(), "voucher")
        assert error_code_of(exc) == "PAYMENT_SOURCE_INVALID"


class RecordingCursor:
    """Returns the queued rows in order and keeps every statement executed."""

    def __init__(self, *rows):
        self.rows = list(rows)
        self.queries = []
        self.rowcount = 1

    def execute(self, query, params=None):
        self.queries.append((" ".join(query.split()), params))

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None

    def updates(self, table):
        return [q for q, _ in self.queries if q.startswith(f"UPDATE {table}")]


def membership_plan():
    return {"payment_source": "membership_included", "subscription_id": 70}


def membership_booking(class_deducted):
    return {"id": 31, "payment_source": "membership_included", "subscription_id": 70, "class_deducted": class_deducted}


class TestMembershipQuota:
    def test_debit_takes_one_class(self):
        cursor = RecordingCursor({"id": 70, "classes_remaining": 5})
        deducted = payments.apply_debit(cursor, 1, gym_class(), membership_plan())
        assert deducted is True
        assert len(cursor.updates("member_subscriptions")) == 1
        assert "classes_remaining - 1" in cursor.updates("member_subscriptions")[0]

    def test_class_that_does_not_deduct_leaves_quota(self):
        cursor = RecordingCursor({"id": 70, "classes_remaining": 5})
        deducted = payments.apply_debit(cursor, 1, gym_class(deducts_class_from_plan=0), membership_plan())
        assert deducted is False
        assert cursor.updates("member_subscriptions") == []

    def test_unlimited_membership_leaves_quota(self):
        cursor = RecordingCursor({"id": 70, "classes_remaining": None})
        assert payments.apply_debit(cursor, 1, gym_class(), membership_plan()) is False
        assert cursor.updates("member_subscriptions") == []

    def test_refund_gives_back_deducted_class(self):
        cursor = RecordingCursor()
        payments.refund_debit(cursor, 1, membership_booking(class_deducted=1))
        assert len(cursor.updates("member_subscriptions")) == 1
        assert "classes_remaining + 1" in cursor.updates("member_subscriptions")[0]

    def test_refund_skips_class_never_deducted(self):
        cursor = RecordingCursor()
        payments.refund_debit(cursor, 1, membership_booking(class_deducted=0))
        assert cursor.updates("member_subscriptions") == []

    def test_book_and_cancel_without_deduction_is_neutral(self):
        cursor = RecordingCursor({"id": 70, "classes_remaining": 5})
        deducted = payments.apply_debit(cursor, 1, gym_class(deducts_class_from_plan=0), membership_plan())
        payments.refund_debit(cursor, 1, membership_booking(class_deducted=deducted))
        assert cursor.updates("member_subscriptions") == []
