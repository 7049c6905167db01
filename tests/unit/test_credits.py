from datetime import datetime, timedelta

import pytest

from app.errors import InvalidRequestError, InvalidStateError
from app.services import credits
from app.services.credits import BALANCE_ACTIVE, BALANCE_DEPLETED, BALANCE_CANCELLED

NOW = datetime(2026, 5, 1, 12, 0)


def make_balance(purchased=3, used=0, status=BALANCE_ACTIVE, expires_at=None):
    return {
        "classes_purchased": purchased,
        "classes_used": used,
        "classes_remaining": purchased - used,
        "status": status,
        "expires_at": expires_at,
    }


def test_use_until_depleted():
    balance = make_balance(purchased=2)

    credits.use_credit(balance, NOW)
    assert balance["classes_remaining"] == 1
    assert balance["status"] == BALANCE_ACTIVE

    credits.use_credit(balance, NOW)
    assert balance["classes_used"] == 2
    assert balance["classes_remaining"] == 0
    assert balance["status"] == BALANCE_DEPLETED

    with pytest.raises(InvalidStateError) as exc:
        credits.use_credit(balance, NOW)
    assert exc.value.error_code == "CLASS_PACK_UNUSABLE"


def test_refund_reactivates_depleted_balance():
    balance = make_balance(purchased=1, used=1, status=BALANCE_DEPLETED)

    credits.refund_credit(balance)

    assert balance["classes_remaining"] == 1
    assert balance["status"] == BALANCE_ACTIVE


def test_refund_without_usage():
    with pytest.raises(InvalidStateError) as exc:
        credits.refund_credit(make_balance())
    assert exc.value.error_code == "NOTHING_TO_REFUND"


def test_expired_balance_cannot_be_used():
    balance = make_balance(expires_at=NOW - timedelta(minutes=1))
    assert credits.is_expired(balance, NOW)
    assert not credits.can_use_credit(balance, NOW)


def test_cancelled_balance_cannot_be_used():
    balance = make_balance()
    credits.cancel_balance(balance)
    assert balance["status"] == BALANCE_CANCELLED
    assert not credits.can_use_credit(balance, NOW)
    with pytest.raises(InvalidStateError):
        credits.cancel_balance(balance)


def test_new_balance_expiry():
    balance = credits.new_balance({"id": 4, "class_count": 10, "validity_days": 30}, NOW)
    assert balance["classes_remaining"] == 10
    assert balance["classes_used"] == 0
    assert balance["expires_at"] == NOW + timedelta(days=30)

    unlimited = credits.new_balance({"id": 4, "class_count": 10, "validity_days": None}, NOW)
    assert unlimited["expires_at"] is None


class TestPackDefinition:
    def test_flat_pack(self):
        credits.validate_pack_definition(10, 100, "flat", None)

    def test_per_category_sum_matches(self):
        allocations = [{"category_id": 1, "credit_count": 6}, {"category_id": 2, "credit_count": 4}]
        credits.validate_pack_definition(10, 100, "per_category", allocations)

    def test_per_category_sum_mismatch(self):
        allocations = [{"category_id": 1, "credit_count": 6}, {"category_id": 2, "credit_count": 3}]
        with pytest.raises(InvalidRequestError) as exc:
            credits.validate_pack_definition(10, 100, "per_category", allocations)
        assert exc.value.error_code == "ALLOCATION_MISMATCH"

    def test_per_category_needs_allocations(self):
        with pytest.raises(InvalidRequestError) as exc:
            credits.validate_pack_definition(10, 100, "per_category", [])
        assert exc.value.error_code == "ALLOCATIONS_REQUIRED"

    def test_duplicate_category(self):
        allocations = [{"category_id": 1, "credit_count": 5}, {"category_id": 1, "credit_count": 5}]
        with pytest.raises(InvalidRequestError) as exc:
            credits.validate_pack_definition(10, 100, "per_category", allocations)
        assert exc.value.error_code == "DUPLICATE_CATEGORY"

    @pytest.mark.parametrize("class_count, price, code", [(0, 10, "INVALID_CLASS_COUNT"), (5, -1, "INVALID_PRICE")])
    def test_invalid_counts(self, class_count, price, code):
        with pytest.raises(InvalidRequestError) as exc:
            credits.validate_pack_definition(class_count, price, "flat", None)
        assert exc.value.error_code == code
