from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app.errors import InvalidRequestError
from app.services import pricing


class TestPricingConfiguration:
    @pytest.mark.parametrize("model", ["pay_per_entry", "hybrid"])
    def test_drop_in_price_required(self, model):
        with pytest.raises(InvalidRequestError) as exc:
            pricing.validate_pricing_configuration(model, None)
        assert exc.value.error_code == "DROP_IN_PRICE_REQUIRED"

    def test_drop_in_price_must_be_positive(self):
        with pytest.raises(InvalidRequestError) as exc:
            pricing.validate_pricing_configuration("hybrid", "0")
        assert exc.value.error_code == "INVALID_DROP_IN_PRICE"

    def test_membership_class_needs_no_price(self):
        pricing.validate_pricing_configuration("included_in_membership", None)
        pricing.validate_pricing_configuration("class_pack_only", None)

    def test_unknown_model(self):
        with pytest.raises(InvalidRequestError) as exc:
            pricing.validate_pricing_configuration("free", None)
        assert exc.value.error_code == "INVALID_PRICING_MODEL"


@pytest.mark.parametrize(
    "model, membership, class_pack, drop_in",
    [
        ("included_in_membership", True, False, False),
        ("class_pack_only", False, True, False),
        ("pay_per_entry", False, False, True),
        ("hybrid", True, True, True),
    ],
)
def test_accepted_sources(model, membership, class_pack, drop_in):
    gym_class = {"pricing_model": model}
    assert pricing.accepts_membership_credits(gym_class) is membership
    assert pricing.accepts_class_pack_credits(gym_class) is class_pack
    assert pricing.accepts_pay_per_entry(gym_class) is drop_in


class TestTax:
    def test_tax_added(self):
        assert pricing.price_with_tax(Decimal("50.00"), Decimal("15.00")) == Decimal("57.50")

    def test_tax_rounds_half_up(self):
        # 10.05 * 5% = 0.5025 -> 0.50, 0.10 * 15% = 0.015 -> 0.02
        assert pricing.price_with_tax("10.05", "5") == Decimal("10.55")
        assert pricing.price_with_tax("0.10", "15") == Decimal("0.12")

    def test_no_tax_rate(self):
        assert pricing.price_with_tax("20", None) == Decimal("20.00")

    def test_class_without_drop_in_price(self):
        assert pricing.drop_in_price_with_tax({"drop_in_price": None, "tax_rate": 15}) is None


class TestLateCancellation:
    session = {"session_date": date(2026, 5, 4), "start_time": timedelta(hours=18)}
    gym_class = {"cancellation_deadline_hours": 2}

    def test_before_deadline(self):
        assert not pricing.is_late_cancellation(self.session, self.gym_class, datetime(2026, 5, 4, 15, 59))

    def test_exactly_at_deadline_is_not_late(self):
        assert not pricing.is_late_cancellation(self.session, self.gym_class, datetime(2026, 5, 4, 16, 0))

    def test_after_deadline(self):
        assert pricing.is_late_cancellation(self.session, self.gym_class, datetime(2026, 5, 4, 16, 1))

    def test_no_deadline_means_until_start(self):
        gym_class = {"cancellation_deadline_hours": None}
        assert not pricing.is_late_cancellation(self.session, gym_class, datetime(2026, 5, 4, 17, 59))
        assert pricing.is_late_cancellation(self.session, gym_class, datetime(2026, 5, 4, 18, 1))


class TestBookingWindow:
    now = datetime(2026, 5, 1, 12, 0)

    def test_inside_default_window(self):
        session = {"session_date": date(2026, 5, 8), "start_time": "18:00:00"}
        assert pricing.within_booking_window(session, {}, self.now)

    def test_beyond_window(self):
        session = {"session_date": date(2026, 5, 9), "start_time": "18:00:00"}
        assert not pricing.within_booking_window(session, {}, self.now)

    def test_custom_window(self):
        session = {"session_date": date(2026, 5, 20), "start_time": "18:00:00"}
        assert pricing.within_booking_window(session, {"advance_booking_days": 30}, self.now)

    def test_past_session(self):
        session = {"session_date": date(2026, 4, 30), "start_time": "18:00:00"}
        assert not pricing.within_booking_window(session, {}, self.now)

    def test_later_today_is_open(self):
        session = {"session_date": date(2026, 5, 1), "start_time": "18:00:00"}
        assert pricing.within_booking_window(session, {}, self.now)

    def test_session_that_started_earlier_today(self):
        session = {"session_date": date(2026, 5, 1), "start_time": timedelta(hours=7)}
        assert not pricing.within_booking_window(session, {}, self.now)

    def test_closes_at_start_time(self):
        session = {"session_date": date(2026, 5, 1), "start_time": "12:00:00"}
        assert not pricing.within_booking_window(session, {}, self.now)


class TestPackValidity:
    def test_flat_pack_without_list_is_valid_everywhere(self):
        assert pricing.pack_valid_for_class({"allocation_mode": "flat", "valid_class_ids": None}, {"id": 5})

    def test_flat_pack_restricted(self):
        pack = {"allocation_mode": "flat", "valid_class_ids": "3,7"}
        assert pricing.pack_valid_for_class(pack, {"id": 7})
        assert not pricing.pack_valid_for_class(pack, {"id": 5})

    def test_per_category_needs_class_category(self):
        pack = {"allocation_mode": "per_category", "valid_class_ids": None}
        assert pricing.pack_valid_for_class(pack, {"id": 1, "category_id": 2})
        assert not pricing.pack_valid_for_class(pack, {"id": 1, "category_id": None})
