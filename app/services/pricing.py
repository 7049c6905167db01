"""
Pricing and booking-policy rules for gym classes.
"""
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from app.errors import InvalidRequestError
from app.utils.helpers import session_start, parse_id_list, to_decimal

# Class pricing models
PRICING_INCLUDED_IN_MEMBERSHIP = "included_in_membership"
PRICING_CLASS_PACK_ONLY = "class_pack_only"
PRICING_PAY_PER_ENTRY = "pay_per_entry"
PRICING_HYBRID = "hybrid"

PRICING_MODELS = (
    PRICING_INCLUDED_IN_MEMBERSHIP,
    PRICING_CLASS_PACK_ONLY,
    PRICING_PAY_PER_ENTRY,
    PRICING_HYBRID,
)

# Booking payment sources
SOURCE_MEMBERSHIP = "membership_included"
SOURCE_CLASS_PACK = "class_pack"
SOURCE_PAY_PER_ENTRY = "pay_per_entry"
SOURCE_COMPLIMENTARY = "complimentary"

PAYMENT_SOURCES = (
    SOURCE_MEMBERSHIP,
    SOURCE_CLASS_PACK,
    SOURCE_PAY_PER_ENTRY,
    SOURCE_COMPLIMENTARY,
)

# Class pack allocation modes
ALLOCATION_FLAT = "flat"
ALLOCATION_PER_CATEGORY = "per_category"

CENTS = Decimal("0.01")


def accepts_membership_credits(gym_class: dict) -> bool:
    return gym_class["pricing_model"] in (PRICING_INCLUDED_IN_MEMBERSHIP, PRICING_HYBRID)


def accepts_class_pack_credits(gym_class: dict) -> bool:
    return gym_class["pricing_model"] in (PRICING_CLASS_PACK_ONLY, PRICING_HYBRID)


def accepts_pay_per_entry(gym_class: dict) -> bool:
    return gym_class["pricing_model"] in (PRICING_PAY_PER_ENTRY, PRICING_HYBRID)


def validate_pricing_configuration(pricing_model: str, drop_in_price) -> None:
    if pricing_model not in PRICING_MODELS:
        raise InvalidRequestError("INVALID_PRICING_MODEL", f"Unknown pricing model: {pricing_model}")

    if pricing_model in (PRICING_PAY_PER_ENTRY, PRICING_HYBRID):
        price = to_decimal(drop_in_price)
        if price is None:
            raise InvalidRequestError(
                "DROP_IN_PRICE_REQUIRED",
                f"Drop-in price is required for {pricing_model} pricing model",
            )
        if price <= 0:
            raise InvalidRequestError("INVALID_DROP_IN_PRICE", "Drop-in price must be positive")


def price_with_tax(amount, tax_rate) -> Decimal:
    """Amount plus tax, tax rounded HALF_UP to 2 decimals."""
    amount = to_decimal(amount)
    rate = to_decimal(tax_rate) or Decimal("0")
    tax = (amount * rate / Decimal("100")).quantize(CENTS, rounding=ROUND_HALF_UP)
    return (amount + tax).quantize(CENTS, rounding=ROUND_HALF_UP)


def drop_in_price_with_tax(gym_class: dict) -> Optional[Decimal]:
    price = gym_class.get("drop_in_price")
    if price is None:
        return None
    return price_with_tax(price, gym_class.get("tax_rate"))


def is_late_cancellation(session: dict, gym_class: dict, now: Optional[datetime] = None) -> bool:
    """A cancellation is late once we are past session start minus the deadline."""
    now = now or datetime.now()
    deadline_hours = gym_class.get("cancellation_deadline_hours") or 0
    deadline = session_start(session) - timedelta(hours=deadline_hours)
    return now > deadline


def within_booking_window(session: dict, gym_class: dict, now: Optional[datetime] = None) -> bool:
    """Sessions open for booking N days ahead and close once they have started."""
    now = now or datetime.now()
    advance_days = gym_class.get("advance_booking_days")
    if advance_days is None:
        advance_days = 7
    if session["session_date"] > now.date() + timedelta(days=advance_days):
        return False
    return now < session_start(session)


def pack_valid_for_class(class_pack: dict, gym_class: dict) -> bool:
    """Flat packs may be limited to a list of gym classes; empty means any class."""
    if class_pack.get("allocation_mode") == ALLOCATION_PER_CATEGORY:
        return gym_class.get("category_id") is not None
    valid_ids = parse_id_list(class_pack.get("valid_class_ids"))
    return not valid_ids or gym_class["id"] in valid_ids
