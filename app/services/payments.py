"""
Payment Source Resolver

Decides how a booking is paid for and performs the single debit made at
booking time. resolve_source() only validates and returns a plan; apply_debit()
takes the unit and reports whether a membership quota was used, which the
booking records as class_deducted so that refund_debit() only gives back
what was taken.
"""
import logging
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from app.errors import InvalidRequestError, ForbiddenError, NotFoundError
from app.services import capacity, credits, pricing
from app.services.class_packs import (
    get_balance_row,
    get_category_balance_row,
    save_balance,
    usable_balances_for_class,
)
from app.services.pricing import (
    SOURCE_MEMBERSHIP,
    SOURCE_CLASS_PACK,
    SOURCE_PAY_PER_ENTRY,
    SOURCE_COMPLIMENTARY,
    PAYMENT_SOURCES,
    ALLOCATION_PER_CATEGORY,
)

logger = logging.getLogger(__name__)

ACCESS_MEMBERS_ONLY = "members_only"
ACCESS_OPEN_TO_ALL = "open_to_all"


def _invalid(message: str, error_code: str = "PAYMENT_SOURCE_INVALID"):
    return InvalidRequestError(error_code, message)


def get_active_subscription(cursor, tenant_id: int, member_id: int, for_update: bool = False,
                            today: Optional[date] = None) -> Optional[dict]:
    today = today or date.today()
    lock = " FOR UPDATE" if for_update else ""
    cursor.execute(
        f"""
        SELECT * FROM member_subscriptions
        WHERE tenant_id = %s AND member_id = %s AND status = 'active'
          AND start_date <= %s
          AND (end_date IS NULL OR end_date >= %s)
        ORDER BY end_date IS NULL DESC, end_date DESC, id DESC
        LIMIT 1{lock}
        """,
        (tenant_id, member_id, today, today),
    )
    return cursor.fetchone()


def _deducts_from_quota(gym_class: dict, subscription: dict) -> bool:
    return bool(gym_class.get("deducts_class_from_plan")) and subscription.get("classes_remaining") is not None


def resolve_source(
    cursor,
    tenant_id: int,
    member_id: int,
    gym_class: dict,
    payment_source: str,
    class_pack_balance_id: Optional[int] = None,
    allow_complimentary: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """
    Validate that payment_source can pay for one session of gym_class.

    Rows that will be debited are locked. Returns the debit plan stored on
    the booking.
    """
    now = now or datetime.now()
    plan = {
        "payment_source": payment_source,
        "subscription_id": None,
        "class_pack_balance_id": None,
        "category_balance_id": None,
        "paid_amount": None,
    }

    if payment_source not in PAYMENT_SOURCES:
        raise _invalid(f"Unknown payment source: {payment_source}")

    if payment_source == SOURCE_COMPLIMENTARY:
        if not allow_complimentary:
            raise ForbiddenError("PERMISSION_DENIED", "Only staff can book complimentary classes")
        return plan

    subscription = get_active_subscription(
        cursor, tenant_id, member_id, for_update=payment_source == SOURCE_MEMBERSHIP, today=now.date()
    )
    if gym_class.get("access_policy", ACCESS_MEMBERS_ONLY) == ACCESS_MEMBERS_ONLY and not subscription:
        raise _invalid("This class is only open to members with an active membership", "MEMBERSHIP_REQUIRED")

    if payment_source == SOURCE_MEMBERSHIP:
        if not pricing.accepts_membership_credits(gym_class):
            raise _invalid("This class is not included in memberships")
        if not subscription:
            raise _invalid("No active membership found")
        if _deducts_from_quota(gym_class, subscription) and subscription["classes_remaining"] <= 0:
            raise _invalid("No classes remaining on your membership")
        plan["subscription_id"] = subscription["id"]
        return plan

    if payment_source == SOURCE_CLASS_PACK:
        if not pricing.accepts_class_pack_credits(gym_class):
            raise _invalid("This class cannot be booked with a class pack")
        if not class_pack_balance_id:
            raise _invalid("class_pack_balance_id is required for class pack bookings")

        try:
            balance = get_balance_row(cursor, tenant_id, class_pack_balance_id, for_update=True)
        except NotFoundError:
            raise _invalid("Class pack balance not found")
        if balance["member_id"] != member_id:
            raise _invalid("Class pack balance belongs to another member")
        if not credits.can_use_credit(balance, now):
            raise _invalid("Class pack balance is expired or has no credits left")

        cursor.execute(
            "SELECT allocation_mode, valid_class_ids FROM class_packs WHERE id = %s",
            (balance["class_pack_id"],),
        )
        class_pack = cursor.fetchone()
        if not class_pack or not pricing.pack_valid_for_class(class_pack, gym_class):
            raise _invalid("Class pack is not valid for this class")

        if class_pack["allocation_mode"] == ALLOCATION_PER_CATEGORY:
            category = get_category_balance_row(cursor, balance["id"], gym_class["category_id"], for_update=True)
            if not category or category["credits_remaining"] <= 0:
                raise _invalid("No credits left for this class category")
            plan["category_balance_id"] = category["id"]

        plan["class_pack_balance_id"] = balance["id"]
        return plan

    # pay per entry
    if not pricing.accepts_pay_per_entry(gym_class):
        raise _invalid("This class does not accept drop-in payment")
    amount = pricing.drop_in_price_with_tax(gym_class)
    if amount is None:
        raise _invalid("This class has no drop-in price")
    plan["paid_amount"] = amount
    return plan


def apply_debit(cursor, tenant_id: int, gym_class: dict, plan: dict) -> bool:
    """Take exactly one unit from the source chosen in the plan. True when membership quota was used."""
    source = plan["payment_source"]

    if source == SOURCE_MEMBERSHIP:
        cursor.execute(
            "SELECT * FROM member_subscriptions WHERE id = %s FOR UPDATE",
            (plan["subscription_id"],),
        )
        subscription = cursor.fetchone()
        if subscription and _deducts_from_quota(gym_class, subscription):
            cursor.execute(
                """
                UPDATE member_subscriptions
                SET classes_remaining = classes_remaining - 1, updated_at = %s
                WHERE id = %s
                """,
                (datetime.now(), subscription["id"]),
            )
            logger.info(
                f"Membership #{subscription['id']} quota used, {subscription['classes_remaining'] - 1} left"
            )
            return True
        return False

    if source == SOURCE_CLASS_PACK:
        balance = get_balance_row(cursor, tenant_id, plan["class_pack_balance_id"], for_update=True)
        credits.use_credit(balance)
        save_balance(cursor, balance)
        if plan.get("category_balance_id"):
            cursor.execute(
                """
                UPDATE member_category_balances
                SET credits_remaining = credits_remaining - 1
                WHERE id = %s AND credits_remaining > 0
                """,
                (plan["category_balance_id"],),
            )
        logger.info(f"Class pack balance #{balance['id']} debited, {balance['classes_remaining']} left")
        return False

    if source == SOURCE_PAY_PER_ENTRY:
        logger.info(f"Drop-in charge recorded: {plan['paid_amount']}")
    return False


def refund_debit(cursor, tenant_id: int, booking: dict) -> None:
    """Reverse the debit recorded on a booking."""
    source = booking["payment_source"]

    if source == SOURCE_MEMBERSHIP and booking.get("subscription_id") and booking.get("class_deducted"):
        cursor.execute(
            """
            UPDATE member_subscriptions
            SET classes_remaining = classes_remaining + 1, updated_at = %s
            WHERE id = %s AND classes_remaining IS NOT NULL
            """,
            (datetime.now(), booking["subscription_id"]),
        )
        if cursor.rowcount:
            logger.info(f"Membership #{booking['subscription_id']} quota refunded for booking #{booking['id']}")
        return

    if source == SOURCE_CLASS_PACK and booking.get("class_pack_balance_id"):
        balance = get_balance_row(cursor, tenant_id, booking["class_pack_balance_id"], for_update=True)
        credits.refund_credit(balance)
        save_balance(cursor, balance)
        if booking.get("category_balance_id"):
            cursor.execute(
                """
                UPDATE member_category_balances
                SET credits_remaining = credits_remaining + 1
                WHERE id = %s AND credits_remaining < credits_allocated
                """,
                (booking["category_balance_id"],),
            )
        logger.info(f"Class pack credit refunded to balance #{balance['id']} for booking #{booking['id']}")
        return

    if source == SOURCE_PAY_PER_ENTRY and booking.get("paid_amount"):
        logger.info(f"Booking #{booking['id']} cancelled in time, drop-in amount {booking['paid_amount']} is refundable")


def booking_options(cursor, tenant_id: int, session: dict, gym_class: dict, member_id: int,
                    now: Optional[datetime] = None) -> dict:
    """What the member can use to pay for this session, and whether it is bookable at all."""
    now = now or datetime.now()
    options = {
        "session_id": session["id"],
        "can_book": True,
        "reason": None,
        "available_spots": capacity.available_spots(session),
        "will_be_waitlisted": not capacity.has_available_spots(session),
        "membership": None,
        "class_packs": [],
        "pay_per_entry": None,
    }

    if session["status"] != capacity.SESSION_SCHEDULED:
        options.update(can_book=False, reason=f"Session is {session['status']}")
    elif not pricing.within_booking_window(session, gym_class, now):
        options.update(can_book=False, reason="Session is outside the booking window")
    elif not capacity.has_available_spots(session) and not capacity.can_join_waitlist(session, gym_class):
        options.update(can_book=False, reason="Session is full")
    else:
        cursor.execute(
            """
            SELECT id FROM class_bookings
            WHERE session_id = %s AND member_id = %s AND status IN (%s, %s)
            """,
            (session["id"], member_id, capacity.BOOKING_CONFIRMED, capacity.BOOKING_WAITLISTED),
        )
        if cursor.fetchone():
            options.update(can_book=False, reason="Already booked")

    subscription = get_active_subscription(cursor, tenant_id, member_id, today=now.date())
    if pricing.accepts_membership_credits(gym_class) and subscription:
        remaining = subscription.get("classes_remaining") if _deducts_from_quota(gym_class, subscription) else None
        options["membership"] = {
            "subscription_id": subscription["id"],
            "plan_name": subscription.get("plan_name"),
            "classes_remaining": remaining,
            "available": remaining is None or remaining > 0,
        }

    if pricing.accepts_class_pack_credits(gym_class):
        options["class_packs"] = [
            {
                "balance_id": balance["id"],
                "class_pack_name": balance["class_pack_name"],
                "classes_remaining": balance["classes_remaining"],
                "expires_at": balance["expires_at"],
            }
            for balance in usable_balances_for_class(cursor, tenant_id, member_id, gym_class, now)
        ]

    if pricing.accepts_pay_per_entry(gym_class) and gym_class.get("drop_in_price") is not None:
        options["pay_per_entry"] = {
            "price": Decimal(gym_class["drop_in_price"]),
            "tax_rate": gym_class.get("tax_rate"),
            "total": pricing.drop_in_price_with_tax(gym_class),
            "currency": gym_class.get("currency"),
        }

    if (
        options["can_book"]
        and gym_class.get("access_policy", ACCESS_MEMBERS_ONLY) == ACCESS_MEMBERS_ONLY
        and not subscription
    ):
        options.update(can_book=False, reason="An active membership is required")

    return options
