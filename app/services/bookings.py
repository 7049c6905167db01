"""
Booking Ledger - create, cancel, check in and close out member bookings.

Every operation that moves seats locks the session row first and the booking
row second, so concurrent requests against one session run one at a time.
"""
import logging
from datetime import datetime, date
from typing import Optional, List, Callable

from app.errors import ServiceError, NotFoundError, ConflictError, ForbiddenError, InvalidRequestError
from app.services import capacity, payments, pricing
from app.services.capacity import (
    BOOKING_CONFIRMED,
    BOOKING_WAITLISTED,
    BOOKING_CANCELLED,
    BOOKING_CHECKED_IN,
    BOOKING_NO_SHOW,
)
from app.services.sessions import (
    get_session_row,
    get_gym_class_row,
    save_session_counters,
    fill_from_waitlist,
    renumber_session_waitlist,
    waitlisted_bookings,
)
from app.utils.helpers import insert_row, update_row

logger = logging.getLogger(__name__)

BOOKING_SELECT = """
    SELECT b.*, s.session_date, s.start_time, s.end_time, s.gym_class_id,
           s.status AS session_status, gc.name AS class_name,
           m.first_name AS member_first_name, m.last_name AS member_last_name
    FROM class_bookings b
    JOIN class_sessions s ON s.id = b.session_id
    JOIN gym_classes gc ON gc.id = s.gym_class_id
    JOIN members m ON m.id = b.member_id
"""


# ============== Row helpers ==============

def get_booking_row(cursor, tenant_id: int, booking_id: int, for_update: bool = False) -> dict:
    lock = " FOR UPDATE" if for_update else ""
    cursor.execute(
        f"SELECT * FROM class_bookings WHERE id = %s AND tenant_id = %s{lock}",
        (booking_id, tenant_id),
    )
    booking = cursor.fetchone()
    if not booking:
        raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found")
    return booking


def _booking_detail(cursor, tenant_id: int, booking_id: int) -> dict:
    cursor.execute(BOOKING_SELECT + " WHERE b.id = %s AND b.tenant_id = %s", (booking_id, tenant_id))
    booking = cursor.fetchone()
    if not booking:
        raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found")
    return booking


def _lock_for_booking(cursor, tenant_id: int, booking_id: int):
    """Session lock first, then the booking."""
    booking = get_booking_row(cursor, tenant_id, booking_id)
    session = get_session_row(cursor, tenant_id, booking["session_id"], for_update=True)
    booking = get_booking_row(cursor, tenant_id, booking_id, for_update=True)
    return session, booking


def _ensure_member(cursor, tenant_id: int, member_id: int) -> dict:
    cursor.execute(
        "SELECT id, status FROM members WHERE id = %s AND tenant_id = %s",
        (member_id, tenant_id),
    )
    member = cursor.fetchone()
    if not member:
        raise NotFoundError("MEMBER_NOT_FOUND", "Member not found")
    return member


def _ensure_not_booked(cursor, session: dict, member_id: int) -> None:
    cursor.execute(
        """
        SELECT id FROM class_bookings
        WHERE session_id = %s AND member_id = %s AND status IN (%s, %s)
        FOR UPDATE
        """,
        (session["id"], member_id, BOOKING_CONFIRMED, BOOKING_WAITLISTED),
    )
    if cursor.fetchone():
        raise ConflictError("ALREADY_BOOKED", "Member already has a booking for this session")


def _ensure_no_overlap(cursor, session: dict, member_id: int) -> None:
    cursor.execute(
        """
        SELECT b.id FROM class_bookings b
        JOIN class_sessions s ON s.id = b.session_id
        WHERE b.member_id = %s AND b.status IN (%s, %s)
          AND s.id != %s AND s.session_date = %s
          AND s.start_time < %s AND s.end_time > %s
        LIMIT 1
        """,
        (
            member_id, BOOKING_CONFIRMED, BOOKING_WAITLISTED,
            session["id"], session["session_date"],
            session["end_time"], session["start_time"],
        ),
    )
    if cursor.fetchone():
        raise ConflictError("OVERLAPPING_BOOKING", "Member already has a booking at this time")


# ============== Create ==============

def _create(cursor, tenant_id: int, session_id: int, member_id: int, payment_source: str,
            class_pack_balance_id: Optional[int], order_id: Optional[str], notes: Optional[str],
            booked_by: Optional[int], allow_complimentary: bool, enforce_booking_window: bool) -> int:
    now = datetime.now()
    session = get_session_row(cursor, tenant_id, session_id, for_update=True)
    gym_class = get_gym_class_row(cursor, tenant_id, session["gym_class_id"])
    _ensure_member(cursor, tenant_id, member_id)

    capacity.ensure_bookable(session)
    if enforce_booking_window and not pricing.within_booking_window(session, gym_class, now):
        raise InvalidRequestError("OUTSIDE_BOOKING_WINDOW", "Session is not open for booking yet or has passed")

    _ensure_not_booked(cursor, session, member_id)
    _ensure_no_overlap(cursor, session, member_id)

    plan = payments.resolve_source(
        cursor, tenant_id, member_id, gym_class, payment_source,
        class_pack_balance_id=class_pack_balance_id,
        allow_complimentary=allow_complimentary,
        now=now,
    )
    status, waitlist_position = capacity.allocate(session, gym_class)
    class_deducted = payments.apply_debit(cursor, tenant_id, gym_class, plan)

    booking_id = insert_row(cursor, "class_bookings", {
        "tenant_id": tenant_id,
        "session_id": session_id,
        "member_id": member_id,
        "status": status,
        "payment_source": plan["payment_source"],
        "waitlist_position": waitlist_position,
        "subscription_id": plan["subscription_id"],
        "class_deducted": class_deducted,
        "class_pack_balance_id": plan["class_pack_balance_id"],
        "category_balance_id": plan["category_balance_id"],
        "paid_amount": plan["paid_amount"],
        "order_id": order_id,
        "notes": notes,
        "booked_by": booked_by,
        "booked_at": now,
        "created_at": now,
    })
    save_session_counters(cursor, session)

    logger.info(
        f"Booking #{booking_id} {status} for member #{member_id} on session #{session_id} "
        f"via {plan['payment_source']}"
    )
    return booking_id


def create_booking(
    conn,
    tenant_id: int,
    session_id: int,
    member_id: int,
    payment_source: str,
    class_pack_balance_id: Optional[int] = None,
    order_id: Optional[str] = None,
    notes: Optional[str] = None,
    booked_by: Optional[int] = None,
    allow_complimentary: bool = False,
    enforce_booking_window: bool = True,
) -> dict:
    """
    Book a member into a session.

    The seat is confirmed while booked_count < capacity, otherwise the
    booking joins the waitlist. Exactly one debit is taken from the chosen
    payment source.
    """
    cursor = conn.cursor(dictionary=True)
    try:
        booking_id = _create(
            cursor, tenant_id, session_id, member_id, payment_source,
            class_pack_balance_id, order_id, notes, booked_by,
            allow_complimentary, enforce_booking_window,
        )
        return _booking_detail(cursor, tenant_id, booking_id)
    finally:
        cursor.close()


# ============== Cancel ==============

def _cancel(cursor, tenant_id: int, booking_id: int, reason: Optional[str],
            actor_member_id: Optional[int], now: datetime) -> dict:
    session, booking = _lock_for_booking(cursor, tenant_id, booking_id)

    if actor_member_id is not None and booking["member_id"] != actor_member_id:
        raise ForbiddenError("PERMISSION_DENIED", "You can only cancel your own bookings")
    capacity.ensure_booking_transition(booking, "cancel")

    gym_class = get_gym_class_row(cursor, tenant_id, session["gym_class_id"])
    previous_status = booking["status"]
    late = previous_status == BOOKING_CONFIRMED and pricing.is_late_cancellation(session, gym_class, now)

    values = {
        "status": BOOKING_CANCELLED,
        "waitlist_position": None,
        "cancellation_reason": reason,
        "cancelled_at": now,
        "is_late_cancellation": late,
        "updated_at": now,
    }
    if late:
        values["late_cancellation_fee"] = gym_class.get("late_cancellation_fee")
        logger.info(f"Booking #{booking_id} cancelled late, debit kept")
    else:
        payments.refund_debit(cursor, tenant_id, booking)
    update_row(cursor, "class_bookings", booking_id, values)

    promoted = []
    if capacity.release(session, previous_status):
        promoted = fill_from_waitlist(cursor, session, now)
    else:
        renumber_session_waitlist(cursor, waitlisted_bookings(cursor, session["id"], for_update=True))
    save_session_counters(cursor, session)

    logger.info(f"Booking #{booking_id} cancelled ({previous_status}) on session #{session['id']}")
    return {
        "booking_id": booking_id,
        "promoted_booking_id": promoted[0]["id"] if promoted else None,
    }


def cancel_booking(conn, tenant_id: int, booking_id: int, reason: Optional[str] = None,
                   actor_member_id: Optional[int] = None) -> dict:
    """
    Cancel a confirmed or waitlisted booking.

    actor_member_id restricts the cancellation to the member's own booking.
    Returns {"booking": ..., "promoted_booking": ... or None}.
    """
    cursor = conn.cursor(dictionary=True)
    try:
        result = _cancel(cursor, tenant_id, booking_id, reason, actor_member_id, datetime.now())
        promoted = None
        if result["promoted_booking_id"]:
            promoted = _booking_detail(cursor, tenant_id, result["promoted_booking_id"])
        return {
            "booking": _booking_detail(cursor, tenant_id, booking_id),
            "promoted_booking": promoted,
        }
    finally:
        cursor.close()


# ============== Check-in / no-show / delete ==============

def _check_in(cursor, tenant_id: int, booking_id: int, now: datetime) -> None:
    session, booking = _lock_for_booking(cursor, tenant_id, booking_id)
    capacity.ensure_booking_transition(booking, "check_in")
    capacity.ensure_session_transition(session, "check_in")

    update_row(cursor, "class_bookings", booking_id, {
        "status": BOOKING_CHECKED_IN,
        "checked_in_at": now,
        "updated_at": now,
    })
    session["checked_in_count"] += 1
    save_session_counters(cursor, session)
    logger.info(f"Booking #{booking_id} checked in on session #{session['id']}")


def check_in_booking(conn, tenant_id: int, booking_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        _check_in(cursor, tenant_id, booking_id, datetime.now())
        return _booking_detail(cursor, tenant_id, booking_id)
    finally:
        cursor.close()


def mark_no_show(conn, tenant_id: int, booking_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        booking = get_booking_row(cursor, tenant_id, booking_id, for_update=True)
        capacity.ensure_booking_transition(booking, "no_show")
        update_row(cursor, "class_bookings", booking_id, {
            "status": BOOKING_NO_SHOW,
            "updated_at": datetime.now(),
        })
        logger.info(f"Booking #{booking_id} marked as no-show")
        return _booking_detail(cursor, tenant_id, booking_id)
    finally:
        cursor.close()


def delete_booking(conn, tenant_id: int, booking_id: int) -> None:
    cursor = conn.cursor(dictionary=True)
    try:
        booking = get_booking_row(cursor, tenant_id, booking_id, for_update=True)
        capacity.ensure_booking_transition(booking, "delete")
        cursor.execute("DELETE FROM class_bookings WHERE id = %s", (booking_id,))
        logger.info(f"Booking #{booking_id} ({booking['status']}) deleted")
    finally:
        cursor.close()


# ============== Reads ==============

def get_booking(conn, tenant_id: int, booking_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        return _booking_detail(cursor, tenant_id, booking_id)
    finally:
        cursor.close()


def list_session_bookings(conn, tenant_id: int, session_id: int, view: str = "all") -> List[dict]:
    """view: all | confirmed | waitlist"""
    cursor = conn.cursor(dictionary=True)
    try:
        get_session_row(cursor, tenant_id, session_id)
        query = BOOKING_SELECT + " WHERE b.session_id = %s AND b.tenant_id = %s"
        params = [session_id, tenant_id]

        if view == "confirmed":
            query += " AND b.status = %s ORDER BY b.created_at ASC, b.id ASC"
            params.append(BOOKING_CONFIRMED)
        elif view == "waitlist":
            query += " AND b.status = %s ORDER BY b.waitlist_position ASC, b.created_at ASC"
            params.append(BOOKING_WAITLISTED)
        else:
            query += " ORDER BY b.created_at ASC, b.id ASC"

        cursor.execute(query, params)
        return list(cursor.fetchall())
    finally:
        cursor.close()


def count_session_bookings(conn, tenant_id: int, session_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        get_session_row(cursor, tenant_id, session_id)
        cursor.execute(
            """
            SELECT status, COUNT(*) AS total FROM class_bookings
            WHERE session_id = %s
            GROUP BY status
            """,
            (session_id,),
        )
        counts = {
            status: 0
            for status in (BOOKING_CONFIRMED, BOOKING_WAITLISTED, BOOKING_CANCELLED, BOOKING_CHECKED_IN, BOOKING_NO_SHOW)
        }
        for row in cursor.fetchall():
            counts[row["status"]] = row["total"]
        return counts
    finally:
        cursor.close()


def list_member_bookings(conn, tenant_id: int, member_id: int, scope: str = "all",
                         status: Optional[str] = None, page: int = 1, limit: int = 20):
    """scope: all | upcoming | past"""
    cursor = conn.cursor(dictionary=True)
    try:
        where_clause = "WHERE b.tenant_id = %s AND b.member_id = %s"
        params = [tenant_id, member_id]
        order = "s.session_date DESC, s.start_time DESC"

        today = date.today()
        if scope == "upcoming":
            where_clause += " AND s.session_date >= %s AND b.status IN (%s, %s)"
            params += [today, BOOKING_CONFIRMED, BOOKING_WAITLISTED]
            order = "s.session_date ASC, s.start_time ASC"
        elif scope == "past":
            where_clause += " AND s.session_date < %s"
            params.append(today)
        if status:
            where_clause += " AND b.status = %s"
            params.append(status)

        cursor.execute(
            f"""
            SELECT COUNT(*) AS total FROM class_bookings b
            JOIN class_sessions s ON s.id = b.session_id
            {where_clause}
            """,
            params,
        )
        total = cursor.fetchone()["total"]

        cursor.execute(
            BOOKING_SELECT + f" {where_clause} ORDER BY {order} LIMIT %s OFFSET %s",
            params + [limit, (page - 1) * limit],
        )
        return list(cursor.fetchall()), total
    finally:
        cursor.close()


# ============== Bulk ==============

def _run_bulk(conn, items: list, action: Callable) -> List[dict]:
    """
    Run action(cursor, item) for each item inside its own savepoint. A
    ServiceError rolls back that item only; anything else aborts the batch.
    """
    results = []
    cursor = conn.cursor(dictionary=True)
    try:
        for index, item in enumerate(items):
            savepoint = f"bulk_item_{index}"
            conn.savepoint(savepoint)
            try:
                data = action(cursor, item)
                conn.release_savepoint(savepoint)
                results.append({"id": item, "success": True, "data": data})
            except ServiceError as e:
                conn.rollback_to_savepoint(savepoint)
                results.append({"id": item, "success": False, "error": e.to_detail()})
        return results
    finally:
        cursor.close()


def bulk_create_bookings(conn, tenant_id: int, session_id: int, member_ids: List[int], payment_source: str,
                         booked_by: Optional[int] = None, allow_complimentary: bool = False) -> List[dict]:
    def book(cursor, member_id):
        booking_id = _create(
            cursor, tenant_id, session_id, member_id, payment_source,
            None, None, None, booked_by, allow_complimentary, False,
        )
        booking = get_booking_row(cursor, tenant_id, booking_id)
        return {"booking_id": booking_id, "status": booking["status"]}

    return _run_bulk(conn, member_ids, book)


def bulk_cancel_bookings(conn, tenant_id: int, booking_ids: List[int], reason: Optional[str] = None) -> List[dict]:
    now = datetime.now()
    return _run_bulk(conn, booking_ids, lambda cursor, booking_id: _cancel(cursor, tenant_id, booking_id, reason, None, now))


def bulk_check_in(conn, tenant_id: int, booking_ids: List[int]) -> List[dict]:
    now = datetime.now()

    def check_in(cursor, booking_id):
        _check_in(cursor, tenant_id, booking_id, now)
        return {"booking_id": booking_id, "status": BOOKING_CHECKED_IN}

    return _run_bulk(conn, booking_ids, check_in)


def mark_session_no_shows(conn, tenant_id: int, session_id: int) -> int:
    """Confirmed bookings of a completed session become no-shows."""
    cursor = conn.cursor(dictionary=True)
    try:
        session = get_session_row(cursor, tenant_id, session_id, for_update=True)
        if session["status"] != capacity.SESSION_COMPLETED:
            raise ConflictError("INVALID_SESSION_STATE", "No-shows can only be recorded for completed sessions")
        cursor.execute(
            """
            UPDATE class_bookings SET status = %s, updated_at = %s
            WHERE session_id = %s AND status = %s
            """,
            (BOOKING_NO_SHOW, datetime.now(), session_id, BOOKING_CONFIRMED),
        )
        marked = cursor.rowcount
        logger.info(f"Session #{session_id}: {marked} bookings marked as no-show")
        return marked
    finally:
        cursor.close()


def get_booking_options(conn, tenant_id: int, session_id: int, member_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        session = get_session_row(cursor, tenant_id, session_id)
        gym_class = get_gym_class_row(cursor, tenant_id, session["gym_class_id"])
        _ensure_member(cursor, tenant_id, member_id)
        return payments.booking_options(cursor, tenant_id, session, gym_class, member_id)
    finally:
        cursor.close()
