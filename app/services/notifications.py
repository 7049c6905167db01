"""
Booking notifications.

These run as FastAPI background tasks after the request has committed, so
each one opens its own connection. A failed notification is logged and
never reaches the caller.
"""
import logging
from typing import List, Optional

from app.db import get_db_connection
from app.utils.email import (
    send_booking_confirmation,
    send_booking_cancelled,
    send_waitlist_promotion,
    send_session_cancelled,
)
from app.utils.helpers import to_time

logger = logging.getLogger(__name__)


def _load_bookings(booking_ids: List[int]) -> List[dict]:
    if not booking_ids:
        return []
    conn = get_db_connection()
    cursor = conn.cursor(dictionary=True)
    try:
        placeholders = ", ".join(["%s"] * len(booking_ids))
        cursor.execute(
            f"""
            SELECT b.id, b.status, b.waitlist_position,
                   b.is_late_cancellation, b.late_cancellation_fee,
                   s.session_date, s.start_time, s.cancellation_reason,
                   gc.name AS class_name,
                   m.first_name, m.email
            FROM class_bookings b
            JOIN class_sessions s ON s.id = b.session_id
            JOIN gym_classes gc ON gc.id = s.gym_class_id
            JOIN members m ON m.id = b.member_id
            WHERE b.id IN ({placeholders})
            """,
            booking_ids,
        )
        return [row for row in cursor.fetchall() if row.get("email")]
    finally:
        cursor.close()
        conn.close()


def _format(row: dict) -> dict:
    return {
        "to_email": row["email"],
        "member_name": row["first_name"],
        "class_name": row["class_name"],
        "session_date": row["session_date"].strftime("%A, %d %B %Y"),
        "start_time": to_time(row["start_time"]).strftime("%H:%M"),
    }


def notify_booking_created(booking_id: int) -> None:
    try:
        for row in _load_bookings([booking_id]):
            send_booking_confirmation(waitlist_position=row["waitlist_position"], **_format(row))
    except Exception as e:
        logger.error(f"Booking confirmation for #{booking_id} failed: {e}", exc_info=True)


def notify_booking_cancelled(booking_id: int) -> None:
    try:
        for row in _load_bookings([booking_id]):
            send_booking_cancelled(
                is_late=bool(row["is_late_cancellation"]),
                late_fee=row["late_cancellation_fee"],
                **_format(row),
            )
    except Exception as e:
        logger.error(f"Cancellation notice for #{booking_id} failed: {e}", exc_info=True)


def notify_waitlist_promoted(booking_id: Optional[int]) -> None:
    if not booking_id:
        return
    try:
        for row in _load_bookings([booking_id]):
            send_waitlist_promotion(**_format(row))
    except Exception as e:
        logger.error(f"Waitlist promotion email for #{booking_id} failed: {e}", exc_info=True)


def notify_session_cancelled(booking_ids: List[int]) -> None:
    try:
        sent = 0
        for row in _load_bookings(booking_ids):
            if send_session_cancelled(reason=row["cancellation_reason"], **_format(row)):
                sent += 1
        logger.info(f"Session cancellation emails: {sent} sent for {len(booking_ids)} bookings")
    except Exception as e:
        logger.error(f"Session cancellation emails failed: {e}", exc_info=True)
