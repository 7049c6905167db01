"""
Session Registry - gym classes, recurring schedules and dated class sessions.
"""
import logging
from datetime import datetime, date, timedelta
from typing import Optional, List

from app.errors import NotFoundError, ConflictError, InvalidRequestError
from app.services import capacity, payments
from app.services.capacity import (
    SESSION_SCHEDULED,
    SESSION_IN_PROGRESS,
    SESSION_COMPLETED,
    SESSION_CANCELLED,
    BOOKING_CONFIRMED,
    BOOKING_WAITLISTED,
    BOOKING_CANCELLED,
    BOOKING_NO_SHOW,
)
from app.services.pricing import validate_pricing_configuration, PRICING_INCLUDED_IN_MEMBERSHIP
from app.utils.audit import log_audit, get_record_for_audit
from app.utils.helpers import insert_row, update_row, to_time, session_end

logger = logging.getLogger(__name__)

CLASS_ACTIVE = "active"
CLASS_INACTIVE = "inactive"
CLASS_ARCHIVED = "archived"

GYM_CLASS_FIELDS = (
    "name",
    "description",
    "location_id",
    "default_trainer_id",
    "category_id",
    "duration_minutes",
    "max_capacity",
    "waitlist_enabled",
    "max_waitlist_size",
    "deducts_class_from_plan",
    "pricing_model",
    "drop_in_price",
    "tax_rate",
    "currency",
    "access_policy",
    "advance_booking_days",
    "cancellation_deadline_hours",
    "late_cancellation_fee",
    "color",
)

SCHEDULE_FIELDS = (
    "trainer_id",
    "location_id",
    "day_of_week",
    "start_time",
    "end_time",
    "capacity",
    "effective_from",
    "effective_until",
)

SESSION_UPDATE_FIELDS = (
    "location_id",
    "trainer_id",
    "session_date",
    "start_time",
    "end_time",
    "capacity",
    "notes",
)


# ============== Row helpers ==============

def get_gym_class_row(cursor, tenant_id: int, gym_class_id: int) -> dict:
    cursor.execute(
        "SELECT * FROM gym_classes WHERE id = %s AND tenant_id = %s",
        (gym_class_id, tenant_id),
    )
    gym_class = cursor.fetchone()
    if not gym_class:
        raise NotFoundError("CLASS_NOT_FOUND", "Gym class not found")
    return gym_class


def get_schedule_row(cursor, tenant_id: int, schedule_id: int) -> dict:
    cursor.execute(
        "SELECT * FROM class_schedules WHERE id = %s AND tenant_id = %s",
        (schedule_id, tenant_id),
    )
    schedule = cursor.fetchone()
    if not schedule:
        raise NotFoundError("SCHEDULE_NOT_FOUND", "Class schedule not found")
    return schedule


def get_session_row(cursor, tenant_id: int, session_id: int, for_update: bool = False) -> dict:
    """Load a session. for_update takes the row lock that serialises counter changes."""
    lock = " FOR UPDATE" if for_update else ""
    cursor.execute(
        f"SELECT * FROM class_sessions WHERE id = %s AND tenant_id = %s{lock}",
        (session_id, tenant_id),
    )
    session = cursor.fetchone()
    if not session:
        raise NotFoundError("SESSION_NOT_FOUND", "Class session not found")
    return session


def save_session_counters(cursor, session: dict) -> None:
    cursor.execute(
        """
        UPDATE class_sessions
        SET booked_count = %s, waitlist_count = %s, checked_in_count = %s, updated_at = %s
        WHERE id = %s
        """,
        (
            session["booked_count"],
            session["waitlist_count"],
            session["checked_in_count"],
            datetime.now(),
            session["id"],
        ),
    )


def _check_times(start_time, end_time) -> None:
    if to_time(end_time) <= to_time(start_time):
        raise InvalidRequestError("INVALID_TIME_RANGE", "End time must be after start time")


def _default_end_time(start_time, duration_minutes: int) -> str:
    start = datetime.combine(date.today(), to_time(start_time))
    return (start + timedelta(minutes=duration_minutes)).strftime("%H:%M:%S")


# ============== Waitlist ==============

def waitlisted_bookings(cursor, session_id: int, for_update: bool = False) -> List[dict]:
    lock = " FOR UPDATE" if for_update else ""
    cursor.execute(
        f"""
        SELECT * FROM class_bookings
        WHERE session_id = %s AND status = %s
        ORDER BY created_at ASC, id ASC{lock}
        """,
        (session_id, BOOKING_WAITLISTED),
    )
    return list(cursor.fetchall())


def renumber_session_waitlist(cursor, bookings: List[dict]) -> None:
    for booking_id, position in capacity.renumber_waitlist(bookings):
        cursor.execute(
            "UPDATE class_bookings SET waitlist_position = %s WHERE id = %s",
            (position, booking_id),
        )


def fill_from_waitlist(cursor, session: dict, now: Optional[datetime] = None) -> List[dict]:
    """
    Promote waitlisted bookings into free seats, earliest first, then close
    the gaps in the remaining positions. The session row must be locked.
    """
    now = now or datetime.now()
    waiting = waitlisted_bookings(cursor, session["id"], for_update=True)
    promoted = []

    while capacity.has_available_spots(session):
        booking = capacity.next_in_waitlist(waiting)
        if booking is None:
            break
        capacity.promote(session, booking)
        booking["promoted_at"] = now
        cursor.execute(
            """
            UPDATE class_bookings
            SET status = %s, waitlist_position = NULL, promoted_at = %s, updated_at = %s
            WHERE id = %s
            """,
            (BOOKING_CONFIRMED, now, now, booking["id"]),
        )
        logger.info(f"Booking #{booking['id']} promoted from waitlist on session #{session['id']}")
        promoted.append(booking)

    renumber_session_waitlist(cursor, waiting)
    return promoted


# ============== Gym classes ==============

def create_gym_class(conn, tenant_id: int, data: dict, user_id: Optional[int] = None) -> dict:
    validate_pricing_configuration(
        data.get("pricing_model") or PRICING_INCLUDED_IN_MEMBERSHIP, data.get("drop_in_price")
    )

    cursor = conn.cursor(dictionary=True)
    try:
        values = {key: data[key] for key in GYM_CLASS_FIELDS if data.get(key) is not None}
        values.update({
            "tenant_id": tenant_id,
            "status": CLASS_ACTIVE,
            "created_at": datetime.now(),
        })
        gym_class_id = insert_row(cursor, "gym_classes", values)
        log_audit(conn, "gym_classes", gym_class_id, "INSERT", user_id, new_data=values, tenant_id=tenant_id)
        logger.info(f"Gym class #{gym_class_id} created for tenant {tenant_id}")
        return get_gym_class_row(cursor, tenant_id, gym_class_id)
    finally:
        cursor.close()


def get_gym_class(conn, tenant_id: int, gym_class_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        gym_class = get_gym_class_row(cursor, tenant_id, gym_class_id)
        cursor.execute(
            "SELECT * FROM class_schedules WHERE gym_class_id = %s ORDER BY day_of_week, start_time",
            (gym_class_id,),
        )
        gym_class["schedules"] = list(cursor.fetchall())
        return gym_class
    finally:
        cursor.close()


def list_gym_classes(
    conn,
    tenant_id: int,
    status: Optional[str] = None,
    location_id: Optional[int] = None,
    trainer_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
):
    cursor = conn.cursor(dictionary=True)
    try:
        where_clause = "WHERE tenant_id = %s"
        params = [tenant_id]
        if status:
            where_clause += " AND status = %s"
            params.append(status)
        if location_id:
            where_clause += " AND location_id = %s"
            params.append(location_id)
        if trainer_id:
            where_clause += " AND default_trainer_id = %s"
            params.append(trainer_id)
        if search:
            where_clause += " AND name LIKE %s"
            params.append(f"%{search}%")

        cursor.execute(f"SELECT COUNT(*) AS total FROM gym_classes {where_clause}", params)
        total = cursor.fetchone()["total"]

        cursor.execute(
            f"""
            SELECT * FROM gym_classes
            {where_clause}
            ORDER BY name ASC
            LIMIT %s OFFSET %s
            """,
            params + [limit, (page - 1) * limit],
        )
        return list(cursor.fetchall()), total
    finally:
        cursor.close()


def update_gym_class(conn, tenant_id: int, gym_class_id: int, data: dict, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        gym_class = get_gym_class_row(cursor, tenant_id, gym_class_id)
        if gym_class["status"] == CLASS_ARCHIVED:
            raise ConflictError("CLASS_ARCHIVED", "Archived classes cannot be changed")

        values = {key: data[key] for key in GYM_CLASS_FIELDS if key in data}
        if "pricing_model" in values or "drop_in_price" in values:
            validate_pricing_configuration(
                values.get("pricing_model", gym_class["pricing_model"]),
                values.get("drop_in_price", gym_class["drop_in_price"]),
            )

        old = get_record_for_audit(conn, "gym_classes", gym_class_id)
        values["updated_at"] = datetime.now()
        update_row(cursor, "gym_classes", gym_class_id, values)
        log_audit(conn, "gym_classes", gym_class_id, "UPDATE", user_id, old_data=old, new_data=values, tenant_id=tenant_id)
        return get_gym_class_row(cursor, tenant_id, gym_class_id)
    finally:
        cursor.close()


def set_gym_class_status(conn, tenant_id: int, gym_class_id: int, new_status: str, user_id: Optional[int] = None) -> dict:
    """activate / deactivate / archive"""
    cursor = conn.cursor(dictionary=True)
    try:
        gym_class = get_gym_class_row(cursor, tenant_id, gym_class_id)
        if gym_class["status"] == CLASS_ARCHIVED and new_status != CLASS_ARCHIVED:
            raise ConflictError("CLASS_ARCHIVED", "Archived classes cannot be reactivated")

        update_row(cursor, "gym_classes", gym_class_id, {"status": new_status, "updated_at": datetime.now()})
        if new_status != CLASS_ACTIVE:
            cursor.execute(
                "UPDATE class_schedules SET is_active = 0, updated_at = %s WHERE gym_class_id = %s",
                (datetime.now(), gym_class_id),
            )

        log_audit(
            conn, "gym_classes", gym_class_id, "UPDATE", user_id,
            old_data={"status": gym_class["status"]}, new_data={"status": new_status}, tenant_id=tenant_id,
        )
        logger.info(f"Gym class #{gym_class_id} {gym_class['status']} -> {new_status}")
        return get_gym_class_row(cursor, tenant_id, gym_class_id)
    finally:
        cursor.close()


# ============== Schedules ==============

def create_schedule(conn, tenant_id: int, gym_class_id: int, data: dict, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        gym_class = get_gym_class_row(cursor, tenant_id, gym_class_id)
        if gym_class["status"] == CLASS_ARCHIVED:
            raise ConflictError("CLASS_ARCHIVED", "Cannot schedule an archived class")

        _check_times(data["start_time"], data["end_time"])
        if data.get("effective_until") and data["effective_until"] < data["effective_from"]:
            raise InvalidRequestError("INVALID_DATE_RANGE", "effective_until must not be before effective_from")

        values = {key: data.get(key) for key in SCHEDULE_FIELDS}
        values.update({
            "tenant_id": tenant_id,
            "gym_class_id": gym_class_id,
            "is_active": True,
            "created_at": datetime.now(),
        })
        schedule_id = insert_row(cursor, "class_schedules", values)
        log_audit(conn, "class_schedules", schedule_id, "INSERT", user_id, new_data=values, tenant_id=tenant_id)
        return get_schedule_row(cursor, tenant_id, schedule_id)
    finally:
        cursor.close()


def list_schedules(conn, tenant_id: int, gym_class_id: int, active_only: bool = False) -> List[dict]:
    cursor = conn.cursor(dictionary=True)
    try:
        get_gym_class_row(cursor, tenant_id, gym_class_id)
        query = "SELECT * FROM class_schedules WHERE gym_class_id = %s"
        if active_only:
            query += " AND is_active = 1"
        cursor.execute(query + " ORDER BY day_of_week, start_time", (gym_class_id,))
        return list(cursor.fetchall())
    finally:
        cursor.close()


def update_schedule(conn, tenant_id: int, schedule_id: int, data: dict, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        schedule = get_schedule_row(cursor, tenant_id, schedule_id)
        values = {key: data[key] for key in SCHEDULE_FIELDS if key in data}
        _check_times(values.get("start_time", schedule["start_time"]), values.get("end_time", schedule["end_time"]))

        old = get_record_for_audit(conn, "class_schedules", schedule_id)
        values["updated_at"] = datetime.now()
        update_row(cursor, "class_schedules", schedule_id, values)
        log_audit(conn, "class_schedules", schedule_id, "UPDATE", user_id, old_data=old, new_data=values, tenant_id=tenant_id)
        return get_schedule_row(cursor, tenant_id, schedule_id)
    finally:
        cursor.close()


def deactivate_schedule(conn, tenant_id: int, schedule_id: int, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        get_schedule_row(cursor, tenant_id, schedule_id)
        update_row(cursor, "class_schedules", schedule_id, {"is_active": False, "updated_at": datetime.now()})
        log_audit(conn, "class_schedules", schedule_id, "UPDATE", user_id, new_data={"is_active": False}, tenant_id=tenant_id)
        return get_schedule_row(cursor, tenant_id, schedule_id)
    finally:
        cursor.close()


def delete_schedule(conn, tenant_id: int, schedule_id: int, user_id: Optional[int] = None) -> None:
    """Sessions already generated from the schedule are kept."""
    cursor = conn.cursor(dictionary=True)
    try:
        schedule = get_schedule_row(cursor, tenant_id, schedule_id)
        cursor.execute("DELETE FROM class_schedules WHERE id = %s", (schedule_id,))
        log_audit(conn, "class_schedules", schedule_id, "DELETE", user_id, old_data=schedule, tenant_id=tenant_id)
    finally:
        cursor.close()


# ============== Sessions ==============

def create_session(conn, tenant_id: int, data: dict, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        gym_class = get_gym_class_row(cursor, tenant_id, data["gym_class_id"])
        if gym_class["status"] != CLASS_ACTIVE:
            raise ConflictError("CLASS_NOT_ACTIVE", "Sessions can only be created for active classes")

        end_time = data.get("end_time") or _default_end_time(data["start_time"], gym_class["duration_minutes"])
        _check_times(data["start_time"], end_time)

        values = {
            "tenant_id": tenant_id,
            "gym_class_id": gym_class["id"],
            "schedule_id": data.get("schedule_id"),
            "location_id": data.get("location_id") or gym_class["location_id"],
            "trainer_id": data.get("trainer_id") or gym_class["default_trainer_id"],
            "session_date": data["session_date"],
            "start_time": data["start_time"],
            "end_time": end_time,
            "capacity": data.get("capacity") or gym_class["max_capacity"],
            "booked_count": 0,
            "waitlist_count": 0,
            "checked_in_count": 0,
            "status": SESSION_SCHEDULED,
            "notes": data.get("notes"),
            "created_at": datetime.now(),
        }
        session_id = insert_row(cursor, "class_sessions", values)
        log_audit(conn, "class_sessions", session_id, "INSERT", user_id, new_data=values, tenant_id=tenant_id)
        logger.info(f"Session #{session_id} created for class #{gym_class['id']} on {data['session_date']}")
        return get_session_row(cursor, tenant_id, session_id)
    finally:
        cursor.close()


def get_session(conn, tenant_id: int, session_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(
            """
            SELECT s.*, gc.name AS class_name, gc.waitlist_enabled, gc.max_waitlist_size
            FROM class_sessions s
            JOIN gym_classes gc ON gc.id = s.gym_class_id
            WHERE s.id = %s AND s.tenant_id = %s
            """,
            (session_id, tenant_id),
        )
        session = cursor.fetchone()
        if not session:
            raise NotFoundError("SESSION_NOT_FOUND", "Class session not found")
        session["available_spots"] = capacity.available_spots(session)
        return session
    finally:
        cursor.close()


def list_sessions(
    conn,
    tenant_id: int,
    gym_class_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: Optional[str] = None,
    location_id: Optional[int] = None,
    trainer_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
):
    cursor = conn.cursor(dictionary=True)
    try:
        where_clause = "WHERE s.tenant_id = %s"
        params = [tenant_id]
        if gym_class_id:
            where_clause += " AND s.gym_class_id = %s"
            params.append(gym_class_id)
        if date_from:
            where_clause += " AND s.session_date >= %s"
            params.append(date_from)
        if date_to:
            where_clause += " AND s.session_date <= %s"
            params.append(date_to)
        if status:
            where_clause += " AND s.status = %s"
            params.append(status)
        if location_id:
            where_clause += " AND s.location_id = %s"
            params.append(location_id)
        if trainer_id:
            where_clause += " AND s.trainer_id = %s"
            params.append(trainer_id)

        cursor.execute(f"SELECT COUNT(*) AS total FROM class_sessions s {where_clause}", params)
        total = cursor.fetchone()["total"]

        cursor.execute(
            f"""
            SELECT s.*, gc.name AS class_name, gc.color
            FROM class_sessions s
            JOIN gym_classes gc ON gc.id = s.gym_class_id
            {where_clause}
            ORDER BY s.session_date ASC, s.start_time ASC
            LIMIT %s OFFSET %s
            """,
            params + [limit, (page - 1) * limit],
        )
        sessions = list(cursor.fetchall())
        for session in sessions:
            session["available_spots"] = capacity.available_spots(session)
        return sessions, total
    finally:
        cursor.close()


def update_session(conn, tenant_id: int, session_id: int, data: dict, user_id: Optional[int] = None) -> dict:
    """
    Edit a scheduled session. Raising the capacity promotes waitlisted
    bookings into the new seats.

    Returns {"session": ..., "promoted_bookings": [...]}.
    """
    cursor = conn.cursor(dictionary=True)
    try:
        session = get_session_row(cursor, tenant_id, session_id, for_update=True)
        capacity.ensure_session_transition(session, "update")

        values = {key: data[key] for key in SESSION_UPDATE_FIELDS if key in data}
        _check_times(values.get("start_time", session["start_time"]), values.get("end_time", session["end_time"]))

        promoted = []
        if "capacity" in values:
            capacity.ensure_capacity_change(session, values["capacity"])
            session["capacity"] = values["capacity"]

        old = get_record_for_audit(conn, "class_sessions", session_id)
        values["updated_at"] = datetime.now()
        update_row(cursor, "class_sessions", session_id, values)

        if "capacity" in values and session["waitlist_count"] > 0:
            promoted = fill_from_waitlist(cursor, session)
            save_session_counters(cursor, session)

        log_audit(conn, "class_sessions", session_id, "UPDATE", user_id, old_data=old, new_data=values, tenant_id=tenant_id)
        return {
            "session": get_session_row(cursor, tenant_id, session_id),
            "promoted_bookings": promoted,
        }
    finally:
        cursor.close()


def start_session(conn, tenant_id: int, session_id: int, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        session = get_session_row(cursor, tenant_id, session_id, for_update=True)
        capacity.ensure_session_transition(session, "start")
        now = datetime.now()
        update_row(cursor, "class_sessions", session_id, {
            "status": SESSION_IN_PROGRESS,
            "started_at": now,
            "updated_at": now,
        })
        log_audit(conn, "class_sessions", session_id, "UPDATE", user_id,
                  old_data={"status": session["status"]}, new_data={"status": SESSION_IN_PROGRESS}, tenant_id=tenant_id)
        logger.info(f"Session #{session_id} started")
        return get_session_row(cursor, tenant_id, session_id)
    finally:
        cursor.close()


def _finish_session(cursor, tenant_id: int, session: dict, now: datetime) -> dict:
    """Confirmed bookings become no-shows; the waitlist is cancelled and refunded."""
    cursor.execute(
        """
        SELECT * FROM class_bookings
        WHERE session_id = %s AND status IN (%s, %s)
        FOR UPDATE
        """,
        (session["id"], BOOKING_CONFIRMED, BOOKING_WAITLISTED),
    )
    no_shows = 0
    released = 0
    for booking in cursor.fetchall():
        if booking["status"] == BOOKING_CONFIRMED:
            cursor.execute(
                "UPDATE class_bookings SET status = %s, updated_at = %s WHERE id = %s",
                (BOOKING_NO_SHOW, now, booking["id"]),
            )
            no_shows += 1
        else:
            payments.refund_debit(cursor, tenant_id, booking)
            cursor.execute(
                """
                UPDATE class_bookings
                SET status = %s, waitlist_position = NULL, cancelled_at = %s,
                    cancellation_reason = %s, updated_at = %s
                WHERE id = %s
                """,
                (BOOKING_CANCELLED, now, "Session completed before promotion", now, booking["id"]),
            )
            capacity.release(session, BOOKING_WAITLISTED)
            released += 1

    update_row(cursor, "class_sessions", session["id"], {
        "status": SESSION_COMPLETED,
        "completed_at": now,
        "updated_at": now,
    })
    save_session_counters(cursor, session)
    logger.info(f"Session #{session['id']} completed: {no_shows} no-shows, {released} waitlisted released")
    return {"no_show_count": no_shows, "waitlist_released": released}


def complete_session(conn, tenant_id: int, session_id: int, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        session = get_session_row(cursor, tenant_id, session_id, for_update=True)
        capacity.ensure_session_transition(session, "complete")
        summary = _finish_session(cursor, tenant_id, session, datetime.now())
        log_audit(conn, "class_sessions", session_id, "UPDATE", user_id,
                  old_data={"status": session["status"]}, new_data={"status": SESSION_COMPLETED}, tenant_id=tenant_id)
        result = get_session_row(cursor, tenant_id, session_id)
        result.update(summary)
        return result
    finally:
        cursor.close()


def cancel_session(conn, tenant_id: int, session_id: int, reason: Optional[str] = None,
                   user_id: Optional[int] = None) -> dict:
    """
    Cancel a session by the club. Every active booking is cancelled and its
    debit refunded regardless of the cancellation deadline.

    Returns {"session": ..., "cancelled_booking_ids": [...]}.
    """
    cursor = conn.cursor(dictionary=True)
    try:
        session = get_session_row(cursor, tenant_id, session_id, for_update=True)
        capacity.ensure_session_transition(session, "cancel")
        now = datetime.now()

        cursor.execute(
            """
            SELECT * FROM class_bookings
            WHERE session_id = %s AND status IN (%s, %s)
            FOR UPDATE
            """,
            (session_id, BOOKING_CONFIRMED, BOOKING_WAITLISTED),
        )
        cancelled_ids = []
        for booking in cursor.fetchall():
            payments.refund_debit(cursor, tenant_id, booking)
            cursor.execute(
                """
                UPDATE class_bookings
                SET status = %s, waitlist_position = NULL, cancelled_at = %s,
                    cancellation_reason = %s, updated_at = %s
                WHERE id = %s
                """,
                (BOOKING_CANCELLED, now, f"Session cancelled: {reason or 'by club'}", now, booking["id"]),
            )
            capacity.release(session, booking["status"])
            cancelled_ids.append(booking["id"])

        update_row(cursor, "class_sessions", session_id, {
            "status": SESSION_CANCELLED,
            "cancellation_reason": reason,
            "cancelled_at": now,
            "updated_at": now,
        })
        save_session_counters(cursor, session)
        log_audit(conn, "class_sessions", session_id, "UPDATE", user_id,
                  old_data={"status": session["status"]},
                  new_data={"status": SESSION_CANCELLED, "cancellation_reason": reason}, tenant_id=tenant_id)
        logger.info(f"Session #{session_id} cancelled, {len(cancelled_ids)} bookings cancelled")

        return {
            "session": get_session_row(cursor, tenant_id, session_id),
            "cancelled_booking_ids": cancelled_ids,
        }
    finally:
        cursor.close()


def delete_session(conn, tenant_id: int, session_id: int, user_id: Optional[int] = None) -> None:
    cursor = conn.cursor(dictionary=True)
    try:
        session = get_session_row(cursor, tenant_id, session_id, for_update=True)
        capacity.ensure_session_transition(session, "delete")

        cursor.execute(
            "SELECT COUNT(*) AS total FROM class_bookings WHERE session_id = %s AND status IN (%s, %s)",
            (session_id, BOOKING_CONFIRMED, BOOKING_WAITLISTED),
        )
        if cursor.fetchone()["total"] > 0:
            raise ConflictError("SESSION_HAS_BOOKINGS", "Cancel the session before deleting it, it still has bookings")

        cursor.execute("DELETE FROM class_bookings WHERE session_id = %s", (session_id,))
        cursor.execute("DELETE FROM class_sessions WHERE id = %s", (session_id,))
        log_audit(conn, "class_sessions", session_id, "DELETE", user_id, old_data=session, tenant_id=tenant_id)
        logger.info(f"Session #{session_id} deleted")
    finally:
        cursor.close()


def generate_sessions(
    conn,
    date_from: date,
    date_to: date,
    tenant_id: Optional[int] = None,
    gym_class_id: Optional[int] = None,
) -> dict:
    """
    Create sessions from active schedules of active classes. Running it
    twice over the same range creates nothing new.

    tenant_id None means every tenant (scheduler job).
    """
    if date_to < date_from:
        raise InvalidRequestError("INVALID_DATE_RANGE", "date_to must not be before date_from")

    cursor = conn.cursor(dictionary=True)
    try:
        query = """
            SELECT cs.*, gc.max_capacity, gc.location_id AS class_location_id,
                   gc.default_trainer_id
            FROM class_schedules cs
            JOIN gym_classes gc ON gc.id = cs.gym_class_id
            WHERE cs.is_active = 1 AND gc.status = %s
        """
        params = [CLASS_ACTIVE]
        if tenant_id is not None:
            query += " AND cs.tenant_id = %s"
            params.append(tenant_id)
        if gym_class_id:
            query += " AND cs.gym_class_id = %s"
            params.append(gym_class_id)
        cursor.execute(query, params)
        schedules = list(cursor.fetchall())

        created = 0
        skipped = 0
        now = datetime.now()
        for schedule in schedules:
            day = max(date_from, schedule["effective_from"])
            last_day = min(date_to, schedule["effective_until"] or date_to)
            while day <= last_day:
                if day.weekday() == schedule["day_of_week"]:
                    cursor.execute(
                        "SELECT id FROM class_sessions WHERE schedule_id = %s AND session_date = %s",
                        (schedule["id"], day),
                    )
                    if cursor.fetchone():
                        skipped += 1
                    else:
                        insert_row(cursor, "class_sessions", {
                            "tenant_id": schedule["tenant_id"],
                            "gym_class_id": schedule["gym_class_id"],
                            "schedule_id": schedule["id"],
                            "location_id": schedule["location_id"] or schedule["class_location_id"],
                            "trainer_id": schedule["trainer_id"] or schedule["default_trainer_id"],
                            "session_date": day,
                            "start_time": schedule["start_time"],
                            "end_time": schedule["end_time"],
                            "capacity": schedule["capacity"] or schedule["max_capacity"],
                            "booked_count": 0,
                            "waitlist_count": 0,
                            "checked_in_count": 0,
                            "status": SESSION_SCHEDULED,
                            "created_at": now,
                        })
                        created += 1
                day += timedelta(days=1)

        logger.info(f"Session generation {date_from}..{date_to}: {created} created, {skipped} already existed")
        return {"created": created, "skipped": skipped, "schedules": len(schedules)}
    finally:
        cursor.close()


def auto_complete_sessions(conn, grace_minutes: int, now: Optional[datetime] = None) -> int:
    """Close sessions that ended more than grace_minutes ago. Runs across tenants."""
    now = now or datetime.now()
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(
            """
            SELECT id, tenant_id FROM class_sessions
            WHERE status IN (%s, %s) AND session_date <= %s
            """,
            (SESSION_SCHEDULED, SESSION_IN_PROGRESS, now.date()),
        )
        candidates = list(cursor.fetchall())

        completed = 0
        for candidate in candidates:
            session = get_session_row(cursor, candidate["tenant_id"], candidate["id"], for_update=True)
            if session["status"] not in (SESSION_SCHEDULED, SESSION_IN_PROGRESS):
                continue
            if session_end(session) + timedelta(minutes=grace_minutes) > now:
                continue
            if session["status"] == SESSION_SCHEDULED:
                update_row(cursor, "class_sessions", session["id"], {"started_at": session_end(session)})
            _finish_session(cursor, session["tenant_id"], session, now)
            completed += 1
        return completed
    finally:
        cursor.close()
