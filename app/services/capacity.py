"""
Capacity Allocator - seat and waitlist rules for class sessions

The functions here work on plain row dicts (as returned by the dictionary
cursor) and mutate the counters in place. Callers load the session row with
SELECT ... FOR UPDATE, apply the rule, then persist the counters.
"""
import logging
from typing import Optional, List, Tuple

from app.errors import ConflictError, InvalidStateError

logger = logging.getLogger(__name__)

# Session status
SESSION_SCHEDULED = "scheduled"
SESSION_IN_PROGRESS = "in_progress"
SESSION_COMPLETED = "completed"
SESSION_CANCELLED = "cancelled"

# Booking status
BOOKING_CONFIRMED = "confirmed"
BOOKING_WAITLISTED = "waitlisted"
BOOKING_CANCELLED = "cancelled"
BOOKING_CHECKED_IN = "checked_in"
BOOKING_NO_SHOW = "no_show"

ACTIVE_BOOKING_STATUSES = (BOOKING_CONFIRMED, BOOKING_WAITLISTED)

# operation -> statuses it may start from
BOOKING_TRANSITIONS = {
    "cancel": (BOOKING_CONFIRMED, BOOKING_WAITLISTED),
    "check_in": (BOOKING_CONFIRMED,),
    "no_show": (BOOKING_CONFIRMED,),
    "delete": (BOOKING_CANCELLED, BOOKING_NO_SHOW),
}

SESSION_TRANSITIONS = {
    "update": (SESSION_SCHEDULED,),
    "start": (SESSION_SCHEDULED,),
    "complete": (SESSION_IN_PROGRESS,),
    "cancel": (SESSION_SCHEDULED, SESSION_IN_PROGRESS),
    "delete": (SESSION_SCHEDULED, SESSION_CANCELLED),
    "check_in": (SESSION_SCHEDULED, SESSION_IN_PROGRESS),
}


def ensure_booking_transition(booking: dict, operation: str) -> None:
    allowed = BOOKING_TRANSITIONS[operation]
    if booking["status"] not in allowed:
        if operation == "delete":
            message = "Only cancelled or no-show bookings can be deleted"
        else:
            message = f"Cannot {operation.replace('_', '-')} a {booking['status']} booking"
        raise InvalidStateError("INVALID_BOOKING_STATE", message)


def ensure_session_transition(session: dict, operation: str) -> None:
    allowed = SESSION_TRANSITIONS[operation]
    if session["status"] not in allowed:
        raise InvalidStateError(
            "INVALID_SESSION_STATE",
            f"Cannot {operation.replace('_', '-')} a {session['status']} session",
        )


def ensure_bookable(session: dict) -> None:
    if session["status"] != SESSION_SCHEDULED:
        raise InvalidStateError(
            "SESSION_NOT_BOOKABLE", f"Cannot book a {session['status']} session"
        )


def has_available_spots(session: dict) -> bool:
    return session["booked_count"] < session["capacity"]


def available_spots(session: dict) -> int:
    return max(0, session["capacity"] - session["booked_count"])


def can_join_waitlist(session: dict, gym_class: dict) -> bool:
    if not gym_class.get("waitlist_enabled"):
        return False
    max_size = gym_class.get("max_waitlist_size")
    return max_size is None or session["waitlist_count"] < max_size


def allocate(session: dict, gym_class: dict) -> Tuple[str, Optional[int]]:
    """
    Decide the status of a new booking and take the seat or waitlist slot.

    Returns (status, waitlist_position).
    """
    if has_available_spots(session):
        session["booked_count"] += 1
        return BOOKING_CONFIRMED, None

    if can_join_waitlist(session, gym_class):
        session["waitlist_count"] += 1
        return BOOKING_WAITLISTED, session["waitlist_count"]

    raise ConflictError("SESSION_FULL", "Session is full and waitlist is not available")


def release(session: dict, previous_status: str) -> bool:
    """
    Give back the seat or waitlist slot held by a booking that is leaving.

    Returns True when a seat was freed and someone is waiting for it.
    """
    if previous_status == BOOKING_CONFIRMED:
        session["booked_count"] = max(0, session["booked_count"] - 1)
        return session["waitlist_count"] > 0 and has_available_spots(session)

    if previous_status == BOOKING_WAITLISTED:
        session["waitlist_count"] = max(0, session["waitlist_count"] - 1)

    return False


def next_in_waitlist(bookings: List[dict]) -> Optional[dict]:
    """Earliest waitlisted booking by creation order."""
    waiting = [b for b in bookings if b["status"] == BOOKING_WAITLISTED]
    if not waiting:
        return None
    return min(waiting, key=lambda b: (b["created_at"], b["id"]))


def promote(session: dict, booking: dict) -> None:
    """Move a waitlisted booking into a freed seat."""
    if booking["status"] != BOOKING_WAITLISTED:
        raise InvalidStateError(
            "INVALID_BOOKING_STATE", f"Cannot promote a {booking['status']} booking"
        )
    if not has_available_spots(session):
        raise ConflictError("SESSION_FULL", "No free seat to promote into")

    booking["status"] = BOOKING_CONFIRMED
    booking["waitlist_position"] = None
    session["waitlist_count"] = max(0, session["waitlist_count"] - 1)
    session["booked_count"] += 1


def renumber_waitlist(bookings: List[dict]) -> List[Tuple[int, int]]:
    """
    Close the gaps in waitlist positions (1..n in creation order).

    Returns the (booking_id, position) pairs that changed.
    """
    waiting = sorted(
        (b for b in bookings if b["status"] == BOOKING_WAITLISTED),
        key=lambda b: (b["created_at"], b["id"]),
    )
    changed = []
    for position, booking in enumerate(waiting, start=1):
        if booking.get("waitlist_position") != position:
            booking["waitlist_position"] = position
            changed.append((booking["id"], position))
    return changed


def ensure_capacity_change(session: dict, new_capacity: int) -> None:
    if new_capacity < session["booked_count"]:
        raise ConflictError(
            "CAPACITY_BELOW_BOOKINGS",
            f"Capacity cannot be lower than the {session['booked_count']} confirmed bookings",
        )
