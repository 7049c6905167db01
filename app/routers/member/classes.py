"""
Member Classes Router - Browse sessions, book and cancel own bookings
"""
import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, status, Depends, Query
from pydantic import BaseModel, Field

from app.db import get_db_connection
from app.errors import ServiceError, NotFoundError
from app.middleware import verify_bearer_token, require_member, get_tenant_id
from app.services import bookings as booking_service
from app.services import notifications
from app.services import sessions as session_service
from app.services.capacity import SESSION_SCHEDULED
from app.utils.helpers import paginate, serialize_row

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/classes", tags=["Member - Classes"])


# ============== Request Models ==============

class MemberBookingCreate(BaseModel):
    session_id: int
    payment_source: str = Field("membership_included", pattern=r"^(membership_included|class_pack|pay_per_entry)$")
    class_pack_balance_id: Optional[int] = None
    order_id: Optional[str] = Field(None, max_length=64)
    notes: Optional[str] = Field(None, max_length=500)


class MemberBookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


# ============== Session Endpoints ==============

@router.get("/sessions")
def list_upcoming_sessions(
    gym_class_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    location_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Scheduled sessions from today (default: the next 7 days)"""
    require_member(auth)

    date_from = max(date_from or date.today(), date.today())
    date_to = date_to or date_from + timedelta(days=7)

    conn = get_db_connection()
    try:
        rows, total = session_service.list_sessions(
            conn, tenant_id, gym_class_id, date_from, date_to, SESSION_SCHEDULED,
            location_id, None, page, limit,
        )
        return {
            "success": True,
            "data": [serialize_row(row) for row in rows],
            "pagination": paginate(page, limit, total),
        }
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error listing sessions for member: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_SESSIONS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/sessions/{session_id}")
def get_session(
    session_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    require_member(auth)

    conn = get_db_connection()
    try:
        return {"success": True, "data": serialize_row(session_service.get_session(conn, tenant_id, session_id))}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting session for member: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_SESSION_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/sessions/{session_id}/booking-options")
def get_booking_options(
    session_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """How the member can pay for this session"""
    member_id = require_member(auth)

    conn = get_db_connection()
    try:
        options = booking_service.get_booking_options(conn, tenant_id, session_id, member_id)
        return {"success": True, "data": options}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting booking options: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_BOOKING_OPTIONS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


# ============== Booking Endpoints ==============

@router.post("/bookings", status_code=status.HTTP_201_CREATED)
def book_session(
    request: MemberBookingCreate,
    background_tasks: BackgroundTasks,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Book a session; a full session puts the member on the waitlist"""
    member_id = require_member(auth)

    conn = get_db_connection()
    try:
        booking = booking_service.create_booking(
            conn,
            tenant_id,
            request.session_id,
            member_id,
            request.payment_source,
            class_pack_balance_id=request.class_pack_balance_id,
            order_id=request.order_id,
            notes=request.notes,
            booked_by=auth.get("user_id"),
        )
        conn.commit()
        background_tasks.add_task(notifications.notify_booking_created, booking["id"])

        waitlisted = booking["status"] == "waitlisted"
        return {
            "success": True,
            "message": (
                f"Class is full, you are #{booking['waitlist_position']} on the waitlist"
                if waitlisted else "Booking confirmed"
            ),
            "data": serialize_row(booking),
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error booking session for member {member_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "BOOK_CLASS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/bookings")
def my_bookings(
    scope: str = Query("upcoming", pattern=r"^(all|upcoming|past)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    member_id = require_member(auth)

    conn = get_db_connection()
    try:
        rows, total = booking_service.list_member_bookings(conn, tenant_id, member_id, scope, None, page, limit)
        return {
            "success": True,
            "data": [serialize_row(row) for row in rows],
            "pagination": paginate(page, limit, total),
        }
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting bookings of member {member_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_MY_BOOKINGS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/bookings/{booking_id}")
def my_booking(
    booking_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    member_id = require_member(auth)

    conn = get_db_connection()
    try:
        booking = booking_service.get_booking(conn, tenant_id, booking_id)
        if booking["member_id"] != member_id:
            raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found")
        return {"success": True, "data": serialize_row(booking)}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting booking: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_BOOKING_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/bookings/{booking_id}/cancel")
def cancel_my_booking(
    booking_id: int,
    request: MemberBookingCancel,
    background_tasks: BackgroundTasks,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Cancel own booking. Inside the cancellation deadline the credit is not returned."""
    member_id = require_member(auth)

    conn = get_db_connection()
    try:
        result = booking_service.cancel_booking(conn, tenant_id, booking_id, request.reason, actor_member_id=member_id)
        conn.commit()
        background_tasks.add_task(notifications.notify_booking_cancelled, booking_id)

        promoted = result["promoted_booking"]
        if promoted:
            background_tasks.add_task(notifications.notify_waitlist_promoted, promoted["id"])

        booking = result["booking"]
        return {
            "success": True,
            "message": "Booking cancelled (late cancellation, credit kept)" if booking["is_late_cancellation"] else "Booking cancelled",
            "data": serialize_row(booking),
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error cancelling booking #{booking_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CANCEL_BOOKING_FAILED", "message": str(e)},
        )
    finally:
        conn.close()
