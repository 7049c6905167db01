"""
CMS Sessions Router - Dated class sessions, their lifecycle and rosters
"""
import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, status, Depends, Query
from pydantic import BaseModel, Field

from app.config import SESSION_GENERATION_DAYS_AHEAD
from app.db import get_db_connection
from app.errors import ServiceError
from app.middleware import verify_bearer_token, check_permission, get_tenant_id
from app.services import bookings as booking_service
from app.services import notifications
from app.services import sessions as session_service
from app.utils.helpers import paginate, serialize_row

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["CMS - Class Sessions"])

TIME_PATTERN = r"^\d{2}:\d{2}(:\d{2})?$"


# ============== Request Models ==============

class SessionCreate(BaseModel):
    gym_class_id: int
    schedule_id: Optional[int] = None
    location_id: Optional[int] = None
    trainer_id: Optional[int] = None
    session_date: date
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    capacity: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = None


class SessionUpdate(BaseModel):
    location_id: Optional[int] = None
    trainer_id: Optional[int] = None
    session_date: Optional[date] = None
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    capacity: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = None


class SessionCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class GenerateSessionsRequest(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    gym_class_id: Optional[int] = None


# ============== Session Endpoints ==============

@router.get("")
def list_sessions(
    gym_class_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status", pattern=r"^(scheduled|in_progress|completed|cancelled)$"),
    location_id: Optional[int] = Query(None),
    trainer_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """List class sessions"""
    check_permission(auth, "class.view")

    conn = get_db_connection()
    try:
        rows, total = session_service.list_sessions(
            conn, tenant_id, gym_class_id, date_from, date_to, status_filter,
            location_id, trainer_id, page, limit,
        )
        return {
            "success": True,
            "data": [serialize_row(row) for row in rows],
            "pagination": paginate(page, limit, total),
        }
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error listing sessions: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_SESSIONS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_session(
    request: SessionCreate,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Create a one-off session"""
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        session = session_service.create_session(conn, tenant_id, request.model_dump(), auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Session created", "data": serialize_row(session)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CREATE_SESSION_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/generate")
def generate_sessions(
    request: GenerateSessionsRequest,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Generate sessions from active schedules. Existing sessions are left alone."""
    check_permission(auth, "class.manage")

    date_from = request.date_from or date.today()
    date_to = request.date_to or date_from + timedelta(days=SESSION_GENERATION_DAYS_AHEAD)

    conn = get_db_connection()
    try:
        result = session_service.generate_sessions(
            conn, date_from, date_to, tenant_id=tenant_id, gym_class_id=request.gym_class_id
        )
        conn.commit()
        return {
            "success": True,
            "message": f"{result['created']} sessions generated",
            "data": result,
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error generating sessions: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GENERATE_SESSIONS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/{session_id}")
def get_session(
    session_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "class.view")

    conn = get_db_connection()
    try:
        session = session_service.get_session(conn, tenant_id, session_id)
        return {"success": True, "data": serialize_row(session)}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_SESSION_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.put("/{session_id}")
def update_session(
    session_id: int,
    request: SessionUpdate,
    background_tasks: BackgroundTasks,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Update a scheduled session. A capacity increase promotes from the waitlist."""
    check_permission(auth, "class.manage")

    changes = {key: value for key, value in request.model_dump().items() if value is not None}
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "NO_FIELDS_TO_UPDATE", "message": "Nothing to update"},
        )

    conn = get_db_connection()
    try:
        result = session_service.update_session(conn, tenant_id, session_id, changes, auth["user_id"])
        conn.commit()

        promoted_ids = [booking["id"] for booking in result["promoted_bookings"]]
        for booking_id in promoted_ids:
            background_tasks.add_task(notifications.notify_waitlist_promoted, booking_id)

        return {
            "success": True,
            "message": "Session updated",
            "data": {
                "session": serialize_row(result["session"]),
                "promoted_booking_ids": promoted_ids,
            },
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error updating session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "UPDATE_SESSION_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{session_id}/start")
def start_session(
    session_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        session = session_service.start_session(conn, tenant_id, session_id, auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Session started", "data": serialize_row(session)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error starting session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "START_SESSION_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{session_id}/complete")
def complete_session(
    session_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Complete a session; bookings that never checked in become no-shows"""
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        session = session_service.complete_session(conn, tenant_id, session_id, auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Session completed", "data": serialize_row(session)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error completing session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "COMPLETE_SESSION_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{session_id}/cancel")
def cancel_session(
    session_id: int,
    request: SessionCancelRequest,
    background_tasks: BackgroundTasks,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Cancel a session; every booking is cancelled and refunded"""
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        result = session_service.cancel_session(conn, tenant_id, session_id, request.reason, auth["user_id"])
        conn.commit()

        if result["cancelled_booking_ids"]:
            background_tasks.add_task(notifications.notify_session_cancelled, result["cancelled_booking_ids"])

        return {
            "success": True,
            "message": "Session cancelled",
            "data": {
                "session": serialize_row(result["session"]),
                "cancelled_booking_ids": result["cancelled_booking_ids"],
            },
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error cancelling session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CANCEL_SESSION_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.delete("/{session_id}")
def delete_session(
    session_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Delete a scheduled session without bookings, or a cancelled session"""
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        session_service.delete_session(conn, tenant_id, session_id, auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Session deleted"}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error deleting session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "DELETE_SESSION_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


# ============== Roster Endpoints ==============

@router.get("/{session_id}/bookings")
def list_session_bookings(
    session_id: int,
    view: str = Query("all", pattern=r"^(all|confirmed|waitlist)$"),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Roster of a session; view=waitlist returns the queue in position order"""
    check_permission(auth, "booking.view")

    conn = get_db_connection()
    try:
        rows = booking_service.list_session_bookings(conn, tenant_id, session_id, view)
        return {"success": True, "data": [serialize_row(row) for row in rows]}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error listing session bookings: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_SESSION_BOOKINGS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/{session_id}/bookings/count")
def count_session_bookings(
    session_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "booking.view")

    conn = get_db_connection()
    try:
        return {"success": True, "data": booking_service.count_session_bookings(conn, tenant_id, session_id)}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error counting session bookings: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "COUNT_SESSION_BOOKINGS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{session_id}/no-shows")
def mark_session_no_shows(
    session_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Mark remaining confirmed bookings of a completed session as no-show"""
    check_permission(auth, "booking.manage")

    conn = get_db_connection()
    try:
        marked = booking_service.mark_session_no_shows(conn, tenant_id, session_id)
        conn.commit()
        return {"success": True, "message": f"{marked} bookings marked as no-show", "data": {"marked": marked}}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error marking no-shows: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "MARK_NO_SHOWS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/{session_id}/booking-options")
def get_booking_options(
    session_id: int,
    member_id: int = Query(...),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Payment options a member has for this session"""
    check_permission(auth, "booking.view")

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
