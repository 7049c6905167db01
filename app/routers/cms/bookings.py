"""
CMS Bookings Router - Book, cancel and check in members on behalf of the club
"""
import logging
from typing import Optional, List

from fastapi import APIRouter, BackgroundTasks, HTTPException, status, Depends, Query
from pydantic import BaseModel, Field

from app.db import get_db_connection
from app.errors import ServiceError
from app.middleware import verify_bearer_token, check_permission, get_tenant_id
from app.services import bookings as booking_service
from app.services import notifications
from app.services.pricing import SOURCE_COMPLIMENTARY
from app.utils.helpers import paginate, serialize_row

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["CMS - Class Bookings"])

PAYMENT_SOURCE_PATTERN = r"^(membership_included|class_pack|pay_per_entry|complimentary)$"


# ============== Request Models ==============

class BookingCreate(BaseModel):
    session_id: int
    member_id: int
    payment_source: str = Field("membership_included", pattern=PAYMENT_SOURCE_PATTERN)
    class_pack_balance_id: Optional[int] = None
    order_id: Optional[str] = Field(None, max_length=64)
    notes: Optional[str] = None


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class BulkBookingCreate(BaseModel):
    session_id: int
    member_ids: List[int] = Field(..., min_length=1, max_length=100)
    payment_source: str = Field("membership_included", pattern=PAYMENT_SOURCE_PATTERN)


class BulkBookingIds(BaseModel):
    booking_ids: List[int] = Field(..., min_length=1, max_length=100)
    reason: Optional[str] = Field(None, max_length=255)


def _ensure_complimentary_allowed(auth: dict, payment_source: str) -> bool:
    if payment_source != SOURCE_COMPLIMENTARY:
        return False
    check_permission(auth, "booking.complimentary")
    return True


def _bulk_summary(results: list) -> dict:
    succeeded = sum(1 for r in results if r["success"])
    return {
        "results": results,
        "total": len(results),
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
    }


# ============== Booking Endpoints ==============

@router.post("", status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingCreate,
    background_tasks: BackgroundTasks,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Book a member into a session (confirmed, or waitlisted when full)"""
    check_permission(auth, "booking.manage")
    allow_complimentary = _ensure_complimentary_allowed(auth, request.payment_source)

    conn = get_db_connection()
    try:
        booking = booking_service.create_booking(
            conn,
            tenant_id,
            request.session_id,
            request.member_id,
            request.payment_source,
            class_pack_balance_id=request.class_pack_balance_id,
            order_id=request.order_id,
            notes=request.notes,
            booked_by=auth["user_id"],
            allow_complimentary=allow_complimentary,
            enforce_booking_window=False,
        )
        conn.commit()
        background_tasks.add_task(notifications.notify_booking_created, booking["id"])

        return {
            "success": True,
            "message": "Member added to the waitlist" if booking["status"] == "waitlisted" else "Booking confirmed",
            "data": serialize_row(booking),
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating booking: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CREATE_BOOKING_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/member/{member_id}")
def list_member_bookings(
    member_id: int,
    scope: str = Query("all", pattern=r"^(all|upcoming|past)$"),
    status_filter: Optional[str] = Query(
        None, alias="status", pattern=r"^(confirmed|waitlisted|cancelled|checked_in|no_show)$"
    ),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Booking history of a member"""
    check_permission(auth, "booking.view")

    conn = get_db_connection()
    try:
        rows, total = booking_service.list_member_bookings(conn, tenant_id, member_id, scope, status_filter, page, limit)
        return {
            "success": True,
            "data": [serialize_row(row) for row in rows],
            "pagination": paginate(page, limit, total),
        }
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error listing member bookings: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_MEMBER_BOOKINGS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/{booking_id}")
def get_booking(
    booking_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "booking.view")

    conn = get_db_connection()
    try:
        return {"success": True, "data": serialize_row(booking_service.get_booking(conn, tenant_id, booking_id))}
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


@router.post("/{booking_id}/cancel")
def cancel_booking(
    booking_id: int,
    request: BookingCancelRequest,
    background_tasks: BackgroundTasks,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Cancel a booking; the first waitlisted booking takes the freed seat"""
    check_permission(auth, "booking.cancel_any")

    conn = get_db_connection()
    try:
        result = booking_service.cancel_booking(conn, tenant_id, booking_id, request.reason)
        conn.commit()
        background_tasks.add_task(notifications.notify_booking_cancelled, booking_id)

        promoted = result["promoted_booking"]
        if promoted:
            background_tasks.add_task(notifications.notify_waitlist_promoted, promoted["id"])

        return {
            "success": True,
            "message": "Booking cancelled",
            "data": {
                "booking": serialize_row(result["booking"]),
                "promoted_booking": serialize_row(promoted),
            },
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error cancelling booking: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CANCEL_BOOKING_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{booking_id}/check-in")
def check_in_booking(
    booking_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "booking.manage")

    conn = get_db_connection()
    try:
        booking = booking_service.check_in_booking(conn, tenant_id, booking_id)
        conn.commit()
        return {"success": True, "message": "Member checked in", "data": serialize_row(booking)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error checking in booking: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CHECK_IN_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{booking_id}/no-show")
def mark_no_show(
    booking_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "booking.manage")

    conn = get_db_connection()
    try:
        booking = booking_service.mark_no_show(conn, tenant_id, booking_id)
        conn.commit()
        return {"success": True, "message": "Booking marked as no-show", "data": serialize_row(booking)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error marking no-show: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "MARK_NO_SHOW_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.delete("/{booking_id}")
def delete_booking(
    booking_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Delete a cancelled or no-show booking"""
    check_permission(auth, "booking.manage")

    conn = get_db_connection()
    try:
        booking_service.delete_booking(conn, tenant_id, booking_id)
        conn.commit()
        return {"success": True, "message": "Booking deleted"}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error deleting booking: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "DELETE_BOOKING_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


# ============== Bulk Endpoints ==============

@router.post("/bulk")
def bulk_create_bookings(
    request: BulkBookingCreate,
    background_tasks: BackgroundTasks,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Book several members into one session; failures are reported per member"""
    check_permission(auth, "booking.manage")
    allow_complimentary = _ensure_complimentary_allowed(auth, request.payment_source)

    conn = get_db_connection()
    try:
        results = booking_service.bulk_create_bookings(
            conn, tenant_id, request.session_id, request.member_ids, request.payment_source,
            booked_by=auth["user_id"], allow_complimentary=allow_complimentary,
        )
        conn.commit()
        for result in results:
            if result["success"]:
                background_tasks.add_task(notifications.notify_booking_created, result["data"]["booking_id"])
        return {"success": True, "data": _bulk_summary(results)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error in bulk booking: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "BULK_BOOKING_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/bulk-cancel")
def bulk_cancel_bookings(
    request: BulkBookingIds,
    background_tasks: BackgroundTasks,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "booking.cancel_any")

    conn = get_db_connection()
    try:
        results = booking_service.bulk_cancel_bookings(conn, tenant_id, request.booking_ids, request.reason)
        conn.commit()
        for result in results:
            if result["success"]:
                background_tasks.add_task(notifications.notify_booking_cancelled, result["data"]["booking_id"])
            if result["success"] and result["data"]["promoted_booking_id"]:
                background_tasks.add_task(notifications.notify_waitlist_promoted, result["data"]["promoted_booking_id"])
        return {"success": True, "data": _bulk_summary(results)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error in bulk cancel: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "BULK_CANCEL_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/bulk-check-in")
def bulk_check_in(
    request: BulkBookingIds,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "booking.manage")

    conn = get_db_connection()
    try:
        results = booking_service.bulk_check_in(conn, tenant_id, request.booking_ids)
        conn.commit()
        return {"success": True, "data": _bulk_summary(results)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error in bulk check-in: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "BULK_CHECK_IN_FAILED", "message": str(e)},
        )
    finally:
        conn.close()
