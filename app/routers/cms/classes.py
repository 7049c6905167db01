"""
CMS Classes Router - Gym class templates and recurring schedules
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException, status, Depends, Query
from pydantic import BaseModel, Field

from app.db import get_db_connection
from app.errors import ServiceError
from app.middleware import verify_bearer_token, check_permission, get_tenant_id
from app.services import sessions as session_service
from app.utils.helpers import paginate, serialize_row

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/classes", tags=["CMS - Classes"])

PRICING_MODEL_PATTERN = r"^(included_in_membership|class_pack_only|pay_per_entry|hybrid)$"
ACCESS_POLICY_PATTERN = r"^(members_only|open_to_all)$"
TIME_PATTERN = r"^\d{2}:\d{2}(:\d{2})?$"


# ============== Request Models ==============

class GymClassCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    location_id: Optional[int] = None
    default_trainer_id: Optional[int] = None
    category_id: Optional[int] = None
    duration_minutes: int = Field(60, ge=15, le=240)
    max_capacity: int = Field(20, ge=1, le=500)
    waitlist_enabled: bool = True
    max_waitlist_size: int = Field(5, ge=0)
    deducts_class_from_plan: bool = True
    pricing_model: str = Field("included_in_membership", pattern=PRICING_MODEL_PATTERN)
    drop_in_price: Optional[Decimal] = Field(None, ge=0)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    access_policy: str = Field("members_only", pattern=ACCESS_POLICY_PATTERN)
    advance_booking_days: int = Field(7, ge=0, le=365)
    cancellation_deadline_hours: int = Field(2, ge=0, le=168)
    late_cancellation_fee: Optional[Decimal] = Field(None, ge=0)
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")


class GymClassUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    location_id: Optional[int] = None
    default_trainer_id: Optional[int] = None
    category_id: Optional[int] = None
    duration_minutes: Optional[int] = Field(None, ge=15, le=240)
    max_capacity: Optional[int] = Field(None, ge=1, le=500)
    waitlist_enabled: Optional[bool] = None
    max_waitlist_size: Optional[int] = Field(None, ge=0)
    deducts_class_from_plan: Optional[bool] = None
    pricing_model: Optional[str] = Field(None, pattern=PRICING_MODEL_PATTERN)
    drop_in_price: Optional[Decimal] = Field(None, ge=0)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    access_policy: Optional[str] = Field(None, pattern=ACCESS_POLICY_PATTERN)
    advance_booking_days: Optional[int] = Field(None, ge=0, le=365)
    cancellation_deadline_hours: Optional[int] = Field(None, ge=0, le=168)
    late_cancellation_fee: Optional[Decimal] = Field(None, ge=0)
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")


class ScheduleCreate(BaseModel):
    trainer_id: Optional[int] = None
    location_id: Optional[int] = None
    day_of_week: int = Field(..., ge=0, le=6)  # 0=Monday, 6=Sunday
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    capacity: Optional[int] = Field(None, ge=1)
    effective_from: date
    effective_until: Optional[date] = None


class ScheduleUpdate(BaseModel):
    trainer_id: Optional[int] = None
    location_id: Optional[int] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    capacity: Optional[int] = Field(None, ge=1)
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None


def _changes(request: BaseModel) -> dict:
    return {key: value for key, value in request.model_dump().items() if value is not None}


# ============== Gym Class Endpoints ==============

@router.get("")
def list_gym_classes(
    status_filter: Optional[str] = Query(None, alias="status", pattern=r"^(active|inactive|archived)$"),
    location_id: Optional[int] = Query(None),
    trainer_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """List gym classes"""
    check_permission(auth, "class.view")

    conn = get_db_connection()
    try:
        rows, total = session_service.list_gym_classes(
            conn, tenant_id, status_filter, location_id, trainer_id, search, page, limit
        )
        return {
            "success": True,
            "data": [serialize_row(row) for row in rows],
            "pagination": paginate(page, limit, total),
        }
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error listing gym classes: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_CLASSES_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_gym_class(
    request: GymClassCreate,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Create a gym class"""
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        gym_class = session_service.create_gym_class(conn, tenant_id, request.model_dump(), auth["user_id"])
        conn.commit()
        return {
            "success": True,
            "message": "Gym class created",
            "data": serialize_row(gym_class),
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating gym class: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CREATE_CLASS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/{gym_class_id}")
def get_gym_class(
    gym_class_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Get a gym class with its schedules"""
    check_permission(auth, "class.view")

    conn = get_db_connection()
    try:
        gym_class = session_service.get_gym_class(conn, tenant_id, gym_class_id)
        gym_class["schedules"] = [serialize_row(s) for s in gym_class["schedules"]]
        return {"success": True, "data": serialize_row(gym_class)}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting gym class: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_CLASS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.put("/{gym_class_id}")
def update_gym_class(
    gym_class_id: int,
    request: GymClassUpdate,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Update a gym class"""
    check_permission(auth, "class.manage")

    changes = _changes(request)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "NO_FIELDS_TO_UPDATE", "message": "Nothing to update"},
        )

    conn = get_db_connection()
    try:
        gym_class = session_service.update_gym_class(conn, tenant_id, gym_class_id, changes, auth["user_id"])
        conn.commit()
        return {
            "success": True,
            "message": "Gym class updated",
            "data": serialize_row(gym_class),
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error updating gym class: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "UPDATE_CLASS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


def _set_status(gym_class_id: int, new_status: str, auth: dict, tenant_id: int):
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        gym_class = session_service.set_gym_class_status(conn, tenant_id, gym_class_id, new_status, auth["user_id"])
        conn.commit()
        return {
            "success": True,
            "message": f"Gym class is now {new_status}",
            "data": serialize_row(gym_class),
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error changing gym class status: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "UPDATE_CLASS_STATUS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{gym_class_id}/activate")
def activate_gym_class(gym_class_id: int, auth: dict = Depends(verify_bearer_token), tenant_id: int = Depends(get_tenant_id)):
    return _set_status(gym_class_id, session_service.CLASS_ACTIVE, auth, tenant_id)


@router.post("/{gym_class_id}/deactivate")
def deactivate_gym_class(gym_class_id: int, auth: dict = Depends(verify_bearer_token), tenant_id: int = Depends(get_tenant_id)):
    return _set_status(gym_class_id, session_service.CLASS_INACTIVE, auth, tenant_id)


@router.post("/{gym_class_id}/archive")
def archive_gym_class(gym_class_id: int, auth: dict = Depends(verify_bearer_token), tenant_id: int = Depends(get_tenant_id)):
    return _set_status(gym_class_id, session_service.CLASS_ARCHIVED, auth, tenant_id)


# ============== Schedule Endpoints ==============

@router.get("/{gym_class_id}/schedules")
def list_schedules(
    gym_class_id: int,
    active_only: bool = Query(False),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """List schedules of a gym class"""
    check_permission(auth, "class.view")

    conn = get_db_connection()
    try:
        schedules = session_service.list_schedules(conn, tenant_id, gym_class_id, active_only)
        return {"success": True, "data": [serialize_row(s) for s in schedules]}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error listing schedules: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_SCHEDULES_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{gym_class_id}/schedules", status_code=status.HTTP_201_CREATED)
def create_schedule(
    gym_class_id: int,
    request: ScheduleCreate,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Add a weekly schedule to a gym class"""
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        schedule = session_service.create_schedule(conn, tenant_id, gym_class_id, request.model_dump(), auth["user_id"])
        conn.commit()
        return {
            "success": True,
            "message": "Schedule created",
            "data": serialize_row(schedule),
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating schedule: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CREATE_SCHEDULE_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.put("/schedules/{schedule_id}")
def update_schedule(
    schedule_id: int,
    request: ScheduleUpdate,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Update a schedule"""
    check_permission(auth, "class.manage")

    changes = _changes(request)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "NO_FIELDS_TO_UPDATE", "message": "Nothing to update"},
        )

    conn = get_db_connection()
    try:
        schedule = session_service.update_schedule(conn, tenant_id, schedule_id, changes, auth["user_id"])
        conn.commit()
        return {
            "success": True,
            "message": "Schedule updated",
            "data": serialize_row(schedule),
        }
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error updating schedule: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "UPDATE_SCHEDULE_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/schedules/{schedule_id}/deactivate")
def deactivate_schedule(
    schedule_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Stop generating sessions from a schedule"""
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        schedule = session_service.deactivate_schedule(conn, tenant_id, schedule_id, auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Schedule deactivated", "data": serialize_row(schedule)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error deactivating schedule: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "DEACTIVATE_SCHEDULE_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.delete("/schedules/{schedule_id}")
def delete_schedule(
    schedule_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Delete a schedule (generated sessions are kept)"""
    check_permission(auth, "class.manage")

    conn = get_db_connection()
    try:
        session_service.delete_schedule(conn, tenant_id, schedule_id, auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Schedule deleted"}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error deleting schedule: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "DELETE_SCHEDULE_FAILED", "message": str(e)},
        )
    finally:
        conn.close()
