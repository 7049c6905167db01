"""
CMS Class Packs Router - Class pack catalogue and member credit balances
"""
import logging
from decimal import Decimal
from typing import Optional, List

from fastapi import APIRouter, HTTPException, status, Depends, Query
from pydantic import BaseModel, Field

from app.db import get_db_connection
from app.errors import ServiceError
from app.middleware import verify_bearer_token, check_permission, get_tenant_id
from app.services import class_packs as class_pack_service
from app.services.credits import PACK_ACTIVE, PACK_INACTIVE
from app.utils.helpers import paginate, serialize_row

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/class-packs", tags=["CMS - Class Packs"])


# ============== Request Models ==============

class CategoryAllocation(BaseModel):
    category_id: int
    credit_count: int = Field(..., ge=1)


class ClassPackCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    class_count: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    validity_days: Optional[int] = Field(None, ge=1)
    valid_class_ids: Optional[List[int]] = None
    allocation_mode: str = Field("flat", pattern=r"^(flat|per_category)$")
    allocations: Optional[List[CategoryAllocation]] = None
    sort_order: int = 0


class ClassPackUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    class_count: Optional[int] = Field(None, ge=1)
    price: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    validity_days: Optional[int] = Field(None, ge=1)
    valid_class_ids: Optional[List[int]] = None
    allocation_mode: Optional[str] = Field(None, pattern=r"^(flat|per_category)$")
    allocations: Optional[List[CategoryAllocation]] = None
    sort_order: Optional[int] = None


class GrantBalanceRequest(BaseModel):
    member_id: int
    class_pack_id: int


class PurchaseBalanceRequest(BaseModel):
    member_id: int
    class_pack_id: int
    order_id: str = Field(..., min_length=1, max_length=64)


def _class_pack_data(class_pack: dict) -> dict:
    data = serialize_row(class_pack)
    data["allocations"] = class_pack.get("allocations", [])
    return data


# ============== Class Pack Endpoints ==============

@router.get("")
def list_class_packs(
    status_filter: Optional[str] = Query(None, alias="status", pattern=r"^(active|inactive)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "class_pack.view")

    conn = get_db_connection()
    try:
        rows, total = class_pack_service.list_class_packs(conn, tenant_id, status_filter, page, limit)
        return {
            "success": True,
            "data": [_class_pack_data(row) for row in rows],
            "pagination": paginate(page, limit, total),
        }
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error listing class packs: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_CLASS_PACKS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_class_pack(
    request: ClassPackCreate,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Create a class pack; per_category packs need allocations summing to class_count"""
    check_permission(auth, "class_pack.manage")

    conn = get_db_connection()
    try:
        class_pack = class_pack_service.create_class_pack(conn, tenant_id, request.model_dump(), auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Class pack created", "data": _class_pack_data(class_pack)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating class pack: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "CREATE_CLASS_PACK_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/{class_pack_id}")
def get_class_pack(
    class_pack_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "class_pack.view")

    conn = get_db_connection()
    try:
        class_pack = class_pack_service.get_class_pack(conn, tenant_id, class_pack_id)
        return {"success": True, "data": _class_pack_data(class_pack)}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting class pack: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_CLASS_PACK_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.put("/{class_pack_id}")
def update_class_pack(
    class_pack_id: int,
    request: ClassPackUpdate,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Update a class pack; sending allocations replaces the existing ones"""
    check_permission(auth, "class_pack.manage")

    changes = {key: value for key, value in request.model_dump().items() if value is not None}
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "NO_FIELDS_TO_UPDATE", "message": "Nothing to update"},
        )

    conn = get_db_connection()
    try:
        class_pack = class_pack_service.update_class_pack(conn, tenant_id, class_pack_id, changes, auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Class pack updated", "data": _class_pack_data(class_pack)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error updating class pack: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "UPDATE_CLASS_PACK_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


def _set_status(class_pack_id: int, new_status: str, auth: dict, tenant_id: int):
    check_permission(auth, "class_pack.manage")

    conn = get_db_connection()
    try:
        class_pack = class_pack_service.set_class_pack_status(conn, tenant_id, class_pack_id, new_status, auth["user_id"])
        conn.commit()
        return {"success": True, "message": f"Class pack is now {new_status}", "data": _class_pack_data(class_pack)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error changing class pack status: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "UPDATE_CLASS_PACK_STATUS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/{class_pack_id}/activate")
def activate_class_pack(class_pack_id: int, auth: dict = Depends(verify_bearer_token), tenant_id: int = Depends(get_tenant_id)):
    return _set_status(class_pack_id, PACK_ACTIVE, auth, tenant_id)


@router.post("/{class_pack_id}/deactivate")
def deactivate_class_pack(class_pack_id: int, auth: dict = Depends(verify_bearer_token), tenant_id: int = Depends(get_tenant_id)):
    return _set_status(class_pack_id, PACK_INACTIVE, auth, tenant_id)


@router.delete("/{class_pack_id}")
def delete_class_pack(
    class_pack_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Delete an inactive class pack that no member still holds"""
    check_permission(auth, "class_pack.manage")

    conn = get_db_connection()
    try:
        class_pack_service.delete_class_pack(conn, tenant_id, class_pack_id, auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Class pack deleted"}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error deleting class pack: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "DELETE_CLASS_PACK_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


# ============== Balance Endpoints ==============

@router.get("/balances/member/{member_id}")
def list_member_balances(
    member_id: int,
    status_filter: Optional[str] = Query(None, alias="status", pattern=r"^(active|depleted|expired|cancelled)$"),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "class_pack.view")

    conn = get_db_connection()
    try:
        balances = class_pack_service.list_member_balances(conn, tenant_id, member_id, status_filter)
        return {
            "success": True,
            "data": [serialize_row(b) for b in balances],
            "total_remaining": class_pack_service.total_remaining_credits(conn, tenant_id, member_id),
        }
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error listing member balances: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_BALANCES_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/balances/grant", status_code=status.HTTP_201_CREATED)
def grant_balance(
    request: GrantBalanceRequest,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Give a member a complimentary class pack"""
    check_permission(auth, "class_pack.manage")

    conn = get_db_connection()
    try:
        balance = class_pack_service.grant_balance(conn, tenant_id, request.member_id, request.class_pack_id, auth["user_id"])
        conn.commit()
        return {"success": True, "message": "Class pack granted", "data": serialize_row(balance)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error granting class pack: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GRANT_BALANCE_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/balances/purchase", status_code=status.HTTP_201_CREATED)
def purchase_balance(
    request: PurchaseBalanceRequest,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Record a paid class pack order as a member balance"""
    check_permission(auth, "class_pack.manage")

    conn = get_db_connection()
    try:
        balance = class_pack_service.purchase_balance(
            conn, tenant_id, request.member_id, request.class_pack_id, request.order_id, auth["user_id"]
        )
        conn.commit()
        return {"success": True, "message": "Class pack added to member", "data": serialize_row(balance)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error recording class pack purchase: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "PURCHASE_BALANCE_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/balances/{balance_id}")
def get_balance(
    balance_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    check_permission(auth, "class_pack.view")

    conn = get_db_connection()
    try:
        return {"success": True, "data": serialize_row(class_pack_service.get_balance(conn, tenant_id, balance_id))}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting balance: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_BALANCE_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


def _balance_action(balance_id: int, action, message: str, error_code: str, auth: dict, tenant_id: int, **kwargs):
    check_permission(auth, "class_pack.manage")

    conn = get_db_connection()
    try:
        balance = action(conn, tenant_id, balance_id, **kwargs)
        conn.commit()
        return {"success": True, "message": message, "data": serialize_row(balance)}
    except (HTTPException, ServiceError):
        conn.rollback()
        raise
    except Exception as e:
        conn.rollback()
        logger.error(f"Error on balance #{balance_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": error_code, "message": str(e)},
        )
    finally:
        conn.close()


@router.post("/balances/{balance_id}/use")
def use_credit(
    balance_id: int,
    category_id: Optional[int] = Query(None, description="Required for per category class packs"),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    return _balance_action(balance_id, class_pack_service.use_credit, "Credit used", "USE_CREDIT_FAILED", auth, tenant_id,
                           category_id=category_id)


@router.post("/balances/{balance_id}/refund")
def refund_credit(
    balance_id: int,
    category_id: Optional[int] = Query(None, description="Required for per category class packs"),
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    return _balance_action(balance_id, class_pack_service.refund_credit, "Credit refunded", "REFUND_CREDIT_FAILED", auth,
                           tenant_id, category_id=category_id)


@router.post("/balances/{balance_id}/cancel")
def cancel_balance(balance_id: int, auth: dict = Depends(verify_bearer_token), tenant_id: int = Depends(get_tenant_id)):
    def cancel(conn, tenant, balance):
        return class_pack_service.cancel_balance(conn, tenant, balance, auth["user_id"])

    return _balance_action(balance_id, cancel, "Balance cancelled", "CANCEL_BALANCE_FAILED", auth, tenant_id)
