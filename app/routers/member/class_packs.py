"""
Member Class Packs Router - Pack catalogue and own credit balances
"""
import logging

from fastapi import APIRouter, HTTPException, status, Depends

from app.db import get_db_connection
from app.errors import ServiceError
from app.middleware import verify_bearer_token, require_member, get_tenant_id
from app.services import class_packs as class_pack_service
from app.utils.helpers import serialize_row

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/class-packs", tags=["Member - Class Packs"])


@router.get("")
def class_pack_catalogue(
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Active class packs on sale"""
    require_member(auth)

    conn = get_db_connection()
    try:
        packs = class_pack_service.list_active_class_packs(conn, tenant_id)
        data = []
        for pack in packs:
            row = serialize_row(pack)
            row["allocations"] = pack["allocations"]
            data.append(row)
        return {"success": True, "data": data}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting class pack catalogue: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_CLASS_PACKS_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/my-balances")
def my_balances(
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Usable class pack balances and the total credits left"""
    member_id = require_member(auth)

    conn = get_db_connection()
    try:
        balances = class_pack_service.list_active_balances(conn, tenant_id, member_id)
        return {
            "success": True,
            "data": [serialize_row(b) for b in balances],
            "total_remaining": class_pack_service.total_remaining_credits(conn, tenant_id, member_id),
        }
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting balances of member {member_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_MY_BALANCES_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/my-balances/history")
def my_balance_history(
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Every balance the member has held, including expired and used up ones"""
    member_id = require_member(auth)

    conn = get_db_connection()
    try:
        balances = class_pack_service.list_member_balances(conn, tenant_id, member_id)
        return {"success": True, "data": [serialize_row(b) for b in balances]}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting balance history of member {member_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_BALANCE_HISTORY_FAILED", "message": str(e)},
        )
    finally:
        conn.close()


@router.get("/valid-for-class/{gym_class_id}")
def balances_valid_for_class(
    gym_class_id: int,
    auth: dict = Depends(verify_bearer_token),
    tenant_id: int = Depends(get_tenant_id),
):
    """Balances that can pay for a session of this class"""
    member_id = require_member(auth)

    conn = get_db_connection()
    try:
        balances = class_pack_service.valid_balances_for_class(conn, tenant_id, member_id, gym_class_id)
        return {"success": True, "data": [serialize_row(b) for b in balances]}
    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting valid balances: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "GET_VALID_BALANCES_FAILED", "message": str(e)},
        )
    finally:
        conn.close()
