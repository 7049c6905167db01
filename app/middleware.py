import logging
from datetime import datetime
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config import SECRET_KEY, ALGORITHM

logger = logging.getLogger(__name__)

security = HTTPBearer()


def _is_superadmin(auth: dict) -> bool:
    return (auth.get("role_name") or "").lower() == "superadmin"


def verify_bearer_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Verify JWT Bearer token from Authorization header.
    Tokens are issued by the identity service; permissions travel as claims.

    Returns user context dict with: user_id, member_id, tenant_id, role_name, permission
    """
    token = credentials.credentials

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])

        if payload.get("type") != "access":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={
                    "error_code": "INVALID_TOKEN_TYPE",
                    "message": "Invalid token",
                },
            )

        exp = payload.get("exp")
        if exp and datetime.utcnow() > datetime.utcfromtimestamp(exp):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={
                    "error_code": "TOKEN_EXPIRED",
                    "message": "Your session has expired. Please log in again.",
                },
            )

        return {
            "user_id": payload.get("user_id"),
            "member_id": payload.get("member_id"),
            "tenant_id": payload.get("tenant_id"),
            "email": payload.get("email"),
            "role_name": payload.get("role_name", "member"),
            "permission": payload.get("permissions", []),
        }

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "TOKEN_EXPIRED",
                "message": "Your session has expired. Please log in again.",
            },
        )
    except jwt.InvalidTokenError as e:
        logger.error(f"Invalid token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_TOKEN",
                "message": "Invalid token",
            },
        )


def get_tenant_id(
    x_tenant_id: Optional[int] = Header(None),
    auth: dict = Depends(verify_bearer_token),
) -> int:
    """
    Resolve the tenant (club) for the request.

    The X-Tenant-ID header wins for superadmins; everyone else is pinned to
    the tenant in their token.
    """
    token_tenant = auth.get("tenant_id")

    if _is_superadmin(auth) and x_tenant_id:
        return x_tenant_id

    if token_tenant is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "TENANT_REQUIRED", "message": "Tenant could not be resolved"},
        )

    if x_tenant_id and x_tenant_id != token_tenant:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error_code": "TENANT_MISMATCH", "message": "You do not have access to this club"},
        )

    return token_tenant


def has_permission(auth: dict, permission_name: str) -> bool:
    if _is_superadmin(auth):
        return True
    return permission_name in auth.get("permission", [])


def check_permission(auth: dict, permission_name: str) -> None:
    """
    Check if user has specific permission. Raises HTTPException if not.
    Superadmin bypasses all permission checks.

    Usage:
        @router.get("/")
        def list_items(auth: dict = Depends(verify_bearer_token)):
            check_permission(auth, "item.view")
            # ... rest of the code
    """
    if has_permission(auth, permission_name):
        return None

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "error_code": "PERMISSION_DENIED",
            "message": "You do not have access to this operation",
        },
    )


def require_member(auth: dict) -> int:
    """Return the member id bound to the token, or reject the request."""
    member_id = auth.get("member_id")
    if not member_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error_code": "MEMBER_REQUIRED",
                "message": "This endpoint is only available to members",
            },
        )
    return member_id
