"""
Class pack credit ledger rules.

A balance row keeps classes_remaining = classes_purchased - classes_used at
all times; these helpers are the only place the three numbers move.
"""
from datetime import datetime, timedelta
from typing import Optional, List

from app.errors import InvalidRequestError, InvalidStateError
from app.services.pricing import ALLOCATION_PER_CATEGORY

BALANCE_ACTIVE = "active"
BALANCE_DEPLETED = "depleted"
BALANCE_EXPIRED = "expired"
BALANCE_CANCELLED = "cancelled"

PACK_ACTIVE = "active"
PACK_INACTIVE = "inactive"


def _sync(balance: dict) -> None:
    balance["classes_remaining"] = balance["classes_purchased"] - balance["classes_used"]


def is_expired(balance: dict, now: Optional[datetime] = None) -> bool:
    expires_at = balance.get("expires_at")
    return expires_at is not None and expires_at <= (now or datetime.now())


def can_use_credit(balance: dict, now: Optional[datetime] = None) -> bool:
    return (
        balance["status"] == BALANCE_ACTIVE
        and balance["classes_remaining"] > 0
        and not is_expired(balance, now)
    )


def use_credit(balance: dict, now: Optional[datetime] = None) -> None:
    if not can_use_credit(balance, now):
        raise InvalidStateError(
            "CLASS_PACK_UNUSABLE", "Class pack balance cannot be used (expired or depleted)"
        )
    balance["classes_used"] += 1
    _sync(balance)
    if balance["classes_remaining"] == 0:
        balance["status"] = BALANCE_DEPLETED


def refund_credit(balance: dict) -> None:
    if balance["classes_used"] <= 0:
        raise InvalidStateError("NOTHING_TO_REFUND", "No used credits to refund")
    balance["classes_used"] -= 1
    _sync(balance)
    if balance["status"] == BALANCE_DEPLETED:
        balance["status"] = BALANCE_ACTIVE


def cancel_balance(balance: dict) -> None:
    if balance["status"] == BALANCE_CANCELLED:
        raise InvalidStateError("BALANCE_ALREADY_CANCELLED", "Balance is already cancelled")
    balance["status"] = BALANCE_CANCELLED


def new_balance(class_pack: dict, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    validity_days = class_pack.get("validity_days")
    return {
        "class_pack_id": class_pack["id"],
        "classes_purchased": class_pack["class_count"],
        "classes_used": 0,
        "classes_remaining": class_pack["class_count"],
        "expires_at": now + timedelta(days=validity_days) if validity_days else None,
        "status": BALANCE_ACTIVE,
    }


def validate_pack_definition(class_count: int, price, allocation_mode: str, allocations: Optional[List[dict]]) -> None:
    """
    Check a class pack before it is saved.

    allocations: [{"category_id": int, "credit_count": int}, ...]
    """
    if class_count is None or class_count <= 0:
        raise InvalidRequestError("INVALID_CLASS_COUNT", "Class count must be positive")
    if price is not None and price < 0:
        raise InvalidRequestError("INVALID_PRICE", "Price cannot be negative")

    if allocation_mode != ALLOCATION_PER_CATEGORY:
        return

    if not allocations:
        raise InvalidRequestError(
            "ALLOCATIONS_REQUIRED", "Category allocations are required for per_category mode"
        )

    total = sum(a["credit_count"] for a in allocations)
    if total != class_count:
        raise InvalidRequestError(
            "ALLOCATION_MISMATCH",
            f"Category allocation sum ({total}) must equal class count ({class_count})",
        )

    category_ids = [a["category_id"] for a in allocations]
    if len(set(category_ids)) != len(category_ids):
        raise InvalidRequestError("DUPLICATE_CATEGORY", "Duplicate categories in allocations")

    if any(a["credit_count"] <= 0 for a in allocations):
        raise InvalidRequestError("INVALID_CREDIT_COUNT", "Each category needs at least one credit")
