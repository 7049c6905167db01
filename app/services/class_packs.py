"""
Class pack catalogue and the member credit ledger.
"""
import logging
from datetime import datetime
from typing import Optional, List

from app.errors import NotFoundError, ConflictError, InvalidRequestError, InvalidStateError
from app.services import credits
from app.services.credits import (
    BALANCE_ACTIVE,
    BALANCE_DEPLETED,
    BALANCE_EXPIRED,
    PACK_ACTIVE,
    PACK_INACTIVE,
)
from app.services.pricing import ALLOCATION_FLAT, ALLOCATION_PER_CATEGORY, pack_valid_for_class
from app.utils.audit import log_audit, get_record_for_audit
from app.utils.helpers import insert_row, update_row, join_id_list, parse_id_list

logger = logging.getLogger(__name__)

CLASS_PACK_FIELDS = (
    "name",
    "description",
    "class_count",
    "price",
    "currency",
    "tax_rate",
    "validity_days",
    "valid_class_ids",
    "allocation_mode",
    "sort_order",
)


# ============== Row helpers ==============

def get_class_pack_row(cursor, tenant_id: int, class_pack_id: int) -> dict:
    cursor.execute(
        "SELECT * FROM class_packs WHERE id = %s AND tenant_id = %s",
        (class_pack_id, tenant_id),
    )
    class_pack = cursor.fetchone()
    if not class_pack:
        raise NotFoundError("CLASS_PACK_NOT_FOUND", "Class pack not found")
    return class_pack


def get_allocations(cursor, class_pack_id: int) -> List[dict]:
    cursor.execute(
        """
        SELECT category_id, credit_count
        FROM class_pack_category_allocations
        WHERE class_pack_id = %s
        ORDER BY category_id
        """,
        (class_pack_id,),
    )
    return list(cursor.fetchall())


def get_balance_row(cursor, tenant_id: int, balance_id: int, for_update: bool = False) -> dict:
    lock = " FOR UPDATE" if for_update else ""
    cursor.execute(
        f"SELECT * FROM member_class_pack_balances WHERE id = %s AND tenant_id = %s{lock}",
        (balance_id, tenant_id),
    )
    balance = cursor.fetchone()
    if not balance:
        raise NotFoundError("BALANCE_NOT_FOUND", "Class pack balance not found")
    return balance


def save_balance(cursor, balance: dict) -> None:
    cursor.execute(
        """
        UPDATE member_class_pack_balances
        SET classes_used = %s, classes_remaining = %s, status = %s, updated_at = %s
        WHERE id = %s
        """,
        (
            balance["classes_used"],
            balance["classes_remaining"],
            balance["status"],
            datetime.now(),
            balance["id"],
        ),
    )


def get_category_balance_row(cursor, balance_id: int, category_id: int, for_update: bool = False) -> Optional[dict]:
    lock = " FOR UPDATE" if for_update else ""
    cursor.execute(
        f"""
        SELECT * FROM member_category_balances
        WHERE balance_id = %s AND category_id = %s{lock}
        """,
        (balance_id, category_id),
    )
    return cursor.fetchone()


def _with_allocations(cursor, class_pack: dict) -> dict:
    class_pack["valid_class_ids"] = parse_id_list(class_pack.get("valid_class_ids"))
    if class_pack["allocation_mode"] == ALLOCATION_PER_CATEGORY:
        class_pack["allocations"] = get_allocations(cursor, class_pack["id"])
    else:
        class_pack["allocations"] = []
    return class_pack


def _replace_allocations(cursor, class_pack_id: int, allocations: Optional[List[dict]]) -> None:
    cursor.execute(
        "DELETE FROM class_pack_category_allocations WHERE class_pack_id = %s",
        (class_pack_id,),
    )
    for allocation in allocations or []:
        insert_row(cursor, "class_pack_category_allocations", {
            "class_pack_id": class_pack_id,
            "category_id": allocation["category_id"],
            "credit_count": allocation["credit_count"],
        })


# ============== Class pack catalogue ==============

def create_class_pack(conn, tenant_id: int, data: dict, user_id: Optional[int] = None) -> dict:
    allocations = data.pop("allocations", None)
    allocation_mode = data.get("allocation_mode") or ALLOCATION_FLAT
    credits.validate_pack_definition(data.get("class_count"), data.get("price"), allocation_mode, allocations)

    cursor = conn.cursor(dictionary=True)
    try:
        values = {key: data.get(key) for key in CLASS_PACK_FIELDS if key in data}
        values["allocation_mode"] = allocation_mode
        values["valid_class_ids"] = join_id_list(data.get("valid_class_ids"))
        values.update({
            "tenant_id": tenant_id,
            "status": PACK_ACTIVE,
            "created_at": datetime.now(),
        })
        class_pack_id = insert_row(cursor, "class_packs", values)

        if allocation_mode == ALLOCATION_PER_CATEGORY:
            _replace_allocations(cursor, class_pack_id, allocations)

        log_audit(conn, "class_packs", class_pack_id, "INSERT", user_id, new_data=values, tenant_id=tenant_id)
        logger.info(f"Class pack #{class_pack_id} created for tenant {tenant_id}")

        return _with_allocations(cursor, get_class_pack_row(cursor, tenant_id, class_pack_id))
    finally:
        cursor.close()


def get_class_pack(conn, tenant_id: int, class_pack_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        return _with_allocations(cursor, get_class_pack_row(cursor, tenant_id, class_pack_id))
    finally:
        cursor.close()


def list_class_packs(conn, tenant_id: int, status: Optional[str] = None, page: int = 1, limit: int = 20):
    cursor = conn.cursor(dictionary=True)
    try:
        where_clause = "WHERE tenant_id = %s"
        params = [tenant_id]
        if status:
            where_clause += " AND status = %s"
            params.append(status)

        cursor.execute(f"SELECT COUNT(*) AS total FROM class_packs {where_clause}", params)
        total = cursor.fetchone()["total"]

        offset = (page - 1) * limit
        cursor.execute(
            f"""
            SELECT * FROM class_packs
            {where_clause}
            ORDER BY sort_order ASC, name ASC
            LIMIT %s OFFSET %s
            """,
            params + [limit, offset],
        )
        rows = [_with_allocations(cursor, row) for row in cursor.fetchall()]
        return rows, total
    finally:
        cursor.close()


def list_active_class_packs(conn, tenant_id: int) -> List[dict]:
    """Catalogue shown to members."""
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(
            """
            SELECT * FROM class_packs
            WHERE tenant_id = %s AND status = %s
            ORDER BY sort_order ASC, price ASC
            """,
            (tenant_id, PACK_ACTIVE),
        )
        return [_with_allocations(cursor, row) for row in cursor.fetchall()]
    finally:
        cursor.close()


def update_class_pack(conn, tenant_id: int, class_pack_id: int, data: dict, user_id: Optional[int] = None) -> dict:
    """Update a class pack. Passing allocations replaces them."""
    cursor = conn.cursor(dictionary=True)
    try:
        old = get_record_for_audit(conn, "class_packs", class_pack_id)
        class_pack = get_class_pack_row(cursor, tenant_id, class_pack_id)

        allocations = data.pop("allocations", None)
        allocation_mode = data.get("allocation_mode") or class_pack["allocation_mode"]
        class_count = data.get("class_count", class_pack["class_count"])
        price = data.get("price", class_pack["price"])
        if allocation_mode == ALLOCATION_PER_CATEGORY and allocations is None:
            allocations = get_allocations(cursor, class_pack_id)
        credits.validate_pack_definition(class_count, price, allocation_mode, allocations)

        values = {key: data[key] for key in CLASS_PACK_FIELDS if key in data}
        if "valid_class_ids" in values:
            values["valid_class_ids"] = join_id_list(values["valid_class_ids"])
        values["updated_at"] = datetime.now()
        update_row(cursor, "class_packs", class_pack_id, values)

        if allocation_mode == ALLOCATION_PER_CATEGORY:
            _replace_allocations(cursor, class_pack_id, allocations)
        else:
            _replace_allocations(cursor, class_pack_id, None)

        log_audit(conn, "class_packs", class_pack_id, "UPDATE", user_id, old_data=old, new_data=values, tenant_id=tenant_id)
        return _with_allocations(cursor, get_class_pack_row(cursor, tenant_id, class_pack_id))
    finally:
        cursor.close()


def set_class_pack_status(conn, tenant_id: int, class_pack_id: int, new_status: str, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        class_pack = get_class_pack_row(cursor, tenant_id, class_pack_id)
        update_row(cursor, "class_packs", class_pack_id, {"status": new_status, "updated_at": datetime.now()})
        log_audit(
            conn, "class_packs", class_pack_id, "UPDATE", user_id,
            old_data={"status": class_pack["status"]}, new_data={"status": new_status}, tenant_id=tenant_id,
        )
        logger.info(f"Class pack #{class_pack_id} {class_pack['status']} -> {new_status}")
        return _with_allocations(cursor, get_class_pack_row(cursor, tenant_id, class_pack_id))
    finally:
        cursor.close()


def delete_class_pack(conn, tenant_id: int, class_pack_id: int, user_id: Optional[int] = None) -> None:
    cursor = conn.cursor(dictionary=True)
    try:
        class_pack = get_class_pack_row(cursor, tenant_id, class_pack_id)
        if class_pack["status"] != PACK_INACTIVE:
            raise ConflictError("CLASS_PACK_ACTIVE", "Deactivate the class pack before deleting it")

        cursor.execute(
            """
            SELECT COUNT(*) AS total FROM member_class_pack_balances
            WHERE class_pack_id = %s AND status = %s
            """,
            (class_pack_id, BALANCE_ACTIVE),
        )
        if cursor.fetchone()["total"] > 0:
            raise ConflictError("CLASS_PACK_HAS_BALANCES", "Class pack still has active member balances")

        cursor.execute("DELETE FROM class_packs WHERE id = %s", (class_pack_id,))
        log_audit(conn, "class_packs", class_pack_id, "DELETE", user_id, old_data=class_pack, tenant_id=tenant_id)
    finally:
        cursor.close()


# ============== Member balances ==============

def _ensure_member(cursor, tenant_id: int, member_id: int) -> dict:
    cursor.execute(
        "SELECT id, first_name, last_name, email FROM members WHERE id = %s AND tenant_id = %s",
        (member_id, tenant_id),
    )
    member = cursor.fetchone()
    if not member:
        raise NotFoundError("MEMBER_NOT_FOUND", "Member not found")
    return member


def _with_category_balances(cursor, balance: dict) -> dict:
    cursor.execute(
        """
        SELECT id, category_id, credits_allocated, credits_remaining
        FROM member_category_balances
        WHERE balance_id = %s
        ORDER BY category_id
        """,
        (balance["id"],),
    )
    balance["category_balances"] = list(cursor.fetchall())
    return balance


def _create_balance(cursor, tenant_id: int, member_id: int, class_pack_id: int,
                    order_id: Optional[str], is_complimentary: bool) -> dict:
    _ensure_member(cursor, tenant_id, member_id)
    class_pack = get_class_pack_row(cursor, tenant_id, class_pack_id)
    if class_pack["status"] != PACK_ACTIVE:
        raise InvalidRequestError("CLASS_PACK_INACTIVE", "Class pack is not available")

    now = datetime.now()
    values = credits.new_balance(class_pack, now)
    values.update({
        "tenant_id": tenant_id,
        "member_id": member_id,
        "order_id": order_id,
        "is_complimentary": is_complimentary,
        "created_at": now,
    })
    balance_id = insert_row(cursor, "member_class_pack_balances", values)

    if class_pack["allocation_mode"] == ALLOCATION_PER_CATEGORY:
        for allocation in get_allocations(cursor, class_pack_id):
            insert_row(cursor, "member_category_balances", {
                "balance_id": balance_id,
                "category_id": allocation["category_id"],
                "credits_allocated": allocation["credit_count"],
                "credits_remaining": allocation["credit_count"],
            })

    return _with_category_balances(cursor, get_balance_row(cursor, tenant_id, balance_id))


def grant_balance(conn, tenant_id: int, member_id: int, class_pack_id: int, user_id: Optional[int] = None) -> dict:
    """Give a member a complimentary class pack."""
    cursor = conn.cursor(dictionary=True)
    try:
        balance = _create_balance(cursor, tenant_id, member_id, class_pack_id, None, True)
        log_audit(conn, "member_class_pack_balances", balance["id"], "INSERT", user_id,
                  new_data={"member_id": member_id, "class_pack_id": class_pack_id, "is_complimentary": True},
                  tenant_id=tenant_id)
        logger.info(f"Complimentary class pack #{class_pack_id} granted to member #{member_id}")
        return balance
    finally:
        cursor.close()


def purchase_balance(conn, tenant_id: int, member_id: int, class_pack_id: int, order_id: str,
                     user_id: Optional[int] = None) -> dict:
    """Create a balance for a paid order."""
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(
            "SELECT id FROM member_class_pack_balances WHERE tenant_id = %s AND order_id = %s",
            (tenant_id, order_id),
        )
        if cursor.fetchone():
            raise ConflictError("ORDER_ALREADY_USED", f"A balance already exists for order {order_id}")

        balance = _create_balance(cursor, tenant_id, member_id, class_pack_id, order_id, False)
        log_audit(conn, "member_class_pack_balances", balance["id"], "INSERT", user_id,
                  new_data={"member_id": member_id, "class_pack_id": class_pack_id, "order_id": order_id},
                  tenant_id=tenant_id)
        logger.info(f"Class pack #{class_pack_id} purchased by member #{member_id} (order {order_id})")
        return balance
    finally:
        cursor.close()


def get_balance(conn, tenant_id: int, balance_id: int) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        return _with_category_balances(cursor, get_balance_row(cursor, tenant_id, balance_id))
    finally:
        cursor.close()


def list_member_balances(conn, tenant_id: int, member_id: int, status: Optional[str] = None) -> List[dict]:
    cursor = conn.cursor(dictionary=True)
    try:
        where_clause = "WHERE b.tenant_id = %s AND b.member_id = %s"
        params = [tenant_id, member_id]
        if status:
            where_clause += " AND b.status = %s"
            params.append(status)

        cursor.execute(
            f"""
            SELECT b.*, cp.name AS class_pack_name, cp.allocation_mode
            FROM member_class_pack_balances b
            JOIN class_packs cp ON cp.id = b.class_pack_id
            {where_clause}
            ORDER BY b.created_at DESC
            """,
            params,
        )
        return [_with_category_balances(cursor, row) for row in cursor.fetchall()]
    finally:
        cursor.close()


def list_active_balances(conn, tenant_id: int, member_id: int) -> List[dict]:
    now = datetime.now()
    return [
        balance for balance in list_member_balances(conn, tenant_id, member_id, BALANCE_ACTIVE)
        if credits.can_use_credit(balance, now)
    ]


def usable_balances_for_class(cursor, tenant_id: int, member_id: int, gym_class: dict,
                              now: Optional[datetime] = None) -> List[dict]:
    """Active balances of a member that can pay for one session of gym_class."""
    now = now or datetime.now()
    cursor.execute(
        """
        SELECT b.*, cp.name AS class_pack_name, cp.allocation_mode, cp.valid_class_ids
        FROM member_class_pack_balances b
        JOIN class_packs cp ON cp.id = b.class_pack_id
        WHERE b.tenant_id = %s AND b.member_id = %s AND b.status = %s
        ORDER BY b.expires_at IS NULL, b.expires_at ASC, b.created_at ASC
        """,
        (tenant_id, member_id, BALANCE_ACTIVE),
    )
    usable = []
    for balance in cursor.fetchall():
        if not credits.can_use_credit(balance, now):
            continue
        if not pack_valid_for_class(balance, gym_class):
            continue
        if balance["allocation_mode"] == ALLOCATION_PER_CATEGORY:
            category = get_category_balance_row(cursor, balance["id"], gym_class["category_id"])
            if not category or category["credits_remaining"] <= 0:
                continue
            balance["category_credits_remaining"] = category["credits_remaining"]
        balance["valid_class_ids"] = parse_id_list(balance.get("valid_class_ids"))
        usable.append(balance)
    return usable


def valid_balances_for_class(conn, tenant_id: int, member_id: int, gym_class_id: int) -> List[dict]:
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(
            "SELECT * FROM gym_classes WHERE id = %s AND tenant_id = %s",
            (gym_class_id, tenant_id),
        )
        gym_class = cursor.fetchone()
        if not gym_class:
            raise NotFoundError("CLASS_NOT_FOUND", "Gym class not found")
        return usable_balances_for_class(cursor, tenant_id, member_id, gym_class)
    finally:
        cursor.close()


def total_remaining_credits(conn, tenant_id: int, member_id: int) -> int:
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(
            """
            SELECT COALESCE(SUM(classes_remaining), 0) AS total
            FROM member_class_pack_balances
            WHERE tenant_id = %s AND member_id = %s AND status = %s
              AND (expires_at IS NULL OR expires_at > %s)
            """,
            (tenant_id, member_id, BALANCE_ACTIVE, datetime.now()),
        )
        return int(cursor.fetchone()["total"])
    finally:
        cursor.close()


def _correction_category(cursor, tenant_id: int, balance: dict, category_id: Optional[int]) -> Optional[dict]:
    """Per-category balances move one category row together with the total."""
    class_pack = get_class_pack_row(cursor, tenant_id, balance["class_pack_id"])
    if class_pack["allocation_mode"] != ALLOCATION_PER_CATEGORY:
        if category_id is not None:
            raise InvalidRequestError("CATEGORY_NOT_APPLICABLE", "This class pack is not allocated per category")
        return None
    if category_id is None:
        raise InvalidRequestError("CATEGORY_REQUIRED", "category_id is required for a per category class pack")
    category = get_category_balance_row(cursor, balance["id"], category_id, for_update=True)
    if not category:
        raise NotFoundError("CATEGORY_BALANCE_NOT_FOUND", "Class pack has no credits for this category")
    return category


def use_credit(conn, tenant_id: int, balance_id: int, category_id: Optional[int] = None) -> dict:
    """Manual debit of one credit (staff correction)."""
    cursor = conn.cursor(dictionary=True)
    try:
        balance = get_balance_row(cursor, tenant_id, balance_id, for_update=True)
        category = _correction_category(cursor, tenant_id, balance, category_id)
        if category and category["credits_remaining"] <= 0:
            raise InvalidStateError("CLASS_PACK_UNUSABLE", "No credits left for this category")
        credits.use_credit(balance)
        save_balance(cursor, balance)
        if category:
            cursor.execute(
                "UPDATE member_category_balances SET credits_remaining = credits_remaining - 1 WHERE id = %s",
                (category["id"],),
            )
        logger.info(f"Credit used on balance #{balance_id}, {balance['classes_remaining']} left")
        return _with_category_balances(cursor, balance)
    finally:
        cursor.close()


def refund_credit(conn, tenant_id: int, balance_id: int, category_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        balance = get_balance_row(cursor, tenant_id, balance_id, for_update=True)
        category = _correction_category(cursor, tenant_id, balance, category_id)
        if category and category["credits_remaining"] >= category["credits_allocated"]:
            raise InvalidStateError("NOTHING_TO_REFUND", "No used credits to refund for this category")
        credits.refund_credit(balance)
        save_balance(cursor, balance)
        if category:
            cursor.execute(
                "UPDATE member_category_balances SET credits_remaining = credits_remaining + 1 WHERE id = %s",
                (category["id"],),
            )
        logger.info(f"Credit refunded on balance #{balance_id}, {balance['classes_remaining']} left")
        return _with_category_balances(cursor, balance)
    finally:
        cursor.close()


def cancel_balance(conn, tenant_id: int, balance_id: int, user_id: Optional[int] = None) -> dict:
    cursor = conn.cursor(dictionary=True)
    try:
        balance = get_balance_row(cursor, tenant_id, balance_id, for_update=True)
        previous = balance["status"]
        credits.cancel_balance(balance)
        save_balance(cursor, balance)
        log_audit(conn, "member_class_pack_balances", balance_id, "UPDATE", user_id,
                  old_data={"status": previous}, new_data={"status": balance["status"]}, tenant_id=tenant_id)
        return _with_category_balances(cursor, balance)
    finally:
        cursor.close()


def expire_balances(conn, now: Optional[datetime] = None) -> int:
    """Mark active or depleted balances past expires_at as expired. Runs across tenants."""
    now = now or datetime.now()
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(
            """
            UPDATE member_class_pack_balances
            SET status = %s, updated_at = %s
            WHERE status IN (%s, %s)
              AND expires_at IS NOT NULL
              AND expires_at <= %s
            """,
            (BALANCE_EXPIRED, now, BALANCE_ACTIVE, BALANCE_DEPLETED, now),
        )
        return cursor.rowcount
    finally:
        cursor.close()
