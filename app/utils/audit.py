"""
Audit Logging Utility
Audit trail for master data changes (classes, schedules, sessions, class packs)
"""
import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

AUDITED_TABLES = (
    "gym_classes",
    "class_schedules",
    "class_sessions",
    "class_packs",
    "member_class_pack_balances",
)

SENSITIVE_FIELDS = ("password", "pin", "token", "secret", "credential")


def log_audit(
    conn,
    table_name: str,
    record_id: int,
    action: str,  # INSERT, UPDATE, DELETE
    user_id: Optional[int],
    old_data: Optional[Dict[str, Any]] = None,
    new_data: Optional[Dict[str, Any]] = None,
    tenant_id: Optional[int] = None,
):
    """
    Write one row to audit_logs inside the caller's transaction.

    Failures are logged and swallowed; the caller commits.
    """
    cursor = conn.cursor()

    try:
        old_json = json.dumps(sanitize_for_audit(old_data), default=str) if old_data else None
        new_json = json.dumps(sanitize_for_audit(new_data), default=str) if new_data else None

        cursor.execute(
            """
            INSERT INTO audit_logs (
                tenant_id, table_name, record_id, action, user_id,
                old_data, new_data, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (tenant_id, table_name, record_id, action, user_id, old_json, new_json, datetime.now()),
        )
    except Exception as e:
        logger.warning(f"Audit logging failed for {table_name}#{record_id}: {e}")
    finally:
        cursor.close()


def get_record_for_audit(conn, table_name: str, record_id: int) -> Optional[Dict[str, Any]]:
    """Fetch the current row before UPDATE/DELETE."""
    if table_name not in AUDITED_TABLES:
        logger.warning(f"Table {table_name} not in whitelist for audit")
        return None

    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(f"SELECT * FROM {table_name} WHERE id = %s", (record_id,))
        return cursor.fetchone()
    except Exception as e:
        logger.warning(f"Failed to fetch record for audit: {e}")
        return None
    finally:
        cursor.close()


def sanitize_for_audit(data: Optional[Dict[str, Any]], exclude_fields: list = None) -> Dict[str, Any]:
    """Mask sensitive fields before they are written to the audit trail."""
    if not data:
        return {}

    excluded = set(SENSITIVE_FIELDS) | set(exclude_fields or [])
    sanitized = dict(data)
    for field in excluded:
        if field in sanitized:
            sanitized[field] = "***REDACTED***"
    return sanitized
