from datetime import datetime, date, time, timedelta
from decimal import Decimal
from typing import Optional, List


def to_time(value) -> Optional[time]:
    """
    Normalise a TIME column value.
    pymysql returns TIME columns as timedelta.
    """
    if value is None:
        return None
    if isinstance(value, timedelta):
        return (datetime.min + value).time()
    if isinstance(value, str):
        parts = [int(p) for p in value.split(":")]
        return time(*parts)
    return value


def session_start(session: dict) -> datetime:
    return datetime.combine(session["session_date"], to_time(session["start_time"]))


def session_end(session: dict) -> datetime:
    return datetime.combine(session["session_date"], to_time(session["end_time"]))


def parse_id_list(value) -> List[int]:
    """Parse a comma separated id column ("3,7,12") into a list of ints."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [int(v) for v in value]
    return [int(v) for v in str(value).split(",") if v.strip()]


def join_id_list(values) -> Optional[str]:
    if not values:
        return None
    return ",".join(str(int(v)) for v in values)


def to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def paginate(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit,
    }


def serialize_row(row: Optional[dict]) -> Optional[dict]:
    """Make a DB row JSON friendly (TIME columns, TINYINT flags)."""
    if row is None:
        return None
    result = dict(row)
    for key, value in result.items():
        if isinstance(value, timedelta):
            result[key] = str(to_time(value))
        elif isinstance(value, date) and not isinstance(value, datetime):
            result[key] = value.isoformat()
        elif key.startswith(("is_", "has_")) or key.endswith("_enabled"):
            if value is not None:
                result[key] = bool(value)
    return result


def insert_row(cursor, table: str, values: dict) -> int:
    """INSERT a dict of column -> value. Column names come from code, never from input."""
    columns = ", ".join(values)
    placeholders = ", ".join(["%s"] * len(values))
    cursor.execute(
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
        list(values.values()),
    )
    return cursor.lastrowid


def update_row(cursor, table: str, record_id: int, values: dict) -> None:
    if not values:
        return
    assignments = ", ".join(f"{column} = %s" for column in values)
    cursor.execute(
        f"UPDATE {table} SET {assignments} WHERE id = %s",
        list(values.values()) + [record_id],
    )
