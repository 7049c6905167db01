import logging

from fastapi import APIRouter

from app.config import APP_NAME
from app.db import get_db_connection

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check():
    """Health check endpoint, including a database ping"""
    database = "ok"
    try:
        conn = get_db_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.close()
        finally:
            conn.close()
    except Exception as e:
        logger.warning(f"Health check database ping failed: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "message": f"{APP_NAME} is running",
        "database": database,
    }
