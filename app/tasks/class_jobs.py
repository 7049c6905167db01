"""
Class booking cron jobs:
  1. Expire class pack balances past their expiry date
  2. Generate sessions from active schedules for the coming days
  3. Complete finished sessions (confirmed bookings -> no-show)
"""
import logging
from datetime import date, timedelta

from app.config import SESSION_GENERATION_DAYS_AHEAD, SESSION_AUTO_COMPLETE_GRACE_MINUTES
from app.db import get_db_connection
from app.services import class_packs, sessions

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# 1. EXPIRE CLASS PACK BALANCES
# ─────────────────────────────────────────────
def job_expire_class_pack_balances():
    """Active or depleted balances whose expires_at has passed -> expired."""
    conn = get_db_connection()
    try:
        expired = class_packs.expire_balances(conn)
        conn.commit()
        logger.info("Expire balances job done: %d balances expired", expired)
    except Exception as e:
        conn.rollback()
        logger.error("Error in job_expire_class_pack_balances: %s", e, exc_info=True)
    finally:
        conn.close()


# ─────────────────────────────────────────────
# 2. GENERATE SESSIONS FROM SCHEDULES
# ─────────────────────────────────────────────
def job_generate_sessions():
    """Keep SESSION_GENERATION_DAYS_AHEAD days of sessions generated for every club."""
    today = date.today()
    conn = get_db_connection()
    try:
        result = sessions.generate_sessions(conn, today, today + timedelta(days=SESSION_GENERATION_DAYS_AHEAD))
        conn.commit()
        logger.info(
            "Generate sessions job done: %d created, %d already existed",
            result["created"], result["skipped"],
        )
    except Exception as e:
        conn.rollback()
        logger.error("Error in job_generate_sessions: %s", e, exc_info=True)
    finally:
        conn.close()


# ─────────────────────────────────────────────
# 3. COMPLETE FINISHED SESSIONS
# ─────────────────────────────────────────────
def job_complete_finished_sessions():
    """Sessions that ended more than the grace period ago are completed."""
    conn = get_db_connection()
    try:
        completed = sessions.auto_complete_sessions(conn, SESSION_AUTO_COMPLETE_GRACE_MINUTES)
        conn.commit()
        if completed:
            logger.info("Complete sessions job done: %d sessions completed", completed)
    except Exception as e:
        conn.rollback()
        logger.error("Error in job_complete_finished_sessions: %s", e, exc_info=True)
    finally:
        conn.close()
