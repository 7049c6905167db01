"""
Scheduler module - APScheduler setup for background cron jobs
"""
import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from app.tasks.class_jobs import (
    job_expire_class_pack_balances,
    job_generate_sessions,
    job_complete_finished_sessions,
)

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def start_scheduler():
    """Register all cron jobs and start the scheduler."""

    # 1) Expire class pack balances, every day at 00:05
    scheduler.add_job(
        job_expire_class_pack_balances,
        trigger=CronTrigger(hour=0, minute=5),
        id="expire_class_pack_balances",
        name="Expire class pack balances",
        replace_existing=True,
    )

    # 2) Generate sessions from schedules, every day at 01:00
    scheduler.add_job(
        job_generate_sessions,
        trigger=CronTrigger(hour=1, minute=0),
        id="generate_sessions",
        name="Generate sessions from schedules",
        replace_existing=True,
    )

    # 3) Complete finished sessions, every 15 minutes
    scheduler.add_job(
        job_complete_finished_sessions,
        trigger=CronTrigger(minute="*/15"),
        id="complete_finished_sessions",
        name="Complete finished sessions",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
