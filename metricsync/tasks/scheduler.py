"""
Background task scheduler using APScheduler
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger

from metricsync.core.config import settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: BackgroundScheduler = None


def start_scheduler():
    """Initialize and start the scheduler"""
    global scheduler

    if scheduler is not None:
        return

    scheduler = BackgroundScheduler()

    # ============================================
    # Job queue drain (every JOB_POLL_INTERVAL_SECONDS)
    # One instance at a time: runs are strictly sequential
    # ============================================
    scheduler.add_job(
        func=run_due_jobs_job,
        trigger=IntervalTrigger(seconds=settings.JOB_POLL_INTERVAL_SECONDS),
        id="run_due_jobs",
        name="Run due backfill jobs",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    # ============================================
    # Stale job cleanup (every 30 minutes)
    # ============================================
    scheduler.add_job(
        func=cleanup_stale_jobs_job,
        trigger=IntervalTrigger(minutes=30),
        id="cleanup_stale_jobs",
        name="Fail jobs left running by a dead process",
        replace_existing=True,
    )

    # ============================================
    # Daily gap scan
    # ============================================
    if settings.GAP_SCAN_ENABLED:
        scheduler.add_job(
            func=gap_scan_job,
            trigger=CronTrigger(hour=settings.GAP_SCAN_CRON_HOUR, minute=settings.GAP_SCAN_CRON_MINUTE),
            id="daily_gap_scan",
            name="Detect and heal gaps for all active projects",
            replace_existing=True,
        )

    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Stop the scheduler"""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")


# ============================================
# Job Functions
# ============================================

def run_due_jobs_job():
    """Drain due rows from sync_jobs"""
    try:
        # Import here to avoid circular imports
        from metricsync.core.database import SessionLocal
        from metricsync.services.backfill.runner import JobRunner
        finished = JobRunner(SessionLocal).run_due()
        if finished:
            logger.info(f"Job drain processed {len(finished)} jobs")
    except Exception as e:
        logger.error(f"Job drain failed: {e}")


def cleanup_stale_jobs_job():
    """Mark jobs stuck in RUNNING as failed"""
    try:
        from metricsync.core.database import SessionLocal
        from metricsync.services.backfill.jobs import JobQueue
        JobQueue(SessionLocal).cleanup_stale_running(settings.STALE_JOB_MINUTES)
    except Exception as e:
        logger.error(f"Stale job cleanup failed: {e}")


def gap_scan_job():
    """Queue the daily gap scan; the drain job runs it"""
    logger.info("Queueing daily gap scan...")
    try:
        from metricsync.core.database import SessionLocal
        from metricsync.services.backfill.jobs import JOB_GAP_SCAN, JobQueue
        JobQueue(SessionLocal).enqueue(
            JOB_GAP_SCAN,
            params={"auto_fix": True},
            job_key=f"{JOB_GAP_SCAN}:daily",
            triggered_by="scheduler",
        )
    except Exception as e:
        logger.error(f"Daily gap scan could not be queued: {e}")
