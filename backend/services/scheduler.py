"""
Scheduled tasks for production flow maintenance
Runs the process-record reconciliation sweep nightly
"""
import logging
from datetime import datetime, timezone
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import RECONCILE_SWEEP_HOUR, SCHEDULER_TIMEZONE

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def reconcile_process_records():
    """Repair pending quantities and re-sync every process record with its stage"""
    from database import db
    from dependencies import get_process_mirror

    logger.info("Starting scheduled process record reconciliation...")
    started_at = datetime.now(timezone.utc).isoformat()

    try:
        summary = await get_process_mirror().sweep()
    except Exception as e:
        logger.error(f"Reconciliation sweep failed: {e}")
        summary = {"error": str(e)}

    await db.scheduled_sync_logs.insert_one({
        "sync_type": "process_record_reconciliation",
        "triggered_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "summary": summary
    })
    return summary


def start_scheduler():
    """Start the APScheduler with the nightly reconciliation job"""
    scheduler.add_job(
        reconcile_process_records,
        CronTrigger(hour=RECONCILE_SWEEP_HOUR, minute=0, timezone=SCHEDULER_TIMEZONE),
        id="process_record_reconciliation",
        name=f"Process Record Reconciliation ({RECONCILE_SWEEP_HOUR}:00 {SCHEDULER_TIMEZONE})",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - reconciliation scheduled for {RECONCILE_SWEEP_HOUR}:00 {SCHEDULER_TIMEZONE}")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")


def get_scheduler_status():
    """Get status of scheduled jobs"""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })
    return {
        "running": scheduler.running,
        "jobs": jobs
    }
