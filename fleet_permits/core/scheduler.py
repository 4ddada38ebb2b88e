# File: fleet_permits/core/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

from fleet_permits.core.config import settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()

def start_scheduler():
    """Start all scheduled jobs"""
    from fleet_permits.tasks.permit_maintenance import run_allocation_sync, run_permit_cleanup

    try:
        # Cleanup duplicates and loaded trucks
        scheduler.add_job(
            run_permit_cleanup,
            trigger=IntervalTrigger(minutes=settings.PERMIT_CLEANUP_INTERVAL_MINUTES),
            id='permit_cleanup',
            name='Clean up duplicate and loaded-truck permit allocations',
            replace_existing=True
        )

        # Keep the allocations view in step with tr800
        scheduler.add_job(
            run_allocation_sync,
            trigger=IntervalTrigger(minutes=settings.ALLOCATION_SYNC_INTERVAL_MINUTES),
            id='allocation_sync',
            name='Sync permit entries to allocations',
            replace_existing=True
        )

        scheduler.start()
        logger.info("✅ Scheduler started successfully")
        logger.info(f"Active jobs: {len(scheduler.get_jobs())}")
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")

def stop_scheduler():
    """Stop scheduler gracefully"""
    try:
        if scheduler.running:
            scheduler.shutdown()
            logger.info("Scheduler stopped")
    except Exception as e:
        logger.error(f"Error stopping scheduler: {e}")
