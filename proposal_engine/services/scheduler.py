"""
Background Job Scheduler.

WHAT: Configures and manages APScheduler for the workflow background jobs.

WHY: Nothing in the workflow engine runs on its own timer:
1. Overdue approvals and expired signature requests are only acted on
   when check_timeouts is called
2. Outbox events are only delivered when the dispatcher runs

HOW: Uses APScheduler with AsyncIOScheduler. Each job opens its own
session, does one pass and commits; a failed pass is logged and the next
interval tries again.

Example:
    # In main.py lifespan:
    await start_scheduler()
    yield
    await shutdown_scheduler()
"""

import logging
from typing import Any, Dict, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from proposal_engine.core.config import settings
from proposal_engine.db.session import AsyncSessionLocal
from proposal_engine.services.notifications import NotificationDispatcher
from proposal_engine.services.workflow_engine import WorkflowEngine, get_proposal_locks


logger = logging.getLogger(__name__)


# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def run_timeout_sweep() -> Dict[str, Any]:
    """
    Run one workflow timeout sweep.

    Returns:
        Dict with the escalated, rejected and expired ids
    """
    async with AsyncSessionLocal() as session:
        engine = WorkflowEngine(session, locks=get_proposal_locks())
        result = await engine.check_timeouts()
        if result.success:
            await session.commit()
        else:
            logger.error(f"Timeout sweep failed: {result.error_messages()}")
        return result.model_dump(mode="json")


async def run_notification_dispatch() -> Dict[str, int]:
    """
    Deliver one batch of pending workflow notifications.

    Returns:
        Dict with sent, failed and skipped counts
    """
    async with AsyncSessionLocal() as session:
        summary = await NotificationDispatcher(session).dispatch_pending()
        await session.commit()
        return {"sent": summary.sent, "failed": summary.failed, "skipped": summary.skipped}


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    WHAT: Registers the timeout sweep and notification dispatch jobs,
    both every WORKFLOW_SWEEP_INTERVAL_SECONDS.

    Note: Call this from the FastAPI lifespan.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    _scheduler = AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults={
            "coalesce": True,  # Combine multiple missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
        timezone="UTC",
    )

    interval = settings.WORKFLOW_SWEEP_INTERVAL_SECONDS
    _scheduler.add_job(
        func=run_timeout_sweep,
        trigger=IntervalTrigger(seconds=interval),
        id="workflow_timeout_sweep",
        name="Workflow Timeout Sweep",
        replace_existing=True,
    )
    _scheduler.add_job(
        func=run_notification_dispatch,
        trigger=IntervalTrigger(seconds=interval),
        id="workflow_notification_dispatch",
        name="Workflow Notification Dispatch",
        replace_existing=True,
    )

    _scheduler.start()
    logger.info(f"Scheduler started with workflow jobs every {interval} seconds")


async def shutdown_scheduler() -> None:
    """
    Shut down the background job scheduler.

    Note: Call this from the FastAPI lifespan.
    """
    global _scheduler

    if _scheduler is None or not _scheduler.running:
        logger.info("Scheduler not running")
        _scheduler = None
        return

    logger.info("Shutting down scheduler...")
    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler shut down successfully")


def get_scheduler_status() -> Dict[str, Any]:
    """
    Get scheduler status information.

    WHY: Exposed by the health check.
    """
    if _scheduler is None:
        return {"running": False, "jobs": []}

    return {
        "running": _scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            }
            for job in _scheduler.get_jobs()
        ],
    }
