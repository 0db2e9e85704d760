"""
Commission Job Scheduler

APScheduler wiring for the clearance automation. The scheduler only decides
when to run; each run is one call into affiliate_ledger.jobs.commission_jobs,
which opens its own session and is safe to repeat.

Jobs:
- run_automated_processing     every AUTO_APPROVAL_INTERVAL_MINUTES (if AUTO_APPROVAL_ENABLED)
- check_approaching_clearance  daily
"""

import logging
from typing import Any, Dict, List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from affiliate_ledger.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(
    jobstores={'default': MemoryJobStore()},
    executors={'default': AsyncIOExecutor()},
    job_defaults={
        'coalesce': True,           # A backlog of missed runs collapses into one pass
        'max_instances': 1,         # Never two approval passes at once
        'misfire_grace_time': 300,
    },
    timezone=settings.SCHEDULER_TIMEZONE,
)


def commission_job_specs() -> List[Dict[str, Any]]:
    """Jobs to register, resolved from the current settings."""
    specs = []
    if settings.AUTO_APPROVAL_ENABLED:
        specs.append({
            'job_name': 'run_automated_processing',
            'name': 'Auto-approve Cleared Commissions',
            'trigger_args': {'minutes': settings.AUTO_APPROVAL_INTERVAL_MINUTES},
        })
    specs.append({
        'job_name': 'check_approaching_clearance',
        'name': 'Check Approaching Clearance',
        'trigger_args': {'hours': 24},
    })
    return specs


async def run_scheduled_job(job_name: str):
    """
    Run one commission job by name.

    Errors are logged and swallowed here so APScheduler keeps the job scheduled;
    the job itself has already logged the failure with its context.
    """
    from affiliate_ledger.jobs import commission_jobs

    job = getattr(commission_jobs, job_name)
    try:
        await job()
        logger.info(f"Scheduled job '{job_name}' completed")
    except Exception as e:
        logger.error(f"Scheduled job '{job_name}' failed: {e}")


def start_scheduler():
    """Register the commission jobs and start the scheduler."""
    if scheduler.running:
        return

    for spec in commission_job_specs():
        scheduler.add_job(
            run_scheduled_job,
            'interval',
            args=[spec['job_name']],
            id=spec['job_name'],
            name=spec['name'],
            replace_existing=True,
            **spec['trigger_args'],
        )

    scheduler.start()
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Stop the scheduler, letting a running approval pass finish."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Commission job scheduler stopped")


def get_job_status():
    """Registered jobs with their next run time."""
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
