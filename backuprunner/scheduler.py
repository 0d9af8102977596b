"""
APScheduler wrapper for cron-driven backups.

Manages:
- Parsing 5-field crontab expressions
- The background scheduler thread and its worker pool
- Draining in-flight jobs on shutdown
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger


class ScheduleError(Exception):
    """Raised when a schedule expression is invalid or cannot be registered."""
    pass


def parse_schedule(expression: str, timezone: str = 'UTC') -> CronTrigger:
    """
    Parse a standard crontab expression (minute hour dom month dow).

    Args:
        expression: Cron expression
        timezone: Timezone the expression is evaluated in

    Returns:
        CronTrigger for the expression

    Raises:
        ScheduleError: If the expression or timezone is invalid
    """
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except (ValueError, TypeError, LookupError) as e:
        raise ScheduleError(f"Invalid cron expression {expression!r}: {e}")


class CronScheduler:
    """
    Background scheduler running backup jobs on a thread pool.

    Jobs are allowed up to max_instances concurrent executions, so a run
    that outlasts the schedule interval does not block the next tick.
    """

    def __init__(self, timezone: str = 'UTC', max_instances: int = 3, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': ThreadPoolExecutor(max_workers=max_instances)
        }

        job_defaults = {
            'coalesce': True,  # Combine missed ticks into one
            'max_instances': max_instances,
            'misfire_grace_time': 300  # 5 minutes grace period for misfires
        }

        self._scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=timezone
        )
        self._job = None

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def register(self, func: Callable, trigger, job_id: str = 'backup', name: str = 'Backup'):
        """
        Add the job to the scheduler.

        Raises:
            ScheduleError: If the job cannot be added
        """
        try:
            self._job = self._scheduler.add_job(
                func=func,
                trigger=trigger,
                id=job_id,
                name=name,
                replace_existing=True
            )
        except (ValueError, TypeError, LookupError) as e:
            raise ScheduleError(f"Failed to register job {job_id}: {e}")

        self.logger.info("Scheduled job registered: %s (%s)", job_id, trigger)
        return self._job

    def start(self):
        if not self._scheduler.running:
            self._scheduler.start()
            self.logger.info("Scheduler started (state=%s)", self._scheduler.state)

    def next_run_time(self) -> Optional[datetime]:
        if self._job is None:
            return None
        job = self._scheduler.get_job(self._job.id)
        # Pending jobs (scheduler not started) have no next_run_time yet
        return getattr(job, 'next_run_time', None)

    def shutdown(self, wait: bool = True):
        """Stop ticking; with wait=True block until running jobs finish."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            self.logger.info("Scheduler stopped")
