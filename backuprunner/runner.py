"""
Backup runner - startup validation, scheduled execution and shutdown.

Lifecycle:
1. Load configuration and log it
2. Create storage and hand it to the backup
3. Verify the backup's connection
4. Optionally run a backup immediately
5. Run backups on the cron schedule until shutdown is requested
6. Drain: stop ticking, let in-flight runs finish
"""

import enum
import logging
import threading
from typing import Callable, Optional

from .backup.storage import new_storage
from .capability import Backup
from .config import Config
from .context import Context
from .scheduler import CronScheduler, ScheduleError, parse_schedule


class StartupError(Exception):
    """Raised when the runner cannot start; nothing has been scheduled."""
    pass


class RunState(enum.Enum):
    IDLE = 'idle'
    SCHEDULED = 'scheduled'
    RUNNING = 'running'
    DRAINING = 'draining'
    STOPPED = 'stopped'


class Runner:
    """
    Drives a Backup on a cron schedule.

    Startup failures raise StartupError. Failures inside a run are logged
    and the runner keeps waiting for the next tick.
    """

    def __init__(
        self,
        backup: Backup,
        logger: Optional[logging.Logger] = None,
        storage_factory: Callable = new_storage,
        scheduler_factory: Callable = CronScheduler
    ):
        """
        Args:
            backup: Backup implementation to drive
            logger: Logger all runner output goes to
            storage_factory: Builds the storage backend from Config
            scheduler_factory: Builds the scheduler (timezone, max_instances, logger)
        """
        self.backup = backup
        self.logger = logger or logging.getLogger('backuprunner')
        self.storage_factory = storage_factory
        self.scheduler_factory = scheduler_factory

        self.config: Optional[Config] = None
        self.storage = None
        self.scheduler = None
        self._trigger = None
        self._phase = RunState.IDLE
        self._active_runs = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> RunState:
        with self._lock:
            if self._phase in (RunState.IDLE, RunState.SCHEDULED) and self._active_runs > 0:
                return RunState.RUNNING
            return self._phase

    @property
    def active_runs(self) -> int:
        with self._lock:
            return self._active_runs

    def start(self):
        """
        Validate configuration, storage and connectivity.

        Raises:
            StartupError: If any startup step fails
        """
        self.logger.info("Starting %s Backup Service...", self.backup.name())

        try:
            config = self.backup.config()
        except Exception as e:
            raise StartupError(f"failed to load configuration: {e}") from e
        self.config = config

        self.logger.info("Configuration loaded:")
        for line in self.backup.extra_config_log_info():
            self.logger.info("  %s", line)
        self.logger.info("  Backup schedule: %s (%s)", config.backup_cron, config.timezone)
        self.logger.info("  Storage type: %s", config.storage_type)
        self.logger.info("  Retention count: %d", config.retention_count)
        self.logger.info("  Backup timeout: %d minutes", config.backup_timeout)

        try:
            self._trigger = parse_schedule(config.backup_cron, config.timezone)
        except ScheduleError as e:
            raise StartupError(f"failed to parse schedule: {e}") from e

        try:
            self.storage = self.storage_factory(config)
        except Exception as e:
            raise StartupError(f"failed to initialize storage: {e}") from e
        self.logger.info("Storage initialized: %s", self.storage.type())

        try:
            self.backup.set_storage(self.storage)
        except Exception as e:
            raise StartupError(f"failed to set storage: {e}") from e

        ctx = Context.background().with_timeout(config.timeout_seconds)
        try:
            self.backup.test_connection(ctx)
        except Exception as e:
            raise StartupError(f"connection test failed: {e}") from e
        finally:
            ctx.cancel()
        self.logger.info("Connection verified")

    def execute_run(self, trigger: str = 'scheduled') -> bool:
        """
        Run one backup bounded by the configured timeout.

        Never raises; failures are logged.

        Returns:
            True if the backup completed without error
        """
        with self._lock:
            self._active_runs += 1
            overlapping = self._active_runs > 1

        if overlapping:
            self.logger.warning("Starting %s backup while a previous run is still in progress", trigger)
        else:
            self.logger.info("Starting %s backup", trigger)

        ctx = Context.background().with_timeout(self.config.timeout_seconds)
        try:
            self.backup.run(ctx)
            self.logger.info("%s backup completed", trigger.capitalize())
            return True
        except Exception:
            self.logger.exception("%s backup failed", trigger.capitalize())
            return False
        finally:
            ctx.cancel()
            with self._lock:
                self._active_runs -= 1

    def _on_tick(self):
        self.logger.info("Cron triggered backup job")
        self.execute_run('scheduled')

    def serve(self, shutdown: Context):
        """
        Run backups on schedule until shutdown is done, then drain.

        Args:
            shutdown: Context cancelled when the process should stop

        Raises:
            StartupError: If the schedule cannot be registered
        """
        if self.config is None:
            raise RuntimeError("Runner not started. Call start() first.")

        if self.config.backup_on_start:
            self.logger.info("Running initial backup on startup...")
            self.execute_run('startup')

        self.scheduler = self.scheduler_factory(
            timezone=self.config.timezone,
            max_instances=self.config.max_overlapping_runs,
            logger=self.logger
        )
        try:
            self.scheduler.register(self._on_tick, self._trigger, job_id='backup', name=f"Backup: {self.backup.name()}")
            self.scheduler.start()
        except Exception as e:
            raise StartupError(f"failed to start scheduler: {e}") from e

        with self._lock:
            self._phase = RunState.SCHEDULED

        next_run = self.scheduler.next_run_time()
        if next_run is not None:
            self.logger.info("Next backup scheduled at: %s", next_run.strftime('%Y-%m-%d %H:%M:%S %Z'))
        self.logger.info("Scheduler started, waiting for scheduled jobs...")

        # Timed waits keep the main thread responsive to signal handlers
        while not shutdown.wait(1.0):
            pass
        self.logger.info("Shutdown requested, waiting for running backups to finish...")

        with self._lock:
            self._phase = RunState.DRAINING
        self.scheduler.shutdown(wait=True)

        with self._lock:
            self._phase = RunState.STOPPED
        self.logger.info("Shutdown complete")

    def run(self, shutdown: Context) -> int:
        """
        Start and serve until shutdown.

        Returns:
            Process exit code: 1 if startup failed, 0 after a clean shutdown
        """
        try:
            self.start()
            self.serve(shutdown)
        except StartupError as e:
            self.logger.error("Startup failed: %s", e)
            with self._lock:
                self._phase = RunState.STOPPED
            return 1
        return 0
