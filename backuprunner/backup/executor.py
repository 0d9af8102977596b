"""
Backup executor - runs one complete backup cycle.

Workflow:
1. Create temporary directory
2. Produce the artifact (caller-supplied step)
3. Upload to storage
4. Apply retention policy
5. Cleanup temporary files
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from ..context import Context, ContextCancelled
from .naming import generate_backup_name
from .retention import RetentionResult, apply_retention_policy
from .storage import Storage


Producer = Callable[[Context, str], None]


class BackupError(Exception):
    """Raised when a step of the backup cycle fails."""

    def __init__(self, phase: str, message: str):
        super().__init__(f"{phase} failed: {message}")
        self.phase = phase


@dataclass
class BackupResult:
    backup_name: str
    size_bytes: int
    started_at: datetime
    completed_at: datetime
    retention: RetentionResult


class BackupExecutor:
    """
    Orchestrates produce, upload and retention for one backup.
    """

    def __init__(
        self,
        storage: Storage,
        produce: Producer,
        extension: str = '.dump',
        retention_count: int = 7,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize backup executor.

        Args:
            storage: Backend receiving the artifact
            produce: Callable writing the artifact to the given local path
            extension: Artifact extension (see naming.BACKUP_EXTENSIONS)
            retention_count: Backups to keep after the upload
            logger: Logger for progress messages
        """
        self.storage = storage
        self.produce = produce
        self.extension = extension
        self.retention_count = retention_count
        self.logger = logger or logging.getLogger(__name__)
        self.temp_dir = None

    def execute(self, ctx: Context) -> BackupResult:
        """
        Execute one backup cycle.

        Returns:
            BackupResult for the uploaded artifact

        Raises:
            BackupError: If producing, uploading or retention fails
            ContextCancelled: If ctx is cancelled or times out
        """
        started_at = datetime.now(timezone.utc)
        backup_name = generate_backup_name(self.extension, started_at)

        try:
            self.temp_dir = tempfile.mkdtemp(prefix='backuprunner_')
            local_path = os.path.join(self.temp_dir, backup_name)

            self.logger.info("Producing backup %s", backup_name)
            self._run_phase('produce', self.produce, ctx, local_path)

            if not os.path.isfile(local_path):
                raise BackupError('produce', f"no artifact written to {local_path}")
            size_bytes = os.path.getsize(local_path)
            self.logger.info("Backup produced: %s (%.2f MB)", backup_name, size_bytes / 1024 / 1024)

            self.logger.info("Uploading %s to %s storage", backup_name, self.storage.type())
            self._run_phase('upload', self.storage.upload, ctx, local_path, backup_name)
            self.logger.info("Uploaded %s", backup_name)

            retention = self._run_phase(
                'retention',
                apply_retention_policy,
                ctx,
                self.storage,
                self.retention_count,
                self.logger
            )

        finally:
            self._cleanup()

        return BackupResult(
            backup_name=backup_name,
            size_bytes=size_bytes,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            retention=retention
        )

    def _run_phase(self, phase: str, func, *args):
        try:
            return func(*args)
        except (BackupError, ContextCancelled):
            raise
        except Exception as e:
            raise BackupError(phase, str(e)) from e

    def _cleanup(self):
        """Remove temporary directory and files."""
        if self.temp_dir and os.path.exists(self.temp_dir):
            try:
                shutil.rmtree(self.temp_dir)
            except OSError as e:
                self.logger.warning("Failed to cleanup temp directory %s: %s", self.temp_dir, e)
        self.temp_dir = None
