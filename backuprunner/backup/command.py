"""
Command-driven backup: produces artifacts by running an external program.

The backup command is an argv list. An {output} argument is replaced with
the artifact path; without one, the command's stdout becomes the artifact.
Typical use is a database dump tool, e.g.

    BACKUP_COMMAND="pg_dump --format=custom --file={output} mydb"
"""

import os
import shlex
import subprocess
import tempfile
from typing import List, Mapping, Optional, Sequence

from ..config import Config
from ..context import Context
from .executor import BackupExecutor, BackupResult
from .naming import BACKUP_EXTENSIONS
from .storage import Storage


OUTPUT_PLACEHOLDER = '{output}'

# How often a running command checks its context
POLL_INTERVAL = 0.2

STDERR_TAIL_BYTES = 4096


class CommandError(Exception):
    """Raised when a backup or probe command fails."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ''):
        message = f"command {argv[0]!r} exited with status {returncode}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def run_command(ctx: Context, argv: Sequence[str], stdout_path: Optional[str] = None):
    """
    Run a command, killing it if ctx is cancelled.

    Args:
        ctx: Context bounding the command
        argv: Program and arguments
        stdout_path: File receiving stdout (default: discarded)

    Raises:
        ContextCancelled: If ctx is done before the command exits
        CommandError: If the command cannot start or exits non-zero
    """
    ctx.raise_if_done()

    stdout = open(stdout_path, 'wb') if stdout_path else subprocess.DEVNULL
    try:
        with tempfile.TemporaryFile() as stderr:
            try:
                proc = subprocess.Popen(list(argv), stdout=stdout, stderr=stderr)
            except OSError as e:
                raise CommandError(argv, -1, str(e))

            while True:
                try:
                    returncode = proc.wait(timeout=POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    if ctx.done():
                        proc.kill()
                        proc.wait()
                        raise ctx.error

            if returncode != 0:
                stderr.seek(0, os.SEEK_END)
                size = stderr.tell()
                stderr.seek(max(size - STDERR_TAIL_BYTES, 0))
                tail = stderr.read().decode('utf-8', errors='replace').strip()
                raise CommandError(argv, returncode, tail)
    finally:
        if stdout_path:
            stdout.close()


class CommandBackup:
    """
    Backup implementation that shells out to a dump command.
    """

    def __init__(
        self,
        command: Sequence[str],
        test_command: Optional[Sequence[str]] = None,
        extension: str = '.dump',
        label: str = 'Command',
        environ: Optional[Mapping[str, str]] = None
    ):
        """
        Args:
            command: argv producing the artifact
            test_command: argv probing readiness at startup (optional)
            extension: Artifact extension
            label: Display name for logs
            environ: Mapping configuration is read from (default: os.environ)
        """
        if not command:
            raise ValueError("Backup command must not be empty")
        if extension not in BACKUP_EXTENSIONS:
            raise ValueError(
                f"Invalid backup extension: {extension}. "
                f"Valid options: {list(BACKUP_EXTENSIONS)}"
            )

        self.command = list(command)
        self.test_command = list(test_command) if test_command else None
        self.extension = extension
        self.label = label
        self._environ = environ
        self._config: Optional[Config] = None
        self._storage: Optional[Storage] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'CommandBackup':
        """
        Build from BACKUP_COMMAND, BACKUP_TEST_COMMAND, BACKUP_EXTENSION
        and BACKUP_NAME.
        """
        if environ is None:
            environ = os.environ

        command = shlex.split(environ.get('BACKUP_COMMAND', ''))
        test_command = shlex.split(environ.get('BACKUP_TEST_COMMAND', ''))

        return cls(
            command=command,
            test_command=test_command or None,
            extension=environ.get('BACKUP_EXTENSION') or '.dump',
            label=environ.get('BACKUP_NAME') or 'Command',
            environ=environ
        )

    def name(self) -> str:
        return self.label

    def config(self) -> Config:
        if self._config is None:
            self._config = Config.from_env(self._environ)
        return self._config

    def extra_config_log_info(self) -> List[str]:
        # Only program names; arguments may carry credentials
        info = [f"Backup command: {self.command[0]}"]
        if self.test_command:
            info.append(f"Test command: {self.test_command[0]}")
        info.append(f"Backup extension: {self.extension}")
        return info

    def set_storage(self, storage: Storage) -> None:
        if storage is None:
            raise ValueError("storage must not be None")
        self._storage = storage

    def test_connection(self, ctx: Context) -> None:
        if self.test_command:
            run_command(ctx, self.test_command)

    def run(self, ctx: Context) -> BackupResult:
        if self._storage is None:
            raise RuntimeError("Storage not set. Call set_storage() first.")

        executor = BackupExecutor(
            storage=self._storage,
            produce=self._produce,
            extension=self.extension,
            retention_count=self.config().retention_count
        )
        return executor.execute(ctx)

    def _produce(self, ctx: Context, output_path: str):
        if any(OUTPUT_PLACEHOLDER in arg for arg in self.command):
            argv = [arg.replace(OUTPUT_PLACEHOLDER, output_path) for arg in self.command]
            run_command(ctx, argv)
        else:
            run_command(ctx, self.command, stdout_path=output_path)
