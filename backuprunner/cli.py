import argparse
import os
import signal
import sys
from typing import Optional, Sequence

from . import configure_logging
from .backup.command import CommandBackup
from .capability import Backup
from .context import Context
from .runner import Runner


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scheduled backup runner.")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Log level (default INFO).",
    )
    parser.add_argument(
        "--log-file",
        default=os.getenv("LOG_FILE"),
        help="Also write logs to this file (rotated at 10MB).",
    )
    return parser.parse_args(argv)


def install_signal_handlers(shutdown: Context, logger) -> None:
    """Cancel shutdown on SIGINT/SIGTERM."""

    def _handle_signal(signum, _frame):
        logger.info("Received signal %s, shutting down...", signal.Signals(signum).name)
        shutdown.cancel()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)


def main(argv: Optional[Sequence[str]] = None, backup: Optional[Backup] = None) -> int:
    args = parse_args(argv)
    logger = configure_logging(args.log_level, args.log_file)

    if backup is None:
        try:
            backup = CommandBackup.from_env()
        except ValueError as e:
            logger.error("Startup failed: %s", e)
            return 1

    shutdown = Context.background().with_cancel()
    install_signal_handlers(shutdown, logger)

    runner = Runner(backup, logger=logger)
    return runner.run(shutdown)


if __name__ == "__main__":
    sys.exit(main())
