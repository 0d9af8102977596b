"""Interface the runner expects from a backup implementation."""

from typing import List, Protocol

from .backup.storage import Storage
from .config import Config
from .context import Context


class Backup(Protocol):
    """
    A backup producer driven by the Runner.

    config() is called once at startup and may raise to abort it.
    set_storage() and test_connection() run before anything is scheduled.
    run() performs one full cycle: produce, upload, apply retention.
    """

    def name(self) -> str:
        ...

    def config(self) -> Config:
        ...

    def extra_config_log_info(self) -> List[str]:
        ...

    def set_storage(self, storage: Storage) -> None:
        ...

    def test_connection(self, ctx: Context) -> None:
        ...

    def run(self, ctx: Context) -> None:
        ...
