"""
Retention policy enforcement for backups.

Keeps the newest N artifacts in a storage backend and deletes the rest,
oldest first.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..context import Context, ContextCancelled
from .storage import Storage


class RetentionError(Exception):
    """Raised when a retention pass cannot start (listing failed)."""
    pass


@dataclass
class RetentionResult:
    """Outcome of one retention pass."""

    total: int
    kept: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def apply_retention_policy(
    ctx: Context,
    storage: Storage,
    retention_count: int,
    logger: Optional[logging.Logger] = None
) -> RetentionResult:
    """
    Delete the oldest backups so that at most retention_count remain.

    Deletions run one at a time in ascending name order. A failed deletion
    is logged and recorded, and the remaining deletions still run.

    Args:
        ctx: Context bounding the pass
        storage: Backend to prune
        retention_count: Number of newest backups to keep (0 deletes all)
        logger: Logger for progress messages (default: module logger)

    Returns:
        RetentionResult describing what was kept, deleted and what failed

    Raises:
        ValueError: If retention_count is negative
        RetentionError: If the backup listing fails
        ContextCancelled: If ctx is cancelled or expires during the pass
    """
    if retention_count < 0:
        raise ValueError(f"retention_count must be >= 0, got {retention_count}")

    log = logger or logging.getLogger(__name__)
    log.info("Applying retention policy on %s storage (keeping %d backups)", storage.type(), retention_count)

    try:
        backups = storage.list(ctx)
    except ContextCancelled:
        raise
    except Exception as e:
        raise RetentionError(f"failed to list backups in {storage.type()} storage: {e}") from e

    result = RetentionResult(total=len(backups))

    if len(backups) <= retention_count:
        result.kept = list(backups)
        log.info("Current backup count (%d) within retention limit", len(backups))
        return result

    to_delete_count = len(backups) - retention_count

    for name in backups[:to_delete_count]:
        log.info("Deleting old backup: %s", name)
        try:
            storage.delete(ctx, name)
            result.deleted.append(name)
        except ContextCancelled:
            raise
        except Exception as e:
            log.warning("Failed to delete %s from %s storage: %s", name, storage.type(), e)
            result.failed.append((name, str(e)))

    # Artifacts whose delete failed are still in storage
    result.kept = [name for name, _ in result.failed] + backups[to_delete_count:]

    log.info(
        "Retention policy applied, deleted %d of %d old backup(s)",
        len(result.deleted),
        to_delete_count
    )
    return result
