"""
Backup artifact naming convention.

Artifacts are named pg-backup_{YYYY-MM-DD_HH-MM-SS}{ext}, so sorting names
sorts them by creation time. Storage listings only ever show names that
follow this convention.
"""

from datetime import datetime, timezone
from typing import Optional


BACKUP_PREFIX = 'pg-backup_'
BACKUP_EXTENSIONS = ('.dump', '.sql', '.sql.gz', '.tar')
TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'


def is_backup_file(name: str) -> bool:
    """
    Check whether a file name is a backup artifact.

    Args:
        name: Base file name (no directories)

    Returns:
        True if name has the backup prefix and an approved extension
    """
    return name.startswith(BACKUP_PREFIX) and name.endswith(BACKUP_EXTENSIONS)


def generate_backup_name(extension: str = '.dump', now: Optional[datetime] = None) -> str:
    """
    Generate an artifact name for a backup taken now.

    Args:
        extension: One of BACKUP_EXTENSIONS
        now: Timestamp to embed (default: current UTC time)

    Returns:
        Artifact name

    Raises:
        ValueError: If extension is not approved
    """
    if extension not in BACKUP_EXTENSIONS:
        raise ValueError(
            f"Invalid backup extension: {extension}. "
            f"Valid options: {list(BACKUP_EXTENSIONS)}"
        )

    if now is None:
        now = datetime.now(timezone.utc)

    return f"{BACKUP_PREFIX}{now.strftime(TIMESTAMP_FORMAT)}{extension}"
