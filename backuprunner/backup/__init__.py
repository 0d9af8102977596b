"""
Backup module for backuprunner.

This module handles the core backup functionality including:
- Artifact naming
- Storage (local directory and S3)
- Retention policy enforcement
- Execution of one backup cycle
- A command-driven backup implementation
"""

from .storage import Storage, LocalStorage, S3Storage, StorageError, new_storage
from .retention import RetentionError, RetentionResult, apply_retention_policy
from .executor import BackupError, BackupExecutor, BackupResult
from .command import CommandBackup, CommandError

__all__ = [
    'Storage',
    'LocalStorage',
    'S3Storage',
    'StorageError',
    'new_storage',
    'RetentionError',
    'RetentionResult',
    'apply_retention_policy',
    'BackupError',
    'BackupExecutor',
    'BackupResult',
    'CommandBackup',
    'CommandError'
]
