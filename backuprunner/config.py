import os
from dataclasses import dataclass
from typing import Mapping, Optional


STORAGE_TYPES = ('local', 's3')


class ConfigError(Exception):
    """Raised when the runner configuration is missing or invalid."""
    pass


def _env_bool(environ: Mapping[str, str], key: str, default: bool) -> bool:
    value = environ.get(key)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = environ.get(key)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {value!r}")


@dataclass
class Config:
    """Runner configuration"""

    # Schedule
    backup_cron: str = '0 2 * * *'
    backup_on_start: bool = False
    backup_timeout: int = 60  # minutes
    timezone: str = 'UTC'
    max_overlapping_runs: int = 3

    # Retention
    retention_count: int = 7

    # Storage
    storage_type: str = 'local'
    backup_dir: str = '/backups'

    # S3
    s3_bucket: Optional[str] = None
    s3_region: str = 'us-east-1'
    s3_endpoint: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_use_path_style: bool = False
    s3_prefix: str = ''

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Validated Config

        Raises:
            ConfigError: If a value cannot be parsed or fails validation
        """
        if environ is None:
            environ = os.environ

        config = cls(
            backup_cron=environ.get('BACKUP_CRON') or cls.backup_cron,
            backup_on_start=_env_bool(environ, 'BACKUP_ON_START', cls.backup_on_start),
            backup_timeout=_env_int(environ, 'BACKUP_TIMEOUT', cls.backup_timeout),
            timezone=environ.get('BACKUP_TIMEZONE') or cls.timezone,
            max_overlapping_runs=_env_int(environ, 'BACKUP_MAX_OVERLAP', cls.max_overlapping_runs),
            retention_count=_env_int(environ, 'RETENTION_COUNT', cls.retention_count),
            storage_type=(environ.get('STORAGE_TYPE') or cls.storage_type).strip().lower(),
            backup_dir=environ.get('BACKUP_DIR') or cls.backup_dir,
            s3_bucket=environ.get('S3_BUCKET') or None,
            s3_region=environ.get('S3_REGION') or cls.s3_region,
            s3_endpoint=environ.get('S3_ENDPOINT') or None,
            s3_access_key=environ.get('S3_ACCESS_KEY') or None,
            s3_secret_key=environ.get('S3_SECRET_KEY') or None,
            s3_use_path_style=_env_bool(environ, 'S3_USE_PATH_STYLE', cls.s3_use_path_style),
            s3_prefix=environ.get('S3_PREFIX') or cls.s3_prefix,
        )
        config.validate()
        return config

    @property
    def timeout_seconds(self) -> float:
        return self.backup_timeout * 60

    def validate(self):
        """
        Check field values.

        The cron expression itself is checked when the scheduler parses it.

        Raises:
            ConfigError: On the first invalid field
        """
        if not self.backup_cron or not self.backup_cron.strip():
            raise ConfigError("BACKUP_CRON must not be empty")

        if self.storage_type not in STORAGE_TYPES:
            raise ConfigError(
                f"Invalid storage type: {self.storage_type}. "
                f"Valid options: {list(STORAGE_TYPES)}"
            )

        if self.retention_count < 0:
            raise ConfigError(f"RETENTION_COUNT must be >= 0, got {self.retention_count}")

        if self.backup_timeout <= 0:
            raise ConfigError(f"BACKUP_TIMEOUT must be > 0 minutes, got {self.backup_timeout}")

        if self.max_overlapping_runs < 1:
            raise ConfigError(f"BACKUP_MAX_OVERLAP must be >= 1, got {self.max_overlapping_runs}")

        if self.storage_type == 'local' and not self.backup_dir:
            raise ConfigError("BACKUP_DIR is required for local storage")

        if self.storage_type == 's3' and not self.s3_bucket:
            raise ConfigError("S3_BUCKET is required for s3 storage")

        if bool(self.s3_access_key) != bool(self.s3_secret_key):
            raise ConfigError("S3_ACCESS_KEY and S3_SECRET_KEY must be set together")
