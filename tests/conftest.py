"""
Shared pytest fixtures for backuprunner tests.

This module provides fixtures for:
- Storage backends (local directory, moto-mocked S3, in-memory fake)
- A scriptable fake Backup implementation
- Runner configuration and logger
"""

import logging
import threading

import pytest
import boto3
from moto import mock_aws

from backuprunner.backup.storage import LocalStorage, S3Storage, StorageError
from backuprunner.config import Config
from backuprunner.context import Context


class MemoryStorage:
    """
    In-memory Storage with failure injection.

    Records every call so tests can assert on order.
    """

    def __init__(self, names=None, fail_delete=None, fail_list=False):
        self.names = set(names or [])
        self.fail_delete = set(fail_delete or [])
        self.fail_list = fail_list
        self.calls = []

    def type(self):
        return 'memory'

    def upload(self, ctx, source_path, backup_name):
        ctx.raise_if_done()
        self.calls.append(('upload', backup_name))
        self.names.add(backup_name)

    def list(self, ctx):
        self.calls.append(('list',))
        ctx.raise_if_done()
        if self.fail_list:
            raise StorageError("memory: listing unavailable")
        return sorted(self.names)

    def delete(self, ctx, backup_name):
        self.calls.append(('delete', backup_name))
        ctx.raise_if_done()
        if backup_name in self.fail_delete:
            raise StorageError(f"memory: failed to delete {backup_name}")
        if backup_name not in self.names:
            raise StorageError(f"memory: {backup_name} not found")
        self.names.remove(backup_name)

    @property
    def deleted(self):
        return [call[1] for call in self.calls if call[0] == 'delete']


class FakeBackup:
    """
    Backup implementation whose steps can be made to fail or block.
    """

    def __init__(self, config=None, config_error=None, connection_error=None, run_error=None, run_block=None):
        self._config = config or Config(backup_cron='0 2 * * *', backup_dir='/tmp/unused')
        self.config_error = config_error
        self.connection_error = connection_error
        self.run_error = run_error
        self.run_block = run_block
        self.storage = None
        self.run_contexts = []
        self.connection_tested = False
        self.run_started = threading.Event()
        self.run_finished = threading.Event()

    def name(self):
        return 'Fake'

    def config(self):
        if self.config_error:
            raise self.config_error
        return self._config

    def extra_config_log_info(self):
        return ['Fake target: test']

    def set_storage(self, storage):
        self.storage = storage

    def test_connection(self, ctx):
        self.connection_tested = True
        if self.connection_error:
            raise self.connection_error

    def run(self, ctx):
        self.run_contexts.append(ctx)
        self.run_started.set()
        try:
            if self.run_block is not None:
                self.run_block.wait(5)
            if self.run_error:
                raise self.run_error
        finally:
            self.run_finished.set()


@pytest.fixture
def ctx():
    """Background context, cancelled after the test."""
    context = Context.background().with_cancel()
    yield context
    context.cancel()


@pytest.fixture
def expired_ctx():
    """Context whose deadline has already passed."""
    return Context.background().with_timeout(0)


@pytest.fixture
def backup_dir(tmp_path):
    return tmp_path / 'backups'


@pytest.fixture
def local_storage(backup_dir):
    return LocalStorage(str(backup_dir))


@pytest.fixture
def source_file(tmp_path):
    """A produced artifact ready to upload."""
    path = tmp_path / 'artifact.dump'
    path.write_bytes(b'backup data' * 100)
    return path


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def s3_storage(mock_s3):
    return S3Storage(
        bucket_name='test-bucket',
        region='us-east-1',
        access_key='test_key',
        secret_key='test_secret'
    )


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def runner_config(tmp_path):
    return Config(
        backup_cron='*/5 * * * *',
        storage_type='local',
        backup_dir=str(tmp_path / 'backups'),
        retention_count=3,
        backup_timeout=10
    )


@pytest.fixture
def test_logger():
    logger = logging.getLogger('backuprunner.tests')
    logger.setLevel(logging.DEBUG)
    return logger
