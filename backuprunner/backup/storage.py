"""
Storage backends for backup artifacts.

Supports:
- LocalStorage: Store in a local directory
- S3Storage: Upload to S3 or any S3-compatible service (MinIO, R2, GCS)

Both satisfy the Storage protocol; callers never depend on the concrete
class.
"""

import logging
import os
import posixpath
from typing import List, Optional, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..config import Config
from ..context import Context, ContextCancelled, run_cancellable
from .naming import is_backup_file


logger = logging.getLogger(__name__)

# 1MB copy chunks, 10MB multipart parts
COPY_CHUNK_SIZE = 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024
MULTIPART_THRESHOLD = 100 * 1024 * 1024


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class Storage(Protocol):
    """Operations every storage backend provides."""

    def upload(self, ctx: Context, source_path: str, backup_name: str) -> None:
        ...

    def list(self, ctx: Context) -> List[str]:
        ...

    def delete(self, ctx: Context, backup_name: str) -> None:
        ...

    def type(self) -> str:
        ...


def _check_name(backup_name: str):
    if not backup_name or '/' in backup_name or '\\' in backup_name or backup_name in ('.', '..'):
        raise StorageError(f"Invalid backup name: {backup_name!r}")


class LocalStorage:
    """
    Handler for storing backups in a local directory.

    Artifacts live directly in base_path. Uploads are written to
    {name}.tmp and renamed into place once complete.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Directory holding the backups (created if missing)
        """
        self.base_path = base_path

        try:
            os.makedirs(base_path, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create backup directory {base_path}: {e}")

    def type(self) -> str:
        return 'local'

    def upload(self, ctx: Context, source_path: str, backup_name: str) -> None:
        """
        Copy a local file into the backup directory.

        Args:
            ctx: Context bounding the copy
            source_path: Path to the produced artifact
            backup_name: Name to store it under

        Raises:
            ContextCancelled: If ctx is cancelled or expires before the copy completes
            StorageError: If the copy fails
        """
        _check_name(backup_name)
        dest_path = os.path.join(self.base_path, backup_name)

        try:
            run_cancellable(ctx, self._copy, ctx, source_path, dest_path)
        except ContextCancelled:
            raise
        except OSError as e:
            raise StorageError(f"local: failed to upload {backup_name}: {e}")

    def _copy(self, ctx: Context, source_path: str, dest_path: str):
        temp_path = dest_path + '.tmp'

        try:
            with open(source_path, 'rb') as src, open(temp_path, 'wb') as dst:
                while True:
                    ctx.raise_if_done()
                    chunk = src.read(COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    dst.write(chunk)
                dst.flush()
                os.fsync(dst.fileno())

            ctx.raise_if_done()
            os.replace(temp_path, dest_path)

        except BaseException:
            try:
                os.remove(temp_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Failed to remove partial upload %s: %s", temp_path, e)
            raise

    def list(self, ctx: Context) -> List[str]:
        """
        List backup artifacts in the directory, oldest first.

        Raises:
            ContextCancelled: If ctx is done
            StorageError: If the directory cannot be read
        """
        ctx.raise_if_done()

        try:
            with os.scandir(self.base_path) as entries:
                backups = [
                    entry.name for entry in entries
                    if entry.is_file() and is_backup_file(entry.name)
                ]
        except OSError as e:
            raise StorageError(f"local: failed to read backup directory {self.base_path}: {e}")

        return sorted(backups)

    def delete(self, ctx: Context, backup_name: str) -> None:
        """
        Delete one artifact. A missing file is an error.

        Raises:
            ContextCancelled: If ctx is done
            StorageError: If deletion fails
        """
        ctx.raise_if_done()
        _check_name(backup_name)

        try:
            os.remove(os.path.join(self.base_path, backup_name))
        except OSError as e:
            raise StorageError(f"local: failed to delete {backup_name}: {e}")


class _CancellableReader:
    """File wrapper whose reads fail once ctx is done."""

    def __init__(self, ctx: Context, f):
        self._ctx = ctx
        self._f = f

    def read(self, *args):
        self._ctx.raise_if_done()
        return self._f.read(*args)

    def __getattr__(self, name):
        return getattr(self._f, name)


class S3Storage:
    """
    Handler for storing backups in an S3 bucket.

    Keys have the form {prefix}/{backup_name}, or just {backup_name}
    when no prefix is configured.
    """

    def __init__(
        self,
        bucket_name: str,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        use_path_style: bool = False,
        prefix: str = ''
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services
            access_key: Static access key ID (default: ambient credentials)
            secret_key: Static secret access key
            use_path_style: Address the bucket in the path instead of the host
            prefix: Key prefix ("folder") for all backups
        """
        if not bucket_name:
            raise StorageError("S3 bucket name is required")

        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix or ''

        client_kwargs = {'region_name': region}
        if endpoint_url:
            client_kwargs['endpoint_url'] = endpoint_url
        if use_path_style:
            client_kwargs['config'] = BotoConfig(s3={'addressing_style': 'path'})
        if access_key and secret_key:
            client_kwargs['aws_access_key_id'] = access_key
            client_kwargs['aws_secret_access_key'] = secret_key

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def type(self) -> str:
        return 's3'

    def _key(self, backup_name: str) -> str:
        if not self.prefix:
            return backup_name
        return self.prefix.rstrip('/') + '/' + backup_name

    def _list_prefix(self) -> str:
        if self.prefix and not self.prefix.endswith('/'):
            return self.prefix + '/'
        return self.prefix

    def upload(self, ctx: Context, source_path: str, backup_name: str) -> None:
        """
        Upload a local file to S3.

        Files over 100MB go through a multipart upload that checks ctx
        between parts and is aborted on cancellation. Smaller files are
        sent with put_object, whose body stops reading once ctx is done.
        A request already fully sent when ctx expires may still complete,
        leaving an object behind even though the upload reported failure.

        Args:
            ctx: Context bounding the upload
            source_path: Path to the produced artifact
            backup_name: Name to store it under

        Raises:
            ContextCancelled: If ctx is cancelled or expires before the upload completes
            StorageError: If upload fails
        """
        _check_name(backup_name)
        key = self._key(backup_name)

        try:
            run_cancellable(ctx, self._upload_file, ctx, source_path, key)
        except ContextCancelled:
            raise
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"s3: upload of {backup_name} failed ({error_code}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"s3: upload of {backup_name} failed: {e}")

    def _upload_file(self, ctx: Context, source_path: str, key: str):
        file_size = os.path.getsize(source_path)

        if file_size > MULTIPART_THRESHOLD:
            self._multipart_upload(ctx, source_path, key)
        else:
            ctx.raise_if_done()
            with open(source_path, 'rb') as f:
                self.s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=_CancellableReader(ctx, f)
                )

    def _multipart_upload(self, ctx: Context, source_path: str, key: str):
        """
        Upload large file using multipart upload with cancellation support.

        The upload is aborted on any error, including cancellation.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(source_path, 'rb') as f:
                part_number = 1

                while True:
                    ctx.raise_if_done()

                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except BaseException:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as e:
                logger.warning("Failed to abort multipart upload for %s: %s", key, e)
            raise

    def list(self, ctx: Context) -> List[str]:
        """
        List backup artifacts directly under the prefix, oldest first.

        Keys in nested "folders" are not listed.

        Raises:
            ContextCancelled: If ctx is done
            StorageError: If listing fails
        """
        ctx.raise_if_done()

        backups = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')

            # Direct children only, the keys delete() can reach
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self._list_prefix(), Delimiter='/'):
                ctx.raise_if_done()
                for obj in page.get('Contents', []):
                    name = posixpath.basename(obj['Key'])
                    if obj['Key'] == self._key(name) and is_backup_file(name):
                        backups.append(name)

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"s3: list of {self.bucket_name} failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"s3: list of {self.bucket_name} failed: {e}")

        return sorted(backups)

    def delete(self, ctx: Context, backup_name: str) -> None:
        """
        Delete one artifact from S3.

        Raises:
            ContextCancelled: If ctx is done
            StorageError: If deletion fails
        """
        ctx.raise_if_done()
        _check_name(backup_name)

        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=self._key(backup_name)
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"s3: delete of {backup_name} failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"s3: delete of {backup_name} failed: {e}")


def new_storage(config: Config):
    """
    Create the storage backend selected by config.

    Args:
        config: Runner configuration

    Returns:
        LocalStorage or S3Storage bound to the configured location

    Raises:
        StorageError: If the type is unknown or the backend cannot be created
    """
    if config.storage_type == 'local':
        return LocalStorage(config.backup_dir)

    if config.storage_type == 's3':
        return S3Storage(
            bucket_name=config.s3_bucket,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint,
            access_key=config.s3_access_key,
            secret_key=config.s3_secret_key,
            use_path_style=config.s3_use_path_style,
            prefix=config.s3_prefix
        )

    raise StorageError(f"Unsupported storage type: {config.storage_type}")
