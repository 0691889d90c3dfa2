"""
S3 Manager for Database Backups

Manages backup artifacts in S3-compatible object storage (MinIO, AWS S3, ...).

Layout:
- s3://{bucket}/{internal_name}/backup_{YYYY-MM-DD_HH-MM-SS}.{sql|rdb}
- Scheduled and manual backup Jobs upload directly from inside the cluster;
  this service only lists, deletes, prunes and reads artifacts back for restore.

Path-style addressing is forced: most self-hosted S3 implementations do not
serve virtual-hosted bucket names.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from ..config import get_settings
from .errors import NotFoundError

logger = logging.getLogger(__name__)

# Retry configuration for S3 operations
S3_CLIENT_CONFIG = Config(
    retries={
        'max_attempts': 3,
        'mode': 'adaptive'
    },
    connect_timeout=10,
    read_timeout=120,
    s3={'addressing_style': 'path'},
)

# DeleteObjects accepts at most 1000 keys per call
DELETE_BATCH_SIZE = 1000


@dataclass
class BackupArtifact:
    key: str
    filename: str
    size_bytes: int
    last_modified: datetime


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class S3Manager:
    """
    Manages backup artifacts in S3-compatible object storage.

    All boto3 calls are blocking and run in worker threads.
    """

    def __init__(self):
        """Initialize S3 client for the configured endpoint."""
        settings = get_settings()

        self.s3_client = boto3.client(
            's3',
            endpoint_url=settings.s3_endpoint,
            region_name=settings.s3_region,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=S3_CLIENT_CONFIG
        )
        self.bucket_name = settings.s3_bucket

        logger.info(f"[S3] Initialized S3Manager for bucket: {self.bucket_name}")
        logger.info(f"[S3] Endpoint: {settings.s3_endpoint}, Region: {settings.s3_region}")

    @staticmethod
    def _folder(prefix: str) -> str:
        """Normalize a prefix to a folder so 'db' does not match 'db2/...'."""
        prefix = prefix.strip('/')
        if not prefix:
            raise ValueError("Backup prefix must not be empty")
        return f"{prefix}/"

    def _list_objects(self, prefix: str) -> List[dict]:
        paginator = self.s3_client.get_paginator('list_objects_v2')
        objects = []
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
            objects.extend(page.get('Contents', []))
        return objects

    async def list_backups(self, prefix: str) -> List[BackupArtifact]:
        """
        List backup artifacts under a prefix.

        Args:
            prefix: Internal database name

        Returns:
            Artifacts ordered by last_modified, newest first
        """
        folder = self._folder(prefix)
        objects = await asyncio.to_thread(self._list_objects, folder)

        artifacts = [
            BackupArtifact(
                key=obj['Key'],
                filename=obj['Key'][len(folder):],
                size_bytes=obj.get('Size', 0),
                last_modified=obj['LastModified']
            )
            for obj in objects
            if obj['Key'] != folder
        ]
        artifacts.sort(key=lambda a: a.last_modified, reverse=True)

        logger.debug(f"[S3] Found {len(artifacts)} backups under {folder}")
        return artifacts

    async def delete_backup(self, key: str) -> None:
        """Delete a single backup artifact. Deleting an absent key succeeds."""
        await asyncio.to_thread(
            self.s3_client.delete_object,
            Bucket=self.bucket_name,
            Key=key
        )
        logger.info(f"[S3] ✅ Deleted backup: {key}")

    def _delete_keys(self, keys: List[str]) -> None:
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            response = self.s3_client.delete_objects(
                Bucket=self.bucket_name,
                Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': True}
            )
            errors = response.get('Errors') or []
            if errors:
                first = errors[0]
                raise RuntimeError(
                    f"Failed to delete {len(errors)} object(s), first: {first.get('Key')} ({first.get('Code')})"
                )

    async def delete_backups_folder(self, prefix: str) -> int:
        """
        Delete every artifact under a prefix.

        Returns:
            Number of deleted objects
        """
        folder = self._folder(prefix)
        objects = await asyncio.to_thread(self._list_objects, folder)
        keys = [obj['Key'] for obj in objects]
        if not keys:
            logger.info(f"[S3] No backups under {folder}")
            return 0

        await asyncio.to_thread(self._delete_keys, keys)
        logger.info(f"[S3] ✅ Deleted {len(keys)} backups under {folder}")
        return len(keys)

    async def prune_backups(self, prefix: str, keep: int) -> int:
        """
        Delete all but the `keep` most recent artifacts under a prefix.

        Returns:
            Number of deleted objects
        """
        if keep < 0:
            raise ValueError("keep must be zero or positive")

        artifacts = await self.list_backups(prefix)
        stale = [artifact.key for artifact in artifacts[keep:]]
        if not stale:
            return 0

        await asyncio.to_thread(self._delete_keys, stale)
        logger.info(f"[S3] ✅ Pruned {len(stale)} backups under {prefix}, kept {keep}")
        return len(stale)

    async def open_backup_stream(self, key: str) -> Tuple[object, int]:
        """
        Open an artifact for streaming.

        Returns:
            (botocore StreamingBody, content length in bytes); the caller closes
            the body.

        Raises:
            NotFoundError: If the key does not exist
        """
        try:
            response = await asyncio.to_thread(
                self.s3_client.get_object,
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            if _error_code(e) in ('NoSuchKey', '404', 'NotFound'):
                raise NotFoundError(f"Backup not found: {key}") from e
            logger.error(f"[S3] ❌ Error opening backup {key}: {e}")
            raise

        logger.info(f"[S3] Opened backup {key} ({response['ContentLength']} bytes)")
        return response['Body'], response['ContentLength']


# Singleton instance
_s3_manager: Optional[S3Manager] = None


def get_s3_manager() -> S3Manager:
    """Get the singleton S3Manager instance."""
    global _s3_manager

    if _s3_manager is None:
        _s3_manager = S3Manager()

    return _s3_manager
