"""
Backup/Restore Pipeline

- Manual backups: clone the scheduled CronJob's job template into a one-off Job
- Live dumps: exec the engine's dump command in the database container and
  stream its stdout to the caller
- Restores: stream an artifact from object storage into the engine's restore
  command's stdin
- Artifact management: list, delete and prune backups of an instance

Nothing is buffered in full: every byte stream goes through a bounded relay or
a blocking socket write.
"""

import asyncio
import logging
import shlex
import threading
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Tuple

from .errors import BackupConfigurationAbsentError
from .kubernetes.helpers import DATABASE_CONTAINER, create_manual_backup_job_manifest
from .s3_manager import BackupArtifact
from .streams import relay_from_thread
from ..utils.resource_naming import get_backup_cronjob_name, get_primary_pod_name

logger = logging.getLogger(__name__)


def validate_backup_filename(filename: str) -> str:
    """Reject filenames that would escape the instance's prefix."""
    if not filename or "/" in filename or filename in (".", ".."):
        raise ValueError(f"Invalid backup filename: {filename!r}")
    return filename


def dump_filename(name: str, extension: str, today: Optional[datetime] = None) -> str:
    """Download filename of a live dump, e.g. shop-db_backup_2024-05-01.sql"""
    today = today or datetime.now(timezone.utc)
    return f"{name}_backup_{today.strftime('%Y-%m-%d')}.{extension}"


def bounded_stdin_command(command: List[str], content_length: int) -> List[str]:
    """
    Wrap a command so it reads exactly `content_length` bytes of stdin.

    The exec websocket cannot half-close stdin, so the restore process would
    otherwise wait for EOF forever.
    """
    return ["/bin/sh", "-c", f"head -c {int(content_length)} | {shlex.join(command)}"]


class BackupService:
    """Backup and restore operations for existing database instances."""

    def __init__(self, database_manager=None, k8s_client=None, s3_manager=None, settings=None):
        self._manager = database_manager
        self._k8s = k8s_client
        self._s3 = s3_manager
        self._settings = settings

    @property
    def manager(self):
        if self._manager is None:
            from .database_manager import get_database_manager
            self._manager = get_database_manager()
        return self._manager

    @property
    def k8s(self):
        if self._k8s is None:
            self._k8s = self.manager.k8s
        return self._k8s

    @property
    def s3(self):
        if self._s3 is None:
            self._s3 = self.manager.s3
        return self._s3

    @property
    def settings(self):
        if self._settings is None:
            self._settings = self.manager.settings
        return self._settings

    # =========================================================================
    # MANUAL BACKUP
    # =========================================================================

    async def trigger_manual_backup(self, name: str) -> str:
        """
        Start a one-off backup Job from the instance's CronJob template.

        Returns:
            Name of the created Job

        Raises:
            BackupConfigurationAbsentError: If the instance has no backup CronJob
        """
        cronjob = await self.k8s.read_cronjob(get_backup_cronjob_name(name))
        if cronjob is None:
            logger.warning(f"[BACKUP] No backup CronJob for {name}")
            raise BackupConfigurationAbsentError(name)

        # The job reads S3 credentials from the global secret
        await self.manager.ensure_s3_credentials_secret()

        job = create_manual_backup_job_manifest(
            name=name,
            namespace=self.k8s.namespace,
            cronjob=cronjob,
            managed_by=self.settings.managed_by_label,
            ttl_seconds=self.settings.manual_backup_ttl_seconds
        )
        await self.k8s.create_job(job)

        logger.info(f"[BACKUP] ✅ Triggered manual backup {job.metadata.name} for {name}")
        return job.metadata.name

    # =========================================================================
    # LIVE DUMP
    # =========================================================================

    async def open_dump(self, name: str) -> Tuple[AsyncIterator[bytes], str]:
        """
        Prepare a live dump of an instance.

        Lookups happen here so a missing instance fails before any byte is
        streamed; the exec channel opens when iteration starts.

        Returns:
            (async byte iterator, suggested download filename)

        Raises:
            NotFoundError: If the instance does not exist
        """
        strategy = await self.manager.resolve_strategy(name)
        pod_name = get_primary_pod_name(name)
        command = strategy.dump_command()

        def produce(relay) -> None:
            self.k8s.stream_exec_stdout(pod_name, DATABASE_CONTAINER, command, relay)

        async def stream() -> AsyncIterator[bytes]:
            logger.info(f"[BACKUP] Streaming dump of {name}")
            total = 0
            async for chunk in relay_from_thread(produce, maxsize=self.settings.stream_queue_size):
                total += len(chunk)
                yield chunk
            logger.info(f"[BACKUP] ✅ Dump of {name} finished ({total} bytes)")

        return stream(), dump_filename(name, strategy.dump_extension)

    # =========================================================================
    # RESTORE
    # =========================================================================

    async def restore_backup(self, name: str, filename: str) -> None:
        """
        Restore an instance from one of its backup artifacts.

        Existing client connections are terminated first (best-effort). The
        call returns once the restore command exited successfully.

        Raises:
            NotFoundError: If the instance or artifact does not exist
            ChannelFailureError: If the restore command failed
        """
        validate_backup_filename(filename)
        strategy = await self.manager.resolve_strategy(name)
        internal_name = await self.manager.get_internal_name(name)
        key = f"{internal_name}/{filename}"
        pod_name = get_primary_pod_name(name)

        body, content_length = await self.s3.open_backup_stream(key)
        try:
            logger.info(f"[BACKUP] Restoring {name} from {key} ({content_length} bytes)")

            try:
                code, _, stderr = await self.k8s.exec_command(
                    pod_name, DATABASE_CONTAINER, strategy.pre_restore_command()
                )
                if code != 0:
                    logger.warning(f"[BACKUP] Pre-restore step on {name} exited with {code}: {stderr.strip()}")
            except Exception as e:
                logger.warning(f"[BACKUP] Pre-restore step on {name} failed: {e}")

            command = bounded_stdin_command(strategy.restore_command(), content_length)
            chunks = body.iter_chunks(self.settings.stream_chunk_size)
            cancel_event = threading.Event()
            try:
                await asyncio.to_thread(
                    self.k8s.exec_with_stdin,
                    pod_name,
                    DATABASE_CONTAINER,
                    command,
                    chunks,
                    cancel_event
                )
            except asyncio.CancelledError:
                cancel_event.set()
                raise
        finally:
            body.close()

        logger.info(f"[BACKUP] ✅ Restored {name} from {key}")

    # =========================================================================
    # ARTIFACTS
    # =========================================================================

    async def list_backups(self, name: str) -> List[BackupArtifact]:
        internal_name = await self.manager.get_internal_name(name)
        return await self.s3.list_backups(internal_name)

    async def delete_backup(self, name: str, filename: str) -> None:
        validate_backup_filename(filename)
        internal_name = await self.manager.get_internal_name(name)
        await self.s3.delete_backup(f"{internal_name}/{filename}")

    async def prune_backups(self, name: str, keep: int) -> int:
        """Keep only the `keep` newest backups of an instance."""
        internal_name = await self.manager.get_internal_name(name)
        return await self.s3.prune_backups(internal_name, keep)


# Global instance - lazily initialized
_backup_service: Optional[BackupService] = None


def get_backup_service() -> BackupService:
    """Get or create the global BackupService instance."""
    global _backup_service
    if _backup_service is None:
        _backup_service = BackupService()
    return _backup_service
