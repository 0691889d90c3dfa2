"""
Unit tests for the backup/restore pipeline.
"""

import logging
from datetime import datetime
from unittest.mock import Mock

import pytest

pytest.importorskip("kubernetes")

from dataforge.services.backup_service import (
    bounded_stdin_command,
    dump_filename,
    validate_backup_filename,
)
from dataforge.services.errors import (
    BackupConfigurationAbsentError,
    ChannelFailureError,
    NotFoundError,
)


def _body(data: bytes):
    body = Mock()
    body.iter_chunks = Mock(side_effect=lambda size: iter([data[i:i + size] for i in range(0, len(data), size)]))
    return body


@pytest.mark.unit
class TestHelpers:
    """Test filename and command helpers."""

    def test_dump_filename(self):
        assert dump_filename("shop-db", "sql", datetime(2024, 5, 1)) == "shop-db_backup_2024-05-01.sql"

    def test_rejects_path_traversal(self):
        for bad in ("", "..", "../other/backup.sql", "a/b.sql"):
            with pytest.raises(ValueError):
                validate_backup_filename(bad)
        assert validate_backup_filename("backup_2024-05-01_03-00-00.sql") == "backup_2024-05-01_03-00-00.sql"

    def test_bounded_stdin_command(self):
        command = bounded_stdin_command(["/bin/sh", "-c", 'psql -d "$POSTGRES_DB"'], 1024)
        assert command[:2] == ["/bin/sh", "-c"]
        assert command[2].startswith("head -c 1024 | /bin/sh -c ")
        assert "'psql -d \"$POSTGRES_DB\"'" in command[2]


@pytest.mark.unit
class TestManualBackup:
    """Test one-off backup Jobs."""

    @pytest.mark.asyncio
    async def test_trigger_clones_cronjob(self, database_manager, backup_service, fake_k8s):
        await database_manager.create_database("shop-db", "postgres")

        job_name = await backup_service.trigger_manual_backup("shop-db")

        assert job_name.startswith("shop-db-manual-backup-")
        job = fake_k8s.jobs[job_name]
        assert job.spec.ttl_seconds_after_finished == 300
        assert job.spec.template.spec.containers[0].name == "backup-worker"

    @pytest.mark.asyncio
    async def test_trigger_without_cronjob(self, database_manager, backup_service, fake_k8s):
        await database_manager.create_database("cache", "redis")

        with pytest.raises(BackupConfigurationAbsentError):
            await backup_service.trigger_manual_backup("cache")

        assert fake_k8s.jobs == {}


@pytest.mark.unit
class TestStreamDump:
    """Test live dump streaming."""

    @pytest.mark.asyncio
    async def test_streams_exec_stdout(self, database_manager, backup_service, fake_k8s):
        await database_manager.create_database("shop-db", "postgres")
        fake_k8s.dump_chunks = [b"-- dump\n", b"CREATE TABLE t();\n"]

        stream, filename = await backup_service.open_dump("shop-db")
        chunks = [chunk async for chunk in stream]

        assert b"".join(chunks) == b"-- dump\nCREATE TABLE t();\n"
        assert filename.startswith("shop-db_backup_") and filename.endswith(".sql")
        pod, container, command = fake_k8s.exec_calls[0]
        assert pod == "shop-db-statefulset-0"
        assert container == "database"
        assert "pg_dump" in command[-1]

    @pytest.mark.asyncio
    async def test_exec_failure_is_not_silent(self, database_manager, backup_service, fake_k8s):
        await database_manager.create_database("cache", "redis")
        fake_k8s.dump_chunks = [b"REDIS0011"]
        fake_k8s.dump_error = ChannelFailureError("exit code 1")

        stream, filename = await backup_service.open_dump("cache")

        assert filename.endswith(".rdb")
        with pytest.raises(ChannelFailureError):
            async for _ in stream:
                pass

    @pytest.mark.asyncio
    async def test_missing_instance_fails_before_streaming(self, backup_service):
        with pytest.raises(NotFoundError):
            await backup_service.open_dump("nope")


@pytest.mark.unit
class TestRestore:
    """Test restore from object storage."""

    @pytest.mark.asyncio
    async def test_restore_pipes_object_into_stdin(self, database_manager, backup_service, fake_k8s, mock_s3):
        await database_manager.create_database("shop-db", "postgres")
        data = b"x" * 200000
        body = _body(data)
        mock_s3.open_backup_stream.return_value = (body, len(data))

        await backup_service.restore_backup("shop-db", "backup_2024-05-01_03-00-00.sql")

        mock_s3.open_backup_stream.assert_awaited_once_with("shop_db/backup_2024-05-01_03-00-00.sql")
        assert b"".join(fake_k8s.stdin_received) == data
        assert fake_k8s.stdin_commands[0][2].startswith(f"head -c {len(data)} | ")
        # Pre-restore ran first
        assert "pg_terminate_backend" in fake_k8s.exec_calls[0][2][-1]
        body.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_pre_restore_failure_is_tolerated(self, database_manager, backup_service, fake_k8s, mock_s3, caplog):
        await database_manager.create_database("shop-db", "postgres")
        mock_s3.open_backup_stream.return_value = (_body(b"data"), 4)
        fake_k8s.failures["exec_command"] = RuntimeError("psql missing")

        with caplog.at_level(logging.WARNING):
            await backup_service.restore_backup("shop-db", "backup.sql")

        assert fake_k8s.stdin_received == [b"data"]
        assert "Pre-restore step on shop-db failed" in caplog.text

    @pytest.mark.asyncio
    async def test_restore_failure_raises(self, database_manager, backup_service, fake_k8s, mock_s3):
        await database_manager.create_database("shop-db", "postgres")
        body = _body(b"data")
        mock_s3.open_backup_stream.return_value = (body, 4)
        fake_k8s.stdin_error = ChannelFailureError("exit code 3")

        with pytest.raises(ChannelFailureError):
            await backup_service.restore_backup("shop-db", "backup.sql")

        body.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_artifact(self, database_manager, backup_service, fake_k8s, mock_s3):
        await database_manager.create_database("shop-db", "postgres")
        mock_s3.open_backup_stream.side_effect = NotFoundError("Backup not found")

        with pytest.raises(NotFoundError):
            await backup_service.restore_backup("shop-db", "missing.sql")

        assert fake_k8s.stdin_commands == []


@pytest.mark.unit
class TestArtifacts:
    """Test artifact management by instance name."""

    @pytest.mark.asyncio
    async def test_list_uses_internal_name(self, database_manager, backup_service, mock_s3):
        await database_manager.create_database("shop-db", "postgres", db_name="orders")

        await backup_service.list_backups("shop-db")

        mock_s3.list_backups.assert_awaited_once_with("orders")

    @pytest.mark.asyncio
    async def test_delete_backup_key(self, database_manager, backup_service, mock_s3):
        await database_manager.create_database("shop-db", "postgres")

        await backup_service.delete_backup("shop-db", "backup.sql")

        mock_s3.delete_backup.assert_awaited_once_with("shop_db/backup.sql")

    @pytest.mark.asyncio
    async def test_prune(self, database_manager, backup_service, mock_s3):
        await database_manager.create_database("shop-db", "postgres")
        mock_s3.prune_backups.return_value = 2

        assert await backup_service.prune_backups("shop-db", 3) == 2
        mock_s3.prune_backups.assert_awaited_once_with("shop_db", 3)

    @pytest.mark.asyncio
    async def test_unknown_instance(self, backup_service):
        with pytest.raises(NotFoundError):
            await backup_service.list_backups("nope")
