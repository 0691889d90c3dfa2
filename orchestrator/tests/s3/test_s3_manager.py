"""
Unit tests for the S3 backup artifact manager.

boto3.client is patched; no object store is contacted.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from dataforge.services.errors import NotFoundError
from dataforge.services.s3_manager import S3Manager

BASE_TIME = datetime(2024, 5, 1, 3, 0, 0, tzinfo=timezone.utc)


def _objects(prefix, count):
    return [
        {
            'Key': f"{prefix}/backup_{i}.sql",
            'Size': 100 + i,
            'LastModified': BASE_TIME + timedelta(days=i),
        }
        for i in range(count)
    ]


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def s3_manager(s3_client):
    with patch('dataforge.services.s3_manager.boto3.client', return_value=s3_client) as mock_boto:
        manager = S3Manager()
    manager.mock_boto = mock_boto
    return manager


def _paginate(s3_client, pages):
    paginator = MagicMock()
    paginator.paginate.return_value = pages
    s3_client.get_paginator.return_value = paginator
    return paginator


@pytest.mark.unit
class TestS3ManagerInit:
    """Test client construction."""

    def test_uses_settings_and_path_style(self, s3_manager):
        kwargs = s3_manager.mock_boto.call_args.kwargs
        assert s3_manager.mock_boto.call_args.args == ('s3',)
        assert kwargs['endpoint_url'] == "http://minio.test:9000"
        assert kwargs['aws_access_key_id'] == "test-access-key"
        assert kwargs['config'].s3 == {'addressing_style': 'path'}
        assert s3_manager.bucket_name == "test-backups"


@pytest.mark.unit
class TestListBackups:
    """Test listing."""

    @pytest.mark.asyncio
    async def test_newest_first(self, s3_manager, s3_client):
        objects = _objects("shop_db", 3)
        paginator = _paginate(s3_client, [{'Contents': objects[:2]}, {'Contents': objects[2:]}])

        artifacts = await s3_manager.list_backups("shop_db")

        paginator.paginate.assert_called_once_with(Bucket="test-backups", Prefix="shop_db/")
        assert [a.filename for a in artifacts] == ["backup_2.sql", "backup_1.sql", "backup_0.sql"]
        assert artifacts[0].key == "shop_db/backup_2.sql"
        assert artifacts[0].size_bytes == 102

    @pytest.mark.asyncio
    async def test_empty_prefix_rejected(self, s3_manager):
        with pytest.raises(ValueError):
            await s3_manager.list_backups("/")

    @pytest.mark.asyncio
    async def test_no_objects(self, s3_manager, s3_client):
        _paginate(s3_client, [{}])
        assert await s3_manager.list_backups("shop_db") == []


@pytest.mark.unit
class TestDeleteAndPrune:
    """Test deletion paths."""

    @pytest.mark.asyncio
    async def test_prune_keeps_newest(self, s3_manager, s3_client):
        _paginate(s3_client, [{'Contents': _objects("shop_db", 5)}])
        s3_client.delete_objects.return_value = {}

        deleted = await s3_manager.prune_backups("shop_db", keep=3)

        assert deleted == 2
        request = s3_client.delete_objects.call_args.kwargs['Delete']['Objects']
        assert {obj['Key'] for obj in request} == {"shop_db/backup_0.sql", "shop_db/backup_1.sql"}

    @pytest.mark.asyncio
    async def test_prune_nothing_to_do(self, s3_manager, s3_client):
        _paginate(s3_client, [{'Contents': _objects("shop_db", 2)}])

        assert await s3_manager.prune_backups("shop_db", keep=3) == 0
        s3_client.delete_objects.assert_not_called()

    @pytest.mark.asyncio
    async def test_prune_rejects_negative_keep(self, s3_manager):
        with pytest.raises(ValueError):
            await s3_manager.prune_backups("shop_db", keep=-1)

    @pytest.mark.asyncio
    async def test_delete_folder_batches(self, s3_manager, s3_client):
        _paginate(s3_client, [{'Contents': _objects("shop_db", 2500)}])
        s3_client.delete_objects.return_value = {}

        deleted = await s3_manager.delete_backups_folder("shop_db")

        assert deleted == 2500
        sizes = [len(call.kwargs['Delete']['Objects']) for call in s3_client.delete_objects.call_args_list]
        assert sizes == [1000, 1000, 500]

    @pytest.mark.asyncio
    async def test_delete_folder_reports_errors(self, s3_manager, s3_client):
        _paginate(s3_client, [{'Contents': _objects("shop_db", 1)}])
        s3_client.delete_objects.return_value = {
            'Errors': [{'Key': "shop_db/backup_0.sql", 'Code': "AccessDenied"}]
        }

        with pytest.raises(RuntimeError, match="AccessDenied"):
            await s3_manager.delete_backups_folder("shop_db")

    @pytest.mark.asyncio
    async def test_delete_single_backup(self, s3_manager, s3_client):
        await s3_manager.delete_backup("shop_db/backup_0.sql")

        s3_client.delete_object.assert_called_once_with(Bucket="test-backups", Key="shop_db/backup_0.sql")


@pytest.mark.unit
class TestOpenBackupStream:
    """Test object retrieval."""

    @pytest.mark.asyncio
    async def test_returns_body_and_length(self, s3_manager, s3_client):
        body = MagicMock()
        s3_client.get_object.return_value = {'Body': body, 'ContentLength': 42}

        result = await s3_manager.open_backup_stream("shop_db/backup_0.sql")

        assert result == (body, 42)

    @pytest.mark.asyncio
    async def test_missing_key(self, s3_manager, s3_client):
        s3_client.get_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'not found'}}, 'GetObject'
        )

        with pytest.raises(NotFoundError):
            await s3_manager.open_backup_stream("shop_db/missing.sql")

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, s3_manager, s3_client):
        s3_client.get_object.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'GetObject'
        )

        with pytest.raises(ClientError):
            await s3_manager.open_backup_stream("shop_db/backup_0.sql")
