"""
Unit tests for the S3 uploader with a mocked aiobotocore session.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from ledger.backup_engine.config import S3Config
from ledger.backup_engine.errors import UploadError
from ledger.backup_engine.remote import RemoteUploader, S3Uploader


class FakeClientContext:
    """Stands in for the async context manager returned by create_client()."""

    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        return self.client

    async def __aexit__(self, *exc):
        return False


class FakePaginator:
    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    def paginate(self, **kwargs):
        self.calls.append(kwargs)

        async def pages():
            for page in self.pages:
                yield page

        return pages()


class FakeBody:
    def __init__(self, content: bytes):
        self.content = content

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def read(self):
        return self.content


def _object(key: str, minute: int, size: int = 10) -> dict:
    return {
        "Key": key,
        "Size": size,
        "LastModified": datetime(2026, 1, 15, 14, minute, tzinfo=timezone.utc),
    }


class TestS3Uploader:
    """Tests for S3Uploader."""

    @pytest.fixture
    def s3_client(self):
        client = MagicMock()
        client.put_object = AsyncMock(return_value={})
        client.get_object = AsyncMock()
        return client

    @pytest.fixture
    def uploader(self, s3_client):
        config = S3Config(
            enabled=True,
            bucket="ledger-backups",
            endpoint_url="http://localhost:9000",
            backup_prefix="devices/pixel",
        )
        session = MagicMock()
        session.create_client.return_value = FakeClientContext(s3_client)
        with patch("ledger.backup_engine.remote.s3.get_session", return_value=session):
            yield S3Uploader(config)

    def test_implements_protocol(self, uploader):
        assert isinstance(uploader, RemoteUploader)

    def test_availability(self):
        assert not S3Uploader(S3Config(enabled=False, bucket="b")).is_available()
        assert not S3Uploader(S3Config(enabled=True, bucket="")).is_available()
        assert S3Uploader(S3Config(enabled=True, bucket="b")).is_available()

    @pytest.mark.asyncio
    async def test_upload(self, uploader, s3_client, temp_dir):
        local = temp_dir / "latest_backup.json"
        local.write_bytes(b'{"createdAt": "x"}')

        key = await uploader.upload(local, "backup_2026-01-15T14-30-00-123Z.json")

        assert key == "devices/pixel/backup_2026-01-15T14-30-00-123Z.json"
        s3_client.put_object.assert_awaited_once_with(
            Bucket="ledger-backups",
            Key=key,
            Body=b'{"createdAt": "x"}',
            ContentType="application/json",
        )

    @pytest.mark.asyncio
    async def test_upload_client_error(self, uploader, s3_client, temp_dir):
        local = temp_dir / "latest_backup.json"
        local.write_bytes(b"{}")
        s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )

        with pytest.raises(UploadError) as exc_info:
            await uploader.upload(local, "backup_x.json")

        assert exc_info.value.details["remote_name"] == "backup_x.json"

    @pytest.mark.asyncio
    async def test_upload_missing_file(self, uploader, temp_dir):
        with pytest.raises(UploadError):
            await uploader.upload(temp_dir / "absent.json", "backup_x.json")

    @pytest.mark.asyncio
    async def test_list_backups_newest_first(self, uploader, s3_client):
        paginator = FakePaginator(
            [
                {"Contents": [_object("devices/pixel/backup_a.json", 10)]},
                {
                    "Contents": [
                        _object("devices/pixel/backup_b.json", 20),
                        _object("devices/pixel/backup_c.json.tmp", 30),
                    ]
                },
            ]
        )
        s3_client.get_paginator = MagicMock(return_value=paginator)

        backups = await uploader.list_backups()

        assert [b.name for b in backups] == ["backup_b.json", "backup_a.json"]
        assert paginator.calls == [{"Bucket": "ledger-backups", "Prefix": "devices/pixel/backup_"}]

    @pytest.mark.asyncio
    async def test_download_latest(self, uploader, s3_client, temp_dir):
        s3_client.get_paginator = MagicMock(
            return_value=FakePaginator(
                [
                    {
                        "Contents": [
                            _object("devices/pixel/backup_a.json", 10),
                            _object("devices/pixel/backup_b.json", 20),
                        ]
                    }
                ]
            )
        )
        s3_client.get_object.return_value = {"Body": FakeBody(b'{"newest": true}')}

        path = await uploader.download_latest(temp_dir / "download")

        assert path.name == "backup_b.json"
        assert path.read_bytes() == b'{"newest": true}'
        s3_client.get_object.assert_awaited_once_with(
            Bucket="ledger-backups", Key="devices/pixel/backup_b.json"
        )

    @pytest.mark.asyncio
    async def test_download_latest_empty(self, uploader, s3_client, temp_dir):
        s3_client.get_paginator = MagicMock(return_value=FakePaginator([{}]))

        with pytest.raises(UploadError):
            await uploader.download_latest(temp_dir)
