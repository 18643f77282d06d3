"""
S3 remote uploader.

Stores backup copies in S3 (or MinIO):

    s3://<bucket>/<prefix>/backup_<timestamp>.json

Invariants:
    - Objects are written once and never modified
    - Client errors are reported as UploadError, never raised raw

How to change safely:
    - Keep the key layout; download_latest lists by prefix
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from ..errors import UploadError
from .base import RemoteBackup

logger = logging.getLogger(__name__)


class S3Uploader:
    """Uploads backups to S3 with aiobotocore.

    Example:
        >>> uploader = S3Uploader(S3Config(bucket="ledger-backups"))
        >>> key = await uploader.upload(Path("latest_backup.json"), "backup_x.json")
    """

    def __init__(self, s3_config: S3Config) -> None:
        self.s3_config = s3_config
        self._session = None

    def is_available(self) -> bool:
        return self.s3_config.enabled and bool(self.s3_config.bucket)

    def _key(self, remote_name: str) -> str:
        prefix = self.s3_config.backup_prefix.strip("/")
        return f"{prefix}/{remote_name}" if prefix else remote_name

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[Any]:
        if self._session is None:
            self._session = get_session()

        client_kwargs: dict[str, Any] = {"region_name": self.s3_config.region}
        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url
        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        async with self._session.create_client("s3", **client_kwargs) as s3:
            yield s3

    async def upload(self, local_file: Path, remote_name: str) -> str:
        key = self._key(remote_name)
        try:
            body = Path(local_file).read_bytes()
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self.s3_config.bucket,
                    Key=key,
                    Body=body,
                    ContentType="application/json",
                )
        except (BotoCoreError, ClientError, OSError) as e:
            raise UploadError(f"Failed to upload {remote_name}: {e}", remote_name=remote_name) from e

        logger.info(
            "Uploaded backup",
            extra={"bucket": self.s3_config.bucket, "key": key, "size_bytes": len(body)},
        )
        return key

    async def list_backups(self) -> list[RemoteBackup]:
        prefix = self._key("backup_")
        backups: list[RemoteBackup] = []
        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.s3_config.bucket, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        if not obj["Key"].endswith(".json"):
                            continue
                        backups.append(
                            RemoteBackup(
                                remote_id=obj["Key"],
                                name=obj["Key"].rsplit("/", 1)[-1],
                                size_bytes=obj.get("Size", 0),
                                modified_ms=int(obj["LastModified"].timestamp() * 1000),
                            )
                        )
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"Failed to list remote backups: {e}") from e

        return sorted(backups, key=lambda b: (b.modified_ms, b.name), reverse=True)

    async def download_latest(self, dest_dir: Path) -> Path:
        backups = await self.list_backups()
        if not backups:
            raise UploadError("No backup files found in remote storage")

        latest = backups[0]
        dest = Path(dest_dir) / latest.name
        try:
            async with self._client() as s3:
                response = await s3.get_object(Bucket=self.s3_config.bucket, Key=latest.remote_id)
                async with response["Body"] as stream:
                    content = await stream.read()
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(content)
        except (BotoCoreError, ClientError, OSError) as e:
            raise UploadError(
                f"Failed to download {latest.name}: {e}", remote_name=latest.name
            ) from e

        logger.info("Downloaded remote backup", extra={"key": latest.remote_id, "dest": str(dest)})
        return dest
