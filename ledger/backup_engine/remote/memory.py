"""
In-memory remote uploader for testing.

Keeps uploaded files in a dict. Useful for:
- Unit tests of the upload step without S3
- Local development with REMOTE_UPLOAD_ENABLED=false

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with RemoteUploader protocol
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

from ..errors import UploadError
from .base import RemoteBackup


class InMemoryUploader:
    """In-memory implementation of RemoteUploader.

    Attributes:
        available: Value returned by is_available()
        fail_with: Exception raised by upload() when set
        delay_seconds: Artificial upload latency
        objects: Uploaded content by remote name
    """

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.fail_with: Exception | None = None
        self.delay_seconds = 0.0
        self.objects: dict[str, bytes] = {}
        self._modified: dict[str, int] = {}
        self.upload_calls = 0

    def is_available(self) -> bool:
        return self.available

    async def upload(self, local_file: Path, remote_name: str) -> str:
        self.upload_calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_with is not None:
            raise UploadError(str(self.fail_with), remote_name=remote_name)
        self.objects[remote_name] = Path(local_file).read_bytes()
        self._modified[remote_name] = int(time.time() * 1000)
        return f"memory://{remote_name}"

    async def list_backups(self) -> list[RemoteBackup]:
        backups = [
            RemoteBackup(
                remote_id=f"memory://{name}",
                name=name,
                size_bytes=len(data),
                modified_ms=self._modified[name],
            )
            for name, data in self.objects.items()
        ]
        return sorted(backups, key=lambda b: (b.modified_ms, b.name), reverse=True)

    async def download_latest(self, dest_dir: Path) -> Path:
        backups = await self.list_backups()
        if not backups:
            raise UploadError("No backup files found in remote storage")
        dest = Path(dest_dir) / backups[0].name
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.objects[backups[0].name])
        return dest
