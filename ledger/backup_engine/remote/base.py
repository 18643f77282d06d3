"""
Base protocol for remote backup storage.

A remote uploader receives finished local backup files and keeps copies
off the device. It is strictly best effort: the local backup is the
durability guarantee.

Invariants:
    - upload() is only called after the local backup succeeded
    - upload() is only called when is_available() is True
    - Every failure is reported as UploadError

How to change safely:
    - Protocol changes require updating every implementation
    - Remote names must stay compatible with backup_*.json listing
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class RemoteBackup:
    """A backup stored remotely.

    Attributes:
        remote_id: Backend identifier (S3 key, ...)
        name: File name, e.g. backup_2026-01-15T14-30-00-123Z.json
        size_bytes: Stored size
        modified_ms: Last modification time (Unix ms)
    """

    remote_id: str
    name: str
    size_bytes: int
    modified_ms: int


@runtime_checkable
class RemoteUploader(Protocol):
    """Protocol for remote backup backends."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether uploads can be attempted right now."""
        ...

    @abstractmethod
    async def upload(self, local_file: Path, remote_name: str) -> str:
        """Upload a local backup file.

        Args:
            local_file: File to upload
            remote_name: Name to store it under

        Returns:
            Remote identifier of the stored copy

        Raises:
            UploadError: If the upload fails
        """
        ...

    @abstractmethod
    async def list_backups(self) -> list[RemoteBackup]:
        """Remote backups, newest first.

        Raises:
            UploadError: If listing fails
        """
        ...

    @abstractmethod
    async def download_latest(self, dest_dir: Path) -> Path:
        """Download the newest remote backup into dest_dir.

        Raises:
            UploadError: If there is no backup or the download fails
        """
        ...
