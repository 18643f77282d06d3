"""
Backup service: the composition point of the backup pipeline.

    build snapshot -> encode -> latest_backup.json -> history slot
                   -> prune -> publish timestamp -> best-effort upload

and the restore side:

    latest / history slot / remote copy -> decode -> RestoreEngine -> store

The service owns the store lock. Backups and restores both take it, so a
backup never captures a store that a restore is halfway through clearing.

Invariants:
    - latest_backup.json is replaced atomically (temp file + os.replace)
    - The upload starts only after the local backup succeeded
    - Upload, prune and subscriber failures never fail a backup
    - Restore-time failures are returned to the caller as RestoreResult

How to change safely:
    - Keep every store-wide mutation under store_lock
    - Keep upload work off the caller's path (background task)
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import BackupError, DecodeError, NoBackupError, UploadError
from .history import HistoryManager
from .models import Snapshot
from .remote import RemoteUploader
from .restore import RestoreEngine, RestoreResult
from .snapshot import SnapshotBuilder, codec, utc_now_iso
from .store import EntityStore

logger = logging.getLogger(__name__)

LATEST_BACKUP_NAME = "latest_backup.json"
HISTORY_DIR_NAME = "history"


@dataclass
class BackupInfo:
    """Description of a finished local backup.

    Attributes:
        created_at: createdAt of the captured snapshot
        latest_path: Path of the latest slot
        history_path: Path of the new history slot (None if it failed)
        size_bytes: Encoded size
        checksum: SHA-256 of the encoded bytes
        counts: Records per collection
        duration_ms: Time spent building and writing
    """

    created_at: str
    latest_path: Path
    history_path: Path | None
    size_bytes: int
    checksum: str
    counts: dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_at": self.created_at,
            "latest_path": str(self.latest_path),
            "history_path": str(self.history_path) if self.history_path else None,
            "size_bytes": self.size_bytes,
            "checksum": self.checksum,
            "counts": self.counts,
            "duration_ms": self.duration_ms,
        }


@dataclass
class BackupResult:
    """Outcome of a backup cycle.

    Attributes:
        success: Whether the local backup was written
        info: Backup description on success
        error: Error on failure
    """

    success: bool
    info: BackupInfo | None = None
    error: BackupError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "backup": self.info.to_dict() if self.info else None,
            "error": self.error.to_dict() if self.error else None,
        }


class BackupService:
    """Runs backups and restores against one entity store.

    Example:
        >>> service = BackupService(store, Path("/var/lib/ledger/backups"), app_version="0.1.17")
        >>> result = await service.trigger_backup_now()
        >>> result.info.latest_path
        PosixPath('/var/lib/ledger/backups/latest_backup.json')
    """

    def __init__(
        self,
        store: EntityStore,
        backup_dir: Path,
        *,
        app_version: str,
        max_history: int = 10,
        uploader: RemoteUploader | None = None,
        upload_timeout_seconds: float = 60.0,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        """Initialize the service.

        Args:
            store: Entity store to back up and restore into
            backup_dir: Directory for latest_backup.json and history/
            app_version: Version written into every snapshot
            max_history: Number of history slots kept
            uploader: Optional remote uploader
            upload_timeout_seconds: Upper bound for one upload
            clock: createdAt source for new snapshots
        """
        self.store = store
        self.backup_dir = Path(backup_dir)
        self.app_version = app_version
        self.uploader = uploader
        self.upload_timeout_seconds = upload_timeout_seconds

        self.store_lock = asyncio.Lock()
        self.builder = SnapshotBuilder(store, clock=clock)
        self.engine = RestoreEngine(store)
        self.history = HistoryManager(self.backup_dir / HISTORY_DIR_NAME, max_kept=max_history)

        self._last_timestamp: str | None = None
        self._subscribers: list[Callable[[str], None]] = []
        self._upload_tasks: set[asyncio.Task] = set()

    @property
    def latest_path(self) -> Path:
        return self.backup_dir / LATEST_BACKUP_NAME

    async def run_backup(self) -> BackupInfo:
        """Capture the store and write the latest and history slots.

        Returns:
            BackupInfo for the new backup

        Raises:
            StoreReadError: If the store could not be read
            BackupError: If latest_backup.json could not be written
        """
        start_time = time.time()

        async with self.store_lock:
            snapshot = await self.builder.build_snapshot(self.app_version)
            data = codec.encode(snapshot)
            self._write_latest(data)
            history_path = self._write_history(data, snapshot.created_at)

        info = BackupInfo(
            created_at=snapshot.created_at,
            latest_path=self.latest_path,
            history_path=history_path,
            size_bytes=len(data),
            checksum=codec.checksum(data),
            counts=snapshot.counts(),
            duration_ms=int((time.time() - start_time) * 1000),
        )

        logger.info(
            "Backup written",
            extra={
                "created_at": info.created_at,
                "size_bytes": info.size_bytes,
                "records": snapshot.record_count,
                "duration_ms": info.duration_ms,
            },
        )

        self._publish(snapshot.created_at)
        self._schedule_upload(history_path or self.latest_path, snapshot.created_at)
        return info

    async def trigger_backup_now(self) -> BackupResult:
        """Run one backup and report the outcome instead of raising."""
        try:
            info = await self.run_backup()
        except BackupError as e:
            logger.error(
                "Backup failed",
                extra={"error": e.message, "error_code": e.code},
            )
            return BackupResult(success=False, error=e)
        return BackupResult(success=True, info=info)

    def _write_latest(self, data: bytes) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.latest_path.with_name(LATEST_BACKUP_NAME + ".tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.latest_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BackupError(
                f"Failed to write {self.latest_path}: {e}",
                code="BACKUP_WRITE_ERROR",
                details={"path": str(self.latest_path)},
            ) from e

    def _write_history(self, data: bytes, created_at: str) -> Path | None:
        try:
            return self.history.record_history(data, created_at)
        except OSError as e:
            logger.warning(
                "History slot write failed",
                extra={"created_at": created_at, "error": str(e)},
            )
            return None

    def last_backup_timestamp(self) -> str | None:
        """createdAt of the newest backup, or None if there is none."""
        if self._last_timestamp is None and self.latest_path.exists():
            try:
                self._last_timestamp = self.read_backup(self.latest_path).created_at
            except BackupError as e:
                logger.warning(
                    "Latest backup is unreadable",
                    extra={"path": str(self.latest_path), "error": e.message},
                )
        return self._last_timestamp

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Call callback with every new backup timestamp.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, created_at: str) -> None:
        self._last_timestamp = created_at
        for callback in list(self._subscribers):
            try:
                callback(created_at)
            except Exception:
                logger.exception("Backup subscriber failed", extra={"created_at": created_at})

    def _schedule_upload(self, local_file: Path, created_at: str) -> None:
        if self.uploader is None or not self.uploader.is_available():
            logger.debug("Remote upload skipped, uploader unavailable")
            return

        remote_name = self.history.slot_path(created_at).name
        task = asyncio.create_task(self._upload(self.uploader, local_file, remote_name))
        self._upload_tasks.add(task)
        task.add_done_callback(self._upload_tasks.discard)

    async def _upload(self, uploader: RemoteUploader, local_file: Path, remote_name: str) -> None:
        try:
            remote_id = await asyncio.wait_for(
                uploader.upload(local_file, remote_name),
                timeout=self.upload_timeout_seconds,
            )
        except UploadError as e:
            logger.warning(
                "Remote upload failed, local backup kept",
                extra={"remote_name": remote_name, "error": e.message},
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Remote upload timed out, local backup kept",
                extra={"remote_name": remote_name, "timeout": self.upload_timeout_seconds},
            )
        except Exception as e:
            logger.error(
                "Remote upload crashed, local backup kept",
                extra={"remote_name": remote_name, "error": str(e)},
            )
        else:
            logger.info(
                "Remote upload complete",
                extra={"remote_name": remote_name, "remote_id": remote_id},
            )

    async def wait_for_uploads(self) -> None:
        """Wait until every started upload has finished."""
        if self._upload_tasks:
            await asyncio.gather(*list(self._upload_tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.wait_for_uploads()

    def read_backup(self, path: Path) -> Snapshot:
        """Read and decode a backup file.

        Raises:
            NoBackupError: If the file does not exist
            DecodeError: If the file is not a valid backup
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise NoBackupError(f"Backup file not found: {path}") from e
        except OSError as e:
            raise DecodeError(f"Cannot read backup file {path}: {e}") from e
        return codec.decode(data)

    async def restore_snapshot(self, snapshot: Snapshot) -> RestoreResult:
        """Restore a decoded snapshot under the store lock."""
        async with self.store_lock:
            return await self.engine.restore(snapshot)

    async def restore_from_file(self, path: Path) -> RestoreResult:
        """Restore from a backup file on disk."""
        try:
            snapshot = self.read_backup(path)
        except BackupError as e:
            logger.error(
                "Cannot restore from file",
                extra={"path": str(path), "error": e.message, "error_code": e.code},
            )
            return RestoreResult(success=False, error=e)
        return await self.restore_snapshot(snapshot)

    async def restore_latest(self) -> RestoreResult:
        return await self.restore_from_file(self.latest_path)

    async def restore_from_history(self, slot_name: str) -> RestoreResult:
        """Restore from a history slot given by file name."""
        path = self.history.history_dir / slot_name
        if Path(slot_name).name != slot_name or path not in self.history.list_history():
            return RestoreResult(
                success=False,
                error=NoBackupError(f"No history slot named {slot_name!r}"),
            )
        return await self.restore_from_file(path)

    async def restore_from_remote(self) -> RestoreResult:
        """Download the newest remote backup and restore it.

        The downloaded copy is deleted afterwards.
        """
        if self.uploader is None or not self.uploader.is_available():
            return RestoreResult(
                success=False,
                error=UploadError("Remote storage is not available"),
            )

        with tempfile.TemporaryDirectory(prefix="ledger-restore-") as tmp_dir:
            try:
                downloaded = await self.uploader.download_latest(Path(tmp_dir))
            except UploadError as e:
                logger.error("Remote download failed", extra={"error": e.message})
                return RestoreResult(success=False, error=e)
            return await self.restore_from_file(downloaded)

    def list_history(self) -> list[Path]:
        """History slots, newest first."""
        return self.history.list_history()
