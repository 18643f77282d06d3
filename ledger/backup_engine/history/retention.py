"""
Local backup history with bounded retention.

Every backup also lands in a timestamped history slot:

    <backup_dir>/history/backup_<createdAt with ':' and '.' replaced>.json

After each write the oldest slots beyond the retention count are deleted.

Invariants:
    - History slots are written once and never modified
    - A slot appears under its final name only when fully written
    - At most max_kept slots remain after prune()
    - Pruning never fails the backup that triggered it
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ..errors import PruneError

logger = logging.getLogger(__name__)

HISTORY_PREFIX = "backup_"
HISTORY_SUFFIX = ".json"


def sanitize_timestamp(created_at: str) -> str:
    """Make an ISO timestamp safe for file names."""
    return created_at.replace(":", "-").replace(".", "-")


class HistoryManager:
    """Writes and prunes history slots.

    Attributes:
        history_dir: Directory holding the slots
        max_kept: Retention count used by record_history()

    Example:
        >>> history = HistoryManager(Path("/var/lib/ledger/backups/history"), max_kept=10)
        >>> history.record_history(data, "2026-01-15T14:30:00.123Z")
        PosixPath('.../backup_2026-01-15T14-30-00-123Z.json')
    """

    def __init__(self, history_dir: Path, max_kept: int = 10) -> None:
        if max_kept < 1:
            raise ValueError("max_kept must be at least 1")
        self.history_dir = Path(history_dir)
        self.max_kept = max_kept

    def slot_path(self, created_at: str) -> Path:
        return self.history_dir / f"{HISTORY_PREFIX}{sanitize_timestamp(created_at)}{HISTORY_SUFFIX}"

    def record_history(self, snapshot_bytes: bytes, created_at: str) -> Path:
        """Write a new history slot, then prune.

        Args:
            snapshot_bytes: Encoded snapshot
            created_at: Snapshot createdAt, used for the slot name

        Returns:
            Path of the written slot

        Raises:
            OSError: If the slot cannot be written
        """
        self.history_dir.mkdir(parents=True, exist_ok=True)
        path = self.slot_path(created_at)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(snapshot_bytes)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Wrote history slot", extra={"slot": path.name})

        self.prune(self.max_kept)
        return path

    def list_history(self) -> list[Path]:
        """History slots, newest first (mtime, then name)."""
        if not self.history_dir.exists():
            return []
        slots = [
            p
            for p in self.history_dir.iterdir()
            if p.is_file() and p.name.startswith(HISTORY_PREFIX) and p.name.endswith(HISTORY_SUFFIX)
        ]
        return sorted(slots, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def latest_history(self) -> Path | None:
        slots = self.list_history()
        return slots[0] if slots else None

    def prune(self, max_kept: int) -> int:
        """Delete every slot beyond the newest max_kept.

        Failures are logged and swallowed.

        Returns:
            Number of slots deleted
        """
        try:
            slots = self.list_history()
        except OSError as e:
            logger.warning("Failed to list history slots", extra={"error": str(e)})
            return 0

        deleted = 0
        for path in slots[max_kept:]:
            try:
                self._delete(path)
                deleted += 1
            except PruneError as e:
                logger.warning("Failed to delete old backup", extra={"slot": path.name, "error": e.message})

        if deleted:
            logger.info("Pruned history", extra={"deleted": deleted, "kept": max_kept})
        return deleted

    def _delete(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PruneError(f"Could not delete {path.name}: {e}", path=str(path)) from e
        logger.debug("Deleted old backup", extra={"slot": path.name})
