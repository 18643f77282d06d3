"""
Error types for the backup engine.

This module defines every exception raised by the engine:
- BackupError: Base exception
- StoreReadError / StoreWriteError: Entity store failures
- DecodeError: Malformed persisted snapshot
- SchemaTooNew: Snapshot written by a newer schema
- UploadError: Remote copy failed
- PruneError: History housekeeping failed

Invariants:
    - All errors inherit from BackupError
    - Store errors always name the entity type (and step for writes)
    - UploadError and PruneError are logged and absorbed, never surfaced
      as a failed backup

How to change safely:
    - Add new error codes, never reuse an existing one
    - Keep details JSON-serializable, the HTTP layer returns them as-is
"""

from __future__ import annotations

from typing import Any


class BackupError(Exception):
    """Base exception for all backup engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "BACKUP_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "error_code": self.code, "details": self.details}


class StoreReadError(BackupError):
    """Reading an entity type from the store failed.

    Raised when the snapshot builder cannot materialize one of the
    entity collections. The whole build fails as a unit.
    """

    def __init__(self, entity_type: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Failed to read {entity_type} from store: {cause}",
            code="STORE_READ_ERROR",
            details={"entity_type": entity_type},
        )
        self.entity_type = entity_type


class StoreWriteError(BackupError):
    """Writing to the store failed during restore.

    Attributes:
        entity_type: Entity collection being written
        step: Restore step that failed (clear, insert, bulk_insert, ...)
    """

    def __init__(
        self,
        entity_type: str,
        step: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            f"Failed to {step} {entity_type}: {cause}",
            code="STORE_WRITE_ERROR",
            details={"entity_type": entity_type, "step": step},
        )
        self.entity_type = entity_type
        self.step = step


class DecodeError(BackupError):
    """Persisted snapshot is truncated or structurally invalid.

    Raised when:
    - The document is not valid UTF-8 JSON
    - A required field is missing
    - A field has the wrong type or a negative amount
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, code="DECODE_ERROR", details={"path": path})
        self.path = path


class SchemaTooNew(BackupError):
    """Snapshot schema version is newer than this build understands."""

    def __init__(self, snapshot_version: int, current_version: int) -> None:
        super().__init__(
            f"Backup schema version ({snapshot_version}) is newer than the current "
            f"schema version ({current_version}). Please update the app.",
            code="SCHEMA_TOO_NEW",
            details={
                "snapshot_version": snapshot_version,
                "current_version": current_version,
            },
        )
        self.snapshot_version = snapshot_version
        self.current_version = current_version


class UploadError(BackupError):
    """Remote upload (or download) failed."""

    def __init__(self, message: str, remote_name: str | None = None) -> None:
        super().__init__(message, code="UPLOAD_ERROR", details={"remote_name": remote_name})
        self.remote_name = remote_name


class PruneError(BackupError):
    """Deleting an old history slot failed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, code="PRUNE_ERROR", details={"path": path})
        self.path = path


class NoBackupError(BackupError):
    """No backup exists at the requested location."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="NO_BACKUP")
