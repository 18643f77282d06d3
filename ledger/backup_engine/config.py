"""
Configuration management for the ledger backup engine.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages
    - The debounce window is always positive

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names stable; deployments depend on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Entity store configuration.

    Attributes:
        db_path: Path of the SQLite ledger database
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    db_path: str = "./data/ledger.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("LEDGER_DB_PATH", "./data/ledger.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class BackupConfig:
    """Backup pipeline configuration.

    Attributes:
        backup_dir: Directory holding latest_backup.json and history/
        debounce_seconds: Quiet period after the last change before a backup
        max_history: Number of history slots kept
        app_version: Version string written into every snapshot
        upload_timeout_seconds: Upper bound for one remote upload
    """

    backup_dir: str = "./data/backups"
    debounce_seconds: float = 2.0
    max_history: int = 10
    app_version: str = "1.0.0"
    upload_timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load configuration from environment variables."""
        return cls(
            backup_dir=os.getenv("BACKUP_DIR", "./data/backups"),
            debounce_seconds=float(os.getenv("BACKUP_DEBOUNCE_SECONDS", "2.0")),
            max_history=int(os.getenv("BACKUP_MAX_HISTORY", "10")),
            app_version=os.getenv("APP_VERSION", "1.0.0"),
            upload_timeout_seconds=float(os.getenv("BACKUP_UPLOAD_TIMEOUT_SECONDS", "60")),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for remote backup copies.

    Attributes:
        enabled: Whether remote upload is attempted at all
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        backup_prefix: Prefix for backup objects
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    enabled: bool = False
    bucket: str = ""
    region: str = "us-east-1"
    endpoint_url: str | None = None
    backup_prefix: str = "backups"
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("REMOTE_UPLOAD_ENABLED", "false"),
            bucket=os.getenv("S3_BUCKET", ""),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            backup_prefix=os.getenv("S3_BACKUP_PREFIX", "backups"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP control surface configuration.

    Attributes:
        enabled: Whether the HTTP server is started
        host: Bind host
        port: Bind port
    """

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("HTTP_ENABLED", "true"),
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class LedgerConfig:
    """Complete configuration.

    Attributes:
        storage: Entity store configuration
        backup: Backup pipeline configuration
        s3: Remote upload configuration
        http: HTTP surface configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    s3: S3Config = field(default_factory=S3Config)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            backup=BackupConfig.from_env(),
            s3=S3Config.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.backup.debounce_seconds <= 0:
            raise ValueError("BACKUP_DEBOUNCE_SECONDS must be positive")
        if self.backup.max_history < 1:
            raise ValueError("BACKUP_MAX_HISTORY must be at least 1")
        if self.backup.upload_timeout_seconds <= 0:
            raise ValueError("BACKUP_UPLOAD_TIMEOUT_SECONDS must be positive")
        if self.s3.enabled and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when REMOTE_UPLOAD_ENABLED=true")
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.backup.backup_dir):
            logger.warning(
                f"Backup directory does not exist: {self.backup.backup_dir}. "
                "It will be created on first backup."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Ledger configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "backup_dir": self.backup.backup_dir,
                "debounce_seconds": self.backup.debounce_seconds,
                "max_history": self.backup.max_history,
                "app_version": self.backup.app_version,
                "remote_upload_enabled": self.s3.enabled,
                "s3_bucket": self.s3.bucket if self.s3.enabled else None,
                "http_enabled": self.http.enabled,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
