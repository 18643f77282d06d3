"""
Ledger backup engine - Main entry point.

This module starts the backup engine with all components:
- SQLite entity store
- Backup service (latest slot, history, restore)
- Debounce scheduler
- Optional S3 uploader
- Optional HTTP control surface

Usage:
    python -m ledger.backup_engine.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store schema exists before the scheduler accepts signals
    - Graceful shutdown lets an in-flight backup and its upload finish

How to change safely:
    - Add new components with enable/disable flags
    - Keep construction in create_service(); the CLI shares it
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter

from .api import run_http_server
from .config import LedgerConfig
from .remote import RemoteUploader, S3Uploader
from .scheduler import BackupScheduler
from .service import BackupService
from .store import SqliteEntityStore

logger = logging.getLogger(__name__)


def setup_logging(config: LedgerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Ledger configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def create_uploader(config: LedgerConfig) -> RemoteUploader | None:
    if not config.s3.enabled:
        return None
    return S3Uploader(config.s3)


async def create_service(config: LedgerConfig) -> BackupService:
    """Open the store and build the backup service.

    Args:
        config: Ledger configuration

    Returns:
        BackupService bound to an initialized SQLite store
    """
    db_path = Path(config.storage.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    store = SqliteEntityStore(
        db_path=str(db_path),
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
    )
    await store.initialize()

    return BackupService(
        store,
        Path(config.backup.backup_dir),
        app_version=config.backup.app_version,
        max_history=config.backup.max_history,
        uploader=create_uploader(config),
        upload_timeout_seconds=config.backup.upload_timeout_seconds,
    )


class LedgerBackupApp:
    """Backup engine orchestrator.

    Attributes:
        config: Ledger configuration
        service: Backup service
        scheduler: Debounce scheduler

    Example:
        >>> app = LedgerBackupApp()
        >>> await app.start()
        >>> # Running until request_shutdown()
        >>> await app.stop()
    """

    def __init__(self, config: LedgerConfig | None = None) -> None:
        """Initialize the app.

        Args:
            config: Optional configuration (loaded from env if not provided)
        """
        self.config = config or LedgerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.service: BackupService | None = None
        self.scheduler: BackupScheduler | None = None

        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start all components and run until shutdown is requested."""
        if self._running:
            logger.warning("App already running")
            return

        logger.info("Starting ledger backup engine")
        self.config.log_config()

        try:
            self.service = await create_service(self.config)

            self.scheduler = BackupScheduler(
                self.service,
                debounce_seconds=self.config.backup.debounce_seconds,
            )
            await self.scheduler.start()

            if self.config.http.enabled:
                http_task = asyncio.create_task(
                    run_http_server(
                        self.scheduler,
                        host=self.config.http.host,
                        port=self.config.http.port,
                    )
                )
                self._tasks.append(http_task)

            self._running = True
            logger.info(
                "Ledger backup engine started",
                extra={"last_backup_timestamp": self.service.last_backup_timestamp()},
            )

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop gracefully."""
        if not self._running and self.service is None:
            return

        logger.info("Stopping ledger backup engine")

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.scheduler:
            await self.scheduler.stop()
        if self.service:
            await self.service.close()

        self.scheduler = None
        self.service = None
        self._running = False
        logger.info("Ledger backup engine stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main(config: LedgerConfig | None = None) -> None:
    """Main entry point.

    Args:
        config: Optional configuration (loaded from env if not provided)
    """
    if config is None:
        try:
            config = LedgerConfig.from_env()
        except ValueError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            sys.exit(1)

    setup_logging(config)

    app = LedgerBackupApp(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        app.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(app.stop())
        loop.close()


if __name__ == "__main__":
    main()
