"""
Command line tool for ledger backups.

Usage:
    ledger-backup backup
    ledger-backup restore --latest | --file PATH | --history NAME | --remote
    ledger-backup history
    ledger-backup serve

Settings come from the same environment variables as the server
(LEDGER_DB_PATH, BACKUP_DIR, ...); --db-path and --backup-dir override them.

Invariants:
    - Exit code 0 only when the requested operation succeeded
    - A restore that dropped records still succeeds, with a warning line

How to change safely:
    - Add subcommands additively
    - Keep output lines stable; scripts parse them
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from datetime import datetime, timezone

from ..config import LedgerConfig
from ..main import create_service, main as serve_main
from ..restore import RestoreResult

logger = logging.getLogger(__name__)


def _load_config(args: argparse.Namespace) -> LedgerConfig:
    config = LedgerConfig.from_env()
    if args.db_path:
        config.storage = dataclasses.replace(config.storage, db_path=args.db_path)
    if args.backup_dir:
        config.backup = dataclasses.replace(config.backup, backup_dir=args.backup_dir)
    return config


async def run_backup(config: LedgerConfig) -> int:
    service = await create_service(config)
    try:
        result = await service.trigger_backup_now()
    finally:
        await service.close()

    if not result.success:
        print(f"Backup failed: {result.error}")
        return 1

    info = result.info
    print("Backup completed successfully")
    print(f"  Created at: {info.created_at}")
    print(f"  File: {info.latest_path}")
    print(f"  Size: {info.size_bytes} bytes")
    print(f"  Checksum: {info.checksum}")
    print(f"  Records: {sum(info.counts.values())}")
    return 0


async def run_restore(config: LedgerConfig, args: argparse.Namespace) -> int:
    service = await create_service(config)

    result: RestoreResult
    try:
        if args.file:
            result = await service.restore_from_file(args.file)
        elif args.history:
            result = await service.restore_from_history(args.history)
        elif args.remote:
            result = await service.restore_from_remote()
        else:
            result = await service.restore_latest()
    finally:
        await service.close()

    if not result.success:
        print(f"Restore failed: {result.error}")
        return 1

    print("Restore completed successfully")
    print(f"  Backup created at: {result.created_at}")
    for name, count in result.inserted.items():
        print(f"  {name}: {count} inserted, {result.dropped.get(name, 0)} dropped")
    print(f"  Duration: {result.duration_ms}ms")
    if result.has_warnings:
        print(
            f"Warning: {result.dropped_total} records dropped, "
            f"{result.skipped_on_decode} unreadable records skipped"
        )
    return 0


async def run_history(config: LedgerConfig) -> int:
    service = await create_service(config)
    slots = service.list_history()
    if not slots:
        print("No history backups")
        return 0
    for path in slots:
        stat = path.stat()
        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
        print(f"{path.name}  {stat.st_size:>10} bytes  {modified}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-backup",
        description="Back up and restore the ledger database",
    )
    parser.add_argument("--db-path", help="SQLite ledger database (overrides LEDGER_DB_PATH)")
    parser.add_argument("--backup-dir", help="Backup directory (overrides BACKUP_DIR)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("backup", help="Write a backup now")

    restore = sub.add_parser("restore", help="Replace the database with a backup")
    source = restore.add_mutually_exclusive_group()
    source.add_argument("--latest", action="store_true", help="Restore latest_backup.json (default)")
    source.add_argument("--file", help="Restore a backup file")
    source.add_argument("--history", metavar="NAME", help="Restore a history slot by file name")
    source.add_argument("--remote", action="store_true", help="Restore the newest remote copy")

    sub.add_parser("history", help="List history backups, newest first")
    sub.add_parser("serve", help="Run the backup engine with scheduler and HTTP API")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load_config(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "serve":
        serve_main(config)
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    if args.command == "backup":
        code = asyncio.run(run_backup(config))
    elif args.command == "restore":
        code = asyncio.run(run_restore(config, args))
    else:
        code = asyncio.run(run_history(config))

    sys.exit(code)


if __name__ == "__main__":
    main()
