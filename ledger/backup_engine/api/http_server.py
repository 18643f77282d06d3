"""
HTTP control surface for the backup engine.

A small local REST API for the host application and for operators:
- Mutation paths report changes (POST /v1/changes)
- The "back up now" action waits for its result (POST /v1/backup)
- Restores are started from the latest slot, a history slot or remote

Invariants:
    - POST /v1/changes never waits on the backup pipeline
    - Errors are JSON objects with error / error_code / details
    - Restore failures map to a status code by error kind

How to change safely:
    - Version the API if breaking changes are needed
    - Keep response bodies built from the result to_dict() methods
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..errors import (
    BackupError,
    DecodeError,
    NoBackupError,
    SchemaTooNew,
    UploadError,
)
from ..scheduler import BackupScheduler

logger = logging.getLogger(__name__)

RESTORE_SOURCES = ("latest", "history", "remote")


def create_http_app(scheduler: BackupScheduler) -> web.Application:
    """Create the HTTP application.

    Args:
        scheduler: Running scheduler; its service handles restores

    Returns:
        aiohttp Application instance
    """
    app = web.Application()

    app.router.add_post("/v1/changes", lambda r: handle_changes(r, scheduler))
    app.router.add_post("/v1/backup", lambda r: handle_backup(r, scheduler))
    app.router.add_get("/v1/backup/latest", lambda r: handle_latest(r, scheduler))
    app.router.add_get("/v1/backup/history", lambda r: handle_history(r, scheduler))
    app.router.add_post("/v1/restore", lambda r: handle_restore(r, scheduler))
    app.router.add_get("/v1/health", lambda r: handle_health(r, scheduler))

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.Response:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except BackupError as e:
            logger.error(
                "HTTP handler error",
                extra={"path": request.path, "error": e.message, "error_code": e.code},
            )
            return web.json_response(e.to_dict(), status=500)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL", "details": {}},
                status=500,
            )

    app.middlewares.append(error_middleware)
    return app


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "BAD_REQUEST", "details": {}}),
        content_type="application/json",
    )


def restore_status(error: BackupError | None) -> int:
    """HTTP status for a restore outcome."""
    if error is None:
        return 200
    if isinstance(error, NoBackupError):
        return 404
    if isinstance(error, (DecodeError, SchemaTooNew)):
        return 422
    if isinstance(error, UploadError):
        return 502
    return 500


async def handle_changes(request: web.Request, scheduler: BackupScheduler) -> web.Response:
    """Handle POST /v1/changes - Report that data changed."""
    scheduler.notify_changed()
    return web.json_response({"accepted": True}, status=202)


async def handle_backup(request: web.Request, scheduler: BackupScheduler) -> web.Response:
    """Handle POST /v1/backup - Back up now and wait for the result."""
    result = await scheduler.force_now()
    status = 200 if result.success else 500
    return web.json_response(result.to_dict(), status=status)


async def handle_latest(request: web.Request, scheduler: BackupScheduler) -> web.Response:
    """Handle GET /v1/backup/latest - Timestamp of the newest backup."""
    service = scheduler.service
    created_at = service.last_backup_timestamp()
    if created_at is None:
        return web.json_response(NoBackupError("No backup has been written yet").to_dict(), status=404)
    return web.json_response(
        {
            "last_backup_timestamp": created_at,
            "path": str(service.latest_path),
        }
    )


async def handle_history(request: web.Request, scheduler: BackupScheduler) -> web.Response:
    """Handle GET /v1/backup/history - History slots, newest first."""
    slots: list[dict[str, Any]] = []
    for path in scheduler.service.list_history():
        try:
            stat = path.stat()
        except FileNotFoundError:
            # Pruned between listing and stat
            continue
        slots.append(
            {
                "name": path.name,
                "size_bytes": stat.st_size,
                "modified_ms": int(stat.st_mtime * 1000),
            }
        )
    return web.json_response({"history": slots, "count": len(slots)})


async def handle_restore(request: web.Request, scheduler: BackupScheduler) -> web.Response:
    """Handle POST /v1/restore - Restore from latest, history or remote."""
    body: dict[str, Any] = {}
    if request.can_read_body:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            raise _bad_request("Invalid JSON body")
        if not isinstance(body, dict):
            raise _bad_request("Request body must be a JSON object")

    source = body.get("source", "latest")
    if source not in RESTORE_SOURCES:
        raise _bad_request(f"source must be one of: {', '.join(RESTORE_SOURCES)}")

    service = scheduler.service
    if source == "latest":
        result = await service.restore_latest()
    elif source == "remote":
        result = await service.restore_from_remote()
    else:
        name = body.get("name")
        if not isinstance(name, str) or not name:
            raise _bad_request("name is required when source=history")
        result = await service.restore_from_history(name)

    return web.json_response(result.to_dict(), status=restore_status(result.error))


async def handle_health(request: web.Request, scheduler: BackupScheduler) -> web.Response:
    """Handle GET /v1/health - Health check."""
    healthy = scheduler.is_running
    result = {
        "healthy": healthy,
        "scheduler": scheduler.describe(),
        "last_backup_timestamp": scheduler.last_backup_timestamp(),
    }
    return web.json_response(result, status=200 if healthy else 503)


async def run_http_server(
    scheduler: BackupScheduler,
    host: str = "127.0.0.1",
    port: int = 8080,
) -> None:
    """Run the HTTP server until cancelled.

    Args:
        scheduler: Running scheduler
        host: Host to bind to
        port: Port to listen on
    """
    app = create_http_app(scheduler)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()
