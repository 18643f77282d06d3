"""
Integration tests for the HTTP control surface.

Runs the aiohttp application in-process against a running scheduler
backed by a real SQLite store.
"""

import pytest
import pytest_asyncio
from aiohttp import test_utils

from ledger.backup_engine.api.http_server import create_http_app, restore_status
from ledger.backup_engine.errors import (
    DecodeError,
    NoBackupError,
    SchemaTooNew,
    StoreWriteError,
    UploadError,
)
from ledger.backup_engine.models import EntityType
from ledger.backup_engine.scheduler import BackupScheduler
from ledger.backup_engine.service import BackupService
from ledger.backup_engine.store import SqliteEntityStore

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def store(temp_dir):
    store = SqliteEntityStore(str(temp_dir / "ledger.db"))
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def scheduler(store, temp_dir, clock, sample_snapshot):
    service = BackupService(store, temp_dir / "backups", app_version="0.1.17", clock=clock)
    seeded = await service.restore_snapshot(sample_snapshot)
    assert seeded.success

    scheduler = BackupScheduler(service, debounce_seconds=0.05)
    await scheduler.start()
    yield scheduler
    await scheduler.stop()
    await service.close()


@pytest_asyncio.fixture
async def client(scheduler):
    client = test_utils.TestClient(test_utils.TestServer(create_http_app(scheduler)))
    await client.start_server()
    yield client
    await client.close()


class TestBackupEndpoints:
    """Tests for change reports and backups."""

    @pytest.mark.asyncio
    async def test_changes_accepted(self, client, scheduler):
        resp = await client.post("/v1/changes")

        assert resp.status == 202
        assert (await resp.json()) == {"accepted": True}
        await scheduler.force_now()
        assert scheduler.stats.signals == 1

    @pytest.mark.asyncio
    async def test_backup_now(self, client, scheduler):
        resp = await client.post("/v1/backup")

        assert resp.status == 200
        data = await resp.json()
        assert data["success"] is True
        assert data["backup"]["counts"]["clients"] == 2
        assert data["backup"]["created_at"] == scheduler.last_backup_timestamp()

    @pytest.mark.asyncio
    async def test_latest_before_and_after_backup(self, client):
        resp = await client.get("/v1/backup/latest")
        assert resp.status == 404
        assert (await resp.json())["error_code"] == "NO_BACKUP"

        await client.post("/v1/backup")

        resp = await client.get("/v1/backup/latest")
        assert resp.status == 200
        data = await resp.json()
        assert data["last_backup_timestamp"]
        assert data["path"].endswith("latest_backup.json")

    @pytest.mark.asyncio
    async def test_history(self, client):
        for _ in range(2):
            await client.post("/v1/backup")

        resp = await client.get("/v1/backup/history")

        assert resp.status == 200
        data = await resp.json()
        assert data["count"] == 2
        names = [slot["name"] for slot in data["history"]]
        assert names == sorted(names, reverse=True)
        assert all(slot["size_bytes"] > 0 for slot in data["history"])


class TestRestoreEndpoint:
    """Tests for POST /v1/restore."""

    @pytest.mark.asyncio
    async def test_restore_latest(self, client, store):
        await client.post("/v1/backup")
        await store.clear_all()

        resp = await client.post("/v1/restore", json={"source": "latest"})

        assert resp.status == 200
        data = await resp.json()
        assert data["success"] is True
        assert data["inserted"]["appointmentServices"] == 3
        assert await store.count(EntityType.EXPENSE_ITEM) == 3

    @pytest.mark.asyncio
    async def test_restore_defaults_to_latest(self, client):
        await client.post("/v1/backup")

        resp = await client.post("/v1/restore")

        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_restore_history_slot(self, client, store):
        await client.post("/v1/backup")
        history = await (await client.get("/v1/backup/history")).json()
        await store.clear_all()

        resp = await client.post(
            "/v1/restore", json={"source": "history", "name": history["history"][0]["name"]}
        )

        assert resp.status == 200
        assert await store.count(EntityType.CLIENT) == 2

    @pytest.mark.asyncio
    async def test_restore_without_backup(self, client):
        resp = await client.post("/v1/restore", json={"source": "latest"})

        assert resp.status == 404
        data = await resp.json()
        assert data["success"] is False
        assert data["error"]["error_code"] == "NO_BACKUP"

    @pytest.mark.asyncio
    async def test_restore_remote_without_uploader(self, client):
        resp = await client.post("/v1/restore", json={"source": "remote"})

        assert resp.status == 502

    @pytest.mark.asyncio
    async def test_unknown_source(self, client):
        resp = await client.post("/v1/restore", json={"source": "floppy"})

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "BAD_REQUEST"

    @pytest.mark.asyncio
    async def test_history_requires_name(self, client):
        resp = await client.post("/v1/restore", json={"source": "history"})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        resp = await client.post(
            "/v1/restore", data="{not json", headers={"Content-Type": "application/json"}
        )

        assert resp.status == 400


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        resp = await client.get("/v1/health")

        assert resp.status == 200
        data = await resp.json()
        assert data["healthy"] is True
        assert data["scheduler"]["state"] == "idle"
        assert data["last_backup_timestamp"] is None

    @pytest.mark.asyncio
    async def test_unhealthy_when_stopped(self, client, scheduler):
        await scheduler.stop()

        resp = await client.get("/v1/health")

        assert resp.status == 503


class TestRestoreStatus:
    @pytest.mark.parametrize(
        "error,status",
        [
            (None, 200),
            (NoBackupError("none"), 404),
            (DecodeError("bad"), 422),
            (SchemaTooNew(9, 8), 422),
            (UploadError("offline"), 502),
            (StoreWriteError("clients", "insert"), 500),
        ],
    )
    def test_mapping(self, error, status):
        assert restore_status(error) == status
