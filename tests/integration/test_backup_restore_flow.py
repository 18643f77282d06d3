"""
Integration tests: backup and restore against a real SQLite database.

Covers the complete flow:
    populate -> backup (latest + history) -> wipe -> restore -> verify
"""

import dataclasses
import json
import sqlite3

import pytest
import pytest_asyncio

from ledger.backup_engine.errors import SchemaTooNew, StoreReadError
from ledger.backup_engine.models import CURRENT_SCHEMA_VERSION, EntityType
from ledger.backup_engine.scheduler import BackupScheduler
from ledger.backup_engine.service import BackupService
from ledger.backup_engine.snapshot import codec
from ledger.backup_engine.store import SqliteEntityStore

pytestmark = pytest.mark.integration


def _without_ids(snapshot) -> dict:
    """Snapshot contents with every id and foreign key resolved to content."""
    clients = {c.id: c.phone for c in snapshot.clients}
    tags = {t.id: t.name for t in snapshot.service_tags}
    appointments = {a.id: (a.title, clients[a.client_id]) for a in snapshot.appointments}
    expenses = {e.id: (e.date_key, e.total_amount_cents) for e in snapshot.expenses}
    return {
        "clients": sorted(
            dataclasses.astuple(dataclasses.replace(c, id=0)) for c in snapshot.clients
        ),
        "tags": sorted(dataclasses.astuple(dataclasses.replace(t, id=0)) for t in snapshot.service_tags),
        "appointments": sorted(appointments.values()),
        "services": sorted(
            (appointments[s.appointment_id], tags[s.service_tag_id], s.price_for_this_tag)
            for s in snapshot.appointment_services
        ),
        "items": sorted(
            (expenses[i.expense_id], i.tag.name, i.amount_cents) for i in snapshot.expense_items
        ),
    }


class TestBackupRestoreFlow:
    """End-to-end tests on SQLite."""

    @pytest_asyncio.fixture
    async def store(self, temp_dir):
        store = SqliteEntityStore(str(temp_dir / "ledger.db"))
        await store.initialize()
        return store

    @pytest.fixture
    def service(self, store, temp_dir, clock):
        return BackupService(
            store, temp_dir / "backups", app_version="0.1.17", max_history=10, clock=clock
        )

    @pytest.mark.asyncio
    async def test_full_cycle(self, store, service, sample_snapshot):
        # Seed the database from a snapshot, then back it up
        seeded = await service.restore_snapshot(sample_snapshot)
        assert seeded.success

        info = await service.run_backup()
        backed_up = codec.decode(info.latest_path.read_bytes())
        assert _without_ids(backed_up) == _without_ids(sample_snapshot)

        await store.clear_all()
        assert await store.is_empty()

        result = await service.restore_latest()

        assert result.success
        assert result.dropped_total == 0
        rebuilt = await service.builder.build_snapshot("0.1.17")
        assert _without_ids(rebuilt) == _without_ids(sample_snapshot)

    @pytest.mark.asyncio
    async def test_restore_remaps_ids(self, store, service, sample_snapshot):
        await service.restore_snapshot(sample_snapshot)
        first_ids = {c.id for c in await store.get_all(EntityType.CLIENT)}

        await service.restore_snapshot(sample_snapshot)
        second_ids = {c.id for c in await store.get_all(EntityType.CLIENT)}

        assert first_ids.isdisjoint(second_ids)

    @pytest.mark.asyncio
    async def test_foreign_keys_resolve_after_restore(self, store, service, sample_snapshot):
        await service.restore_snapshot(sample_snapshot)

        client_ids = {c.id for c in await store.get_all(EntityType.CLIENT)}
        tag_ids = {t.id for t in await store.get_all(EntityType.SERVICE_TAG)}
        appointment_ids = {a.id for a in await store.get_all(EntityType.APPOINTMENT)}
        expense_ids = {e.id for e in await store.get_all(EntityType.EXPENSE)}

        for appointment in await store.get_all(EntityType.APPOINTMENT):
            assert appointment.client_id in client_ids
        for service_row in await store.get_all(EntityType.APPOINTMENT_SERVICE):
            assert service_row.appointment_id in appointment_ids
            assert service_row.service_tag_id in tag_ids
        for item in await store.get_all(EntityType.EXPENSE_ITEM):
            assert item.expense_id in expense_ids

    @pytest.mark.asyncio
    async def test_newer_schema_rejected_without_changes(self, store, service, sample_snapshot, temp_dir):
        await service.restore_snapshot(sample_snapshot)
        before = await service.builder.build_snapshot("0.1.17")

        document = json.loads(codec.encode(sample_snapshot))
        document["schemaVersion"] = CURRENT_SCHEMA_VERSION + 1
        future = temp_dir / "future.json"
        future.write_text(json.dumps(document))

        result = await service.restore_from_file(future)

        assert not result.success
        assert isinstance(result.error, SchemaTooNew)
        after = await service.builder.build_snapshot("0.1.17")
        assert after.clients == before.clients
        assert after.expense_items == before.expense_items

    @pytest.mark.asyncio
    async def test_failed_restore_keeps_previous_state(self, store, service, sample_snapshot):
        """A constraint violation mid-restore rolls the whole restore back."""
        await service.restore_snapshot(sample_snapshot)
        before = await service.builder.build_snapshot("0.1.17")

        # Two tags with the same name violate the UNIQUE constraint on insert
        broken = dataclasses.replace(
            sample_snapshot,
            service_tags=sample_snapshot.service_tags
            + (dataclasses.replace(sample_snapshot.service_tags[0], id=99),),
        )
        result = await service.restore_snapshot(broken)

        assert not result.success
        assert result.error.entity_type == "serviceTags"
        assert result.error.step == "insert"
        after = await service.builder.build_snapshot("0.1.17")
        assert after.clients == before.clients
        assert after.appointment_services == before.appointment_services

    @pytest.mark.asyncio
    async def test_scheduler_drives_backups(self, store, service, sample_snapshot):
        await service.restore_snapshot(sample_snapshot)
        scheduler = BackupScheduler(service, debounce_seconds=0.05)
        await scheduler.start()
        try:
            for _ in range(5):
                scheduler.notify_changed()
            result = await scheduler.force_now()
        finally:
            await scheduler.stop()

        assert result.success
        assert len(service.list_history()) == 1
        assert service.last_backup_timestamp() == result.info.created_at

    @pytest.mark.asyncio
    async def test_locked_database_fails_backup(self, temp_dir, clock, sample_snapshot):
        store = SqliteEntityStore(str(temp_dir / "ledger.db"), busy_timeout_ms=50)
        await store.initialize()
        service = BackupService(store, temp_dir / "backups", app_version="0.1.17", clock=clock)
        await service.restore_snapshot(sample_snapshot)

        other = sqlite3.connect(str(temp_dir / "ledger.db"), isolation_level=None)
        other.execute("BEGIN IMMEDIATE")
        try:
            result = await service.trigger_backup_now()
        finally:
            other.execute("ROLLBACK")
            other.close()

        assert not result.success
        assert isinstance(result.error, StoreReadError)
        assert not service.latest_path.exists()
