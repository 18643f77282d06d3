"""
Restore engine for the ledger.

Rebuilds the entity store from a Snapshot using drop-and-replace:
1. Reject snapshots from a newer schema before touching the store
2. Clear every table
3. Insert Clients, then ServiceTags, recording old id -> new id
4. Insert Appointments through the Client map
5. Bulk-insert AppointmentServices through the Appointment and ServiceTag maps
6. Insert Expenses, recording their map
7. Bulk-insert ExpenseItems per parent Expense

Records whose required parent cannot be resolved through the id maps are
dropped and counted rather than aborting the restore.

Invariants:
    - SchemaTooNew is returned with zero writes to the store
    - Every foreign key in the restored store points to an inserted record
    - Drop counts are returned as data, not raised
    - When the store supports transactions the whole restore is one unit;
      otherwise a failure leaves a cleared, partially repopulated store and
      the error names the failing step

How to change safely:
    - New entity types must slot into the dependency order above
    - Test restore with old snapshots before changing the algorithm
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TypeVar

from ..errors import BackupError, DecodeError, SchemaTooNew, StoreWriteError
from ..models import (
    CURRENT_SCHEMA_VERSION,
    AppointmentService,
    EntityType,
    ExpenseItem,
    Snapshot,
)
from ..snapshot import codec
from ..store import EntityStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RestoreResult:
    """Result of a restore operation.

    Attributes:
        success: Whether the store now holds the snapshot's data
        created_at: createdAt of the restored snapshot
        inserted: Records inserted per collection
        dropped: Records dropped per collection for unresolved parents
            or duplicate (appointment, tag) pairs
        skipped_on_decode: Records the codec refused (unknown enum names)
        duration_ms: Total restore duration
        error: Error if failed
    """

    success: bool
    created_at: str | None = None
    inserted: dict[str, int] = field(default_factory=dict)
    dropped: dict[str, int] = field(default_factory=dict)
    skipped_on_decode: int = 0
    duration_ms: int = 0
    error: BackupError | None = None

    @property
    def dropped_total(self) -> int:
        return sum(self.dropped.values())

    @property
    def has_warnings(self) -> bool:
        return self.dropped_total > 0 or self.skipped_on_decode > 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "created_at": self.created_at,
            "inserted": self.inserted,
            "dropped": self.dropped,
            "dropped_total": self.dropped_total,
            "skipped_on_decode": self.skipped_on_decode,
            "duration_ms": self.duration_ms,
            "error": self.error.to_dict() if self.error else None,
        }


class RestoreEngine:
    """Restores a Snapshot into an EntityStore with id remapping.

    Example:
        >>> engine = RestoreEngine(store)
        >>> result = await engine.restore(snapshot)
        >>> if result.success:
        ...     print(f"Restored, {result.dropped_total} records dropped")
    """

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    async def restore_bytes(self, data: bytes) -> RestoreResult:
        """Decode an encoded snapshot and restore it."""
        try:
            snapshot = codec.decode(data)
        except DecodeError as e:
            logger.error("Refusing to restore malformed backup", extra={"error": e.message})
            return RestoreResult(success=False, error=e)
        return await self.restore(snapshot)

    async def restore(self, snapshot: Snapshot) -> RestoreResult:
        """Replace the store's contents with the snapshot.

        Args:
            snapshot: Snapshot to restore

        Returns:
            RestoreResult; on failure error is SchemaTooNew or StoreWriteError
        """
        start_time = time.time()
        result = RestoreResult(
            success=False,
            created_at=snapshot.created_at,
            inserted={t.value: 0 for t in EntityType},
            dropped={t.value: 0 for t in EntityType},
            skipped_on_decode=len(snapshot.skipped_on_decode),
        )

        if snapshot.schema_version > CURRENT_SCHEMA_VERSION:
            result.error = SchemaTooNew(snapshot.schema_version, CURRENT_SCHEMA_VERSION)
            logger.error(
                "Backup schema is newer than this build",
                extra={
                    "snapshot_version": snapshot.schema_version,
                    "current_version": CURRENT_SCHEMA_VERSION,
                },
            )
            return result

        if not self.store.supports_transactions:
            logger.warning("Store has no transactions, a failed restore will be partial")

        logger.info(
            "Starting restore",
            extra={"created_at": snapshot.created_at, "records": snapshot.record_count},
        )

        try:
            async with self.store.transaction():
                await self._replace(snapshot, result)
        except StoreWriteError as e:
            result.error = e
        except Exception as e:
            # Commit failures surface from the transaction itself
            result.error = StoreWriteError("all", "commit", e)

        result.duration_ms = int((time.time() - start_time) * 1000)

        if result.error is not None:
            # Counts describe a rolled back (or partial) attempt
            logger.error(
                "Restore failed",
                extra={"error": result.error.message, **result.error.details},
            )
            return result

        result.success = True
        logger.info(
            "Restore completed",
            extra={
                "inserted": result.inserted,
                "dropped_total": result.dropped_total,
                "skipped_on_decode": result.skipped_on_decode,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def _write(self, entity_type: str, step: str, operation: Awaitable[T]) -> T:
        try:
            return await operation
        except Exception as e:
            raise StoreWriteError(entity_type, step, e) from e

    def _drop(self, result: RestoreResult, entity_type: EntityType, record_id: int, why: str) -> None:
        result.dropped[entity_type.value] += 1
        logger.warning(
            "Dropping record during restore",
            extra={"entity_type": entity_type.value, "id": record_id, "reason": why},
        )

    async def _insert_mapped(
        self,
        records: tuple,
        entity_type: EntityType,
        result: RestoreResult,
        id_map: dict[int, int] | None = None,
    ) -> None:
        for record in records:
            new_id = await self._write(
                entity_type.value,
                "insert",
                self.store.insert(dataclasses.replace(record, id=0)),
            )
            if id_map is not None:
                id_map[record.id] = new_id
            result.inserted[entity_type.value] += 1

    async def _replace(self, snapshot: Snapshot, result: RestoreResult) -> None:
        await self._write("all", "clear", self.store.clear_all())

        client_ids: dict[int, int] = {}
        tag_ids: dict[int, int] = {}
        appointment_ids: dict[int, int] = {}
        expense_ids: dict[int, int] = {}

        # Independent entities
        await self._insert_mapped(snapshot.clients, EntityType.CLIENT, result, client_ids)
        await self._insert_mapped(snapshot.service_tags, EntityType.SERVICE_TAG, result, tag_ids)

        # Appointments -> Client
        for appointment in snapshot.appointments:
            new_client_id = client_ids.get(appointment.client_id)
            if new_client_id is None:
                self._drop(result, EntityType.APPOINTMENT, appointment.id, "unknown client")
                continue
            new_id = await self._write(
                EntityType.APPOINTMENT.value,
                "insert",
                self.store.insert(
                    dataclasses.replace(appointment, id=0, client_id=new_client_id)
                ),
            )
            appointment_ids[appointment.id] = new_id
            result.inserted[EntityType.APPOINTMENT.value] += 1

        # AppointmentServices -> Appointment, ServiceTag
        services: list[AppointmentService] = []
        seen_pairs: set[tuple[int, int]] = set()
        for service in snapshot.appointment_services:
            new_appointment_id = appointment_ids.get(service.appointment_id)
            new_tag_id = tag_ids.get(service.service_tag_id)
            if new_appointment_id is None or new_tag_id is None:
                why = "unknown appointment" if new_appointment_id is None else "unknown service tag"
                self._drop(result, EntityType.APPOINTMENT_SERVICE, service.id, why)
                continue
            pair = (new_appointment_id, new_tag_id)
            if pair in seen_pairs:
                self._drop(result, EntityType.APPOINTMENT_SERVICE, service.id, "duplicate tag")
                continue
            seen_pairs.add(pair)
            services.append(
                dataclasses.replace(
                    service, id=0, appointment_id=new_appointment_id, service_tag_id=new_tag_id
                )
            )
        if services:
            await self._write(
                EntityType.APPOINTMENT_SERVICE.value,
                "bulk_insert",
                self.store.bulk_insert(services),
            )
            result.inserted[EntityType.APPOINTMENT_SERVICE.value] += len(services)

        # Expenses, then their items grouped by original parent
        await self._insert_mapped(snapshot.expenses, EntityType.EXPENSE, result, expense_ids)

        items_by_expense: dict[int, list[ExpenseItem]] = {}
        for item in snapshot.expense_items:
            items_by_expense.setdefault(item.expense_id, []).append(item)

        for old_expense_id, items in items_by_expense.items():
            new_expense_id = expense_ids.get(old_expense_id)
            parent = None
            if new_expense_id is not None:
                parent = await self._write(
                    EntityType.EXPENSE.value,
                    "verify",
                    self.store.get_by_id(EntityType.EXPENSE, new_expense_id),
                )
            if parent is None:
                for item in items:
                    self._drop(result, EntityType.EXPENSE_ITEM, item.id, "unknown expense")
                continue

            await self._write(
                EntityType.EXPENSE_ITEM.value,
                "bulk_insert",
                self.store.bulk_insert(
                    [dataclasses.replace(i, id=0, expense_id=new_expense_id) for i in items]
                ),
            )
            result.inserted[EntityType.EXPENSE_ITEM.value] += len(items)
