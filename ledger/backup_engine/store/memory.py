"""
In-memory entity store for testing.

This module provides a dict-backed EntityStore for:
- Unit tests of the snapshot builder and restore engine
- Integration tests that need failure injection
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Ids auto-increment per type and are never reused
    - Foreign keys and the (appointment_id, service_tag_id) pair are
      checked on insert, like the SQLite schema does

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with EntityStore protocol
    - Add hooks that help test failure scenarios
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from ..models import (
    DEPENDENCY_ORDER,
    AppointmentService,
    Entity,
    EntityType,
    ServiceTag,
)
from .base import IntegrityViolation, StoreError

logger = logging.getLogger(__name__)

_PARENTS: dict[EntityType, tuple[tuple[str, EntityType], ...]] = {
    EntityType.APPOINTMENT: (("client_id", EntityType.CLIENT),),
    EntityType.APPOINTMENT_SERVICE: (
        ("appointment_id", EntityType.APPOINTMENT),
        ("service_tag_id", EntityType.SERVICE_TAG),
    ),
    EntityType.EXPENSE_ITEM: (("expense_id", EntityType.EXPENSE),),
}


@dataclass
class _Table:
    rows: dict[int, Entity] = field(default_factory=dict)
    next_id: int = 1


class InMemoryEntityStore:
    """In-memory implementation of EntityStore for testing.

    Attributes:
        supports_transactions: Set False to exercise the no-transaction path
        write_count: Number of mutating calls that reached the store
        fail_on: Map of (operation, EntityType) -> exception to raise

    Example:
        >>> store = InMemoryEntityStore()
        >>> store.fail_on[("insert", EntityType.EXPENSE)] = RuntimeError("disk full")
        >>> await store.insert(expense)  # raises RuntimeError
    """

    def __init__(self, supports_transactions: bool = True) -> None:
        self.supports_transactions = supports_transactions
        self.write_count = 0
        self.fail_on: dict[tuple[str, EntityType], Exception] = {}
        self._tables: dict[EntityType, _Table] = {t: _Table() for t in EntityType}
        self._in_transaction = False

    def _maybe_fail(self, operation: str, entity_type: EntityType) -> None:
        error = self.fail_on.get((operation, entity_type))
        if error is not None:
            raise error

    def _check_integrity(self, entity: Entity, pending: Sequence[Entity] = ()) -> None:
        entity_type = entity.entity_type
        for attr, parent_type in _PARENTS.get(entity_type, ()):
            if getattr(entity, attr) not in self._tables[parent_type].rows:
                raise IntegrityViolation(
                    f"{entity_type.value}.{attr}={getattr(entity, attr)} has no parent"
                )

        existing = list(self._tables[entity_type].rows.values()) + list(pending)
        if isinstance(entity, AppointmentService):
            pair = (entity.appointment_id, entity.service_tag_id)
            if any((s.appointment_id, s.service_tag_id) == pair for s in existing):
                raise IntegrityViolation(f"duplicate appointment service {pair}")
        if isinstance(entity, ServiceTag):
            if any(t.name == entity.name for t in existing):
                raise IntegrityViolation(f"duplicate service tag name {entity.name!r}")

    def _add(self, entity: Entity) -> int:
        table = self._tables[entity.entity_type]
        new_id = table.next_id
        table.next_id += 1
        table.rows[new_id] = dataclasses.replace(entity, id=new_id)
        return new_id

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Copy-on-begin transaction; restores the copy on exception."""
        if self._in_transaction or not self.supports_transactions:
            yield
            return

        saved = copy.deepcopy(self._tables)
        self._in_transaction = True
        try:
            yield
        except BaseException:
            self._tables = saved
            raise
        finally:
            self._in_transaction = False

    async def get_all(self, entity_type: EntityType) -> list[Entity]:
        self._maybe_fail("get_all", entity_type)
        return list(self._tables[entity_type].rows.values())

    async def get_by_id(self, entity_type: EntityType, entity_id: int) -> Entity | None:
        self._maybe_fail("get_by_id", entity_type)
        return self._tables[entity_type].rows.get(entity_id)

    async def insert(self, entity: Entity) -> int:
        self.write_count += 1
        self._maybe_fail("insert", entity.entity_type)
        self._check_integrity(entity)
        return self._add(entity)

    async def bulk_insert(self, entities: Sequence[Entity]) -> None:
        if not entities:
            return
        self.write_count += 1
        entity_type = entities[0].entity_type
        if any(e.entity_type is not entity_type for e in entities):
            raise StoreError("bulk_insert requires records of a single type")
        self._maybe_fail("bulk_insert", entity_type)

        for i, entity in enumerate(entities):
            self._check_integrity(entity, pending=entities[:i])
        for entity in entities:
            self._add(entity)

    async def delete_all(self, entity_type: EntityType) -> None:
        self.write_count += 1
        self._maybe_fail("delete_all", entity_type)
        self._tables[entity_type].rows.clear()

    async def clear_all(self) -> None:
        for entity_type in reversed(DEPENDENCY_ORDER):
            await self.delete_all(entity_type)

    async def count(self, entity_type: EntityType) -> int:
        return len(self._tables[entity_type].rows)

    async def is_empty(self) -> bool:
        return all(not table.rows for table in self._tables.values())
