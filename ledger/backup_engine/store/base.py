"""
Base protocol for the ledger entity store.

The entity store owns the persisted relational data. The backup engine
only needs a narrow slice of it: read everything, insert with a fresh id,
bulk insert, wipe, and look one record up by id.

Invariants:
    - insert() ignores the record's id and returns the newly assigned one
    - bulk_insert() assigns fresh ids to every record
    - clear_all() deletes children before parents
    - transaction() rolls back every write made inside it on exception

How to change safely:
    - Protocol changes require updating every implementation
    - Keep the per-entity operations generic over EntityType
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable

from ..models import Entity, EntityType


class StoreError(Exception):
    """Base exception raised by entity store implementations."""

    pass


class IntegrityViolation(StoreError):
    """A write would break a foreign key or unique constraint."""

    pass


@runtime_checkable
class EntityStore(Protocol):
    """Protocol for entity store backends.

    Durability contract:
        - Writes outside a transaction are committed on return
        - Writes inside transaction() are committed when the block exits
          cleanly and discarded otherwise

    Example:
        >>> store = SqliteEntityStore("/var/lib/ledger/ledger.db")
        >>> await store.initialize()
        >>> client_id = await store.insert(client)
        >>> clients = await store.get_all(EntityType.CLIENT)
    """

    supports_transactions: bool

    @abstractmethod
    async def get_all(self, entity_type: EntityType) -> list[Entity]:
        """Read every record of a type, in insertion order.

        Raises:
            StoreError: If the read fails
        """
        ...

    @abstractmethod
    async def get_by_id(self, entity_type: EntityType, entity_id: int) -> Entity | None:
        """Read one record, or None if it does not exist."""
        ...

    @abstractmethod
    async def insert(self, entity: Entity) -> int:
        """Insert a record under a freshly assigned id.

        Returns:
            The new id

        Raises:
            IntegrityViolation: If a foreign key or unique constraint fails
        """
        ...

    @abstractmethod
    async def bulk_insert(self, entities: Sequence[Entity]) -> None:
        """Insert records of one type under freshly assigned ids."""
        ...

    @abstractmethod
    async def delete_all(self, entity_type: EntityType) -> None:
        """Delete every record of a type."""
        ...

    @abstractmethod
    async def clear_all(self) -> None:
        """Delete every record of every type, children first."""
        ...

    @abstractmethod
    async def count(self, entity_type: EntityType) -> int:
        """Number of records of a type."""
        ...

    @abstractmethod
    async def is_empty(self) -> bool:
        """Whether the store holds no records at all."""
        ...

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Group writes into one atomic unit.

        Yields:
            None; store methods called inside the block join the transaction
        """
        ...
