"""
Snapshot value.

A Snapshot is an immutable, self-contained capture of every entity in the
store at one instant, tagged with the schema version it was built against.

Invariants:
    - CURRENT_SCHEMA_VERSION is defined here and nowhere else
    - Collections keep store read order (insertion order)
    - A Snapshot is never mutated; restore only consumes it
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .entities import (
    Appointment,
    AppointmentService,
    Client,
    EntityType,
    Expense,
    ExpenseItem,
    ServiceTag,
)

CURRENT_SCHEMA_VERSION = 8


@dataclass(frozen=True)
class SkippedRecord:
    """A record the codec refused while decoding.

    Attributes:
        entity_type: Collection the record came from
        index: Position in that collection
        reason: Why it was refused
    """

    entity_type: EntityType
    index: int
    reason: str


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time capture of the whole ledger.

    Attributes:
        created_at: ISO-8601 UTC timestamp
        app_version: Version of the app that built it (informational)
        schema_version: Shape of the entity graph
        clients .. appointment_services: One tuple per entity type
        skipped_on_decode: Records refused by the codec (not persisted,
            not part of equality)
    """

    created_at: str
    app_version: str
    schema_version: int
    clients: tuple[Client, ...] = ()
    appointments: tuple[Appointment, ...] = ()
    expenses: tuple[Expense, ...] = ()
    expense_items: tuple[ExpenseItem, ...] = ()
    service_tags: tuple[ServiceTag, ...] = ()
    appointment_services: tuple[AppointmentService, ...] = ()
    skipped_on_decode: tuple[SkippedRecord, ...] = field(default=(), compare=False)

    def records(self, entity_type: EntityType) -> tuple:
        return {
            EntityType.CLIENT: self.clients,
            EntityType.SERVICE_TAG: self.service_tags,
            EntityType.APPOINTMENT: self.appointments,
            EntityType.APPOINTMENT_SERVICE: self.appointment_services,
            EntityType.EXPENSE: self.expenses,
            EntityType.EXPENSE_ITEM: self.expense_items,
        }[entity_type]

    def counts(self) -> dict[str, int]:
        return {entity_type.value: len(self.records(entity_type)) for entity_type in EntityType}

    @property
    def record_count(self) -> int:
        return sum(self.counts().values())
