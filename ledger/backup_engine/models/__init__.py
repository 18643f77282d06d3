"""
Data model for the ledger backup engine.

Entities mirror the ledger tables; Snapshot is the immutable capture of
all of them that gets serialized, retained and restored.
"""

from .entities import (
    DEPENDENCY_ORDER,
    ENTITY_CLASSES,
    Appointment,
    AppointmentService,
    Client,
    Entity,
    EntityType,
    Expense,
    ExpenseItem,
    ExpenseTag,
    ServiceTag,
)
from .snapshot import CURRENT_SCHEMA_VERSION, SkippedRecord, Snapshot

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "DEPENDENCY_ORDER",
    "ENTITY_CLASSES",
    "Appointment",
    "AppointmentService",
    "Client",
    "Entity",
    "EntityType",
    "Expense",
    "ExpenseItem",
    "ExpenseTag",
    "ServiceTag",
    "SkippedRecord",
    "Snapshot",
]
