"""
Entity store abstraction for the ledger.

This module provides the narrow store interface the backup engine needs,
with a SQLite implementation for the app and an in-memory one for tests.
"""

from .base import EntityStore, IntegrityViolation, StoreError
from .memory import InMemoryEntityStore
from .sqlite_store import SqliteEntityStore

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "IntegrityViolation",
    "SqliteEntityStore",
    "StoreError",
]
