"""
SQLite entity store for the ledger.

This module manages the single local SQLite database holding every ledger
table. It is the production implementation of the EntityStore protocol.

Invariants:
    - One SQLite file per ledger
    - Ids come from INTEGER PRIMARY KEY AUTOINCREMENT and are never reused
    - Foreign keys are enforced (PRAGMA foreign_keys = ON)
    - Inside transaction() every operation shares one connection

How to change safely:
    - Add columns with defaults so older databases keep working
    - Keep column names equal to entity attribute names
    - Bump CURRENT_SCHEMA_VERSION when the entity graph changes

Table schema:
    clients:              id, first_name, last_name, gender, phone,
                          created_at, updated_at, birth_date, telegram, notes
    service_tags:         id, name UNIQUE, default_price, is_active, sort_order
    appointments:         id, client_id -> clients, title, starts_at, date_key,
                          income_cents, is_paid, created_at, duration_minutes
    appointment_services: id, appointment_id -> appointments,
                          service_tag_id -> service_tags, price_for_this_tag,
                          sort_order, UNIQUE (appointment_id, service_tag_id)
    expenses:             id, spent_at, date_key, total_amount_cents,
                          created_at, note
    expense_items:        id, expense_id -> expenses, tag, amount_cents
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from ..models import DEPENDENCY_ORDER, ENTITY_CLASSES, Entity, EntityType, ExpenseTag
from .base import IntegrityViolation, StoreError

logger = logging.getLogger(__name__)


TABLES: dict[EntityType, str] = {
    EntityType.CLIENT: "clients",
    EntityType.SERVICE_TAG: "service_tags",
    EntityType.APPOINTMENT: "appointments",
    EntityType.APPOINTMENT_SERVICE: "appointment_services",
    EntityType.EXPENSE: "expenses",
    EntityType.EXPENSE_ITEM: "expense_items",
}

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS clients (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        gender TEXT NOT NULL,
        phone TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        birth_date TEXT,
        telegram TEXT,
        notes TEXT
    );

    CREATE TABLE IF NOT EXISTS service_tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        default_price INTEGER NOT NULL CHECK (default_price >= 0),
        is_active INTEGER NOT NULL DEFAULT 1,
        sort_order INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS appointments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        client_id INTEGER NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        starts_at INTEGER NOT NULL,
        date_key TEXT NOT NULL,
        income_cents INTEGER NOT NULL CHECK (income_cents >= 0),
        is_paid INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        duration_minutes INTEGER NOT NULL DEFAULT 60
    );

    CREATE INDEX IF NOT EXISTS idx_appointments_client ON appointments(client_id);
    CREATE INDEX IF NOT EXISTS idx_appointments_date ON appointments(date_key);
    CREATE INDEX IF NOT EXISTS idx_appointments_starts ON appointments(starts_at);

    CREATE TABLE IF NOT EXISTS appointment_services (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        appointment_id INTEGER NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
        service_tag_id INTEGER NOT NULL REFERENCES service_tags(id) ON DELETE CASCADE,
        price_for_this_tag INTEGER NOT NULL CHECK (price_for_this_tag >= 0),
        sort_order INTEGER NOT NULL DEFAULT 0
    );

    CREATE UNIQUE INDEX IF NOT EXISTS idx_appointment_services_pair
        ON appointment_services(appointment_id, service_tag_id);
    CREATE INDEX IF NOT EXISTS idx_appointment_services_tag
        ON appointment_services(service_tag_id);

    CREATE TABLE IF NOT EXISTS expenses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        spent_at INTEGER NOT NULL,
        date_key TEXT NOT NULL,
        total_amount_cents INTEGER NOT NULL CHECK (total_amount_cents >= 0),
        created_at INTEGER NOT NULL,
        note TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date_key);

    CREATE TABLE IF NOT EXISTS expense_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        expense_id INTEGER NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
        tag TEXT NOT NULL,
        amount_cents INTEGER NOT NULL CHECK (amount_cents >= 0)
    );

    CREATE INDEX IF NOT EXISTS idx_expense_items_expense ON expense_items(expense_id);
"""


def _columns(entity_type: EntityType) -> list[str]:
    """Entity attribute names except id, in declaration order."""
    return [f.name for f in dataclasses.fields(ENTITY_CLASSES[entity_type]) if f.name != "id"]


def _to_row(entity: Entity) -> tuple[Any, ...]:
    values = []
    for name in _columns(entity.entity_type):
        value = getattr(entity, name)
        if isinstance(value, ExpenseTag):
            value = value.name
        elif isinstance(value, bool):
            value = int(value)
        values.append(value)
    return tuple(values)


def _from_row(entity_type: EntityType, row: sqlite3.Row) -> Entity:
    cls = ENTITY_CLASSES[entity_type]
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        value = row[f.name]
        if f.name == "tag":
            value = ExpenseTag[value]
        elif f.type in ("bool", bool):
            value = bool(value)
        kwargs[f.name] = value
    return cls(**kwargs)


class SqliteEntityStore:
    """SQLite-backed implementation of EntityStore.

    Thread safety:
        Outside a transaction each operation opens its own connection and
        SQLite handles concurrent access via WAL mode. A transaction pins
        one connection to the current task context.

    Example:
        >>> store = SqliteEntityStore("/var/lib/ledger/ledger.db")
        >>> await store.initialize()
        >>> async with store.transaction():
        ...     await store.clear_all()
        ...     new_id = await store.insert(client)
    """

    supports_transactions = True

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._tx_conn: ContextVar[sqlite3.Connection | None] = ContextVar(
            f"ledger_tx_{id(self)}", default=None
        )
        self._lock = asyncio.Lock()

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        if self.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the transaction connection, or a fresh one."""
        tx_conn = self._tx_conn.get()
        if tx_conn is not None:
            yield tx_conn
            return

        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _translate_errors(self, action: str, entity_type: EntityType) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise IntegrityViolation(f"{action} {entity_type.value}: {e}") from e
        except sqlite3.Error as e:
            raise StoreError(f"{action} {entity_type.value}: {e}") from e

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                conn.executescript(_SCHEMA)
        logger.info("Initialized ledger database", extra={"db_path": str(self.db_path)})

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed operations in one BEGIN IMMEDIATE transaction.

        Nested use joins the outer transaction.
        """
        if self._tx_conn.get() is not None:
            yield
            return

        conn = self._connect()
        token = self._tx_conn.set(conn)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            self._tx_conn.reset(token)
            conn.close()

    async def get_all(self, entity_type: EntityType) -> list[Entity]:
        table = TABLES[entity_type]
        with self._translate_errors("read", entity_type), self._get_connection() as conn:
            cursor = conn.execute(f"SELECT * FROM {table} ORDER BY id")
            return [_from_row(entity_type, row) for row in cursor.fetchall()]

    async def get_by_id(self, entity_type: EntityType, entity_id: int) -> Entity | None:
        table = TABLES[entity_type]
        with self._translate_errors("read", entity_type), self._get_connection() as conn:
            cursor = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,))
            row = cursor.fetchone()
            return _from_row(entity_type, row) if row else None

    def _insert_sql(self, entity_type: EntityType) -> str:
        columns = _columns(entity_type)
        placeholders = ", ".join("?" for _ in columns)
        return f"INSERT INTO {TABLES[entity_type]} ({', '.join(columns)}) VALUES ({placeholders})"

    async def insert(self, entity: Entity) -> int:
        entity_type = entity.entity_type
        with self._translate_errors("insert", entity_type), self._get_connection() as conn:
            cursor = conn.execute(self._insert_sql(entity_type), _to_row(entity))
            new_id = cursor.lastrowid

        logger.debug(
            "Inserted record",
            extra={"entity_type": entity_type.value, "id": new_id},
        )
        return new_id

    async def bulk_insert(self, entities: Sequence[Entity]) -> None:
        if not entities:
            return

        entity_type = entities[0].entity_type
        if any(e.entity_type is not entity_type for e in entities):
            raise StoreError("bulk_insert requires records of a single type")

        rows = [_to_row(e) for e in entities]
        in_transaction = self._tx_conn.get() is not None

        with self._translate_errors("bulk insert", entity_type), self._get_connection() as conn:
            if in_transaction:
                conn.executemany(self._insert_sql(entity_type), rows)
                return

            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.executemany(self._insert_sql(entity_type), rows)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def delete_all(self, entity_type: EntityType) -> None:
        with self._translate_errors("delete", entity_type), self._get_connection() as conn:
            conn.execute(f"DELETE FROM {TABLES[entity_type]}")

    async def clear_all(self) -> None:
        async with self.transaction():
            for entity_type in reversed(DEPENDENCY_ORDER):
                await self.delete_all(entity_type)

        logger.info("Cleared all ledger data", extra={"db_path": str(self.db_path)})

    async def count(self, entity_type: EntityType) -> int:
        with self._translate_errors("count", entity_type), self._get_connection() as conn:
            cursor = conn.execute(f"SELECT COUNT(*) FROM {TABLES[entity_type]}")
            return cursor.fetchone()[0]

    async def is_empty(self) -> bool:
        for entity_type in EntityType:
            if await self.count(entity_type):
                return False
        return True
