"""
Shared test fixtures for the ledger backup engine.
"""

import itertools
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from ledger.backup_engine.models import (
    CURRENT_SCHEMA_VERSION,
    Appointment,
    AppointmentService,
    Client,
    Expense,
    ExpenseItem,
    ExpenseTag,
    ServiceTag,
    Snapshot,
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> Callable[[], str]:
    """Strictly increasing createdAt timestamps, 1 ms apart."""
    counter = itertools.count()

    def tick() -> str:
        n = next(counter)
        return f"2026-01-15T14:{30 + n // 60000:02d}:{n // 1000 % 60:02d}.{n % 1000:03d}Z"

    return tick


@pytest.fixture
def sample_snapshot() -> Snapshot:
    """A small ledger with every entity type and non-sequential ids."""
    return Snapshot(
        created_at="2026-01-15T14:30:00.123Z",
        app_version="0.1.17",
        schema_version=CURRENT_SCHEMA_VERSION,
        clients=(
            Client(
                id=10,
                first_name="Anna",
                last_name="Petrova",
                gender="female",
                phone="+79001234567",
                created_at=1768400000000,
                updated_at=1768400000000,
                birth_date="1990-04-12",
                telegram="@anna",
            ),
            Client(
                id=11,
                first_name="Oleg",
                last_name="Smirnov",
                gender="male",
                phone="+79007654321",
                created_at=1768400100000,
                updated_at=1768400200000,
                notes="Prefers mornings",
            ),
        ),
        service_tags=(
            ServiceTag(id=3, name="Manicure", default_price=150000),
            ServiceTag(id=4, name="Pedicure", default_price=200000, is_active=False, sort_order=1),
        ),
        appointments=(
            Appointment(
                id=5,
                client_id=10,
                title="Manicure + pedicure",
                starts_at=1768487400000,
                date_key="2026-01-15",
                income_cents=350000,
                is_paid=True,
                created_at=1768400300000,
                duration_minutes=90,
            ),
            Appointment(
                id=6,
                client_id=11,
                title="Manicure",
                starts_at=1768573800000,
                date_key="2026-01-16",
                income_cents=150000,
                is_paid=False,
                created_at=1768400400000,
            ),
        ),
        appointment_services=(
            AppointmentService(id=7, appointment_id=5, service_tag_id=3, price_for_this_tag=150000),
            AppointmentService(
                id=8, appointment_id=5, service_tag_id=4, price_for_this_tag=200000, sort_order=1
            ),
            AppointmentService(id=9, appointment_id=6, service_tag_id=3, price_for_this_tag=150000),
        ),
        expenses=(
            Expense(
                id=20,
                spent_at=1768480000000,
                date_key="2026-01-15",
                total_amount_cents=3500,
                created_at=1768480000000,
                note="Taxi and lunch",
            ),
            Expense(
                id=21,
                spent_at=1768566400000,
                date_key="2026-01-16",
                total_amount_cents=120000,
                created_at=1768566400000,
            ),
        ),
        expense_items=(
            ExpenseItem(id=30, expense_id=20, tag=ExpenseTag.TAXI, amount_cents=2000),
            ExpenseItem(id=31, expense_id=20, tag=ExpenseTag.MEAL, amount_cents=1500),
            ExpenseItem(id=32, expense_id=21, tag=ExpenseTag.SUPPLIES, amount_cents=120000),
        ),
    )
