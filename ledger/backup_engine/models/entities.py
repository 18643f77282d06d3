"""
Ledger entities.

These are the six record types persisted by the ledger and captured in a
snapshot. All identifiers are integers assigned by the store; they are
unique within their type at capture time and reassigned on restore.

Relationships:
    Appointment.client_id               -> Client.id
    AppointmentService.appointment_id   -> Appointment.id
    AppointmentService.service_tag_id   -> ServiceTag.id
    ExpenseItem.expense_id              -> Expense.id

Invariants:
    - Monetary amounts are non-negative integer cents
    - (appointment_id, service_tag_id) is unique within AppointmentService
    - ExpenseTag is persisted by member name, never by ordinal
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union


class EntityType(Enum):
    """Entity collections, valued by their snapshot collection name."""

    CLIENT = "clients"
    SERVICE_TAG = "serviceTags"
    APPOINTMENT = "appointments"
    APPOINTMENT_SERVICE = "appointmentServices"
    EXPENSE = "expenses"
    EXPENSE_ITEM = "expenseItems"


class ExpenseTag(Enum):
    """Expense category."""

    TAXI = "Такси"
    RENT = "Аренда"
    PAINT = "Краска"
    TOOLS = "Инструменты"
    SUPPLIES = "Расходники"
    TRANSPORT = "Проезд"
    MEAL = "Обед"

    @property
    def display_name(self) -> str:
        return self.value

    @classmethod
    def from_display_name(cls, name: str) -> ExpenseTag | None:
        for tag in cls:
            if tag.value == name:
                return tag
        return None


@dataclass(frozen=True)
class Client:
    """A client of the business.

    Attributes:
        id: Client identifier
        first_name: Given name
        last_name: Family name
        gender: "male", "female" or "other"
        phone: Phone number
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        birth_date: ISO date "YYYY-MM-DD"
        telegram: Telegram handle
        notes: Free-form notes
    """

    entity_type: ClassVar[EntityType] = EntityType.CLIENT

    id: int
    first_name: str
    last_name: str
    gender: str
    phone: str
    created_at: int
    updated_at: int
    birth_date: str | None = None
    telegram: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ServiceTag:
    """Named service with a default price.

    Attributes:
        id: Tag identifier
        name: Unique service name
        default_price: Default price in cents
        is_active: Whether the tag is offered for new appointments
        sort_order: Display order
    """

    entity_type: ClassVar[EntityType] = EntityType.SERVICE_TAG

    id: int
    name: str
    default_price: int
    is_active: bool = True
    sort_order: int = 0


@dataclass(frozen=True)
class Appointment:
    """A booked session with one client.

    Attributes:
        id: Appointment identifier
        client_id: Owning client
        title: Short description
        starts_at: Start timestamp (Unix ms)
        date_key: ISO date "YYYY-MM-DD" of the start
        income_cents: Income for the session, >= 0
        is_paid: Whether the client has paid
        created_at: Creation timestamp (Unix ms)
        duration_minutes: Session length
    """

    entity_type: ClassVar[EntityType] = EntityType.APPOINTMENT

    id: int
    client_id: int
    title: str
    starts_at: int
    date_key: str
    income_cents: int
    is_paid: bool
    created_at: int
    duration_minutes: int = 60


@dataclass(frozen=True)
class AppointmentService:
    """A service tag attached to an appointment, with its charged price."""

    entity_type: ClassVar[EntityType] = EntityType.APPOINTMENT_SERVICE

    id: int
    appointment_id: int
    service_tag_id: int
    price_for_this_tag: int
    sort_order: int = 0


@dataclass(frozen=True)
class Expense:
    """A business expense; its total is the sum of its items.

    Attributes:
        id: Expense identifier
        spent_at: Timestamp of the purchase (Unix ms)
        date_key: ISO date "YYYY-MM-DD"
        total_amount_cents: Sum of item amounts, >= 0
        created_at: Creation timestamp (Unix ms)
        note: Optional note
    """

    entity_type: ClassVar[EntityType] = EntityType.EXPENSE

    id: int
    spent_at: int
    date_key: str
    total_amount_cents: int
    created_at: int
    note: str | None = None


@dataclass(frozen=True)
class ExpenseItem:
    """One categorized line of an expense."""

    entity_type: ClassVar[EntityType] = EntityType.EXPENSE_ITEM

    id: int
    expense_id: int
    tag: ExpenseTag
    amount_cents: int


Entity = Union[Client, ServiceTag, Appointment, AppointmentService, Expense, ExpenseItem]

ENTITY_CLASSES: dict[EntityType, type] = {
    EntityType.CLIENT: Client,
    EntityType.SERVICE_TAG: ServiceTag,
    EntityType.APPOINTMENT: Appointment,
    EntityType.APPOINTMENT_SERVICE: AppointmentService,
    EntityType.EXPENSE: Expense,
    EntityType.EXPENSE_ITEM: ExpenseItem,
}

# Parents before children; clear_all walks this in reverse.
DEPENDENCY_ORDER: tuple[EntityType, ...] = (
    EntityType.CLIENT,
    EntityType.SERVICE_TAG,
    EntityType.APPOINTMENT,
    EntityType.APPOINTMENT_SERVICE,
    EntityType.EXPENSE,
    EntityType.EXPENSE_ITEM,
)
