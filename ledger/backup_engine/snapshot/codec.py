"""
Snapshot codec.

Serializes a Snapshot to a tagged, human-readable JSON document and back.
The document layout is compatible with backups written by the mobile app:

    {
      "createdAt": "2026-01-15T14:30:00.123Z",
      "appVersion": "0.1.17",
      "schemaVersion": 8,
      "clients": [{"id": 1, "firstName": "...", ...}],
      "appointments": [...],
      "expenses": [...],
      "expenseItems": [...],
      "serviceTags": [...],
      "appointmentServices": [...]
    }

Invariants:
    - decode(encode(s)) == s field for field
    - Enums are written by member name, never by ordinal
    - Monetary fields are non-negative integers
    - Unknown/extra fields are ignored; missing required fields fail
    - An unknown enum name fails only its own record, which is listed in
      Snapshot.skipped_on_decode

How to change safely:
    - New entity attributes must have defaults so older documents decode
    - Never rename JSON keys; add new ones
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
from typing import Any

from ..errors import DecodeError
from ..models import ENTITY_CLASSES, Entity, EntityType, ExpenseTag, SkippedRecord, Snapshot

logger = logging.getLogger(__name__)

# Order of collections in the encoded document.
COLLECTION_ORDER: tuple[EntityType, ...] = (
    EntityType.CLIENT,
    EntityType.APPOINTMENT,
    EntityType.EXPENSE,
    EntityType.EXPENSE_ITEM,
    EntityType.SERVICE_TAG,
    EntityType.APPOINTMENT_SERVICE,
)

_SNAPSHOT_ATTRS: dict[EntityType, str] = {
    EntityType.CLIENT: "clients",
    EntityType.APPOINTMENT: "appointments",
    EntityType.EXPENSE: "expenses",
    EntityType.EXPENSE_ITEM: "expense_items",
    EntityType.SERVICE_TAG: "service_tags",
    EntityType.APPOINTMENT_SERVICE: "appointment_services",
}

MONEY_FIELDS = frozenset(
    {"default_price", "income_cents", "price_for_this_tag", "total_amount_cents", "amount_cents"}
)


class _RecordRejected(Exception):
    """Raised inside record decoding when only that record must be dropped."""


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def checksum(data: bytes) -> str:
    """SHA-256 checksum of encoded snapshot bytes."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def _encode_value(value: Any) -> Any:
    if isinstance(value, ExpenseTag):
        return value.name
    return value


def _encode_record(entity: Entity) -> dict[str, Any]:
    return {
        to_camel(f.name): _encode_value(getattr(entity, f.name))
        for f in dataclasses.fields(entity)
    }


def encode(snapshot: Snapshot) -> bytes:
    """Serialize a snapshot to UTF-8 JSON bytes.

    Args:
        snapshot: Snapshot to serialize

    Returns:
        Pretty-printed JSON document
    """
    document: dict[str, Any] = {
        "createdAt": snapshot.created_at,
        "appVersion": snapshot.app_version,
        "schemaVersion": snapshot.schema_version,
    }
    for entity_type in COLLECTION_ORDER:
        document[entity_type.value] = [
            _encode_record(e) for e in getattr(snapshot, _SNAPSHOT_ATTRS[entity_type])
        ]
    return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")


def _require(obj: dict[str, Any], key: str, kind: type, path: str) -> Any:
    if key not in obj:
        raise DecodeError(f"Missing required field '{key}'", path=path)
    return _check_type(obj[key], kind, f"{path}.{key}" if path else key)


def _check_type(value: Any, kind: type, path: str) -> Any:
    # bool is an int subclass; reject it where a number is expected
    if kind is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise DecodeError(f"Expected integer, got {type(value).__name__}", path=path)
    if kind is not int and not isinstance(value, kind):
        raise DecodeError(f"Expected {kind.__name__}, got {type(value).__name__}", path=path)
    return value


def _field_kind(f: dataclasses.Field) -> tuple[type, bool]:
    """Return (python type, nullable) from a dataclass field annotation."""
    annotation = str(f.type)
    nullable = annotation.endswith("| None")
    base = annotation.replace("| None", "").strip()
    return {"int": int, "str": str, "bool": bool, "ExpenseTag": str}[base], nullable


def _decode_record(entity_type: EntityType, raw: Any, path: str) -> Entity:
    if not isinstance(raw, dict):
        raise DecodeError("Expected object", path=path)

    cls = ENTITY_CLASSES[entity_type]
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        key = to_camel(f.name)
        field_path = f"{path}.{key}"
        kind, nullable = _field_kind(f)
        has_default = f.default is not dataclasses.MISSING

        if key not in raw or (raw[key] is None and not nullable):
            if has_default:
                continue
            raise DecodeError(f"Missing required field '{key}'", path=field_path)

        value = raw[key]
        if value is None:
            kwargs[f.name] = None
            continue

        _check_type(value, kind, field_path)
        if f.name in MONEY_FIELDS and value < 0:
            raise DecodeError(f"Negative amount {value}", path=field_path)
        if f.name == "tag":
            try:
                value = ExpenseTag[value]
            except KeyError:
                raise _RecordRejected(f"unknown expense tag {value!r}") from None
        kwargs[f.name] = value

    return cls(**kwargs)


def decode(data: bytes) -> Snapshot:
    """Parse JSON bytes into a Snapshot.

    Args:
        data: Encoded snapshot document

    Returns:
        Decoded Snapshot; records refused at record level are listed in
        skipped_on_decode

    Raises:
        DecodeError: If the document is truncated or structurally invalid
    """
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Backup is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise DecodeError("Backup document must be a JSON object")

    created_at = _require(document, "createdAt", str, "")
    app_version = _require(document, "appVersion", str, "")
    schema_version = _require(document, "schemaVersion", int, "")

    collections: dict[str, tuple[Entity, ...]] = {}
    skipped: list[SkippedRecord] = []

    for entity_type in COLLECTION_ORDER:
        raw_list = _require(document, entity_type.value, list, "")
        decoded: list[Entity] = []
        for index, raw in enumerate(raw_list):
            path = f"{entity_type.value}[{index}]"
            try:
                decoded.append(_decode_record(entity_type, raw, path))
            except _RecordRejected as e:
                skipped.append(SkippedRecord(entity_type=entity_type, index=index, reason=str(e)))
                logger.warning(
                    "Skipping record with unknown enum value",
                    extra={"path": path, "reason": str(e)},
                )
        collections[_SNAPSHOT_ATTRS[entity_type]] = tuple(decoded)

    return Snapshot(
        created_at=created_at,
        app_version=app_version,
        schema_version=schema_version,
        skipped_on_decode=tuple(skipped),
        **collections,
    )
