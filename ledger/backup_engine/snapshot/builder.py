"""
Snapshot builder.

Reads every entity collection from the store and assembles one consistent,
immutable Snapshot.

Invariants:
    - All collections are read inside one store transaction
    - A failed read of any collection fails the whole build
    - The builder never writes to the store
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from ..errors import StoreReadError
from ..models import CURRENT_SCHEMA_VERSION, DEPENDENCY_ORDER, EntityType, Snapshot
from ..store import EntityStore

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class SnapshotBuilder:
    """Builds Snapshots from an EntityStore.

    Example:
        >>> builder = SnapshotBuilder(store)
        >>> snapshot = await builder.build_snapshot("0.1.17")
        >>> snapshot.counts()
        {'clients': 12, ...}
    """

    def __init__(
        self,
        store: EntityStore,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        """Initialize the builder.

        Args:
            store: Store to read from
            clock: Returns the createdAt timestamp for a new snapshot
        """
        self.store = store
        self.clock = clock

    async def build_snapshot(self, app_version: str) -> Snapshot:
        """Capture the whole store.

        Args:
            app_version: Version string recorded in the snapshot

        Returns:
            A fully materialized Snapshot

        Raises:
            StoreReadError: If any collection cannot be read
        """
        records: dict[EntityType, tuple] = {}

        try:
            async with self.store.transaction():
                for entity_type in DEPENDENCY_ORDER:
                    try:
                        records[entity_type] = tuple(await self.store.get_all(entity_type))
                    except Exception as e:
                        logger.error(
                            "Snapshot read failed",
                            extra={"entity_type": entity_type.value, "error": str(e)},
                        )
                        raise StoreReadError(entity_type.value, e) from e
        except StoreReadError:
            raise
        except Exception as e:
            # Opening or closing the read transaction failed (locked database)
            logger.error("Snapshot read transaction failed", extra={"error": str(e)})
            raise StoreReadError("all", e) from e

        snapshot = Snapshot(
            created_at=self.clock(),
            app_version=app_version,
            schema_version=CURRENT_SCHEMA_VERSION,
            clients=records[EntityType.CLIENT],
            appointments=records[EntityType.APPOINTMENT],
            expenses=records[EntityType.EXPENSE],
            expense_items=records[EntityType.EXPENSE_ITEM],
            service_tags=records[EntityType.SERVICE_TAG],
            appointment_services=records[EntityType.APPOINTMENT_SERVICE],
        )

        logger.debug(
            "Built snapshot",
            extra={"created_at": snapshot.created_at, "records": snapshot.record_count},
        )
        return snapshot
