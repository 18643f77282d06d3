"""
Snapshot module for the ledger.

This module captures the store into an immutable Snapshot and converts
Snapshots to and from their persisted JSON form.

Invariants:
    - Snapshots are consistent (read in one transaction)
    - Encoded snapshots round-trip exactly
"""

from . import codec
from .builder import SnapshotBuilder, utc_now_iso

__all__ = ["SnapshotBuilder", "codec", "utc_now_iso"]
