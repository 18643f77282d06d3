"""
Restore module for the ledger.

Rebuilds the store from a previously captured Snapshot, remapping every
primary key and rewriting foreign keys through the new ids.
"""

from .engine import RestoreEngine, RestoreResult

__all__ = ["RestoreEngine", "RestoreResult"]
