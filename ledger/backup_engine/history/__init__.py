"""
History module for the ledger: timestamped backup slots with bounded retention.
"""

from .retention import HistoryManager, sanitize_timestamp

__all__ = ["HistoryManager", "sanitize_timestamp"]
