"""
Debounced backup scheduling for the ledger.
"""

from .debounce import BackupScheduler, SchedulerState, SchedulerStats

__all__ = ["BackupScheduler", "SchedulerState", "SchedulerStats"]
