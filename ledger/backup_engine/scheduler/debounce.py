"""
Debounced backup scheduler.

Turns a burst of "data changed" signals into one backup:

    notify_changed() ─▶ Pending(deadline) ─(quiet for window)─▶ Running ─▶ Idle
          ▲                 │
          └─ re-arm ◀───────┘  (each signal cancels and replaces the timer)

Invariants:
    - notify_changed() never blocks and is safe from any thread
    - The last signal sets the deadline (cancel-and-replace)
    - At most one backup cycle is in flight
    - A signal that arrives while a cycle runs queues exactly one follow-up
    - force_now() cancels the pending timer and waits for any in-flight cycle

How to change safely:
    - Only touch _timer and _worker from the event loop thread
    - Keep the pipeline call behind _cycle_lock
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import BackupError
from ..service import BackupResult, BackupService

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """Observable scheduler states."""

    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"


@dataclass
class SchedulerStats:
    """Scheduler counters.

    Attributes:
        signals: notify_changed() calls handled
        coalesced: Signals folded into an already scheduled cycle
        cycles: Backup cycles run
        failures: Cycles that did not produce a backup
    """

    signals: int = 0
    coalesced: int = 0
    cycles: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "signals": self.signals,
            "coalesced": self.coalesced,
            "cycles": self.cycles,
            "failures": self.failures,
        }


class BackupScheduler:
    """Debounces change signals into backup cycles.

    Example:
        >>> scheduler = BackupScheduler(service, debounce_seconds=2.0)
        >>> await scheduler.start()
        >>> scheduler.notify_changed()      # from any mutation path
        >>> result = await scheduler.force_now()
    """

    def __init__(self, service: BackupService, debounce_seconds: float = 2.0) -> None:
        if debounce_seconds <= 0:
            raise ValueError("debounce_seconds must be positive")
        self.service = service
        self.debounce_seconds = debounce_seconds
        self.stats = SchedulerStats()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._worker: asyncio.Task | None = None
        self._rerun = False
        self._running = False
        self._cycle_lock = asyncio.Lock()

    @property
    def state(self) -> SchedulerState:
        if self._cycle_lock.locked():
            return SchedulerState.RUNNING
        if self._timer is not None:
            return SchedulerState.PENDING
        return SchedulerState.IDLE

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Bind to the running loop and accept signals."""
        self._loop = asyncio.get_running_loop()
        self._running = True
        logger.info("Backup scheduler started", extra={"debounce_seconds": self.debounce_seconds})

    async def stop(self) -> None:
        """Stop accepting signals and let an in-flight cycle finish.

        A pending (not yet fired) cycle is discarded.
        """
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._rerun = False
        if self._worker is not None and not self._worker.done():
            await asyncio.gather(self._worker, return_exceptions=True)
        logger.info("Backup scheduler stopped", extra=self.stats.to_dict())

    def notify_changed(self) -> None:
        """Report that data changed. Returns immediately."""
        if not self._running or self._loop is None:
            logger.debug("Change signal ignored, scheduler not running")
            return
        self._loop.call_soon_threadsafe(self._arm)

    def _arm(self) -> None:
        if not self._running:
            return
        self.stats.signals += 1
        if self._timer is not None:
            self._timer.cancel()
            self.stats.coalesced += 1
        self._timer = self._loop.call_later(self.debounce_seconds, self._on_deadline)

    def _on_deadline(self) -> None:
        self._timer = None
        if self._worker is not None and not self._worker.done():
            # Picked up by the worker once the current cycle ends
            if self._rerun:
                self.stats.coalesced += 1
            self._rerun = True
            return
        self._worker = self._loop.create_task(self._work())

    async def _work(self) -> None:
        while True:
            async with self._cycle_lock:
                # Signals that arrived while waiting for the lock are covered by this cycle
                self._rerun = False
                await self._cycle()
            if not self._rerun or not self._running:
                return

    async def _cycle(self) -> BackupResult:
        self.stats.cycles += 1
        try:
            result = await self.service.trigger_backup_now()
        except Exception as e:
            logger.exception("Backup cycle crashed")
            result = BackupResult(success=False, error=BackupError(str(e), code="BACKUP_FAILED"))
        if not result.success:
            self.stats.failures += 1
        return result

    async def force_now(self) -> BackupResult:
        """Run a backup immediately and wait for its outcome.

        Cancels a pending timer. If a cycle is in flight, waits for it and
        then runs a fresh one, which also covers any queued follow-up.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self.stats.coalesced += 1
        async with self._cycle_lock:
            self._rerun = False
            return await self._cycle()

    async def trigger_backup_now(self) -> BackupResult:
        return await self.force_now()

    def last_backup_timestamp(self) -> str | None:
        return self.service.last_backup_timestamp()

    def describe(self) -> dict[str, Any]:
        return {"state": self.state.value, **self.stats.to_dict()}
