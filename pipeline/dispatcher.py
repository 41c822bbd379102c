"""
Cycle orchestration: fetch -> normalize -> compare -> format -> send.

The Dispatcher is the single owner of the last known snapshot. Cycles are
serialized by an asyncio lock; the stored snapshot is only ever replaced
whole, after a successful read.
"""

import asyncio
import uuid
from datetime import datetime
from typing import List, Optional

import structlog

from notifications.discord import Notifier
from pipeline.comparator import diff, materially_equal
from pipeline.exceptions import FetchError, NormalizationError, SendError
from pipeline.formatter import render
from pipeline.models import CanonicalSnapshot, CycleOutcome, CycleResult, Delta
from pipeline.normalizer import normalize
from utilities.logger import CycleLogger

logger = structlog.get_logger(__name__)


class Dispatcher:
    """
    Runs cycles and guarantees at most one notification per detected change.

    When cycles queue up behind the one in flight, a change found by an
    earlier cycle is held as pending and the last cycle of the burst sends a
    single notification covering the compounded change.
    """

    def __init__(self, fetcher, notifier: Optional[Notifier] = None):
        """
        Initialize dispatcher.

        Args:
            fetcher: Upstream collaborator exposing ``async fetch_all()``
            notifier: Notification transport, None disables sending
        """
        self.fetcher = fetcher
        self.notifier = notifier
        self.cycle_logger = CycleLogger("dispatcher")
        self.logger = logger.bind(component="dispatcher")

        self._snapshot: Optional[CanonicalSnapshot] = None
        self._lock = asyncio.Lock()
        self._queued = 0

        # Burst state: a change detected but not yet notified
        self._pending = False
        self._burst_base: Optional[CanonicalSnapshot] = None

    @property
    def snapshot(self) -> Optional[CanonicalSnapshot]:
        """Last known snapshot."""
        return self._snapshot

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def drain(self) -> None:
        """Wait until the cycle in flight and any cycles queued behind it have finished."""
        async with self._lock:
            pass

    async def run_cycle(self, trigger: str = "scheduled") -> CycleResult:
        """
        Run one cycle, waiting for any cycle already in flight.

        Args:
            trigger: What started the cycle (scheduled, http, command, ...)

        Returns:
            CycleResult describing the outcome
        """
        self._queued += 1
        try:
            await self._lock.acquire()
        finally:
            self._queued -= 1

        try:
            return await self._run_locked(trigger)
        finally:
            self._lock.release()

    async def _run_locked(self, trigger: str) -> CycleResult:
        cycle_id = str(uuid.uuid4())
        start_time = datetime.utcnow()
        self.cycle_logger.log_cycle_start(cycle_id, trigger)

        result = await self._read_and_compare(cycle_id, trigger, start_time)

        if self._pending:
            if self._queued:
                result.coalesced = True
                self.logger.info("Change held for queued cycle", cycle_id=cycle_id, queued=self._queued)
            else:
                await self._flush(result)

        result.duration_seconds = (datetime.utcnow() - start_time).total_seconds()
        self.cycle_logger.log_cycle_complete(
            cycle_id,
            result.outcome.value,
            len(result.deltas),
            result.notified,
            result.duration_seconds
        )
        return result

    async def _read_and_compare(self, cycle_id: str, trigger: str, start_time: datetime) -> CycleResult:
        """Fetch, normalize and compare; mutates state only on success."""
        try:
            raw = await self.fetcher.fetch_all()
        except FetchError as e:
            self.cycle_logger.log_cycle_failed(cycle_id, "fetch", str(e))
            return self._failed(cycle_id, trigger, start_time, f"fetch failed: {e}")

        try:
            current = normalize(raw)
        except NormalizationError as e:
            self.cycle_logger.log_cycle_failed(cycle_id, "normalize", str(e))
            return self._failed(cycle_id, trigger, start_time, f"normalization failed: {e}")

        previous = self._snapshot

        if previous is None:
            self._mark_pending(previous)
            self._snapshot = current
            return CycleResult(
                cycle_id=cycle_id,
                trigger=trigger,
                outcome=CycleOutcome.INITIALIZED,
                started_at=start_time,
                snapshot=current
            )

        if materially_equal(previous, current):
            return CycleResult(
                cycle_id=cycle_id,
                trigger=trigger,
                outcome=CycleOutcome.UNCHANGED,
                started_at=start_time,
                snapshot=current
            )

        deltas = diff(previous, current)
        self._mark_pending(previous)
        self._snapshot = current
        return CycleResult(
            cycle_id=cycle_id,
            trigger=trigger,
            outcome=CycleOutcome.UPDATED,
            started_at=start_time,
            snapshot=current,
            deltas=deltas
        )

    def _failed(self, cycle_id: str, trigger: str, start_time: datetime, reason: str) -> CycleResult:
        return CycleResult(
            cycle_id=cycle_id,
            trigger=trigger,
            outcome=CycleOutcome.FAILED,
            started_at=start_time,
            reason=reason
        )

    def _mark_pending(self, previous: Optional[CanonicalSnapshot]) -> None:
        if not self._pending:
            self._pending = True
            self._burst_base = previous

    async def _flush(self, result: CycleResult) -> None:
        """Send the pending change. The change is consumed even if sending fails."""
        base = self._burst_base
        current = self._snapshot
        self._pending = False
        self._burst_base = None

        deltas: Optional[List[Delta]] = None
        if base is not None:
            if materially_equal(base, current):
                result.flushed_deltas = []
                self.logger.info("Change reverted within burst, nothing to send", cycle_id=result.cycle_id)
                return
            deltas = diff(base, current)
        result.flushed_deltas = deltas or []

        if self.notifier is None:
            self.logger.warning("Notification target not configured, skipping send", cycle_id=result.cycle_id)
            return

        try:
            await self.notifier.send(render(current, deltas))
            result.notified = True
        except SendError as e:
            result.send_error = str(e)
            self.logger.error(
                "Notification send failed, change consumed",
                cycle_id=result.cycle_id,
                error=str(e)
            )
