"""FIFO queue of disputes with per-dispute deduplication.

Producers (event polling and bulk polling) call :meth:`DisputeQueue.enqueue`.
A single drain task processes entries one at a time and exits when the queue
is empty; the next enqueue starts a new one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import Awaitable, Callable, Iterable

from retrieve_checker.activity import ActivityState
from retrieve_checker.interfaces import Host, ResultReporter
from retrieve_checker.models import RetrievalStats, RetrievalTask
from retrieve_checker.utils.logging_config import LoggingContext, set_correlation_id

logger = logging.getLogger(__name__)

CheckFunc = Callable[[RetrievalTask], Awaitable[RetrievalStats]]


class DisputeQueue:
    """Processes disputes sequentially, at most once at a time per dispute id."""

    def __init__(
        self,
        check: CheckFunc,
        reporter: ResultReporter,
        host: Host,
        activity: ActivityState | None = None,
    ):
        """Initialize dispute queue.

        Args:
            check: Coroutine function producing the stats for a task
            reporter: Receives every stats record
            host: Notified once per processed task
            activity: Activity indicator (created from ``host`` if omitted)

        """
        self.check = check
        self.reporter = reporter
        self.host = host
        self.activity = activity or ActivityState(host)

        # (task, arrived while the same id was in flight)
        self._pending: deque[tuple[RetrievalTask, bool]] = deque()
        self._in_flight: set[str] = set()
        self._drain_task: asyncio.Task | None = None
        self.processed = 0
        self.skipped = 0

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, task: RetrievalTask) -> None:
        """Append ``task`` and make sure a drain task is running."""
        self._pending.append((task, task.id in self._in_flight))
        logger.debug("Queued dispute %s (%d pending)", task.id, len(self._pending))
        if not self.is_draining:
            self._drain_task = asyncio.create_task(self._drain(), name="dispute-queue-drain")

    def enqueue_many(self, tasks: Iterable[RetrievalTask]) -> None:
        for task in tasks:
            self.enqueue(task)

    async def _drain(self) -> None:
        while self._pending:
            task, duplicate = self._pending.popleft()
            if duplicate or task.id in self._in_flight:
                self.skipped += 1
                logger.info("Dispute %s is already being processed, skipping", task.id)
                continue
            await self.process(task)

    async def process(self, task: RetrievalTask) -> RetrievalStats | None:
        """Check one dispute, report the result and update the activity state.

        Errors are logged and reported to the activity indicator; they never
        propagate, so one failing dispute cannot stall the queue.

        Returns:
            The stats record, or None if the check failed

        """
        self._in_flight.add(task.id)
        set_correlation_id(task.id)
        try:
            with LoggingContext("dispute check", logger, logging.INFO, dispute_id=task.id):
                stats = await self.check(task)
                await self.reporter.submit(task.id, stats)
            self.host.job_completed()
            self.activity.on_healthy()
            self.processed += 1
            return stats
        except asyncio.CancelledError:
            raise
        except Exception as err:
            logger.debug("Dispute %s failed", task.id, exc_info=True)
            self.activity.on_run_error(err)
            return None
        finally:
            self._in_flight.discard(task.id)

    async def join(self) -> None:
        """Wait until the queue is empty and nothing is in flight."""
        while self.is_draining:
            await asyncio.shield(self._drain_task)

    async def stop(self) -> None:
        """Drop pending disputes and cancel the drain task."""
        self._pending.clear()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
        self._drain_task = None
