"""Long-running checker service.

Feeds the dispute queue from two producers: an event poll that picks up
newly raised disputes and a bulk poll that re-reads every pending dispute
once per scheduling interval.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from retrieve_checker.activity import LoggingHost
from retrieve_checker.checker import RetrievalChecker
from retrieve_checker.interfaces import DisputeSource, Host, PeerDataContract, ResultReporter
from retrieve_checker.models import DisputeQueueConfig, RetrievalStats
from retrieve_checker.queue import DisputeQueue
from retrieve_checker.utils.tasks import BackgroundTaskGroup

logger = logging.getLogger(__name__)

MAX_BASE_DELAY = 60.0


@dataclass
class Collaborators:
    """External systems the service is wired to by the hosting process."""

    source: DisputeSource
    reporter: ResultReporter
    host: Host = field(default_factory=LoggingHost)
    contract: PeerDataContract | None = None


def calculate_delay_before_next_task(
    *,
    round_length: float,
    max_jitter: float,
    max_tasks_per_round: int,
    last_task_duration: float,
    rand: Callable[[], float] = random.random,
) -> float:
    """Return seconds to wait before the next bulk poll.

    Spreads ``max_tasks_per_round`` polls over ``round_length``, capped at
    one minute, plus up to ``max_jitter`` seconds of random delay.
    """
    base = min(round_length / max_tasks_per_round - last_task_duration, MAX_BASE_DELAY)
    return max(0.0, base) + round(rand() * max_jitter, 3)


class CheckerService:
    """Runs the event poll and bulk poll loops around a dispute queue."""

    def __init__(
        self,
        checker: RetrievalChecker,
        source: DisputeSource,
        reporter: ResultReporter,
        host: Host,
        config: DisputeQueueConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize checker service.

        Args:
            checker: Verification orchestrator
            source: Dispute event and pending-dispute source
            reporter: Receives every stats record
            host: Runtime hooks
            config: Polling settings (defaults if omitted)
            sleep: Delay function used by the poll loops

        """
        self.checker = checker
        self.source = source
        self.reporter = reporter
        self.host = host
        self.config = config or DisputeQueueConfig()
        self._sleep = sleep
        self.queue = DisputeQueue(checker.execute_check, reporter, host)
        self._tasks = BackgroundTaskGroup()
        self._stopped = asyncio.Event()
        self.running = False

    async def start(self) -> None:
        """Start the event poll and bulk poll loops."""
        if self.running:
            return
        self.running = True
        self._stopped.clear()
        logger.info("Starting retrieval checker service")
        self._tasks.create(self._event_poll_loop(), name="dispute-event-poll")
        self._tasks.create(self._bulk_poll_loop(), name="dispute-bulk-poll")

    async def stop(self) -> None:
        """Stop polling and abandon queued disputes."""
        if not self.running:
            return
        self.running = False
        logger.info("Stopping retrieval checker service")
        await self._tasks.cancel_and_wait(timeout=5.0)
        await self.queue.stop()
        self._stopped.set()

    async def run(self) -> None:
        """Start the service and block until :meth:`stop` is called."""
        await self.start()
        await self._stopped.wait()

    async def enqueue_pending(self) -> int:
        """Queue every pending dispute; return how many were found."""
        disputes = await self.source.get_pending_disputes()
        logger.info("Found %d pending disputes", len(disputes))
        self.queue.enqueue_many(disputes)
        return len(disputes)

    async def poll_events(self) -> int:
        """Queue disputes raised since the previous poll; return how many."""
        disputes = await self.source.poll_events()
        for task in disputes:
            logger.info("DisputeRaised %s: cid=%s miner=%s", task.id, task.cid, task.miner_id)
        self.queue.enqueue_many(disputes)
        return len(disputes)

    async def next_retrieval(self) -> RetrievalStats | None:
        """Check the oldest pending dispute once, outside the queue.

        Returns:
            The reported stats, or None if nothing is pending

        Raises:
            Any error raised while checking or reporting

        """
        disputes = await self.source.get_pending_disputes()
        if not disputes:
            logger.info("No pending disputes")
            return None
        task = disputes[0]
        stats = await self.checker.execute_check(task)
        await self.reporter.submit(task.id, stats)
        self.host.job_completed()
        return stats

    async def _event_poll_loop(self) -> None:
        while self.running:
            try:
                await self.poll_events()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Polling dispute events failed: %s", e)
            await self._sleep(self.config.event_poll_interval)

    async def _bulk_poll_loop(self) -> None:
        while self.running:
            started = time.monotonic()
            try:
                await self.enqueue_pending()
                await self.queue.join()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Fetching pending disputes failed: %s", e)
            delay = calculate_delay_before_next_task(
                round_length=self.config.round_length,
                max_jitter=self.config.max_jitter,
                max_tasks_per_round=self.config.max_tasks_per_round,
                last_task_duration=time.monotonic() - started,
            )
            logger.debug("Next bulk poll in %.1fs", delay)
            await self._sleep(delay)
