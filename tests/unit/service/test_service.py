"""Tests for the checker service loops and scheduling."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.service]

from retrieve_checker.models import DisputeQueueConfig, RetrievalStats, RetrievalTask
from retrieve_checker.service import CheckerService, calculate_delay_before_next_task


def make_task(dispute_id: str) -> RetrievalTask:
    return RetrievalTask(id=dispute_id, cid="bafkreitest", miner_id="f01234")


class TestCalculateDelay:
    def test_spreads_tasks_over_round(self):
        delay = calculate_delay_before_next_task(
            round_length=1200,
            max_jitter=10,
            max_tasks_per_round=60,
            last_task_duration=5,
            rand=lambda: 0.0,
        )
        assert delay == 15

    def test_capped_at_one_minute(self):
        delay = calculate_delay_before_next_task(
            round_length=1200,
            max_jitter=10,
            max_tasks_per_round=2,
            last_task_duration=0,
            rand=lambda: 0.0,
        )
        assert delay == 60

    def test_jitter_added(self):
        delay = calculate_delay_before_next_task(
            round_length=1200,
            max_jitter=10,
            max_tasks_per_round=60,
            last_task_duration=0,
            rand=lambda: 0.5,
        )
        assert delay == 25

    def test_slow_task_does_not_go_negative(self):
        delay = calculate_delay_before_next_task(
            round_length=60,
            max_jitter=0,
            max_tasks_per_round=60,
            last_task_duration=30,
        )
        assert delay == 0


@pytest.fixture
def source():
    s = MagicMock()
    s.get_pending_disputes = AsyncMock(return_value=[])
    s.poll_events = AsyncMock(return_value=[])
    return s


@pytest.fixture
def checker():
    c = MagicMock()
    c.execute_check = AsyncMock(return_value=RetrievalStats(status_code=200))
    return c


@pytest.fixture
def reporter():
    r = MagicMock()
    r.submit = AsyncMock()
    return r


@pytest.fixture
def host():
    return MagicMock()


@pytest.fixture
def service(checker, source, reporter, host):
    return CheckerService(checker, source, reporter, host, DisputeQueueConfig(event_poll_interval=0.01))


class TestNextRetrieval:
    @pytest.mark.asyncio
    async def test_checks_oldest_pending(self, service, source, checker, reporter, host):
        source.get_pending_disputes.return_value = [make_task("1"), make_task("2")]
        stats = await service.next_retrieval()

        assert stats.status_code == 200
        checker.execute_check.assert_awaited_once_with(make_task("1"))
        reporter.submit.assert_awaited_once_with("1", stats)
        host.job_completed.assert_called_once()

    @pytest.mark.asyncio
    async def test_nothing_pending(self, service, checker):
        assert await service.next_retrieval() is None
        checker.execute_check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_errors_propagate(self, service, source, checker, host):
        source.get_pending_disputes.return_value = [make_task("1")]
        checker.execute_check.side_effect = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            await service.next_retrieval()
        host.job_completed.assert_not_called()


class TestPolling:
    @pytest.mark.asyncio
    async def test_enqueue_pending(self, service, source, checker):
        source.get_pending_disputes.return_value = [make_task("1"), make_task("2")]
        assert await service.enqueue_pending() == 2
        await service.queue.join()
        assert checker.execute_check.await_count == 2

    @pytest.mark.asyncio
    async def test_poll_events(self, service, source, checker):
        source.poll_events.return_value = [make_task("9")]
        assert await service.poll_events() == 1
        await service.queue.join()
        checker.execute_check.assert_awaited_once_with(make_task("9"))

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, service, source, checker, reporter):
        source.get_pending_disputes.return_value = [make_task("1")]
        events = [[], [make_task("2")], []]
        source.poll_events.side_effect = lambda: events.pop(0) if events else []

        runner = asyncio.create_task(service.run())
        for _ in range(100):
            if reporter.submit.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await service.stop()
        await asyncio.wait_for(runner, 1)

        submitted = {c.args[0] for c in reporter.submit.await_args_list}
        assert submitted == {"1", "2"}
        assert not service.running

    @pytest.mark.asyncio
    async def test_poll_errors_are_logged_and_retried(self, service, source):
        source.poll_events.side_effect = [RuntimeError("rpc down"), []] + [[]] * 100
        await service.start()
        for _ in range(100):
            if source.poll_events.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await service.stop()
        assert source.poll_events.await_count >= 2

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, service):
        await service.stop()
        await service.start()
        await service.stop()
        await service.stop()
        assert not service.running
