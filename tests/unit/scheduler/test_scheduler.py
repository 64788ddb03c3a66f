"""
Tests for the Scheduler

Uses short real intervals; each test runs well under a second.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from autopay_agent.errors import SchedulerFatalError
from autopay_agent.observability import ObservabilityAdapter
from autopay_agent.scheduler import Scheduler

INTERVAL = 0.02


@pytest.fixture
def scheduler(observability: ObservabilityAdapter) -> Scheduler:
    return Scheduler(observability)


class TestRegistration:
    """Test register_job()."""

    def test_register(self, scheduler: Scheduler):
        job = scheduler.register_job("optimize", 30, AsyncMock())

        assert job.interval == 30.0
        assert scheduler.job("optimize") is job
        assert [j.name for j in scheduler.jobs()] == ["optimize"]

    def test_duplicate_name(self, scheduler: Scheduler):
        scheduler.register_job("optimize", 30, AsyncMock())

        with pytest.raises(SchedulerFatalError):
            scheduler.register_job("optimize", 60, AsyncMock())

    @pytest.mark.parametrize("interval", [0, -5])
    def test_invalid_interval(self, scheduler: Scheduler, interval: float):
        with pytest.raises(SchedulerFatalError):
            scheduler.register_job("optimize", interval, AsyncMock())

    def test_non_callable_task(self, scheduler: Scheduler):
        with pytest.raises(SchedulerFatalError):
            scheduler.register_job("optimize", 30, "not a task")

    @pytest.mark.asyncio
    async def test_register_after_start(self, scheduler: Scheduler):
        await scheduler.start()
        try:
            with pytest.raises(SchedulerFatalError):
                scheduler.register_job("late", 30, AsyncMock())
        finally:
            await scheduler.stop()

    def test_set_interval(self, scheduler: Scheduler):
        scheduler.register_job("rebalance", 300, AsyncMock())

        scheduler.set_interval("rebalance", 7200)

        assert scheduler.job("rebalance").interval == 7200.0
        with pytest.raises(ValueError):
            scheduler.set_interval("rebalance", 0)


class TestRunning:
    """Test ticking behaviour."""

    @pytest.mark.asyncio
    async def test_jobs_tick_repeatedly(self, scheduler: Scheduler, observability: ObservabilityAdapter):
        task = AsyncMock()
        scheduler.register_job("health", INTERVAL, task)

        await scheduler.start()
        assert scheduler.running
        await asyncio.sleep(INTERVAL * 6)
        await scheduler.stop()

        assert task.await_count >= 2
        assert scheduler.job("health").runs == task.await_count
        assert observability.counter("scheduler.tick.success") == task.await_count
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_failing_job_is_isolated(self, scheduler: Scheduler, observability: ObservabilityAdapter):
        failing = AsyncMock(side_effect=RuntimeError("tick exploded"))
        healthy = AsyncMock()
        scheduler.register_job("failing", INTERVAL, failing)
        scheduler.register_job("healthy", INTERVAL, healthy)

        await scheduler.start()
        await asyncio.sleep(INTERVAL * 6)
        await scheduler.stop()

        failing_job = scheduler.job("failing")
        assert failing.await_count >= 2
        assert failing_job.failures == failing_job.runs
        assert failing_job.last_error == "tick exploded"
        assert healthy.await_count >= 2
        assert scheduler.job("healthy").failures == 0
        assert observability.counter("scheduler.tick.failure") == failing_job.failures

    @pytest.mark.asyncio
    async def test_ticks_of_one_job_never_overlap(self, scheduler: Scheduler):
        active = 0
        peak = 0

        async def slow_tick():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(INTERVAL * 3.5)
            active -= 1

        scheduler.register_job("slow", INTERVAL, slow_tick)

        await scheduler.start()
        await asyncio.sleep(INTERVAL * 12)
        await scheduler.stop()

        job = scheduler.job("slow")
        assert peak == 1
        assert job.runs >= 2
        assert job.skipped >= 2

    @pytest.mark.asyncio
    async def test_interval_change_applies(self, scheduler: Scheduler):
        task = AsyncMock()
        scheduler.register_job("rebalance", INTERVAL, task)

        await scheduler.start()
        await asyncio.sleep(INTERVAL * 3)
        scheduler.set_interval("rebalance", 60)
        await asyncio.sleep(INTERVAL * 2)
        count = task.await_count
        await asyncio.sleep(INTERVAL * 5)
        await scheduler.stop()

        assert task.await_count == count


class TestStop:
    """Test stop() semantics."""

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_tick(self, scheduler: Scheduler):
        started = asyncio.Event()
        completed: list[bool] = []

        async def decision_tick():
            started.set()
            await asyncio.sleep(INTERVAL * 5)
            completed.append(True)

        scheduler.register_job("optimize", INTERVAL, decision_tick)
        await scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=1.0)

        await scheduler.stop()

        assert completed == [True]
        runs = scheduler.job("optimize").runs
        assert runs == 1

        await asyncio.sleep(INTERVAL * 4)
        assert scheduler.job("optimize").runs == runs

    @pytest.mark.asyncio
    async def test_shutdown_hooks_run_after_jobs(self, scheduler: Scheduler):
        order: list[str] = []

        async def tick():
            await asyncio.sleep(INTERVAL * 2)
            order.append("tick")

        async def close_router():
            order.append("close")

        scheduler.register_job("optimize", INTERVAL, tick)
        scheduler.add_shutdown_hook(close_router)
        await scheduler.start()
        await asyncio.sleep(INTERVAL * 1.5)

        await scheduler.stop()

        assert order[-1] == "close"
        assert order.count("close") == 1

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_block_others(self, scheduler: Scheduler):
        broken = AsyncMock(side_effect=RuntimeError("close failed"))
        second = AsyncMock()
        scheduler.add_shutdown_hook(broken)
        scheduler.add_shutdown_hook(second)

        await scheduler.stop()

        broken.assert_awaited_once()
        second.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, scheduler: Scheduler):
        hook = AsyncMock()
        scheduler.add_shutdown_hook(hook)
        await scheduler.start()

        await scheduler.stop()
        await scheduler.stop()

        hook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cannot_restart(self, scheduler: Scheduler):
        await scheduler.start()
        await scheduler.stop()

        with pytest.raises(SchedulerFatalError):
            await scheduler.start()

    @pytest.mark.asyncio
    async def test_stop_interrupts_long_wait(self, scheduler: Scheduler):
        task = AsyncMock()
        scheduler.register_job("rebalance", 3600, task)
        await scheduler.start()

        await asyncio.wait_for(scheduler.stop(), timeout=1.0)

        task.assert_not_awaited()
        assert not scheduler.running
