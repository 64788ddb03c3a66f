"""
Scheduler

Runs named periodic jobs at independent cadences on the event loop.

- Each job has its own loop task, so ticks of one job never overlap while
  different jobs run concurrently and in no particular order.
- Ticks run at a fixed rate; a tick that overruns its interval causes the
  missed ticks to be skipped, never queued.
- An exception inside a tick is logged and counted, and the job carries on at
  its next tick.
- stop() lets in-flight ticks finish, starts no new ones, then runs the
  shutdown hooks that release collaborator connections.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..errors import SchedulerFatalError, extract_error_code
from ..observability import ObservabilityAdapter

logger = logging.getLogger(__name__)

JobTask = Callable[[], Awaitable[Any]]
ShutdownHook = Callable[[], Awaitable[Any]]


@dataclass
class Job:
    """A registered periodic job and its run statistics."""

    name: str
    interval: float
    task: JobTask
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    running: bool = False
    last_run: float | None = None
    last_duration: float | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval": self.interval,
            "runs": self.runs,
            "failures": self.failures,
            "skipped": self.skipped,
            "running": self.running,
            "last_run": self.last_run,
            "last_duration": self.last_duration,
            "last_error": self.last_error,
        }


class Scheduler:
    """
    Periodic job runner.

    Example:
        >>> scheduler = Scheduler(observability)
        >>> scheduler.register_job("optimize", 30, policy.run_optimization_tick)
        >>> scheduler.add_shutdown_hook(router.close)
        >>> await scheduler.start()
        >>> ...
        >>> await scheduler.stop()
    """

    def __init__(self, observability: ObservabilityAdapter | None = None):
        self._obs = observability or ObservabilityAdapter()
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._shutdown_hooks: list[ShutdownHook] = []
        self._stopping: asyncio.Event | None = None
        self._started = False
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._started and self._stopping is not None and not self._stopping.is_set()

    def register_job(self, name: str, interval: float, task: JobTask) -> Job:
        """
        Register a periodic job.

        Args:
            name: Unique job name
            interval: Seconds between ticks
            task: No-argument coroutine function run on every tick

        Raises:
            SchedulerFatalError: Scheduler already started, duplicate name,
                non-positive interval or non-callable task
        """
        if self._started or self._stopped:
            raise SchedulerFatalError(f"Cannot register job {name!r} after start", {"job": name})
        if name in self._jobs:
            raise SchedulerFatalError(f"Job {name!r} is already registered", {"job": name})
        if interval <= 0:
            raise SchedulerFatalError(f"Job {name!r} needs a positive interval", {"job": name, "interval": interval})
        if not callable(task):
            raise SchedulerFatalError(f"Job {name!r} task is not callable", {"job": name})

        job = Job(name=name, interval=float(interval), task=task)
        self._jobs[name] = job
        logger.info(f"Registered job: {name} every {interval}s", extra={"job": name, "interval": interval})
        return job

    def set_interval(self, name: str, interval: float) -> None:
        """Change a job's cadence; applies from its next scheduled tick."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        job = self._jobs[name]
        if job.interval != interval:
            logger.info(
                f"Job {name} interval changed: {job.interval}s -> {interval}s",
                extra={"job": name, "interval": interval},
            )
            job.interval = float(interval)

    def add_shutdown_hook(self, hook: ShutdownHook) -> None:
        """Register a coroutine function awaited by stop() after all jobs finish."""
        self._shutdown_hooks.append(hook)

    def job(self, name: str) -> Job | None:
        return self._jobs.get(name)

    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    async def start(self) -> None:
        """Start one loop task per registered job."""
        if self._stopped:
            raise SchedulerFatalError("Scheduler cannot be restarted after stop")
        if self._started:
            logger.warning("Scheduler already running")
            return

        self._stopping = asyncio.Event()
        self._started = True
        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._run_job(job, self._stopping), name=f"job:{job.name}")

        logger.info(f"Scheduler started with {len(self._jobs)} jobs", extra={"jobs": list(self._jobs)})

    async def stop(self) -> None:
        """
        Stop every job, waiting for in-flight ticks, then run shutdown hooks.

        No tick starts once stop() has begun. Shutdown hooks run even if the
        scheduler was never started. Safe to call more than once.
        """
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping scheduler...")
        if self._stopping is not None:
            self._stopping.set()

            in_flight = [job.name for job in self._jobs.values() if job.running]
            if in_flight:
                logger.info(f"Waiting for in-flight ticks: {in_flight}", extra={"jobs": in_flight})

            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
            self._tasks.clear()

        for hook in self._shutdown_hooks:
            try:
                await hook()
            except Exception as e:
                logger.error(f"Shutdown hook failed: {e}", exc_info=True)

        logger.info("Scheduler stopped")

    @staticmethod
    async def _wait_for_stop(stopping: asyncio.Event, delay: float) -> bool:
        """Sleep up to ``delay`` seconds; returns True as soon as stop() begins."""
        if delay > 0:
            try:
                await asyncio.wait_for(stopping.wait(), timeout=delay)
            except TimeoutError:
                pass
        return stopping.is_set()

    async def _run_job(self, job: Job, stopping: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() + job.interval

        while True:
            if await self._wait_for_stop(stopping, next_run - loop.time()):
                break

            await self._tick(job)

            now = loop.time()
            next_run += job.interval
            if next_run <= now:
                missed = int((now - next_run) // job.interval) + 1
                job.skipped += missed
                next_run += missed * job.interval
                self._obs.increment("scheduler.tick.skipped", value=missed, tags={"job": job.name})
                logger.debug(f"Job {job.name} overran; skipped {missed} ticks", extra={"job": job.name})

    async def _tick(self, job: Job) -> None:
        """Run one tick of a job, containing any exception it raises."""
        self._obs.generate_trace_id()
        job.running = True
        job.last_run = time.time()
        start = time.perf_counter()
        logger.debug(f"Tick started: {job.name}", extra={"job": job.name})

        try:
            with self._obs.trace("scheduler.tick", tags={"job": job.name}):
                await job.task()
        except Exception as e:
            job.failures += 1
            job.last_error = str(e)
            self._obs.increment(
                "scheduler.tick.failure",
                tags={"job": job.name, "error_code": extract_error_code(e).value},
            )
            logger.error(f"Job {job.name} tick failed: {e}", extra={"job": job.name}, exc_info=True)
        else:
            job.last_error = None
            self._obs.increment("scheduler.tick.success", tags={"job": job.name})
        finally:
            job.runs += 1
            job.running = False
            job.last_duration = time.perf_counter() - start
            logger.debug(
                f"Tick finished: {job.name}",
                extra={"job": job.name, "duration_ms": round(job.last_duration * 1000, 2)},
            )
