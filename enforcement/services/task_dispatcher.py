"""
Task Dispatcher

In-process registry of named background jobs, created in the application
lifespan and reached from routers through ``app.state``.

- kick(): run a registered job now without blocking the caller
- schedule_every(): run a registered job periodically
- fire_and_forget(): run a best-effort side effect whose failure is only logged
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class TaskDispatcher:
    """Schedules registered jobs and side effects on the running event loop."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._intervals: dict[str, float] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._running: set[str] = set()
        self._started = False

    def register(self, name: str, job: Job) -> None:
        self._jobs[name] = job

    @property
    def job_names(self) -> list[str]:
        return sorted(self._jobs)

    def kick(self, name: str) -> bool:
        """Start a registered job immediately.

        Returns False when the job is unknown or already running; the
        running instance or the next periodic cycle picks up new work.
        """
        if name not in self._jobs:
            logger.warning(f"Kick requested for unknown job '{name}'")
            return False
        if name in self._running:
            logger.debug(f"Job '{name}' already running, kick ignored")
            return False
        # Marked before the task starts so back-to-back kicks coalesce
        self._running.add(name)
        self._spawn(self._run_job(name), f"job:{name}")
        return True

    def schedule_every(self, name: str, seconds: float) -> None:
        """Run ``name`` every ``seconds`` once the dispatcher is started."""
        if name not in self._jobs:
            raise KeyError(f"Unknown job '{name}'")
        if seconds <= 0:
            return
        self._intervals[name] = seconds
        if self._started and name not in self._workers:
            self._workers[name] = asyncio.create_task(self._periodic(name, seconds))

    def fire_and_forget(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
        """Run ``coro`` in the background; exceptions are logged, never raised."""
        return self._spawn(self._guard(coro, label), label)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        for name, seconds in self._intervals.items():
            self._workers[name] = asyncio.create_task(self._periodic(name, seconds))
        logger.info(f"Task dispatcher started with {len(self._workers)} periodic workers")

    async def stop(self) -> None:
        self._started = False
        pending = list(self._workers.values()) + list(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._workers.clear()
        self._tasks.clear()
        self._running.clear()
        logger.info("Task dispatcher stopped")

    async def drain(self) -> None:
        """Wait for all one-off tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=label)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_job(self, name: str) -> None:
        self._running.add(name)
        try:
            await self._jobs[name]()
        except Exception as e:
            logger.error(f"Job '{name}' failed: {e}", exc_info=True)
        finally:
            self._running.discard(name)

    async def _periodic(self, name: str, seconds: float) -> None:
        while True:
            await asyncio.sleep(seconds)
            if name in self._running:
                continue
            await self._run_job(name)

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, Any], label: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.error(f"Background task '{label}' failed: {e}", exc_info=True)
