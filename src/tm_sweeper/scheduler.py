"""Periodic background tasks: the expiry sweep and the reconciliation worker.

Each job runs on its own asyncio task with its own session per run. A run
that raises is logged and the loop keeps going; one job failing never stops
the other.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
Job = Callable[[AsyncSession], Awaitable[Any]]


class PeriodicJob:
    def __init__(
        self,
        name: str,
        job: Job,
        session_factory: SessionFactory,
        interval_seconds: float,
        initial_delay_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self._job = job
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._initial_delay = initial_delay_seconds
        self._sleep = sleep
        self.runs = 0
        self.failures = 0

    async def run_once(self) -> Any:
        async with self._session_factory() as db:
            return await self._job(db)

    async def run_forever(self) -> None:
        await self._sleep(self._initial_delay)
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception("Background job %s failed", self.name)
            self.runs += 1
            await self._sleep(self._interval)


class SweepScheduler:
    """Starts and stops the periodic jobs with the application."""

    def __init__(self, jobs: list[PeriodicJob]) -> None:
        self._jobs = jobs
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(job.run_forever(), name=f"tm-{job.name}") for job in self._jobs
        ]
        logger.info("Started background jobs: %s", ", ".join(j.name for j in self._jobs))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Background jobs stopped")

    async def __aenter__(self) -> "SweepScheduler":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
