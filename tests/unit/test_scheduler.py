"""PeriodicJob and SweepScheduler."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import pytest

from src.tm_sweeper.scheduler import PeriodicJob, SweepScheduler
from tests.fakes import FakeSession


@asynccontextmanager
async def _session() -> AsyncIterator[Any]:
    yield FakeSession()


class _StopAfter:
    """Fake sleep: records delays and cancels the loop on the nth call."""

    def __init__(self, calls: int) -> None:
        self.calls = calls
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) >= self.calls:
            raise asyncio.CancelledError


class TestPeriodicJob:
    async def test_initial_delay_then_interval(self) -> None:
        seen: list[Any] = []

        async def job(db: Any) -> None:
            seen.append(db)

        sleep = _StopAfter(3)
        runner = PeriodicJob("sweep", job, _session, 5.0, initial_delay_seconds=10.0, sleep=sleep)
        with pytest.raises(asyncio.CancelledError):
            await runner.run_forever()

        assert sleep.delays == [10.0, 5.0, 5.0]
        assert runner.runs == 2
        assert all(isinstance(db, FakeSession) for db in seen)

    async def test_failure_is_counted_and_loop_continues(self) -> None:
        calls = 0

        async def job(db: Any) -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("db down")

        runner = PeriodicJob("reconcile", job, _session, 1.0, sleep=_StopAfter(3))
        with pytest.raises(asyncio.CancelledError):
            await runner.run_forever()

        assert calls == 2
        assert runner.failures == 1
        assert runner.runs == 2

    async def test_run_once_returns_result(self) -> None:
        async def job(db: Any) -> str:
            return "report"

        assert await PeriodicJob("sweep", job, _session, 1.0).run_once() == "report"


class TestSweepScheduler:
    async def test_start_and_stop(self) -> None:
        ran = asyncio.Event()

        async def job(db: Any) -> None:
            ran.set()

        scheduler = SweepScheduler([PeriodicJob("sweep", job, _session, 0.01)])
        scheduler.start()
        assert scheduler.running
        await asyncio.wait_for(ran.wait(), timeout=1.0)
        await scheduler.stop()
        assert not scheduler.running

    async def test_context_manager(self) -> None:
        async def job(db: Any) -> None:
            return None

        async with SweepScheduler([PeriodicJob("a", job, _session, 0.01)]) as scheduler:
            assert scheduler.running
        assert not scheduler.running
