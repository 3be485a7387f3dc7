"""Tests for the consolidation scheduler."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from linz.config import ConsolidationConfig
from linz.errors import ConfigurationError
from linz.scheduler import ConsolidationScheduler, next_run_at


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2026, 3, 1, hour, minute, second, tzinfo=timezone.utc)


class TestNextRunAt:
    """Tests for interval boundary computation."""

    def test_hourly_boundary(self):
        """Hourly runs happen at the top of the next hour."""
        assert next_run_at(at(10, 17, 5), 60) == at(11)

    def test_exact_boundary_moves_forward(self):
        """A time on a boundary schedules the following one."""
        assert next_run_at(at(11), 60) == at(12)

    def test_short_interval(self):
        """Shorter intervals count from midnight."""
        assert next_run_at(at(10, 17), 15) == at(10, 30)

    def test_crosses_midnight(self):
        """The last boundary of a day rolls over to the next day."""
        assert next_run_at(at(23, 30), 60) == datetime(2026, 3, 2, tzinfo=timezone.utc)


class TestConsolidationScheduler:
    """Tests for ConsolidationScheduler."""

    @pytest.mark.asyncio
    async def test_disabled_does_not_start(self):
        """Without the enable flag nothing is scheduled."""
        runner = AsyncMock()
        scheduler = ConsolidationScheduler(ConsolidationConfig(enabled=False), runner=runner)

        assert scheduler.start() is False
        await scheduler.wait()
        runner.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_cycle_passes_config(self):
        """A cycle hands the config to the runner."""
        config = ConsolidationConfig()
        runner = AsyncMock()
        scheduler = ConsolidationScheduler(config, runner=runner)

        assert await scheduler.run_cycle() is True
        runner.assert_awaited_once_with(config)
        assert scheduler.cycles == 1

    @pytest.mark.asyncio
    async def test_run_cycle_logs_configuration_error(self):
        """A missing credential aborts the cycle without raising."""
        runner = AsyncMock(side_effect=ConfigurationError("no key"))
        scheduler = ConsolidationScheduler(ConsolidationConfig(), runner=runner)

        assert await scheduler.run_cycle() is False

    @pytest.mark.asyncio
    async def test_run_cycle_logs_unexpected_error(self):
        """Unexpected errors are logged and the scheduler keeps going."""
        runner = AsyncMock(side_effect=RuntimeError("db gone"))
        scheduler = ConsolidationScheduler(ConsolidationConfig(), runner=runner)

        assert await scheduler.run_cycle() is False
        assert await scheduler.run_cycle() is False
        assert scheduler.cycles == 2

    @pytest.mark.asyncio
    async def test_loop_runs_on_boundary(self):
        """The loop sleeps until the boundary and then runs a cycle."""
        ran = asyncio.Event()

        async def runner(config):
            ran.set()

        def clock():
            # 50ms before the next hourly boundary.
            return at(10, 59, 59).replace(microsecond=950000)

        scheduler = ConsolidationScheduler(
            ConsolidationConfig(enabled=True), runner=runner, clock=clock
        )

        assert scheduler.start() is True
        try:
            await asyncio.wait_for(ran.wait(), timeout=2)
        finally:
            scheduler.stop()
        await scheduler.wait()
        assert scheduler.cycles >= 1

    @pytest.mark.asyncio
    async def test_stop_cancels_loop(self):
        """stop() cancels the background loop."""
        scheduler = ConsolidationScheduler(
            ConsolidationConfig(enabled=True), runner=AsyncMock(), clock=lambda: at(10, 1)
        )
        scheduler.start()
        await asyncio.sleep(0)
        task = scheduler._task

        scheduler.stop()
        await asyncio.gather(task, return_exceptions=True)

        assert task.done()
        assert scheduler._task is None
