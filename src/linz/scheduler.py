"""Periodic runner for the consolidation job."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from .config import ConsolidationConfig
from .errors import ConfigurationError
from .memory.job import run_consolidation_job

logger = logging.getLogger(__name__)

JobRunner = Callable[[ConsolidationConfig], Awaitable[None]]


def next_run_at(now: datetime, interval_minutes: int) -> datetime:
    """Next interval boundary strictly after ``now``.

    With the default 60 minute interval this is the top of the next hour.
    Boundaries are counted from midnight UTC.
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    interval = timedelta(minutes=interval_minutes)
    elapsed = now - midnight
    return midnight + interval * (elapsed // interval + 1)


class ConsolidationScheduler:
    """Runs one consolidation cycle per interval until stopped."""

    def __init__(
        self,
        config: ConsolidationConfig,
        runner: JobRunner = run_consolidation_job,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self._runner = runner
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: asyncio.Task | None = None
        self.cycles = 0

    async def run_cycle(self) -> bool:
        """Run one cycle, logging instead of raising.

        Returns:
            True if the cycle completed.
        """
        self.cycles += 1
        try:
            await self._runner(self.config)
        except ConfigurationError as e:
            logger.error("Consolidation cycle aborted: %s", e)
            return False
        except Exception:
            logger.exception("Error running consolidation job")
            return False
        return True

    async def _loop(self) -> None:
        while True:
            now = self._clock()
            wait = (next_run_at(now, self.config.interval_minutes) - now).total_seconds()
            try:
                await asyncio.sleep(wait)
            except asyncio.CancelledError:
                break
            logger.info("Running scheduled LinZ memory consolidation job")
            await self.run_cycle()

    def start(self) -> bool:
        """Start the background loop if the job is enabled.

        Returns:
            True if the loop is running.
        """
        if not self.config.enabled:
            logger.info(
                "LinZ memory consolidation job disabled "
                "(set ENABLE_LINZ_CONSOLIDATION_JOB=true to enable)"
            )
            return False
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
        return True

    def stop(self) -> None:
        """Stop the background loop."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Block until the loop ends."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
