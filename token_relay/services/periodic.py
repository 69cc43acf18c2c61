"""Background task that invokes an async tick on a fixed interval."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run ``tick`` every ``interval_seconds`` until stopped.

    The first tick fires after one full interval, mirroring a cron schedule
    rather than running at startup. Exceptions escaping a tick are logged and
    the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[Any]],
        *,
        interval_seconds: float,
        run_immediately: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        self.name = name
        self.interval_seconds = interval_seconds
        self._tick = tick
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            logger.warning("Periodic task already running", extra={"task": self.name})
            return
        self._task = asyncio.create_task(self._run_loop(), name=self.name)
        logger.info(
            "%s scheduled every %ss", self.name, self.interval_seconds, extra={"task": self.name}
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("%s stopped", self.name, extra={"task": self.name})

    async def run_once(self) -> Any:
        """Execute a single tick in the caller's task."""
        return await self._tick()

    async def _run_loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval_seconds)
        while True:
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception:  # pylint: disable=broad-except
                logger.exception("%s tick failed", self.name, extra={"task": self.name})
            await asyncio.sleep(self.interval_seconds)


__all__ = ["PeriodicTask"]
