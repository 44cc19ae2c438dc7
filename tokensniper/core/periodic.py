"""
Periodic background task runner
"""

import asyncio
from typing import Awaitable, Callable, Optional

from tokensniper.core.logger import get_logger


logger = get_logger(__name__)


class PeriodicTask:
    """
    Runs an async callable every interval until stopped

    Errors are logged and the loop keeps going; cancellation ends it cleanly.

    Usage:
        task = PeriodicTask("positions_refresh", ledger.refresh, interval_s=30)
        task.start()
        await task.stop()
    """

    def __init__(self, name: str, func: Callable[[], Awaitable[object]], interval_s: float):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")

        self.name = name
        self.func = func
        self.interval_s = interval_s
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("periodic_task_already_running", task=self.name)
            return

        self._task = asyncio.create_task(self._loop())
        logger.info("periodic_task_started", task=self.name, interval_s=self.interval_s)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        logger.info("periodic_task_stopped", task=self.name)

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_s)
                await self.func()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("periodic_task_error", task=self.name, error=str(e))
