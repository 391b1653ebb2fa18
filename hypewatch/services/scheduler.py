import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("Ticker")


class Ticker:
    """
    Runs an async callback on a fixed interval until stopped.

    Failures inside the callback are logged and the loop keeps ticking.
    `stop()` sets the cancellation event so a sleeping ticker wakes and exits
    immediately.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable[None]], run_immediately: bool = True):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.run_immediately = run_immediately
        self.ticks = 0
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _tick(self):
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] tick failed: {e}")
        finally:
            self.ticks += 1

    async def run(self):
        """Main loop. Returns once `stop()` is called."""
        logger.info(f"⏱️ {self.name} ticker started ({self.interval}s)")
        self._stop_event.clear()
        if self.run_immediately:
            await self._tick()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self._tick()
        logger.info(f"{self.name} ticker stopped")

    def start(self) -> asyncio.Task:
        if not self.is_running:
            self._task = asyncio.create_task(self.run())
        return self._task

    def stop(self):
        self._stop_event.set()

    async def wait_closed(self):
        if self._task is not None:
            await self._task
