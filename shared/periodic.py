"""
Periodic background task runner.
"""

import asyncio
import inspect
from typing import Any, Callable, Optional

from shared.logging import get_logger


class PeriodicTask:
    """Run a callback on a fixed interval for the lifetime of its owner.

    The callback may be sync or async. Failures are logged and the loop keeps
    going; ``stop()`` cancels the loop and waits for it to unwind.
    """

    def __init__(self, name: str, interval_seconds: float, callback: Callable[[], Any]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.logger = get_logger(f"periodic.{name}")

        self._task: Optional[asyncio.Task] = None
        self.running = False
        self.runs = 0

    async def start(self):
        """Start the periodic loop on the running event loop."""
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._loop())
        self.logger.info("Periodic task started", interval_seconds=self.interval_seconds)

    async def stop(self):
        """Stop the loop and wait for it to finish."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.logger.info("Periodic task stopped", runs=self.runs)

    async def run_once(self) -> Any:
        """Invoke the callback a single time."""
        result = self.callback()
        if inspect.isawaitable(result):
            result = await result
        self.runs += 1
        return result

    async def _loop(self):
        while self.running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in periodic task", error=str(e))
