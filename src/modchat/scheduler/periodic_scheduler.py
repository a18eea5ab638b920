"""Generic fixed-interval tick runner.

Provides a reusable async task that awaits a user-supplied coroutine every
``interval`` seconds. Handles lifecycle (start/shutdown) and keeps one failing
tick from stopping the loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from modchat.util.logger import get_logger

logger = get_logger("periodic_scheduler")


class PeriodicScheduler:
    """
    Reusable scheduler for periodic background work.

    Args:
        name: Human-readable name for logging (e.g., "heartbeat", "closure-timer").
        tick: Coroutine function called once per interval.
        interval: Seconds between ticks. The first tick runs one interval after start.
    """

    def __init__(self, name: str, tick: Callable[[], Awaitable[Any]], interval: float) -> None:
        self._name = name
        self._tick = tick
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_loop(self) -> None:
        """Infinite loop: sleep, tick, repeat."""
        logger.info("[%s] Starting periodic task (interval=%.1fs)", self._name, self._interval)
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    await self._tick()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("[%s] Unexpected error during tick", self._name)
        except asyncio.CancelledError:
            logger.info("[%s] Periodic task cancelled", self._name)
            raise

    def start(self) -> None:
        """Start the background task if not already running."""
        if self.running:
            logger.warning("[%s] Periodic task already running", self._name)
            return
        self._task = asyncio.create_task(self._run_loop(), name=f"modchat-{self._name}")

    async def shutdown(self) -> None:
        """Stop the task and wait for it to finish."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[%s] Scheduler shutdown complete", self._name)
