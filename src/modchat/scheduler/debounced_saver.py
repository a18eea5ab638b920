"""Coalesce repeated save requests into a single deferred write."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from modchat.util.logger import get_logger

logger = get_logger("debounced_saver")


class DebouncedSaver:
    """
    Cancel-and-reschedule write coalescing.

    Every :meth:`request_save` call inside the quiet window replaces the
    pending timer, so a burst of mutations produces exactly one call to
    ``write`` once ``delay`` seconds pass without a new request. At most one
    write is in flight; a save that comes due during a write runs once more
    after it finishes. Write failures are logged and swallowed.

    Args:
        write: Coroutine function performing the actual persistence call.
        delay: Quiet window in seconds.
        name: Label used in log lines.
    """

    def __init__(self, write: Callable[[], Awaitable[None]], delay: float = 2.0, name: str = "state") -> None:
        self._write = write
        self._delay = delay
        self._name = name
        self._timer: asyncio.TimerHandle | None = None
        self._writer: asyncio.Task | None = None
        self._dirty = False
        self.write_count = 0

    @property
    def pending(self) -> bool:
        """True while a write is scheduled but has not started."""
        return self._timer is not None

    @property
    def writing(self) -> bool:
        """True while a write is in flight."""
        return self._writer is not None and not self._writer.done()

    def request_save(self) -> bool:
        """Schedule a write after the quiet window, replacing any pending one.

        Returns False when there is no running event loop to schedule on.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("[SAVER] Cannot schedule %s save: no running event loop", self._name)
            return False

        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._delay, self._fire)
        return True

    def _fire(self) -> None:
        self._timer = None
        self._start_writer()

    def _start_writer(self) -> None:
        # A request during an in-flight write is picked up by the same writer.
        self._dirty = True
        if not self.writing:
            self._writer = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._dirty:
            self._dirty = False
            await self._run_write()

    async def _run_write(self) -> None:
        try:
            await self._write()
            self.write_count += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[SAVER] Failed to save %s: %s", self._name, exc)

    async def flush(self) -> None:
        """Run a pending write now and wait until no write is in flight."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self._start_writer()
        while self.writing:
            await asyncio.shield(self._writer)

    def cancel(self) -> None:
        """Drop a pending write without running it."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
