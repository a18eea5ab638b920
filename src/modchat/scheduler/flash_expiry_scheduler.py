"""
Heap-based scheduler for one-shot flash message expiry.

Flash messages self-destruct after their duration. Each flash registers one
job keyed by message id; when the job comes due the scheduler awaits the
expiry callback, which deletes the message and broadcasts the deletion.
Jobs run whether or not any client is still connected.
"""

from __future__ import annotations

import asyncio
import heapq
from typing import Awaitable, Callable, Dict

from modchat.util.logger import get_logger

logger = get_logger("flash_expiry_scheduler")

ExpiryCallback = Callable[[str], Awaitable[None]]


class FlashExpiryScheduler:
    """
    Central scheduler for delayed flash deletions.

    Uses a min-heap to run expiries at precise times. Rescheduling a message
    id replaces its previous job; cancelled jobs are skipped lazily when they
    reach the top of the heap.

    Attributes:
        heap (list): Min-heap of (run_at, job_id, message_id) tuples.
        pending_keys (Dict): Maps message_id to job_id for quick lookup.
        cancelled_ids (set): Set of job IDs that have been cancelled.
        counter (int): Monotonically increasing job ID counter.
        runner_task (asyncio.Task | None): Background task processing the schedule.
        condition (asyncio.Condition): Coordination primitive for task wakeup.
    """

    def __init__(self, on_expire: ExpiryCallback) -> None:
        self._on_expire = on_expire
        self.heap: list[tuple[float, int, str]] = []
        self.pending_keys: Dict[str, int] = {}
        self.cancelled_ids: set[int] = set()
        self.counter: int = 0
        self.runner_task: asyncio.Task[None] | None = None
        self.condition: asyncio.Condition = asyncio.Condition()

    def ensure_runner(self) -> None:
        """Create the background runner task if it's not already active."""
        loop = asyncio.get_running_loop()
        if self.runner_task is None or self.runner_task.done():
            self.runner_task = loop.create_task(self.run(), name="modchat-flash-expiry")

    async def schedule(self, message_id: str, duration_seconds: float) -> None:
        """
        Schedule deletion of ``message_id`` after ``duration_seconds``.

        Non-positive durations come due on the runner's next pass; the
        callback is never awaited from inside this call.
        """
        loop = asyncio.get_running_loop()
        run_at = loop.time() + max(duration_seconds, 0.0)

        async with self.condition:
            self.ensure_runner()
            if message_id in self.pending_keys:
                self.cancelled_ids.add(self.pending_keys[message_id])

            self.counter += 1
            job_id = self.counter
            heapq.heappush(self.heap, (run_at, job_id, message_id))
            self.pending_keys[message_id] = job_id
            self.condition.notify_all()

    async def cancel(self, message_id: str) -> bool:
        """
        Cancel a scheduled expiry.

        Returns:
            bool: True if a job was found and cancelled.
        """
        async with self.condition:
            job_id = self.pending_keys.pop(message_id, None)
            if job_id is None:
                return False

            self.cancelled_ids.add(job_id)
            self.condition.notify_all()
            return True

    async def shutdown(self) -> None:
        """Stop the runner and drop every pending job. Safe to call multiple times."""
        async with self.condition:
            if self.runner_task:
                self.runner_task.cancel()
            self.heap.clear()
            self.pending_keys.clear()
            self.cancelled_ids.clear()
            self.condition.notify_all()

        if self.runner_task:
            try:
                await self.runner_task
            except asyncio.CancelledError:
                pass
            finally:
                self.runner_task = None

    async def run(self) -> None:
        """Main loop: wait for the earliest job, then execute it."""
        loop = asyncio.get_running_loop()
        while True:
            async with self.condition:
                while self.heap and self.heap[0][1] in self.cancelled_ids:
                    _, job_id, _ = heapq.heappop(self.heap)
                    self.cancelled_ids.discard(job_id)

                if not self.heap:
                    await self.condition.wait()
                    continue

                run_at, _, _ = self.heap[0]
                delay = run_at - loop.time()

                if delay > 0:
                    try:
                        await asyncio.wait_for(self.condition.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
                    continue

                _, job_id, message_id = heapq.heappop(self.heap)
                if self.pending_keys.get(message_id) == job_id:
                    del self.pending_keys[message_id]

            await self.execute(message_id)

    async def execute(self, message_id: str) -> None:
        """Run the expiry callback; errors are logged so the runner survives."""
        try:
            await self._on_expire(message_id)
            logger.debug("[FLASH] Expired flash message %s", message_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[FLASH] Failed to expire flash message %s: %s", message_id, exc)
