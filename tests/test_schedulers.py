"""Tests for the debounced saver, the periodic scheduler and flash expiry."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from modchat.scheduler.debounced_saver import DebouncedSaver
from modchat.scheduler.flash_expiry_scheduler import FlashExpiryScheduler
from modchat.scheduler.periodic_scheduler import PeriodicScheduler


class TestDebouncedSaver:
    """Tests for DebouncedSaver."""

    @pytest.mark.asyncio
    async def test_burst_collapses_into_one_write(self):
        write = AsyncMock()
        saver = DebouncedSaver(write, delay=0.02)

        for _ in range(5):
            saver.request_save()
            await asyncio.sleep(0.005)

        assert saver.pending is True
        await asyncio.sleep(0.05)

        write.assert_awaited_once()
        assert saver.write_count == 1
        assert saver.pending is False

    @pytest.mark.asyncio
    async def test_flush_writes_immediately(self):
        write = AsyncMock()
        saver = DebouncedSaver(write, delay=60)
        saver.request_save()

        await saver.flush()

        write.assert_awaited_once()
        assert saver.pending is False

    @pytest.mark.asyncio
    async def test_flush_without_pending_write_is_noop(self):
        write = AsyncMock()
        saver = DebouncedSaver(write, delay=60)

        await saver.flush()

        write.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_and_swallowed(self):
        write = AsyncMock(side_effect=OSError("disk full"))
        saver = DebouncedSaver(write, delay=0)
        saver.request_save()

        await asyncio.sleep(0.01)

        write.assert_awaited_once()
        assert saver.write_count == 0

    @pytest.mark.asyncio
    async def test_cancel_drops_pending_write(self):
        write = AsyncMock()
        saver = DebouncedSaver(write, delay=0.01)
        saver.request_save()

        saver.cancel()
        await asyncio.sleep(0.03)

        write.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_writes_never_overlap(self):
        """A save due during a slow write runs after it with fresh state."""
        state = {"cooldown": 0}
        persisted = []
        in_flight = []

        async def write():
            in_flight.append(True)
            assert len(in_flight) == 1
            snapshot = dict(state)
            if not persisted:
                await asyncio.sleep(0.3)
            persisted.append(snapshot)
            in_flight.pop()

        saver = DebouncedSaver(write, delay=0.01)
        state["cooldown"] = 1
        saver.request_save()
        await asyncio.sleep(0.1)
        assert saver.writing is True

        state["cooldown"] = 2
        saver.request_save()
        await asyncio.sleep(0.1)
        await saver.flush()

        assert persisted == [{"cooldown": 1}, {"cooldown": 2}]
        assert saver.write_count == 2
        assert saver.writing is False

    @pytest.mark.asyncio
    async def test_flush_waits_for_in_flight_write(self):
        release = asyncio.Event()
        done = []

        async def write():
            await release.wait()
            done.append(True)

        saver = DebouncedSaver(write, delay=0)
        saver.request_save()
        await asyncio.sleep(0.01)
        asyncio.get_running_loop().call_later(0.02, release.set)

        await saver.flush()

        assert done == [True]

    def test_request_without_loop_returns_false(self):
        saver = DebouncedSaver(AsyncMock())

        assert saver.request_save() is False


class TestPeriodicScheduler:
    """Tests for PeriodicScheduler."""

    @pytest.mark.asyncio
    async def test_ticks_until_shutdown(self):
        tick = AsyncMock()
        scheduler = PeriodicScheduler("TEST", tick, interval=0.01)

        scheduler.start()
        await asyncio.sleep(0.055)
        await scheduler.shutdown()

        assert tick.await_count >= 3
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_failing_tick_does_not_stop_loop(self):
        tick = AsyncMock(side_effect=[RuntimeError("boom"), None, None, None, None, None, None, None])
        scheduler = PeriodicScheduler("TEST", tick, interval=0.01)

        scheduler.start()
        await asyncio.sleep(0.045)
        await scheduler.shutdown()

        assert tick.await_count >= 2

    @pytest.mark.asyncio
    async def test_start_twice_keeps_single_task(self):
        scheduler = PeriodicScheduler("TEST", AsyncMock(), interval=10)

        scheduler.start()
        first = scheduler._task
        scheduler.start()

        assert scheduler._task is first
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_when_not_started(self):
        scheduler = PeriodicScheduler("TEST", AsyncMock(), interval=10)

        await scheduler.shutdown()

        assert scheduler.running is False


class TestFlashExpiryScheduler:
    """Tests for FlashExpiryScheduler."""

    def test_initialization(self):
        scheduler = FlashExpiryScheduler(AsyncMock())

        assert scheduler.heap == []
        assert scheduler.pending_keys == {}
        assert scheduler.cancelled_ids == set()
        assert scheduler.counter == 0
        assert scheduler.runner_task is None

    @pytest.mark.asyncio
    async def test_job_runs_after_duration(self):
        on_expire = AsyncMock()
        scheduler = FlashExpiryScheduler(on_expire)

        await scheduler.schedule("m1", 0.02)
        assert "m1" in scheduler.pending_keys
        on_expire.assert_not_awaited()

        await asyncio.sleep(0.06)

        on_expire.assert_awaited_once_with("m1")
        assert scheduler.pending_keys == {}
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_jobs_run_in_deadline_order(self):
        expired = []

        async def on_expire(message_id):
            expired.append(message_id)

        scheduler = FlashExpiryScheduler(on_expire)
        await scheduler.schedule("late", 0.04)
        await scheduler.schedule("early", 0.01)

        await asyncio.sleep(0.08)

        assert expired == ["early", "late"]
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_non_positive_duration_runs_on_next_pass(self):
        on_expire = AsyncMock()
        scheduler = FlashExpiryScheduler(on_expire)

        await scheduler.schedule("m1", -5)
        on_expire.assert_not_awaited()
        await asyncio.sleep(0.01)

        on_expire.assert_awaited_once_with("m1")
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_cancel_prevents_expiry(self):
        on_expire = AsyncMock()
        scheduler = FlashExpiryScheduler(on_expire)

        await scheduler.schedule("m1", 0.02)
        assert await scheduler.cancel("m1") is True
        assert await scheduler.cancel("m1") is False

        await asyncio.sleep(0.05)

        on_expire.assert_not_awaited()
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_reschedule_replaces_previous_job(self):
        on_expire = AsyncMock()
        scheduler = FlashExpiryScheduler(on_expire)

        await scheduler.schedule("m1", 0.01)
        await scheduler.schedule("m1", 0.05)
        await asyncio.sleep(0.03)
        on_expire.assert_not_awaited()

        await asyncio.sleep(0.05)
        on_expire.assert_awaited_once_with("m1")
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_callback_error_keeps_runner_alive(self):
        on_expire = AsyncMock(side_effect=[RuntimeError("boom"), None])
        scheduler = FlashExpiryScheduler(on_expire)

        await scheduler.schedule("m1", 0)
        await scheduler.schedule("m2", 0.01)
        await asyncio.sleep(0.04)

        assert on_expire.await_count == 2
        assert not scheduler.runner_task.done()
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_clears_jobs(self):
        on_expire = AsyncMock()
        scheduler = FlashExpiryScheduler(on_expire)
        await scheduler.schedule("m1", 10)

        await scheduler.shutdown()
        await scheduler.shutdown()

        assert scheduler.heap == []
        assert scheduler.runner_task is None
