"""
test_locks.py - Tests for the sync lock, the serial work queue and
the debounced task.
"""

import asyncio

import pytest

from fieldsync.sync.debounce import DebouncedTask
from fieldsync.sync.locks import SerialWorkQueue, SyncLock


class TestSyncLock:
    def test_try_hold_skips_when_held(self):
        lock = SyncLock()

        async def run():
            async with lock.hold("download"):
                assert lock.busy
                assert lock.holder == "download"
                async with lock.try_hold("upload") as acquired:
                    assert not acquired
            async with lock.try_hold("upload") as acquired:
                assert acquired
                assert lock.holder == "upload"
            assert not lock.busy

        asyncio.run(run())

    def test_try_hold_skips_when_someone_waits(self):
        lock = SyncLock()
        order = []

        async def waiter():
            async with lock.hold("forms"):
                order.append("forms")

        async def run():
            async with lock.hold("session"):
                task = asyncio.create_task(waiter())
                await asyncio.sleep(0)
            async with lock.try_hold("upload") as acquired:
                order.append(("upload", acquired))
            await task

        asyncio.run(run())

        assert order == [("upload", False), "forms"]

    def test_released_on_error(self):
        lock = SyncLock()

        async def run():
            with pytest.raises(RuntimeError):
                async with lock.hold("download"):
                    raise RuntimeError("fetch failed")
            assert not lock.busy

        asyncio.run(run())


class TestSerialWorkQueue:
    def test_runs_in_submission_order(self):
        queue = SerialWorkQueue("test")
        events = []

        def job(name, delay):
            async def run():
                events.append(f"start {name}")
                await asyncio.sleep(delay)
                events.append(f"end {name}")
                return name
            return run

        async def run():
            return await asyncio.gather(
                queue.submit(job("a", 0.02)),
                queue.submit(job("b", 0.0)),
                queue.submit(job("c", 0.01)),
            )

        results = asyncio.run(run())

        assert results == ["a", "b", "c"]
        assert events == ["start a", "end a", "start b", "end b", "start c", "end c"]
        assert queue.pending == 0

    def test_error_propagates_and_queue_continues(self):
        queue = SerialWorkQueue("test")

        async def fail():
            raise ValueError("bad form")

        async def succeed():
            return "ok"

        async def run():
            return await asyncio.gather(queue.submit(fail), queue.submit(succeed), return_exceptions=True)

        failed, succeeded = asyncio.run(run())

        assert isinstance(failed, ValueError)
        assert succeeded == "ok"


class TestDebouncedTask:
    def test_burst_runs_once(self):
        calls = []

        async def callback():
            calls.append(1)

        async def run():
            task = DebouncedTask(callback, 0.03, "test")
            for _ in range(5):
                assert task.schedule()
                await asyncio.sleep(0.005)
            assert task.pending
            await task.wait()
            assert not task.pending

        asyncio.run(run())

        assert calls == [1]

    def test_cancel(self):
        calls = []

        async def callback():
            calls.append(1)

        async def run():
            task = DebouncedTask(callback, 0.01, "test")
            task.schedule()
            task.cancel()
            await asyncio.sleep(0.03)
            await task.wait()

        asyncio.run(run())

        assert calls == []

    def test_callback_errors_are_contained(self):
        async def callback():
            raise RuntimeError("upload exploded")

        async def run():
            task = DebouncedTask(callback, 0.0, "test")
            task.schedule()
            await task.wait()

        asyncio.run(run())

    def test_schedule_without_loop(self):
        async def callback():
            pass

        assert not DebouncedTask(callback, 0.01).schedule()
