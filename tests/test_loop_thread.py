# tests/test_loop_thread.py
"""Tests for the manager's loop thread."""

import asyncio
import threading

import pytest

from loop_thread import LoopThread


async def where_am_i():
    return threading.current_thread().name


class TestLoopThread:
    """Lifecycle and cross-thread submission."""

    def test_submit_before_start(self):
        coro = asyncio.sleep(0)
        with pytest.raises(RuntimeError, match="not started"):
            LoopThread().submit(coro)
        coro.close()

    def test_runs_on_its_own_thread(self):
        runner = LoopThread(name="unit-loop")
        runner.start()
        try:
            assert runner.loop.is_running()
            assert runner.run(where_am_i(), timeout=2.0) == "unit-loop"
        finally:
            runner.stop()
        assert runner.loop is None

    @pytest.mark.asyncio
    async def test_submit_async_from_other_loop(self):
        runner = LoopThread()
        runner.start()
        try:
            assert await runner.submit_async(where_am_i()) == "smokey-manager"
        finally:
            runner.stop()

    def test_stop_cancels_pending_work(self):
        runner = LoopThread()
        runner.start()
        future = runner.submit(asyncio.sleep(3600))
        runner.stop()
        assert future.done()
