"""Manager event loop hosted on its own daemon thread.

The manager is single-writer: every read or write of its state happens on
this loop. paho calls back on its network thread, uvicorn's handlers and
the TUI run elsewhere, so all of them reach the manager by handing
coroutines to LoopThread instead of touching it directly.
"""

import asyncio
import concurrent.futures
import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class LoopThread:
    """Owns one asyncio loop running forever on a named daemon thread."""

    def __init__(self, name: str = "smokey-manager"):
        self.name = name
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the thread; returns once the loop is accepting work."""
        loop = asyncio.new_event_loop()
        loop.set_exception_handler(_log_loop_error)
        running = threading.Event()
        self._worker = threading.Thread(
            target=_serve, args=(loop, running), name=self.name, daemon=True)
        self._worker.start()
        running.wait()
        self.loop = loop

    def submit(self, coro) -> concurrent.futures.Future:
        if self.loop is None:
            raise RuntimeError(f"{self.name} loop not started")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    async def submit_async(self, coro):
        """Await a coroutine run on this loop from a different loop."""
        return await asyncio.wrap_future(self.submit(coro))

    def run(self, coro, timeout: Optional[float] = None):
        """Block the calling thread until the coroutine finishes here."""
        return self.submit(coro).result(timeout)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, cancel what is still pending, join the thread."""
        loop, worker = self.loop, self._worker
        self.loop = self._worker = None
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        if worker is not None:
            worker.join(timeout)


def _serve(loop: asyncio.AbstractEventLoop, running: threading.Event) -> None:
    asyncio.set_event_loop(loop)
    loop.call_soon(running.set)
    try:
        loop.run_forever()
    finally:
        _cancel_leftovers(loop)
        loop.close()


def _cancel_leftovers(loop: asyncio.AbstractEventLoop) -> None:
    # Manager run loop and uvicorn are normally still pending here
    pending = asyncio.all_tasks(loop)
    for task in pending:
        task.cancel()
    if pending:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    loop.run_until_complete(loop.shutdown_asyncgens())


def _log_loop_error(loop, context) -> None:
    logger.error("%s", context.get("message", "Unhandled error on manager loop"),
                 exc_info=context.get("exception"))
