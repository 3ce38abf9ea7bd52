from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Optional

from .jobs.queue import AsyncJobQueue, JobProcessor

logger = logging.getLogger(__name__)


class SyncRuntime:
    """Owns one background event loop that hosts the queue workers.

    Synchronous callers (Flask views, scripts) submit coroutines with `run`.
    """

    def __init__(self, queue: AsyncJobQueue, processor: JobProcessor):
        self._queue = queue
        self._processor = processor
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="course-sync-loop", daemon=True)
        self._thread.start()
        self.run(self._queue.start(self._processor))
        logger.info("Sync runtime started")

    def run(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        if self._loop is None:
            raise RuntimeError("SyncRuntime.start() must be called first")
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        self.run(self._queue.join(), timeout)

    def stop(self) -> None:
        if not self.running:
            return
        self.run(self._queue.stop())
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
        self._thread = None
        self._loop = None
        logger.info("Sync runtime stopped")
