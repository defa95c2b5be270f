"""Run-to-completion adapter between blocking callers and async engine calls.

A :class:`BlockingBridge` owns one private event loop on a dedicated thread.
``run()`` hands a coroutine to that loop and blocks the calling thread until
it settles, so the lifecycle service can expose plain synchronous methods
while the engine client stays fully async.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

from mcworker.logger import logger

T = TypeVar("T")


class BlockingBridge:
    """One event loop, one thread, one submission at a time."""

    def __init__(self, name: str = "engine-bridge") -> None:
        self._loop = asyncio.new_event_loop()
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._run_loop, name=name, daemon=True)
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def closed(self) -> bool:
        return self._closed

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Submit *coro* to the bridge loop and block until it finishes.

        Returns the coroutine's result or re-raises its exception in the
        calling thread.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("bridge is closed")
        if threading.current_thread() is self._thread:
            coro.close()
            raise RuntimeError("BlockingBridge.run() called from its own loop thread")
        with self._lock:
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
            return future.result()

    def close(self) -> None:
        """Stop the loop, join the thread and release the loop. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
            try:
                self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            finally:
                self._loop.close()
        logger.debug("Bridge closed", thread=self._thread.name)

    def __enter__(self) -> BlockingBridge:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
