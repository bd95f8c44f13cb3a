"""Classifier concurrency layer.

Architecture:
    ScanSession (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> classifier

A frame's classification becomes an awaited suspension point instead of
blocking the event loop. Calls that cannot get a slot within the timeout
raise TimeoutError.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from scanvote.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS: float = 5.0


class ClassifierPool:
    """Manages the semaphore and thread pool for frame classification."""

    def __init__(self, max_concurrent: int = 2, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._max_concurrent = max_concurrent
        self._timeout = timeout
        self._semaphore: asyncio.Semaphore | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix="frame-classifier",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> ClassifierPool:
        return cls(max_concurrent=settings.max_concurrent, timeout=settings.classify_timeout)

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous classifier call in the thread pool.

        Raises:
            TimeoutError: If no pool slot frees up within the timeout.
        """
        # Created lazily so the pool can be built outside a running loop.
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrent)

        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running classifier calls."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of calls waiting for a pool slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
        logger.info("Classifier pool shut down")
