"""Bounded registry for work that must finish but must not block a response."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

logger = logging.getLogger(__name__)

SIDE_EFFECT_WORKERS = int(os.getenv("SIDE_EFFECT_WORKERS", "2"))
SIDE_EFFECT_MAX_PENDING = int(os.getenv("SIDE_EFFECT_MAX_PENDING", "256"))


class BackgroundTaskRegistry:
    def __init__(
        self,
        *,
        max_workers: int = SIDE_EFFECT_WORKERS,
        max_pending: int = SIDE_EFFECT_MAX_PENDING,
    ) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="keyrbac-side-effect",
        )
        self._max_pending = max_pending
        self._in_flight: set[Future[None]] = set()
        self._lock = threading.Lock()
        self._closed = False
        self.failures = 0

    @property
    def pending(self) -> int:
        with self._lock:
            self._reap()
            return len(self._in_flight)

    def submit(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        with self._lock:
            self._reap()
            saturated = self._closed or len(self._in_flight) >= self._max_pending
            if not saturated:
                future = self._executor.submit(self._run, name, func, *args, **kwargs)
                self._in_flight.add(future)
                return

        # Full or shutting down: run on the caller thread rather than drop it.
        logger.warning("background registry saturated, running %s inline", name)
        self._run(name, func, *args, **kwargs)

    def drain(self, timeout: float | None = None) -> bool:
        with self._lock:
            futures = list(self._in_flight)
        _, not_done = wait(futures, timeout=timeout)
        with self._lock:
            self._reap()
        return not not_done

    def shutdown(self, timeout: float | None = None) -> None:
        with self._lock:
            self._closed = True
        if not self.drain(timeout):
            logger.warning("background registry shut down with pending tasks")
        self._executor.shutdown(wait=True)

    def _run(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except Exception:
            with self._lock:
                self.failures += 1
            logger.exception("background task %s failed", name)

    def _reap(self) -> None:
        done = {future for future in self._in_flight if future.done()}
        self._in_flight -= done
