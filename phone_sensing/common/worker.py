"""Serialized execution context and cancellable repeating timer."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger("phone_sensing.worker")


class SerialWorker:
    """Single background thread; all submitted work runs one item at a time, in order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._closed = False
        self._thread_ident: int | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def in_worker(self) -> bool:
        return threading.get_ident() == self._thread_ident

    def _run(self, fn: Callable[..., Any], args: tuple, kwargs: dict) -> Any:
        self._thread_ident = threading.get_ident()
        return fn(*args, **kwargs)

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        """Enqueue work. Returns None once the worker has been shut down."""
        with self._lock:
            if self._closed:
                logger.debug("worker %s closed, dropping %s", self.name, getattr(fn, "__name__", fn))
                return None
            return self._executor.submit(self._run, fn, args, kwargs)

    def shutdown(self, final: Callable[[], Any] | None = None) -> None:
        """Run ``final`` as the last queued item, then stop accepting work and join."""
        with self._lock:
            if self._closed:
                return
            future = self._executor.submit(self._run, final, (), {}) if final is not None else None
            self._closed = True
        if future is not None and not self.in_worker():
            future.result()
        self._executor.shutdown(wait=not self.in_worker())


def log_failure(future: Future) -> None:
    """Done-callback for work whose Future nobody waits on."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("background work item failed: %r", exc, exc_info=exc)


class RepeatingTimer:
    """Fires ``action`` immediately and then every ``period`` seconds until cancelled."""

    def __init__(self, period: float, action: Callable[[], Any], *, name: str = "repeating-timer") -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self.period = period
        self._action = action
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)

    def start(self) -> "RepeatingTimer":
        self._thread.start()
        return self

    def _loop(self) -> None:
        while not self._cancelled.is_set():
            try:
                self._action()
            except Exception:
                logger.exception("repeating timer action failed")
            self._cancelled.wait(self.period)

    def cancel(self) -> None:
        self._cancelled.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join()

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._cancelled.is_set()
