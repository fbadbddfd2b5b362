"""
Deferred execution for work that must not hold up a response.

Two implementations share one interface: LoopDeferredExecutor hands work to
a running asyncio loop (blocking callables run in the loop's default thread
pool), TimerDeferredExecutor falls back to threading.Timer. The choice is
made once at startup by select_deferred_executor() and injected.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def _run_safely(fn: Callable, *args):
    try:
        fn(*args)
    except Exception:
        logger.exception("Deferred task %s failed", getattr(fn, "__name__", fn))


class DeferredExecutor(ABC):
    @abstractmethod
    def schedule(self, fn: Callable, *args, delay: float = 0.0) -> Any:
        """Run fn(*args) after delay seconds; returns a handle for cancel()."""

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        pass

    def shutdown(self) -> None:
        pass


class LoopDeferredExecutor(DeferredExecutor):
    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop

    def schedule(self, fn: Callable, *args, delay: float = 0.0):
        handle = {"timer": None, "cancelled": False}

        def submit():
            if not handle["cancelled"]:
                self.loop.run_in_executor(None, _run_safely, fn, *args)

        def arm():
            if handle["cancelled"]:
                return
            if delay > 0:
                handle["timer"] = self.loop.call_later(delay, submit)
            else:
                submit()

        self.loop.call_soon_threadsafe(arm)
        return handle

    def cancel(self, handle) -> None:
        if handle is None:
            return
        handle["cancelled"] = True
        timer = handle["timer"]
        if timer is not None:
            self.loop.call_soon_threadsafe(timer.cancel)


class TimerDeferredExecutor(DeferredExecutor):
    def __init__(self):
        self._timers = set()
        self._lock = threading.Lock()

    def schedule(self, fn: Callable, *args, delay: float = 0.0):
        def fire():
            with self._lock:
                self._timers.discard(timer)
            _run_safely(fn, *args)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()
        return timer

    def cancel(self, handle) -> None:
        if handle is None:
            return
        handle.cancel()
        with self._lock:
            self._timers.discard(handle)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()


def select_deferred_executor(loop: Optional[asyncio.AbstractEventLoop] = None) -> DeferredExecutor:
    if loop is None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

    if loop is not None and loop.is_running():
        logger.info("Using event loop deferred executor")
        return LoopDeferredExecutor(loop)

    logger.info("No running event loop; using timer deferred executor")
    return TimerDeferredExecutor()
