"""Single-threaded event loop for the kiosk surface.

All workflow code runs on the loop thread: timers, periodic timers and the
completions of remote calls. Remote calls run on an executor and their
results are posted back to the loop, so the sampling timers never block on
the network.

The clock is pluggable. ``ManualClock`` together with :meth:`EventLoop.advance`
fires timers in deadline order without sleeping, which is what the tests
and the ``simulate`` command use.

Example:
    >>> loop = EventLoop(clock=ManualClock())
    >>> ticks = []
    >>> handle = loop.call_every(0.1, lambda: ticks.append(loop.time()))
    >>> loop.advance(0.35)
    >>> len(ticks)
    3
    >>> handle.cancel()
"""

from __future__ import annotations

import heapq
import itertools
import logging
import queue
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class MonotonicClock:
    """Wall clock based on ``time.monotonic``."""

    def time(self) -> float:
        return time.monotonic()


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self._now = start

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += seconds

    def advance_to(self, t: float) -> None:
        if t > self._now:
            self._now = t


class TimerHandle:
    """Handle to a scheduled (possibly periodic) callback."""

    __slots__ = ("deadline", "period", "callback", "args", "cancelled", "fired")

    def __init__(
        self,
        deadline: float,
        callback: Callable[..., Any],
        args: Tuple[Any, ...],
        period: Optional[float] = None,
    ):
        self.deadline = deadline
        self.period = period
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    @property
    def active(self) -> bool:
        """True while the callback can still fire."""
        if self.cancelled:
            return False
        return self.period is not None or not self.fired

    def cancel(self) -> None:
        self.cancelled = True

    def __repr__(self) -> str:
        kind = f"every {self.period}s" if self.period is not None else "once"
        state = "cancelled" if self.cancelled else ("active" if self.active else "done")
        return f"TimerHandle({kind}, deadline={self.deadline:.3f}, {state})"


class EventLoop:
    """Timer and completion loop.

    Args:
        clock: Time source. Defaults to :class:`MonotonicClock`.
        executor: Executor for :meth:`submit`. Defaults to a small thread
            pool created on first use and shut down by :meth:`close`.
    """

    def __init__(self, clock: Optional[Any] = None, executor: Optional[Executor] = None):
        self._clock = clock or MonotonicClock()
        self._executor = executor
        self._owns_executor = executor is None
        self._timers: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()
        self._posted: "queue.SimpleQueue[Tuple[Callable[..., Any], Tuple[Any, ...]]]" = queue.SimpleQueue()
        self._wakeup = threading.Event()
        self._running = False

    @property
    def clock(self) -> Any:
        return self._clock

    def time(self) -> float:
        return self._clock.time()

    # ── Scheduling ──

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` once after ``delay`` seconds."""
        handle = TimerHandle(self.time() + max(0.0, delay), callback, args)
        self._push(handle)
        return handle

    def call_every(
        self,
        period: float,
        callback: Callable[..., Any],
        *args: Any,
        first_delay: Optional[float] = None,
    ) -> TimerHandle:
        """Run ``callback(*args)`` every ``period`` seconds until cancelled."""
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        delay = period if first_delay is None else max(0.0, first_delay)
        handle = TimerHandle(self.time() + delay, callback, args, period=period)
        self._push(handle)
        return handle

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue ``callback(*args)`` to run on the loop. Thread-safe."""
        self._posted.put((callback, args))
        self._wakeup.set()

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_done: Optional[Callable[[Future], Any]] = None,
    ) -> Future:
        """Run ``fn(*args)`` on the executor; deliver the future to ``on_done`` on the loop."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="faceenroll")
        future = self._executor.submit(fn, *args)
        if on_done is not None:
            future.add_done_callback(lambda f: self.post(on_done, f))
        return future

    def pending_timers(self) -> int:
        """Number of timers that can still fire."""
        return sum(1 for _, _, h in self._timers if h.active)

    # ── Running ──

    def run_once(self) -> int:
        """Run posted callbacks and every timer that is due. Returns the count run."""
        count = self._drain_posted()
        now = self.time()
        while self._timers and self._timers[0][0] <= now:
            _, _, handle = heapq.heappop(self._timers)
            if self._fire(handle):
                count += 1
            count += self._drain_posted()
        return count

    def advance(self, seconds: float) -> int:
        """Move a :class:`ManualClock` forward, firing timers in deadline order."""
        if not isinstance(self._clock, ManualClock):
            raise TypeError("advance() requires a ManualClock")
        target = self.time() + seconds
        count = self._drain_posted()
        while True:
            self._discard_cancelled()
            if not self._timers or self._timers[0][0] > target:
                break
            deadline, _, handle = heapq.heappop(self._timers)
            self._clock.advance_to(deadline)
            if self._fire(handle):
                count += 1
            count += self._drain_posted()
        self._clock.advance_to(target)
        count += self._drain_posted()
        return count

    def run_forever(self, poll_sec: float = 0.05) -> None:
        """Run until :meth:`stop` is called (real clock)."""
        self._running = True
        while self._running:
            self.run_once()
            self._discard_cancelled()
            timeout = poll_sec
            if self._timers:
                timeout = max(0.0, min(poll_sec, self._timers[0][0] - self.time()))
            self._wakeup.wait(timeout)
            self._wakeup.clear()

    def stop(self) -> None:
        self._running = False
        self._wakeup.set()

    def close(self) -> None:
        """Stop the loop, drop all timers and shut down an owned executor."""
        self.stop()
        for _, _, handle in self._timers:
            handle.cancel()
        self._timers.clear()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ── Internals ──

    def _push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._timers, (handle.deadline, next(self._seq), handle))
        self._wakeup.set()

    def _discard_cancelled(self) -> None:
        while self._timers and not self._timers[0][2].active:
            heapq.heappop(self._timers)

    def _fire(self, handle: TimerHandle) -> bool:
        if not handle.active:
            return False
        if handle.period is not None:
            handle.deadline += handle.period
            self._push(handle)
        else:
            handle.fired = True
        self._invoke(handle.callback, handle.args)
        return True

    def _drain_posted(self) -> int:
        count = 0
        while True:
            try:
                callback, args = self._posted.get_nowait()
            except queue.Empty:
                return count
            self._invoke(callback, args)
            count += 1

    @staticmethod
    def _invoke(callback: Callable[..., Any], args: Tuple[Any, ...]) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Unhandled error in loop callback %r", callback)


__all__ = ["EventLoop", "TimerHandle", "MonotonicClock", "ManualClock"]
