"""Session scope: the single lifecycle owner for timers and async calls.

A scope wraps the event loop. Everything scheduled through it is tracked,
and one :meth:`SessionScope.close` cancels every timer and causes every
remote call still in flight to have its result discarded when it lands.
Child scopes (one per workflow state) are closed with their parent.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Callable, List, Optional, Set

from faceenroll.runtime.loop import EventLoop, TimerHandle

logger = logging.getLogger(__name__)


class ScopeClosedError(RuntimeError):
    """Raised when scheduling on a closed scope."""


class SessionScope:
    """Owns timer handles and async completions for one session or state.

    Args:
        loop: Event loop to schedule on.
        name: Label used in logs.
        parent: Parent scope; the child closes with it.
    """

    def __init__(self, loop: EventLoop, name: str = "session", parent: Optional["SessionScope"] = None):
        self._loop = loop
        self.name = name
        self._parent = parent
        self._handles: Set[TimerHandle] = set()
        self._children: List[SessionScope] = []
        self._in_flight: Set[Future] = set()
        self._closed = False

    @property
    def loop(self) -> EventLoop:
        return self._loop

    @property
    def closed(self) -> bool:
        return self._closed

    def child(self, name: str) -> "SessionScope":
        """Create a scope that is closed together with this one."""
        self._check_open()
        scope = SessionScope(self._loop, name=f"{self.name}/{name}", parent=self)
        self._children.append(scope)
        return scope

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        self._check_open()
        handle: Optional[TimerHandle] = None

        def _run() -> None:
            self._handles.discard(handle)
            if not self._closed:
                callback(*args)

        handle = self._loop.call_later(delay, _run)
        self._handles.add(handle)
        return handle

    def call_every(
        self,
        period: float,
        callback: Callable[..., Any],
        *args: Any,
        first_delay: Optional[float] = None,
    ) -> TimerHandle:
        self._check_open()

        def _run() -> None:
            if not self._closed:
                callback(*args)

        handle = self._loop.call_every(period, _run, first_delay=first_delay)
        self._handles.add(handle)
        return handle

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_done: Optional[Callable[[Future], Any]] = None,
    ) -> Future:
        """Run a remote call; ``on_done`` only runs if the scope is still open."""
        self._check_open()

        def _deliver(future: Future) -> None:
            self._in_flight.discard(future)
            if self._closed:
                logger.debug("Discarding late result of %s in closed scope %s", _name(fn), self.name)
                return
            if on_done is not None:
                on_done(future)

        future = self._loop.submit(fn, *args, on_done=_deliver)
        self._in_flight.add(future)
        return future

    def pending_timers(self) -> int:
        """Active timers owned by this scope and its children."""
        own = sum(1 for h in self._handles if h.active)
        return own + sum(child.pending_timers() for child in self._children)

    @property
    def in_flight(self) -> int:
        """Remote calls submitted through this scope that have not landed."""
        return len(self._in_flight) + sum(child.in_flight for child in self._children)

    def close(self) -> None:
        """Cancel every timer, close children, and discard pending completions."""
        if self._closed:
            return
        self._closed = True
        for child in list(self._children):
            child.close()
        self._children.clear()
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        if self._parent is not None and self in self._parent._children:
            self._parent._children.remove(self)

    def _check_open(self) -> None:
        if self._closed:
            raise ScopeClosedError(f"Scope {self.name} is closed")

    def __enter__(self) -> "SessionScope":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", repr(fn))


__all__ = ["SessionScope", "ScopeClosedError"]
