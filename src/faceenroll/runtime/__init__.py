from faceenroll.runtime.loop import EventLoop, ManualClock, MonotonicClock, TimerHandle
from faceenroll.runtime.scope import ScopeClosedError, SessionScope

__all__ = [
    "EventLoop",
    "ManualClock",
    "MonotonicClock",
    "TimerHandle",
    "ScopeClosedError",
    "SessionScope",
]
