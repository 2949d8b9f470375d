"""Tracing for enrollment sessions.

Trace records complement logging: they are structured, machine readable
and go to pluggable sinks (JSONL file, memory buffer). The workflow emits
state transitions, captures and commit results; per-tick records are only
emitted at VERBOSE.

Trace Levels:
- OFF: No tracing (production default)
- MINIMAL: Session start/end, capture and commit
- NORMAL: + state transitions
- VERBOSE: + every hold tick

Example:
    >>> from faceenroll.observability import ObservabilityHub, TraceLevel, FileSink
    >>> hub = ObservabilityHub.get_instance()
    >>> hub.configure(level=TraceLevel.NORMAL)
    >>> hub.add_sink(FileSink("/tmp/enroll-trace.jsonl"))
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

logger = logging.getLogger(__name__)

R = TypeVar("R", bound="TraceRecord")


class TraceLevel(IntEnum):
    OFF = 0
    MINIMAL = 1
    NORMAL = 2
    VERBOSE = 3


# =============================================================================
# Records
# =============================================================================


@dataclass
class TraceRecord:
    """Base trace record."""

    record_type: str = field(default="trace", init=False)
    min_level: TraceLevel = field(default=TraceLevel.MINIMAL, repr=False)
    t_ns: int = field(default_factory=time.time_ns)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("min_level", None)
        return data


@dataclass
class SessionStartRecord(TraceRecord):
    record_type: str = field(default="session_start", init=False)

    session_id: int = 0


@dataclass
class SessionEndRecord(TraceRecord):
    record_type: str = field(default="session_end", init=False)

    session_id: int = 0
    outcome: str = ""  # "success", "error", "cancelled", "closed"
    duration_sec: float = 0.0


@dataclass
class StateTransitionRecord(TraceRecord):
    record_type: str = field(default="state_transition", init=False)
    min_level: TraceLevel = field(default=TraceLevel.NORMAL, repr=False)

    session_id: int = 0
    old_state: str = ""
    new_state: str = ""


@dataclass
class HoldTickRecord(TraceRecord):
    """One hold-timer evaluation (VERBOSE)."""

    record_type: str = field(default="hold_tick", init=False)
    min_level: TraceLevel = field(default=TraceLevel.VERBOSE, repr=False)

    session_id: int = 0
    good: bool = False
    dropped: bool = False
    good_ticks: int = 0
    bad_streak: int = 0
    guidance: str = ""


@dataclass
class CaptureRecord(TraceRecord):
    record_type: str = field(default="capture", init=False)

    session_id: int = 0
    identity_id: int = 0
    confidence: float = 0.0


@dataclass
class CommitRecord(TraceRecord):
    record_type: str = field(default="commit", init=False)

    session_id: int = 0
    identity_id: int = 0
    ok: bool = False
    error: str = ""


# =============================================================================
# Sinks
# =============================================================================


class Sink:
    """Destination for trace records."""

    def write(self, record: TraceRecord) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


class NullSink(Sink):
    def write(self, record: TraceRecord) -> None:
        pass


class MemorySink(Sink):
    """In-memory buffer, mostly for tests.

    Args:
        max_records: Oldest records are dropped past this size (None = unbounded).
    """

    def __init__(self, max_records: Optional[int] = None):
        self._records: List[TraceRecord] = []
        self._max_records = max_records
        self._lock = threading.Lock()

    def write(self, record: TraceRecord) -> None:
        with self._lock:
            self._records.append(record)
            if self._max_records is not None and len(self._records) > self._max_records:
                del self._records[0]

    def get_records(self, record_type: Optional[Type[R]] = None) -> List[Any]:
        with self._lock:
            if record_type is None:
                return list(self._records)
            return [r for r in self._records if isinstance(r, record_type)]

    def get_transitions(self) -> List[StateTransitionRecord]:
        return self.get_records(StateTransitionRecord)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class FileSink(Sink):
    """JSONL file sink."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "a", encoding="utf-8")
        self._lock = threading.Lock()

    def write(self, record: TraceRecord) -> None:
        line = json.dumps(record.to_dict(), default=str)
        with self._lock:
            if self._file.closed:
                return
            self._file.write(line + "\n")

    def flush(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.flush()

    def close(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.close()


# =============================================================================
# Hub
# =============================================================================


class ObservabilityHub:
    """Routes trace records to sinks according to the configured level."""

    _instance: Optional["ObservabilityHub"] = None
    _instance_lock = threading.Lock()

    def __init__(self):
        self._level = TraceLevel.OFF
        self._sinks: List[Sink] = []

    @classmethod
    def get_instance(cls) -> "ObservabilityHub":
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance.shutdown()
            cls._instance = None

    @property
    def level(self) -> TraceLevel:
        return self._level

    @property
    def enabled(self) -> bool:
        return self._level > TraceLevel.OFF and bool(self._sinks)

    def configure(self, level: TraceLevel = TraceLevel.NORMAL, sinks: Optional[List[Sink]] = None) -> None:
        self._level = TraceLevel(level)
        if sinks is not None:
            self._sinks = list(sinks)

    def add_sink(self, sink: Sink) -> None:
        self._sinks.append(sink)

    def is_enabled(self, level: TraceLevel) -> bool:
        return self.enabled and self._level >= level

    def emit(self, record: TraceRecord) -> None:
        if not self.is_enabled(record.min_level):
            return
        for sink in self._sinks:
            try:
                sink.write(record)
            except Exception as e:
                logger.warning("Trace sink %s failed: %s", type(sink).__name__, e)

    def shutdown(self) -> None:
        for sink in self._sinks:
            sink.flush()
            sink.close()
        self._sinks.clear()
        self._level = TraceLevel.OFF


__all__ = [
    "TraceLevel",
    "TraceRecord",
    "SessionStartRecord",
    "SessionEndRecord",
    "StateTransitionRecord",
    "HoldTickRecord",
    "CaptureRecord",
    "CommitRecord",
    "Sink",
    "NullSink",
    "MemorySink",
    "FileSink",
    "ObservabilityHub",
]
