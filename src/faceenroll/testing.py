"""Testing utilities for the enrollment workflow.

Fakes for every collaborator, so a full session can run on a manual clock
without a camera, a model or a backend.

Example:
    >>> from faceenroll.testing import (FakeVideoSource, ScriptedAnalyzer,
    ...     FakeIdentityService, ManualExecutor, good_sample)
    >>> executor = ManualExecutor()
    >>> loop = EventLoop(clock=ManualClock(), executor=executor)
    >>> service = FakeIdentityService()
    >>> service.store.add_user("Ada", "ada", "0042")
    >>> workflow = EnrollmentWorkflow(loop, FakeVideoSource(),
    ...     ScriptedAnalyzer([good_sample()]), service)
    >>> workflow.start(); workflow.on_credential("0042")
    >>> executor.run_all(); loop.advance(0)
"""

from __future__ import annotations

import itertools
from concurrent.futures import Executor, Future
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from faceenroll.store.store import EnrollmentStore
from faceenroll.types import (
    DetectionSample,
    Expression,
    ExpressionType,
    FaceBox,
    VerificationResult,
)

ScriptItem = Union[DetectionSample, BaseException]


# =============================================================================
# Executor
# =============================================================================


class ManualExecutor(Executor):
    """Executor that only runs work when told to.

    Lets a test observe a remote call in flight, then complete it.
    """

    def __init__(self):
        self._queue: List[Tuple[Future, Callable[..., Any], Tuple[Any, ...], Dict[str, Any]]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        self._queue.append((future, fn, args, kwargs))
        return future

    @property
    def pending(self) -> int:
        return len(self._queue)

    def run_next(self) -> bool:
        if not self._queue:
            return False
        future, fn, args, kwargs = self._queue.pop(0)
        if not future.set_running_or_notify_cancel():
            return True
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return True

    def run_all(self) -> int:
        """Run queued work, including work queued while running. Returns the count."""
        count = 0
        while self.run_next():
            count += 1
        return count

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        if cancel_futures:
            for future, *_ in self._queue:
                future.cancel()
            self._queue.clear()


# =============================================================================
# Collaborators
# =============================================================================


class FakeVideoSource:
    """Camera stand-in producing black BGR frames.

    Args:
        width: Frame width.
        height: Frame height.
        ready_after: Number of ``is_ready`` polls that report not ready.
            None means the camera never becomes ready.
    """

    def __init__(self, width: int = 640, height: int = 480, ready_after: Optional[int] = 0):
        self.width = width
        self.height = height
        self.ready_after = ready_after
        self.started = False
        self.start_count = 0
        self.stop_count = 0
        self.ready_polls = 0
        self.frames_read = 0

    def start(self) -> None:
        self.started = True
        self.start_count += 1

    def stop(self) -> None:
        self.started = False
        self.stop_count += 1

    def is_ready(self) -> bool:
        self.ready_polls += 1
        if not self.started or self.ready_after is None:
            return False
        return self.ready_polls > self.ready_after

    def frame_size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def read(self) -> Optional[np.ndarray]:
        if not self.started:
            return None
        self.frames_read += 1
        return np.zeros((self.height, self.width, 3), dtype=np.uint8)


class ScriptedAnalyzer:
    """Analyzer that replays a script of samples.

    Exceptions in the script are raised from ``analyze``. Once the script
    is exhausted the last item is repeated.

    Args:
        script: Samples (or exceptions) returned in order.
        models_ready_after: ``models_loaded`` polls that report False
            (None = never ready).
        clock: Optional ManualClock advanced by ``delay_sec`` per call,
            to simulate a slow model.
    """

    def __init__(
        self,
        script: Iterable[ScriptItem] = (),
        models_ready_after: Optional[int] = 0,
        clock: Optional[Any] = None,
    ):
        self.script: List[ScriptItem] = list(script) or [DetectionSample.empty()]
        self.models_ready_after = models_ready_after
        self.clock = clock
        self.delay_sec = 0.0
        self.calls = 0
        self.model_polls = 0

    def models_loaded(self) -> bool:
        self.model_polls += 1
        if self.models_ready_after is None:
            return False
        return self.model_polls > self.models_ready_after

    def analyze(self, frame: Optional[np.ndarray]) -> DetectionSample:
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if self.clock is not None and self.delay_sec:
            self.clock.advance(self.delay_sec)
        if isinstance(item, BaseException):
            raise item
        return item


class FakeIdentityService:
    """IdentityService backed by an in-memory EnrollmentStore.

    Records every call and can be told to fail a method.

    Example:
        >>> service = FakeIdentityService()
        >>> service.fail["commit_enrollment"] = CommitError("Database unavailable")
    """

    def __init__(self, store: Optional[EnrollmentStore] = None):
        self.store = store or EnrollmentStore()
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.fail: Dict[str, BaseException] = {}

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def verify_credential(self, token: str) -> VerificationResult:
        self._record("verify_credential", token)
        return self.store.verify_credential(token)

    def delete_enrollment(self, identity_id: int) -> None:
        self._record("delete_enrollment", identity_id)
        self.store.delete_enrollment(identity_id)

    def commit_enrollment(self, identity_id: int, descriptor: str, token: str) -> int:
        self._record("commit_enrollment", identity_id, descriptor, token)
        return self.store.commit_enrollment(identity_id, descriptor, token)

    def upload_telemetry_snapshot(
        self,
        image: str,
        event_type: str,
        identity_id: Optional[int] = None,
        face_detected: bool = False,
        confidence: Optional[float] = None,
    ) -> str:
        self._record("upload_telemetry_snapshot", event_type, identity_id, face_detected, confidence)
        return f"memory/{len(self.calls)}_{event_type}.jpg"

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        error = self.fail.get(method)
        if error is not None:
            raise error


# =============================================================================
# Sample factories
# =============================================================================

_seed = itertools.count()


def make_descriptor(seed: Optional[int] = None, dim: int = 128) -> np.ndarray:
    """Random unit-norm float32 descriptor."""
    rng = np.random.default_rng(next(_seed) if seed is None else seed)
    vec = rng.standard_normal(dim).astype(np.float32)
    return vec / np.linalg.norm(vec)


def face_sample(
    size_ratio: float = 0.4,
    frame_width: int = 640,
    frame_height: int = 480,
    offset: Tuple[float, float] = (0.0, 0.0),
    yaw: float = 0.0,
    pitch: float = 0.0,
    confidence: float = 0.95,
    expression: Optional[Expression] = None,
    descriptor: Optional[np.ndarray] = None,
    with_descriptor: bool = True,
) -> DetectionSample:
    """Square face of ``size_ratio`` x frame width, centered plus ``offset`` pixels."""
    side = size_ratio * frame_width
    cx = frame_width / 2 + offset[0]
    cy = frame_height / 2 + offset[1]
    if descriptor is None and with_descriptor:
        descriptor = make_descriptor()
    return DetectionSample(
        detected=True,
        box=FaceBox(x=cx - side / 2, y=cy - side / 2, width=side, height=side),
        confidence=confidence,
        yaw_angle=yaw,
        pitch_angle=pitch,
        expression=expression or Expression(ExpressionType.NEUTRAL, 0.9),
        descriptor=descriptor,
    )


def good_sample(**kwargs: Any) -> DetectionSample:
    """A sample that passes every check."""
    return face_sample(**kwargs)


__all__ = [
    "ManualExecutor",
    "FakeVideoSource",
    "ScriptedAnalyzer",
    "FakeIdentityService",
    "make_descriptor",
    "face_sample",
    "good_sample",
]
