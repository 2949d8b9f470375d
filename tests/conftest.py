"""Shared fixtures for faceenroll tests.

Everything runs on a manual clock with fake collaborators: NO camera,
models or network needed.
"""

import numpy as np
import pytest

from faceenroll.config import EnrollmentConfig
from faceenroll.observability import MemorySink, ObservabilityHub, TraceLevel
from faceenroll.runtime.loop import EventLoop, ManualClock
from faceenroll.services.codec import serialize_descriptor
from faceenroll.store import EnrollmentStore
from faceenroll.testing import (
    FakeIdentityService,
    FakeVideoSource,
    ManualExecutor,
    ScriptedAnalyzer,
    good_sample,
    make_descriptor,
)
from faceenroll.workflow import EnrollmentWorkflow

CARD = "CARD-00420042"


class Harness:
    """A workflow wired to fakes, plus helpers to drive it."""

    def __init__(self, script=None, existing=False, config=None, video=None, models_ready_after=0):
        self.config = config or EnrollmentConfig()
        self.clock = ManualClock()
        self.executor = ManualExecutor()
        self.loop = EventLoop(clock=self.clock, executor=self.executor)

        self.store = EnrollmentStore()
        self.user = self.store.add_user("Ada Lovelace", "ada", CARD)
        if existing:
            self.store.commit_enrollment(
                self.user.id, serialize_descriptor(make_descriptor(seed=7)), CARD,
            )
        self.service = FakeIdentityService(self.store)
        self.video = video or FakeVideoSource()
        self.analyzer = ScriptedAnalyzer(
            script or [good_sample()], models_ready_after=models_ready_after, clock=self.clock,
        )

        self.sink = MemorySink()
        self.hub = ObservabilityHub()
        self.hub.configure(level=TraceLevel.VERBOSE, sinks=[self.sink])

        self.completed = []
        self.cancelled = 0
        self.visited = []
        self.workflow = EnrollmentWorkflow(
            self.loop,
            self.video,
            self.analyzer,
            self.service,
            config=self.config,
            on_complete=self.completed.append,
            on_cancel=self._on_cancel,
            hub=self.hub,
        )
        self.workflow.add_listener(self._on_transition)

    def _on_cancel(self):
        self.cancelled += 1

    def _on_transition(self, old, new):
        self.visited.append(new.tag.value if new is not None else None)

    @property
    def tag(self):
        return self.workflow.tag.value if self.workflow.tag is not None else None

    def settle(self):
        """Complete every in-flight remote call and deliver the results."""
        for _ in range(20):
            ran = self.executor.run_all()
            self.loop.advance(0)
            if ran == 0 and self.executor.pending == 0:
                return

    def tick(self, n=1):
        """Advance n sampling periods."""
        for _ in range(n):
            self.loop.advance(self.config.timing.sample_interval_sec)

    def begin(self, token=CARD):
        """Start a session and present a card."""
        self.workflow.start()
        self.workflow.on_credential(token)
        self.settle()

    def commits(self):
        return [args for name, args in self.service.calls if name == "commit_enrollment"]


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def make_harness():
    """Factory fixture for harnesses with a custom script or setup."""
    return Harness


@pytest.fixture
def make_embedding():
    """Factory fixture for deterministic unit-norm 128D descriptors."""
    def _make(seed: int = 0, dim: int = 128) -> np.ndarray:
        return make_descriptor(seed=seed, dim=dim)
    return _make
