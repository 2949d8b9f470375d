"""Workflow state variants.

Each WorkflowState is its own class carrying only the data valid in that
state. The captured descriptor exists on exactly two variants: it is
produced inside ``Scanning`` (held by the accumulator) and moved into
``Committing``. No other variant has a field for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

import numpy as np

from faceenroll.gate.hold import HoldStillAccumulator
from faceenroll.gate.position import MSG_NO_FACE
from faceenroll.gate.tick import TickEvaluation
from faceenroll.types import EnrollmentIdentity


class WorkflowState(str, Enum):
    AWAITING_CREDENTIAL = "awaiting_credential"
    VERIFYING_CREDENTIAL = "verifying_credential"
    EXISTING_ENROLLMENT_CONFLICT = "existing_enrollment_conflict"
    WARMING_UP = "warming_up"
    SCANNING = "scanning"
    COMMITTING = "committing"
    SUCCESS = "success"
    ERROR = "error"


class WarmupProgress(str, Enum):
    CAMERA = "camera"
    MODELS = "models"
    READY = "ready"


@dataclass
class AwaitingCredential:
    tag = WorkflowState.AWAITING_CREDENTIAL


@dataclass
class VerifyingCredential:
    """Credential is being resolved, or a prior enrollment deleted.

    ``deleting`` is set when re-entered from the conflict prompt; in that
    case ``identity`` is already known.
    """

    tag = WorkflowState.VERIFYING_CREDENTIAL

    token: str
    identity: Optional[EnrollmentIdentity] = None
    deleting: bool = False


@dataclass
class ExistingEnrollmentConflict:
    tag = WorkflowState.EXISTING_ENROLLMENT_CONFLICT

    token: str
    identity: EnrollmentIdentity


@dataclass
class WarmingUp:
    tag = WorkflowState.WARMING_UP

    token: str
    identity: EnrollmentIdentity
    progress: WarmupProgress = WarmupProgress.CAMERA
    attempts: int = 0


@dataclass
class Scanning:
    """Sampling and hold timers are running.

    Attributes:
        accumulator: Owns the hold progress and the last good descriptor.
        latest: Evaluation of the most recent sample (for the UI).
        pending: Evaluation not yet consumed by the hold timer.
        dropped: Sampling ticks lost since the last hold tick.
    """

    tag = WorkflowState.SCANNING

    token: str
    identity: EnrollmentIdentity
    accumulator: HoldStillAccumulator
    latest: Optional[TickEvaluation] = None
    pending: Optional[TickEvaluation] = None
    dropped: int = 0
    guidance: str = MSG_NO_FACE
    latest_frame: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def progress(self) -> float:
        return self.accumulator.progress


@dataclass
class Committing:
    tag = WorkflowState.COMMITTING

    token: str
    identity: EnrollmentIdentity
    descriptor: np.ndarray = field(repr=False)
    confidence: float = 0.0
    frame: Optional[np.ndarray] = field(default=None, repr=False)
    commit_started: bool = False


@dataclass
class Success:
    tag = WorkflowState.SUCCESS

    identity: EnrollmentIdentity
    enrollment_id: Optional[int] = None


@dataclass
class Error:
    """Terminal failure; offers retry or cancel."""

    tag = WorkflowState.ERROR

    message: str
    error: Optional[BaseException] = None


State = Union[
    AwaitingCredential,
    VerifyingCredential,
    ExistingEnrollmentConflict,
    WarmingUp,
    Scanning,
    Committing,
    Success,
    Error,
]

TERMINAL = frozenset({WorkflowState.SUCCESS, WorkflowState.ERROR})


__all__ = [
    "WorkflowState",
    "WarmupProgress",
    "AwaitingCredential",
    "VerifyingCredential",
    "ExistingEnrollmentConflict",
    "WarmingUp",
    "Scanning",
    "Committing",
    "Success",
    "Error",
    "State",
    "TERMINAL",
]
