"""FaceEnroll - guided face enrollment for kiosks.

Guides a card holder into position, gates capture on geometry and a
neutral expression, waits for the pose to be held, and commits one face
descriptor to the identity backend.

Quick Start:
    >>> from faceenroll import EnrollmentWorkflow, EventLoop
    >>> from faceenroll.services.remote import RemoteIdentityService
    >>>
    >>> loop = EventLoop()
    >>> service = RemoteIdentityService("tcp://backend:5591")
    >>> workflow = EnrollmentWorkflow(loop, camera, analyzer, service,
    ...                               on_complete=lambda identity: go_home())
    >>> workflow.start()
    >>> card_reader.on_tap(lambda token: loop.post(workflow.on_credential, token))
    >>> loop.run_forever()

Pure building blocks are usable on their own:
    >>> from faceenroll import PositionValidator, HoldStillAccumulator, is_good_tick
"""

__version__ = "0.1.0"

from faceenroll.config import EnrollmentConfig
from faceenroll.errors import (
    AuthorizationError,
    CommitError,
    CredentialError,
    EnrollmentError,
    NotFoundError,
    RemoteError,
    SetupTimeout,
    ValidationError,
)
from faceenroll.gate import (
    ExpressionGate,
    HoldStillAccumulator,
    PositionAssessment,
    PositionValidator,
    evaluate_tick,
    is_good_tick,
)
from faceenroll.runtime import EventLoop, ManualClock, SessionScope
from faceenroll.types import (
    DetectionSample,
    EnrollmentIdentity,
    Expression,
    ExpressionType,
    FaceBox,
    VerificationResult,
)
from faceenroll.workflow import EnrollmentWorkflow, WorkflowState

__all__ = [
    "__version__",
    "EnrollmentConfig",
    "EnrollmentError",
    "CredentialError",
    "SetupTimeout",
    "CommitError",
    "RemoteError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "PositionValidator",
    "PositionAssessment",
    "ExpressionGate",
    "HoldStillAccumulator",
    "evaluate_tick",
    "is_good_tick",
    "EventLoop",
    "ManualClock",
    "SessionScope",
    "DetectionSample",
    "EnrollmentIdentity",
    "Expression",
    "ExpressionType",
    "FaceBox",
    "VerificationResult",
    "EnrollmentWorkflow",
    "WorkflowState",
]
