from faceenroll.workflow.machine import MSG_CAPTURING, SNAPSHOT_EVENT_TYPE, EnrollmentWorkflow
from faceenroll.workflow.states import (
    TERMINAL,
    AwaitingCredential,
    Committing,
    Error,
    ExistingEnrollmentConflict,
    Scanning,
    State,
    Success,
    VerifyingCredential,
    WarmingUp,
    WarmupProgress,
    WorkflowState,
)

__all__ = [
    "EnrollmentWorkflow",
    "MSG_CAPTURING",
    "SNAPSHOT_EVENT_TYPE",
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
