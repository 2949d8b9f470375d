from faceenroll.gate.position import PositionAssessment, PositionValidator
from faceenroll.gate.expression import ExpressionGate, ExpressionVerdict
from faceenroll.gate.hold import HoldStillAccumulator
from faceenroll.gate.tick import (
    TickEvaluation,
    compose_guidance,
    estimate_yaw_from_landmarks,
    evaluate_tick,
    is_capture_quality,
    is_good_tick,
    make_quality_check,
)

__all__ = [
    "PositionAssessment",
    "PositionValidator",
    "ExpressionGate",
    "ExpressionVerdict",
    "HoldStillAccumulator",
    "TickEvaluation",
    "compose_guidance",
    "estimate_yaw_from_landmarks",
    "evaluate_tick",
    "is_capture_quality",
    "is_good_tick",
    "make_quality_check",
]
