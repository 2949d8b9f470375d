"""Per-tick evaluation: position + expression + descriptor -> one verdict.

``evaluate_tick`` is the single pure function that decides whether one
sample is "fully good" for the hold-still accumulator, so the debounce
logic can be exercised without a camera.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from faceenroll.config import EnrollmentConfig, QualityConfig
from faceenroll.gate.expression import ExpressionGate, ExpressionVerdict
from faceenroll.gate.position import PositionAssessment, PositionValidator, QualityPredicate
from faceenroll.types import DetectionSample

# 68-point landmark indices
NOSE_TIP = 30
LEFT_EYE_OUTER = 36
RIGHT_EYE_OUTER = 45

MAX_ESTIMATED_YAW = 45.0


def make_quality_check(config: Optional[QualityConfig] = None) -> QualityPredicate:
    """Default capture-quality predicate: confident detection."""
    min_conf = (config or QualityConfig()).min_detection_confidence

    def is_capture_quality(sample: DetectionSample) -> bool:
        return sample.detected and sample.confidence >= min_conf

    return is_capture_quality


is_capture_quality = make_quality_check()


@dataclass(frozen=True)
class TickEvaluation:
    """Result of evaluating one sample.

    Attributes:
        sample: The analyzed sample.
        position: Geometric verdict.
        expression: Expression verdict.
        is_good: Position valid, expression ok and a descriptor present.
        guidance: The one message to show this tick.
    """

    sample: DetectionSample
    position: PositionAssessment
    expression: ExpressionVerdict
    is_good: bool
    guidance: str

    @property
    def descriptor(self) -> Optional[np.ndarray]:
        return self.sample.descriptor if self.is_good else None


def compose_guidance(position: PositionAssessment, expression: ExpressionVerdict) -> str:
    """Pick the single message for this tick.

    An expression rejection beats position and angle messages, but a size
    correction (move closer/back) still wins.
    """
    if position.needs_size_correction:
        return position.guidance_message
    if not expression.ok and expression.message:
        return expression.message
    return position.guidance_message


def evaluate_tick(
    sample: DetectionSample,
    frame_size: Tuple[int, int],
    validator: PositionValidator,
    gate: ExpressionGate,
) -> TickEvaluation:
    """Evaluate one sample against the frame it came from."""
    width, height = frame_size
    position = validator.assess(sample, width, height)
    expression = gate.check(sample.expression)
    is_good = position.is_valid and expression.ok and sample.descriptor is not None
    return TickEvaluation(
        sample=sample,
        position=position,
        expression=expression,
        is_good=is_good,
        guidance=compose_guidance(position, expression),
    )


def is_good_tick(
    sample: DetectionSample,
    frame_size: Tuple[int, int],
    config: Optional[EnrollmentConfig] = None,
    quality_check: Optional[QualityPredicate] = None,
) -> bool:
    """Convenience wrapper: (sample, thresholds) -> bool."""
    config = config or EnrollmentConfig()
    validator = PositionValidator(
        config.position,
        quality_check or make_quality_check(config.quality),
    )
    return evaluate_tick(sample, frame_size, validator, ExpressionGate(config.expression)).is_good


def estimate_yaw_from_landmarks(landmarks: Sequence[Tuple[float, float]]) -> Optional[float]:
    """Estimate head yaw from 68-point landmarks.

    The nose tip deviates from the midpoint of the outer eye corners as the
    head turns; at 45 degrees it sits about a quarter of the eye span off
    center. The sign is flipped because the preview is mirrored.

    Returns:
        Yaw in degrees clamped to [-45, 45], or None for unusable input.
    """
    if len(landmarks) <= RIGHT_EYE_OUTER:
        return None

    nose_x = landmarks[NOSE_TIP][0]
    left_x = landmarks[LEFT_EYE_OUTER][0]
    right_x = landmarks[RIGHT_EYE_OUTER][0]

    eye_span = right_x - left_x
    if not math.isfinite(eye_span) or abs(eye_span) < 1e-6:
        return None

    deviation = (nose_x - (left_x + right_x) / 2) / (eye_span * 0.5)
    yaw = -deviation * MAX_ESTIMATED_YAW
    return max(-MAX_ESTIMATED_YAW, min(MAX_ESTIMATED_YAW, yaw))


__all__ = [
    "TickEvaluation",
    "compose_guidance",
    "evaluate_tick",
    "is_good_tick",
    "is_capture_quality",
    "make_quality_check",
    "estimate_yaw_from_landmarks",
]
