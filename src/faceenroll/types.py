"""Enrollment domain types.

DetectionSample is produced fresh by the external analyzer on every
sampling tick and is only ever read. Everything else here is an
immutable value passed between the gates, the workflow and the
backend.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np


class ExpressionType(str, Enum):
    """Dominant facial expression reported by the analyzer."""

    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    SURPRISED = "surprised"
    FEARFUL = "fearful"
    DISGUSTED = "disgusted"

    @classmethod
    def from_string(cls, value: str) -> "ExpressionType":
        """Parse an expression label (case-insensitive)."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown expression type: {value!r}. "
                f"Valid options: {[e.value for e in cls]}"
            ) from None


@dataclass(frozen=True)
class FaceBox:
    """Face bounding box in frame pixels (top-left origin)."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class Expression:
    """Dominant expression and its confidence [0, 1]."""

    type: ExpressionType
    confidence: float


@dataclass(frozen=True)
class DetectionSample:
    """One analyzer result for one frame.

    Attributes:
        detected: Whether a face was found at all.
        box: Face bounding box in pixels, None when not detected.
        confidence: Detector score [0, 1].
        yaw_angle: Horizontal head rotation in degrees (negative = left).
        pitch_angle: Vertical head rotation in degrees (positive = up).
        expression: Dominant expression, None if not analysed.
        descriptor: Face descriptor vector, None if not extracted.
        landmarks: Ordered 2D landmark points in pixels.
    """

    detected: bool
    box: Optional[FaceBox] = None
    confidence: float = 0.0
    yaw_angle: Optional[float] = None
    pitch_angle: Optional[float] = None
    expression: Optional[Expression] = None
    descriptor: Optional[np.ndarray] = field(default=None, compare=False)
    landmarks: Tuple[Tuple[float, float], ...] = ()

    @classmethod
    def empty(cls) -> "DetectionSample":
        """Sample for a frame with no face."""
        return cls(detected=False)


@dataclass(frozen=True)
class EnrollmentIdentity:
    """The person being enrolled, resolved once per session."""

    id: int
    name: str
    username: str


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a successful credential verification."""

    identity: EnrollmentIdentity
    has_existing_enrollment: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": asdict(self.identity),
            "has_existing_enrollment": self.has_existing_enrollment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationResult":
        ident = data["identity"]
        return cls(
            identity=EnrollmentIdentity(
                id=int(ident["id"]), name=ident["name"], username=ident["username"],
            ),
            has_existing_enrollment=bool(data["has_existing_enrollment"]),
        )


def mask_token(token: Optional[str]) -> str:
    """Shorten a card token for logs."""
    if not token:
        return "<empty>"
    return f"{token[:4]}..."


__all__ = [
    "mask_token",
    "ExpressionType",
    "FaceBox",
    "Expression",
    "DetectionSample",
    "EnrollmentIdentity",
    "VerificationResult",
]
