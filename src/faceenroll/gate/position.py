"""Position validator: geometric scoring of one detection against one frame.

Checks that the face is centered, sized (distance), inside the guide circle
and looking roughly straight at the camera, and picks the single guidance
message the user should act on next.

Guidance priority when invalid: size first (move closer/back), then angle
(turn/look), then position (move left/right/up/down). Fixing distance before
angle before centering converges fastest and does not oscillate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional

from faceenroll.config import PositionConfig
from faceenroll.types import DetectionSample

MSG_NO_FACE = "Position your face in the circle"
MSG_MOVE_CLOSER = "Move closer"
MSG_MOVE_BACK = "Move back"
MSG_TURN_RIGHT = "Turn right"
MSG_TURN_LEFT = "Turn left"
MSG_LOOK_UP = "Look up"
MSG_LOOK_DOWN = "Look down"
MSG_MOVE_RIGHT = "Move right"
MSG_MOVE_LEFT = "Move left"
MSG_MOVE_DOWN = "Move down"
MSG_MOVE_UP = "Move up"
MSG_HOLD_STILL = "Perfect! Hold still..."

QualityPredicate = Callable[[DetectionSample], bool]


@dataclass(frozen=True)
class PositionAssessment:
    """Per-tick geometric verdict for one sample."""

    is_centered: bool = False
    is_sized: bool = False
    is_in_circle: bool = False
    is_angle_good: bool = False
    is_valid: bool = False
    guidance_message: str = MSG_NO_FACE
    size_ratio: float = 0.0
    offset_x: float = 0.0
    offset_y: float = 0.0

    @property
    def needs_size_correction(self) -> bool:
        """True when the user is too close or too far (face detected)."""
        return self.guidance_message in (MSG_MOVE_CLOSER, MSG_MOVE_BACK)


class PositionValidator:
    """Stateless face position scoring.

    Args:
        config: Position thresholds.
        quality_check: Extra "enrollment quality" predicate a sample must pass
            to be valid. Defaults to accepting every detected sample.

    Example:
        >>> validator = PositionValidator()
        >>> assessment = validator.assess(sample, 1280, 720)
        >>> assessment.guidance_message
        'Move closer'
    """

    def __init__(
        self,
        config: Optional[PositionConfig] = None,
        quality_check: Optional[QualityPredicate] = None,
    ):
        self.config = config or PositionConfig()
        self._quality_check = quality_check or (lambda sample: sample.detected)

    def assess(
        self,
        sample: DetectionSample,
        frame_width: float,
        frame_height: float,
    ) -> PositionAssessment:
        cfg = self.config

        if not sample.detected or sample.box is None or frame_width <= 0 or frame_height <= 0:
            return PositionAssessment()

        box = sample.box
        face_cx, face_cy = box.center
        frame_cx = frame_width / 2
        frame_cy = frame_height / 2

        # Centering, per axis
        offset_x = abs(face_cx - frame_cx) / frame_width
        offset_y = abs(face_cy - frame_cy) / frame_height
        is_centered = (
            offset_x < cfg.max_center_offset_ratio
            and offset_y < cfg.max_center_offset_ratio
        )

        # Size relative to frame width (distance)
        size_ratio = max(box.width, box.height) / frame_width
        is_sized = cfg.min_face_size_ratio <= size_ratio <= cfg.max_face_size_ratio

        # Inside the guide circle, stricter than drawn to avoid edge flicker
        radius = min(frame_width, frame_height) * cfg.circle_radius_ratio
        dist = math.hypot(face_cx - frame_cx, face_cy - frame_cy)
        is_in_circle = dist < radius * cfg.circle_strictness

        yaw = sample.yaw_angle or 0.0
        pitch = sample.pitch_angle or 0.0
        is_yaw_good = abs(yaw) <= cfg.max_yaw_deg
        is_pitch_good = abs(pitch) <= cfg.max_pitch_deg
        is_angle_good = is_yaw_good and is_pitch_good

        if not is_sized:
            message = MSG_MOVE_CLOSER if size_ratio < cfg.min_face_size_ratio else MSG_MOVE_BACK
        elif not is_yaw_good:
            # Preview is mirrored: negative yaw shows as looking right
            message = MSG_TURN_RIGHT if yaw < 0 else MSG_TURN_LEFT
        elif not is_pitch_good:
            message = MSG_LOOK_UP if pitch < 0 else MSG_LOOK_DOWN
        elif not is_centered or not is_in_circle:
            if offset_x > offset_y:
                message = MSG_MOVE_RIGHT if face_cx < frame_cx else MSG_MOVE_LEFT
            else:
                message = MSG_MOVE_DOWN if face_cy < frame_cy else MSG_MOVE_UP
        else:
            message = MSG_HOLD_STILL

        is_valid = (
            is_centered
            and is_sized
            and is_in_circle
            and is_angle_good
            and bool(self._quality_check(sample))
        )

        return PositionAssessment(
            is_centered=is_centered,
            is_sized=is_sized,
            is_in_circle=is_in_circle,
            is_angle_good=is_angle_good,
            is_valid=is_valid,
            guidance_message=message,
            size_ratio=size_ratio,
            offset_x=offset_x,
            offset_y=offset_y,
        )


__all__ = [
    "PositionAssessment",
    "PositionValidator",
    "QualityPredicate",
    "MSG_NO_FACE",
    "MSG_MOVE_CLOSER",
    "MSG_MOVE_BACK",
    "MSG_TURN_RIGHT",
    "MSG_TURN_LEFT",
    "MSG_LOOK_UP",
    "MSG_LOOK_DOWN",
    "MSG_MOVE_RIGHT",
    "MSG_MOVE_LEFT",
    "MSG_MOVE_DOWN",
    "MSG_MOVE_UP",
    "MSG_HOLD_STILL",
]
