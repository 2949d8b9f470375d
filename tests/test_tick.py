"""Tests for per-tick evaluation and yaw estimation."""

import pytest

from faceenroll.config import EnrollmentConfig
from faceenroll.gate.expression import ExpressionGate
from faceenroll.gate.position import MSG_HOLD_STILL, MSG_MOVE_CLOSER, MSG_MOVE_LEFT, PositionValidator
from faceenroll.gate.tick import (
    estimate_yaw_from_landmarks,
    evaluate_tick,
    is_capture_quality,
    is_good_tick,
    make_quality_check,
)
from faceenroll.testing import face_sample
from faceenroll.types import DetectionSample, Expression, ExpressionType

FRAME = (640, 480)
SMILE = Expression(ExpressionType.HAPPY, 0.97)


def _evaluate(sample):
    validator = PositionValidator(quality_check=is_capture_quality)
    return evaluate_tick(sample, FRAME, validator, ExpressionGate())


class TestEvaluateTick:
    def test_good_sample(self):
        sample = face_sample()
        result = _evaluate(sample)
        assert result.is_good
        assert result.guidance == MSG_HOLD_STILL
        assert result.descriptor is sample.descriptor

    def test_missing_descriptor_is_not_good(self):
        result = _evaluate(face_sample(with_descriptor=False))
        assert result.position.is_valid
        assert not result.is_good
        assert result.descriptor is None

    def test_expression_rejection_is_not_good(self):
        result = _evaluate(face_sample(expression=SMILE))
        assert not result.is_good
        assert result.descriptor is None

    def test_expression_message_beats_position(self):
        result = _evaluate(face_sample(offset=(150, 0), expression=SMILE))
        assert result.position.guidance_message == MSG_MOVE_LEFT
        assert result.guidance == "Stop smiling!"

    def test_size_correction_beats_expression(self):
        result = _evaluate(face_sample(size_ratio=0.1, expression=SMILE))
        assert result.guidance == MSG_MOVE_CLOSER

    def test_low_confidence_fails_quality(self):
        result = _evaluate(face_sample(confidence=0.5))
        assert not result.position.is_valid
        assert not result.is_good

    def test_no_face(self):
        result = _evaluate(DetectionSample.empty())
        assert not result.is_good


class TestIsGoodTick:
    def test_wrapper_matches_evaluation(self):
        assert is_good_tick(face_sample(), FRAME)
        assert not is_good_tick(face_sample(size_ratio=0.1), FRAME)

    def test_uses_config_quality_threshold(self):
        config = EnrollmentConfig.from_dict({"quality": {"min_detection_confidence": 0.99}})
        assert not is_good_tick(face_sample(confidence=0.95), FRAME, config)

    def test_custom_quality_check(self):
        assert not is_good_tick(face_sample(), FRAME, quality_check=lambda s: False)

    def test_make_quality_check(self):
        check = make_quality_check()
        assert check(face_sample(confidence=0.8))
        assert not check(face_sample(confidence=0.79))
        assert not check(DetectionSample.empty())


def _landmarks(nose_x, left_x=100.0, right_x=200.0):
    points = [(0.0, 0.0)] * 68
    points[30] = (nose_x, 150.0)
    points[36] = (left_x, 100.0)
    points[45] = (right_x, 100.0)
    return points


class TestYawEstimation:
    def test_frontal_face(self):
        assert estimate_yaw_from_landmarks(_landmarks(150.0)) == pytest.approx(0.0)

    def test_nose_right_of_center_is_negative(self):
        assert estimate_yaw_from_landmarks(_landmarks(175.0)) == pytest.approx(-22.5)

    def test_nose_left_of_center_is_positive(self):
        assert estimate_yaw_from_landmarks(_landmarks(125.0)) == pytest.approx(22.5)

    def test_clamped(self):
        assert estimate_yaw_from_landmarks(_landmarks(400.0)) == pytest.approx(-45.0)

    def test_degenerate_eye_span(self):
        assert estimate_yaw_from_landmarks(_landmarks(150.0, 150.0, 150.0)) is None

    def test_too_few_points(self):
        assert estimate_yaw_from_landmarks([(0.0, 0.0)] * 10) is None
