"""Configuration classes for the enrollment pipeline.

Thresholds default to the values tuned on the kiosk. A whole config can be
loaded from a dict or a YAML file; missing keys keep their defaults.

Example:
    >>> from faceenroll.config import EnrollmentConfig
    >>> config = EnrollmentConfig.from_dict({
    ...     "position": {"max_yaw_deg": 15.0},
    ...     "hold": {"required_good_ticks": 20},
    ... })
    >>> config.timing.sample_interval_sec
    0.1
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Type, TypeVar

import yaml

from faceenroll.types import ExpressionType

T = TypeVar("T")


@dataclass(frozen=True)
class PositionConfig:
    """Geometric thresholds for PositionValidator.

    Attributes:
        min_face_size_ratio: Face must be at least this fraction of frame width.
        max_face_size_ratio: Face must be at most this fraction of frame width.
        max_center_offset_ratio: Per-axis center offset limit (fraction of frame).
        circle_radius_ratio: Visual guide radius as fraction of min frame dimension.
        circle_strictness: Fraction of the guide radius the face center must stay in.
        max_yaw_deg: Maximum |yaw| in degrees.
        max_pitch_deg: Maximum |pitch| in degrees.
    """

    min_face_size_ratio: float = 0.15
    max_face_size_ratio: float = 0.75
    max_center_offset_ratio: float = 0.18
    circle_radius_ratio: float = 0.28
    circle_strictness: float = 0.8
    max_yaw_deg: float = 20.0
    max_pitch_deg: float = 15.0


@dataclass(frozen=True)
class ExpressionConfig:
    """Per-emotion confidence above which a frame is rejected.

    Sad is deliberately high since the model reports it falsely on
    relaxed faces.
    """

    happy: float = 0.85
    sad: float = 0.95
    angry: float = 0.85
    surprised: float = 0.85
    fearful: float = 0.90
    disgusted: float = 0.90

    def threshold_for(self, expression: ExpressionType) -> float:
        """Rejection threshold for an expression; neutral is never rejected."""
        if expression is ExpressionType.NEUTRAL:
            return float("inf")
        return getattr(self, expression.value)


@dataclass(frozen=True)
class HoldConfig:
    """HoldStillAccumulator thresholds."""

    required_good_ticks: int = 15     # 1.5 s at 100 ms
    max_bad_ticks: int = 3


@dataclass(frozen=True)
class TimingConfig:
    """Timer periods and bounded retry budgets."""

    sample_interval_sec: float = 0.1
    hold_interval_sec: float = 0.1
    warmup_poll_interval_sec: float = 0.1
    camera_ready_attempts: int = 50
    models_ready_attempts: int = 100
    success_display_sec: float = 2.0


@dataclass(frozen=True)
class QualityConfig:
    """Capture-quality predicate and descriptor shape."""

    min_detection_confidence: float = 0.8
    descriptor_dim: int = 128


@dataclass(frozen=True)
class TelemetryConfig:
    """Best-effort snapshot upload on commit."""

    enabled: bool = True
    jpeg_quality: int = 80


@dataclass(frozen=True)
class EnrollmentConfig:
    """Complete configuration for one kiosk surface."""

    position: PositionConfig = field(default_factory=PositionConfig)
    expression: ExpressionConfig = field(default_factory=ExpressionConfig)
    hold: HoldConfig = field(default_factory=HoldConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnrollmentConfig":
        """Create EnrollmentConfig from a dictionary (e.g., loaded from YAML).

        Args:
            data: Mapping of section name to section values.

        Returns:
            EnrollmentConfig instance.

        Raises:
            ValueError: If a section or key is unknown.
        """
        data = data or {}
        sections = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(sections)
        if unknown:
            raise ValueError(f"Unknown config sections: {sorted(unknown)}")

        kwargs = {}
        for name, f in sections.items():
            if name in data:
                kwargs[name] = _section_from_dict(f.default_factory, name, data[name])
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "EnrollmentConfig":
        """Load EnrollmentConfig from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


def _section_from_dict(section_cls: Type[T], name: str, values: Dict[str, Any]) -> T:
    values = values or {}
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown keys in config section '{name}': {sorted(unknown)}")
    return section_cls(**values)


__all__ = [
    "PositionConfig",
    "ExpressionConfig",
    "HoldConfig",
    "TimingConfig",
    "QualityConfig",
    "TelemetryConfig",
    "EnrollmentConfig",
]
