"""Expression gate: rejects frames with a strong non-neutral expression."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from faceenroll.config import ExpressionConfig
from faceenroll.types import Expression, ExpressionType

EXPRESSION_MESSAGES: Dict[ExpressionType, str] = {
    ExpressionType.HAPPY: "Stop smiling!",
    ExpressionType.SAD: "Cheer up a bit!",
    ExpressionType.ANGRY: "Relax your face!",
    ExpressionType.SURPRISED: "Relax your face!",
    ExpressionType.FEARFUL: "Relax, you're safe!",
    ExpressionType.DISGUSTED: "Keep a neutral face!",
}


@dataclass(frozen=True)
class ExpressionVerdict:
    ok: bool = True
    message: Optional[str] = None


class ExpressionGate:
    """Per-emotion thresholded neutrality check.

    Thresholds are strict-greater: a reading exactly at the threshold passes.
    """

    def __init__(self, config: Optional[ExpressionConfig] = None):
        self.config = config or ExpressionConfig()

    def check(self, expression: Optional[Expression]) -> ExpressionVerdict:
        if expression is None:
            return ExpressionVerdict()

        threshold = self.config.threshold_for(expression.type)
        if expression.confidence > threshold:
            return ExpressionVerdict(
                ok=False,
                message=EXPRESSION_MESSAGES[expression.type],
            )
        return ExpressionVerdict()


__all__ = ["ExpressionGate", "ExpressionVerdict", "EXPRESSION_MESSAGES"]
