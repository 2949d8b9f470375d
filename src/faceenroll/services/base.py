"""Protocol definitions for the collaborators the workflow consumes.

The face model, the camera and the identity backend are all external.
Implementations should be swappable without changing workflow logic:
the kiosk wires real ones, tests wire the fakes in ``faceenroll.testing``.
"""

from typing import Optional, Protocol, Tuple

import numpy as np

from faceenroll.types import DetectionSample, VerificationResult


class VideoSource(Protocol):
    """Live camera stream."""

    def start(self) -> None:
        """Open the stream. Readiness is reported by ``is_ready``."""
        ...

    def stop(self) -> None:
        """Close the stream. Must be safe to call more than once."""
        ...

    def is_ready(self) -> bool:
        """Whether frames can be read."""
        ...

    def frame_size(self) -> Tuple[int, int]:
        """(width, height) of the frames in pixels."""
        ...

    def read(self) -> Optional[np.ndarray]:
        """Latest BGR frame, or None if none is available."""
        ...


class FrameAnalyzer(Protocol):
    """Per-frame face analyzer (detection, landmarks, expression, descriptor)."""

    def models_loaded(self) -> bool:
        """Whether the detection models are ready."""
        ...

    def analyze(self, frame: Optional[np.ndarray]) -> DetectionSample:
        """Analyze one frame. Must return within the sampling period."""
        ...


class IdentityService(Protocol):
    """Backend identity operations.

    Calls are blocking; the workflow runs them on the loop executor.
    Failures raise ``faceenroll.errors.EnrollmentError`` subclasses.
    """

    def verify_credential(self, token: str) -> VerificationResult:
        """Resolve a card token. Raises CredentialError when unknown."""
        ...

    def delete_enrollment(self, identity_id: int) -> None:
        """Remove an enrollment. Idempotent."""
        ...

    def commit_enrollment(self, identity_id: int, descriptor: str, token: str) -> int:
        """Store a serialized descriptor. Returns the enrollment id."""
        ...

    def upload_telemetry_snapshot(
        self,
        image: str,
        event_type: str,
        identity_id: Optional[int] = None,
        face_detected: bool = False,
        confidence: Optional[float] = None,
    ) -> str:
        """Store a base64 JPEG snapshot. Returns the stored path."""
        ...


__all__ = ["VideoSource", "FrameAnalyzer", "IdentityService"]
