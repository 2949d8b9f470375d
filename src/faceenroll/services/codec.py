"""Descriptor and snapshot codecs for transport.

Descriptors travel as base64 of little-endian float32 bytes, which
round-trips a float32 vector exactly. Snapshots travel as base64 JPEG,
compressed with OpenCV.
"""

import base64
import binascii
import re
from typing import Optional

import numpy as np

from faceenroll.errors import ValidationError

_DESCRIPTOR_DTYPE = np.dtype("<f4")
_DATA_URL = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


def serialize_descriptor(descriptor: np.ndarray) -> str:
    """Encode a descriptor vector as an opaque ASCII string."""
    vec = np.asarray(descriptor, dtype=_DESCRIPTOR_DTYPE).ravel()
    return base64.b64encode(vec.tobytes()).decode("ascii")


def deserialize_descriptor(data: str, expected_dim: Optional[int] = None) -> np.ndarray:
    """Decode a string produced by :func:`serialize_descriptor`.

    Args:
        data: Encoded descriptor.
        expected_dim: If given, the decoded length must match.

    Raises:
        ValidationError: If the payload is not a float32 vector of the
            expected length.
    """
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise ValidationError(f"Descriptor is not valid base64: {e}") from e

    if len(raw) % _DESCRIPTOR_DTYPE.itemsize != 0:
        raise ValidationError(f"Descriptor byte length {len(raw)} is not a multiple of 4")

    vec = np.frombuffer(raw, dtype=_DESCRIPTOR_DTYPE).astype(np.float32)
    if expected_dim is not None and vec.shape[0] != expected_dim:
        raise ValidationError(
            f"Invalid descriptor length: expected {expected_dim}, got {vec.shape[0]}"
        )
    return vec


def encode_snapshot(image: np.ndarray, jpeg_quality: int = 80) -> str:
    """JPEG-compress a BGR frame and return it as base64.

    Raises:
        ValueError: If OpenCV cannot encode the image.
    """
    import cv2

    ok, jpeg_data = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, jpeg_quality])
    if not ok:
        raise ValueError("Failed to encode snapshot image")
    return base64.b64encode(jpeg_data.tobytes()).decode("ascii")


def decode_snapshot(data: str) -> bytes:
    """Decode a base64 image, accepting an optional ``data:image/...;base64,`` prefix."""
    payload = _DATA_URL.sub("", data.strip(), count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Snapshot is not valid base64: {e}") from e


__all__ = [
    "serialize_descriptor",
    "deserialize_descriptor",
    "encode_snapshot",
    "decode_snapshot",
]
