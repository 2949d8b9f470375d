"""Collaborator contracts and transport.

``rpc`` and ``remote`` need pyzmq and are imported explicitly.
"""

from faceenroll.services.base import FrameAnalyzer, IdentityService, VideoSource
from faceenroll.services.codec import (
    decode_snapshot,
    deserialize_descriptor,
    encode_snapshot,
    serialize_descriptor,
)

__all__ = [
    "FrameAnalyzer",
    "IdentityService",
    "VideoSource",
    "serialize_descriptor",
    "deserialize_descriptor",
    "encode_snapshot",
    "decode_snapshot",
]
