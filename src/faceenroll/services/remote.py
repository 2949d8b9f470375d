"""IdentityService over ZMQ RPC (kiosk side).

A REQ socket cannot be reused after a missed reply, so the client socket
is recreated whenever a request times out.
"""

import logging
import threading
from typing import Any, Dict, Optional

import zmq

from faceenroll.errors import RemoteError
from faceenroll.services.rpc import ZMQRPCClient, decode_response, encode_request
from faceenroll.types import VerificationResult, mask_token

logger = logging.getLogger(__name__)


class RemoteIdentityService:
    """Blocking client for an :class:`~faceenroll.store.server.IdentityServer`.

    Calls are serialized; the workflow runs them on the loop executor.

    Args:
        address: ZMQ address of the identity server.
        timeout_ms: Send and receive timeout per request.
    """

    def __init__(self, address: str, timeout_ms: int = 10000):
        self.address = address
        self._timeout_ms = timeout_ms
        self._client: Optional[ZMQRPCClient] = None
        self._lock = threading.Lock()

    def verify_credential(self, token: str) -> VerificationResult:
        logger.debug("Verifying credential %s", mask_token(token))
        return VerificationResult.from_dict(self._call("verify_credential", {"token": token}))

    def delete_enrollment(self, identity_id: int) -> None:
        self._call("delete_enrollment", {"identity_id": identity_id})

    def commit_enrollment(self, identity_id: int, descriptor: str, token: str) -> int:
        result = self._call("commit_enrollment", {
            "identity_id": identity_id,
            "descriptor": descriptor,
            "token": token,
        })
        return int(result["enrollment_id"])

    def upload_telemetry_snapshot(
        self,
        image: str,
        event_type: str,
        identity_id: Optional[int] = None,
        face_detected: bool = False,
        confidence: Optional[float] = None,
    ) -> str:
        result = self._call("upload_telemetry_snapshot", {
            "image": image,
            "event_type": event_type,
            "identity_id": identity_id,
            "face_detected": face_detected,
            "confidence": confidence,
        })
        return result["path"]

    def close(self) -> None:
        with self._lock:
            self._reset()

    def _call(self, method: str, params: Dict[str, Any]) -> Any:
        with self._lock:
            client = self._connect()
            try:
                client.send(encode_request(method, params))
                data = client.recv()
            except zmq.ZMQError as e:
                self._reset()
                raise RemoteError(f"Could not reach the enrollment server: {e}") from e

            if data is None:
                logger.warning("No reply to %s from %s within %d ms", method, self.address, self._timeout_ms)
                self._reset()
                raise RemoteError("The enrollment server did not respond. Please try again.")

        return decode_response(data)

    def _connect(self) -> ZMQRPCClient:
        if self._client is None:
            self._client = ZMQRPCClient(
                send_timeout_ms=self._timeout_ms,
                recv_timeout_ms=self._timeout_ms,
            )
            self._client.connect(self.address)
        return self._client

    def _reset(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


__all__ = ["RemoteIdentityService"]
