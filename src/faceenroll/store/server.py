"""Identity server: serves an EnrollmentStore over ZMQ REQ/REP.

``handle`` maps one request envelope to one response envelope and never
raises, so a bad request cannot take the server down.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

from faceenroll.errors import EnrollmentError
from faceenroll.services.rpc import (
    ZMQRPCServer,
    decode_request,
    encode_error,
    encode_result,
)
from faceenroll.store.store import EnrollmentStore

logger = logging.getLogger(__name__)


class IdentityServer:
    """Request dispatcher and REP loop for an EnrollmentStore.

    Args:
        store: Backing store.
        address: ZMQ bind address (e.g. ``tcp://*:5591``).
    """

    def __init__(self, store: EnrollmentStore, address: Optional[str] = None):
        self.store = store
        self.address = address
        self._server: Optional[ZMQRPCServer] = None
        self._stop = threading.Event()
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "verify_credential": self._verify_credential,
            "delete_enrollment": self._delete_enrollment,
            "commit_enrollment": self._commit_enrollment,
            "upload_telemetry_snapshot": self._upload_snapshot,
            "ping": lambda params: {"pong": True},
        }

    def handle(self, data: bytes) -> bytes:
        """Process one request and return the encoded response."""
        try:
            method, params = decode_request(data)
            handler = self._handlers.get(method)
            if handler is None:
                raise ValueError(f"Unknown method: {method}")
            return encode_result(handler(params))
        except EnrollmentError as e:
            logger.info("Request failed (%s): %s", e.kind, e.message)
            return encode_error(e)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Bad request: %s", e)
            return encode_error(e)
        except Exception as e:
            logger.exception("Request failed with an unexpected error")
            return encode_error(e)

    def serve_forever(self, poll_ms: int = 200) -> None:
        """Bind and answer requests until :meth:`stop` is called."""
        if self.address is None:
            raise ValueError("No address to bind")
        self._server = ZMQRPCServer()
        self._server.bind(self.address)
        self._stop.clear()
        try:
            while not self._stop.is_set():
                data = self._server.recv(timeout_ms=poll_ms)
                if data is None:
                    continue
                self._server.send(self.handle(data))
        finally:
            self._server.close()
            self._server = None
            logger.info("Identity server stopped")

    def stop(self) -> None:
        self._stop.set()

    # ── Handlers ──

    def _verify_credential(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self.store.verify_credential(params["token"]).to_dict()

    def _delete_enrollment(self, params: Dict[str, Any]) -> None:
        self.store.delete_enrollment(int(params["identity_id"]))
        return None

    def _commit_enrollment(self, params: Dict[str, Any]) -> Dict[str, Any]:
        enrollment_id = self.store.commit_enrollment(
            int(params["identity_id"]), params["descriptor"], params["token"],
        )
        return {"enrollment_id": enrollment_id}

    def _upload_snapshot(self, params: Dict[str, Any]) -> Dict[str, Any]:
        path = self.store.upload_telemetry_snapshot(
            params["image"],
            params.get("event_type", "UNKNOWN"),
            identity_id=params.get("identity_id"),
            face_detected=bool(params.get("face_detected", False)),
            confidence=params.get("confidence"),
        )
        return {"path": path}


__all__ = ["IdentityServer"]
