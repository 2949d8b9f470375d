"""ZMQ REQ-REP transport for the identity backend.

Each instance owns its own zmq.Context. Messages are JSON:

    request:  {"method": "verify_credential", "params": {"token": "..."}}
    response: {"ok": true, "result": ...}
              {"ok": false, "error": {"type": "credential", "message": "..."}}

Example:
    Server side:
        >>> server = ZMQRPCServer()
        >>> server.bind("tcp://*:5591")
        >>> data = server.recv()
        >>> server.send(encode_result({"pong": True}))

    Client side (kiosk):
        >>> client = ZMQRPCClient()
        >>> client.connect("tcp://backend:5591")
        >>> client.send(encode_request("ping", {}))
        >>> response = client.recv()

Requires: pyzmq
"""

import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional, Tuple

import zmq

from faceenroll.errors import EnrollmentError, RemoteError, error_from_kind

logger = logging.getLogger(__name__)


def generate_ipc_address(prefix: str = "faceenroll") -> Tuple[str, str]:
    """Generate a unique IPC address, returning (zmq_address, socket_file)."""
    ipc_file = tempfile.mktemp(prefix=f"{prefix}-{os.getpid()}-", suffix=".sock")
    return f"ipc://{ipc_file}", ipc_file


# =============================================================================
# Envelope
# =============================================================================


def encode_request(method: str, params: Dict[str, Any]) -> bytes:
    return json.dumps({"method": method, "params": params}).encode("utf-8")


def decode_request(data: bytes) -> Tuple[str, Dict[str, Any]]:
    """Parse a request envelope.

    Raises:
        ValueError: If the payload is not a well-formed request.
    """
    try:
        message = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Malformed request: {e}") from e
    if not isinstance(message, dict) or not isinstance(message.get("method"), str):
        raise ValueError("Malformed request: missing method")
    params = message.get("params") or {}
    if not isinstance(params, dict):
        raise ValueError("Malformed request: params must be an object")
    return message["method"], params


def encode_result(result: Any) -> bytes:
    return json.dumps({"ok": True, "result": result}).encode("utf-8")


def encode_error(error: BaseException) -> bytes:
    if isinstance(error, EnrollmentError):
        kind, message = error.kind, error.message
    else:
        kind, message = "enrollment", str(error) or type(error).__name__
    return json.dumps({"ok": False, "error": {"type": kind, "message": message}}).encode("utf-8")


def decode_response(data: bytes) -> Any:
    """Return the result or raise the error carried by a response."""
    try:
        message = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RemoteError(f"Malformed response from server: {e}") from e
    if not isinstance(message, dict):
        raise RemoteError("Malformed response from server: expected an object")
    if message.get("ok"):
        return message.get("result")
    error = message.get("error")
    if not isinstance(error, dict):
        error = {}
    raise error_from_kind(error.get("type", "enrollment"), error.get("message", "Request failed"))


# =============================================================================
# Sockets
# =============================================================================


class ZMQRPCServer:
    """ZMQ REP socket RPC server.

    Args:
        linger_ms: Socket linger time on close (milliseconds).
    """

    def __init__(self, linger_ms: int = 0):
        self._linger_ms = linger_ms
        self._context: Optional[zmq.Context] = None
        self._socket: Optional[zmq.Socket] = None
        self._is_bound = False

    def bind(self, address: str) -> None:
        """Bind the REP socket to an address."""
        if self._is_bound:
            return

        self._context = zmq.Context()
        self._socket = self._context.socket(zmq.REP)
        self._socket.setsockopt(zmq.LINGER, self._linger_ms)
        self._socket.bind(address)
        self._is_bound = True
        logger.info("RPC server bound to %s", address)

    def recv(self, timeout_ms: Optional[int] = None) -> Optional[bytes]:
        """Receive a request. Returns None on timeout."""
        if not self._is_bound or self._socket is None:
            return None

        if timeout_ms is not None:
            old_timeout = self._socket.getsockopt(zmq.RCVTIMEO)
            self._socket.setsockopt(zmq.RCVTIMEO, timeout_ms)
        try:
            return self._socket.recv()
        except zmq.Again:
            return None
        finally:
            if timeout_ms is not None:
                self._socket.setsockopt(zmq.RCVTIMEO, old_timeout)

    def send(self, data: bytes) -> None:
        if self._socket is None:
            raise RuntimeError("Server not bound")
        self._socket.send(data)

    def close(self) -> None:
        """Close the socket and terminate the context."""
        _close(self._socket, self._context, self._linger_ms)
        self._socket = None
        self._context = None
        self._is_bound = False


class ZMQRPCClient:
    """ZMQ REQ socket RPC client.

    Args:
        send_timeout_ms: Default send timeout (milliseconds).
        recv_timeout_ms: Default receive timeout (milliseconds).
        linger_ms: Socket linger time on close (milliseconds).
    """

    def __init__(
        self,
        send_timeout_ms: int = 10000,
        recv_timeout_ms: int = 10000,
        linger_ms: int = 0,
    ):
        self._send_timeout_ms = send_timeout_ms
        self._recv_timeout_ms = recv_timeout_ms
        self._linger_ms = linger_ms
        self._context: Optional[zmq.Context] = None
        self._socket: Optional[zmq.Socket] = None
        self._is_connected = False

    def connect(self, address: str) -> None:
        """Connect the REQ socket to a server address."""
        if self._is_connected:
            return

        self._context = zmq.Context()
        self._socket = self._context.socket(zmq.REQ)
        self._socket.setsockopt(zmq.SNDTIMEO, self._send_timeout_ms)
        self._socket.setsockopt(zmq.RCVTIMEO, self._recv_timeout_ms)
        self._socket.setsockopt(zmq.LINGER, self._linger_ms)
        self._socket.connect(address)
        self._is_connected = True
        logger.debug("RPC client connected to %s", address)

    def send(self, data: bytes) -> None:
        if self._socket is None:
            raise RuntimeError("Client not connected")
        self._socket.send(data)

    def recv(self) -> Optional[bytes]:
        """Receive a response. Returns None on timeout."""
        if not self._is_connected or self._socket is None:
            return None
        try:
            return self._socket.recv()
        except zmq.Again:
            return None

    def close(self) -> None:
        _close(self._socket, self._context, self._linger_ms)
        self._socket = None
        self._context = None
        self._is_connected = False


def _close(socket: Optional[zmq.Socket], context: Optional[zmq.Context], linger_ms: int) -> None:
    if socket is not None:
        try:
            socket.close(linger=linger_ms)
        except zmq.ZMQError as e:
            logger.debug("Error closing socket: %s", e)
    if context is not None:
        try:
            context.term()
        except zmq.ZMQError as e:
            logger.debug("Error terminating context: %s", e)


__all__ = [
    "ZMQRPCServer",
    "ZMQRPCClient",
    "generate_ipc_address",
    "encode_request",
    "decode_request",
    "encode_result",
    "encode_error",
    "decode_response",
]
