"""
Wire frames for the TrueNAS websocket API.

The appliance speaks a DDP-style JSON protocol. Every frame is a JSON object
with a ``msg`` discriminator::

    {"msg": "connect", "version": "1", "support": ["1"]}
    {"id": "...", "msg": "method", "method": "vm.query", "params": [...]}
    {"id": "...", "msg": "result", "result": ...}
    {"id": "...", "msg": "error", "error": {"code": ..., "message": ...}}
    {"msg": "connected"} / {"msg": "failed"} / {"msg": "ping"} / {"msg": "pong"}

Only method calls and their result/error answers carry a correlation id.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import orjson


PROTOCOL_VERSION = "1"
SUPPORTED_VERSIONS = ["1"]


class MessageError(Exception):
    """Base class for message-related errors."""
    pass


class InvalidFormat(MessageError):
    """Frame is not a JSON object."""
    pass


class MessageKind(Enum):
    """The ``msg`` discriminator of a frame."""
    CONNECT = "connect"
    CONNECTED = "connected"
    FAILED = "failed"
    METHOD = "method"
    RESULT = "result"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"
    AUTH = "auth"
    GENERIC = "generic"

    @classmethod
    def parse(cls, value: Any) -> "MessageKind":
        try:
            return cls(value)
        except ValueError:
            return cls.GENERIC


@dataclass
class Message:
    """A parsed frame."""
    kind: MessageKind
    id: Optional[str] = None
    method: Optional[str] = None
    params: Optional[List[Any]] = None
    result: Any = None
    error: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_response(self) -> bool:
        """Whether this frame answers a correlated call."""
        return self.kind in (MessageKind.RESULT, MessageKind.ERROR) and self.id is not None

    @property
    def error_message(self) -> str:
        """The peer's error text.

        Middleware errors put the text in ``reason`` rather than ``message``.
        """
        if not self.error:
            return "Unknown error"
        return self.error.get("message") or self.error.get("reason") or "Unknown error"

    @property
    def error_code(self) -> Optional[int]:
        if not self.error:
            return None
        code = self.error.get("code", self.error.get("error"))
        return code if isinstance(code, int) else None


def connect_frame() -> Dict[str, Any]:
    """Connect negotiation sent right after the socket opens."""
    return {"msg": "connect", "version": PROTOCOL_VERSION, "support": list(SUPPORTED_VERSIONS)}


def method_frame(request_id: str, method: str, params: Optional[List[Any]] = None) -> Dict[str, Any]:
    return {"id": request_id, "msg": "method", "method": method, "params": params or []}


def fallback_auth_frame(request_id: str, api_key: str) -> Dict[str, Any]:
    """Alternate login shaped as a top-level auth object."""
    return {"id": request_id, "msg": "auth", "data": {"api_key": api_key}}


def pong_frame(ping_id: Optional[str] = None) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"msg": "pong"}
    if ping_id is not None:
        frame["id"] = ping_id
    return frame


def encode_frame(frame: Dict[str, Any]) -> str:
    """Serialize a frame to websocket text.

    Raises:
        MessageError: If the frame contains values JSON cannot represent
    """
    try:
        return orjson.dumps(frame).decode("utf-8")
    except TypeError as e:
        raise MessageError(f"cannot encode frame: {e}") from e


def decode_frame(data: Union[str, bytes]) -> Message:
    """Parse websocket text into a Message.

    Raises:
        InvalidFormat: If the payload is not a JSON object
    """
    try:
        payload = orjson.loads(data)
    except orjson.JSONDecodeError as e:
        raise InvalidFormat(f"frame is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise InvalidFormat(f"frame is a {type(payload).__name__}, expected an object")

    request_id = payload.get("id")
    error = payload.get("error")
    params = payload.get("params")

    return Message(
        kind=MessageKind.parse(payload.get("msg")),
        id=str(request_id) if request_id is not None else None,
        method=payload.get("method"),
        params=params if isinstance(params, list) else None,
        result=payload.get("result"),
        error=error if isinstance(error, dict) else ({"message": str(error)} if error else None),
        raw=payload,
    )
