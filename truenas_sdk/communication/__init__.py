"""Communication layer: wire frames and the websocket transport."""

from .message import (
    Message,
    MessageKind,
    MessageError,
    InvalidFormat,
    connect_frame,
    method_frame,
    fallback_auth_frame,
    pong_frame,
    encode_frame,
    decode_frame,
)
from .transport import TransportSession, create_ssl_context

__all__ = [
    "Message", "MessageKind", "MessageError", "InvalidFormat",
    "connect_frame", "method_frame", "fallback_auth_frame", "pong_frame",
    "encode_frame", "decode_frame",
    "TransportSession", "create_ssl_context",
]
