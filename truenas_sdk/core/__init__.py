"""Core TrueNAS SDK components.

This package provides the building blocks the client is assembled from:
- Error handling and exceptions
- Configuration management
- Logging setup
- Session state and connection supervision
"""

from .error import (
    TrueNASSDKError,
    ConfigError,
    ConnectError,
    HandshakeTimeout,
    AuthError,
    AuthTimeout,
    NotConnected,
    RequestTimeout,
    NotFound,
    RemoteError,
    format_error_chain,
)
from .logging import init_logging, get_logger, register_secret_for_redaction, redact_secrets
from .config import ClientConfig, LogLevel
from .state import Session, SessionPhase
from .connection import ReconnectionSupervisor, backoff_delay

__all__ = [
    # Error handling
    "TrueNASSDKError",
    "ConfigError",
    "ConnectError",
    "HandshakeTimeout",
    "AuthError",
    "AuthTimeout",
    "NotConnected",
    "RequestTimeout",
    "NotFound",
    "RemoteError",
    "format_error_chain",
    # Logging
    "init_logging",
    "get_logger",
    "register_secret_for_redaction",
    "redact_secrets",
    # Configuration
    "ClientConfig",
    "LogLevel",
    # Session
    "Session",
    "SessionPhase",
    "ReconnectionSupervisor",
    "backoff_delay",
]
