"""TrueNAS SDK for Python.

An asyncio client for the TrueNAS websocket API: one persistent,
authenticated connection that multiplexes concurrent calls, reconnects on
its own after unexpected drops, and exposes typed VM and app operations.
"""

from .client import TrueNASClient
from .core.config import ClientConfig
from .core.error import (
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
)
from .core.logging import init_logging
from .core.state import SessionPhase
from .services.apps import App
from .services.vms import VirtualMachine, VMStatus

__version__ = "0.1.0"

__all__ = [
    "TrueNASClient",
    "ClientConfig",
    "SessionPhase",
    "init_logging",
    # Errors
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
    # Records
    "App",
    "VirtualMachine",
    "VMStatus",
]
