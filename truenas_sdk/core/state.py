"""Session state for the TrueNAS SDK.

A client owns at most one ``Session`` at a time. The session records which
phase of the connection lifecycle it is in; the phase decides which component
receives inbound frames::

    DISCONNECTED -> CONNECTING -> AUTHENTICATING -> READY -> (CLOSED | DISCONNECTED)
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class SessionPhase(Enum):
    """Lifecycle phase of a session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class Session:
    """One logical connection to the appliance.

    The transport is replaced on every (re)connect attempt; the session
    itself lives from an explicit connect until disconnect.
    """
    transport: Optional[Any] = None
    authenticated: bool = False
    intentional_close: bool = False
    reconnect_attempts: int = 0
    phase: SessionPhase = SessionPhase.DISCONNECTED
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def transport_open(self) -> bool:
        return self.transport is not None and self.transport.is_open

    @property
    def is_ready(self) -> bool:
        """Socket open and authenticated."""
        return (
            self.phase is SessionPhase.READY
            and self.authenticated
            and self.transport_open
        )
