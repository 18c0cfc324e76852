"""TrueNAS websocket API client.

``TrueNASClient`` is the object callers hold. Its lifetime is theirs: build
one, connect it (or use it as an async context manager), issue operations,
and disconnect it. There is no process-wide instance.

Examples:
    ```python
    config = ClientConfig(host="truenas.local", api_key="1-abc...")

    async with TrueNASClient(config) as client:
        for vm in await client.list_vms():
            print(vm.name, vm.state)
        await client.restart_app("plex")
    ```
"""

import logging
from typing import Any, Callable, List, Optional

from .communication.message import Message, MessageKind
from .communication.transport import TransportSession
from .core.config import ClientConfig
from .core.connection import ReconnectionSupervisor
from .core.error import NotConnected
from .core.logging import get_logger, register_secret_for_redaction
from .core.state import Session, SessionPhase
from .internal.messaging import CorrelationIdGenerator, RequestMultiplexer
from .security.auth import Authenticator
from .services.apps import App, AppService
from .services.vms import VirtualMachine, VirtualMachineService

logger = get_logger(__name__)

TransportFactory = Callable[..., TransportSession]

# Parent of every logger in the package; ClientConfig.log_level applies here
SDK_LOGGER = "truenas_sdk"


class TrueNASClient:
    """Persistent, authenticated client for one appliance."""

    def __init__(self, config: ClientConfig, transport_factory: Optional[TransportFactory] = None) -> None:
        """Initialize the client. No I/O happens until connect.

        Sets the level of the ``truenas_sdk`` logger from ``config.log_level``.

        Args:
            config: Validated client configuration
            transport_factory: Builds the transport for each connect attempt;
                called as ``factory(config, on_message, on_close)``
        """
        self.config = config
        register_secret_for_redaction(config.api_key)
        logging.getLogger(SDK_LOGGER).setLevel(config.log_level.value)

        self._transport_factory = transport_factory or TransportSession
        self._ids = CorrelationIdGenerator()
        self._multiplexer = RequestMultiplexer(
            self._send, self._transport_open, self._ids, default_timeout=config.request_timeout
        )
        self._authenticator = Authenticator(
            self._send,
            config.api_key,
            self._ids,
            timeout=config.auth_timeout,
            fallback_grace=config.fallback_auth_grace,
        )
        self._supervisor = ReconnectionSupervisor(
            self._establish,
            self._teardown,
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_backoff=config.reconnect_backoff,
            connect_retry_attempts=config.connect_retry_attempts,
            connect_retry_backoff=config.connect_retry_backoff,
        )

        self.vms = VirtualMachineService(self, restart_delay=config.vm_restart_settle_delay)
        self.apps = AppService(self)

    async def __aenter__(self) -> "TrueNASClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.disconnect()

    # Session lifecycle

    async def connect(self) -> None:
        """Open, negotiate and log in. Errors propagate to the caller."""
        await self._supervisor.connect()

    async def disconnect(self) -> None:
        """Close the session; pending calls are rejected and no reconnect follows."""
        await self._supervisor.close()

    def is_connected(self) -> bool:
        """Socket open and authenticated."""
        return self._supervisor.is_ready

    @property
    def phase(self) -> SessionPhase:
        return self._supervisor.phase

    @property
    def reconnect_attempts(self) -> int:
        return self._supervisor.reconnect_attempts

    @property
    def pending_requests(self) -> int:
        return len(self._multiplexer)

    @property
    def fallback_authenticated(self) -> bool:
        """Whether the current login went through the unverified fallback."""
        return self.is_connected() and self._authenticator.fallback_used

    async def call(self, method: str, params: Optional[List[Any]] = None, timeout: Optional[float] = None) -> Any:
        """Issue a remote call on a ready session, connecting first if needed."""
        await self._supervisor.ensure_ready(self.config.auto_connect)
        return await self._multiplexer.call(method, params, timeout)

    # Virtual machines

    async def list_vms(self) -> List[VirtualMachine]:
        return await self.vms.list()

    async def get_vm_state(self, vm_id: int) -> VirtualMachine:
        return await self.vms.get(vm_id)

    async def start_vm(self, vm_id: int) -> None:
        await self.vms.start(vm_id)

    async def stop_vm(self, vm_id: int, force: bool = False) -> None:
        await self.vms.stop(vm_id, force=force)

    async def restart_vm(self, vm_id: int) -> None:
        await self.vms.restart(vm_id)

    # Applications

    async def list_apps(self) -> List[App]:
        return await self.apps.list()

    async def get_app_state(self, name: str) -> App:
        return await self.apps.get(name)

    async def start_app(self, name: str) -> None:
        await self.apps.start(name)

    async def stop_app(self, name: str) -> None:
        await self.apps.stop(name)

    async def restart_app(self, name: str) -> None:
        await self.apps.restart(name)

    # Internals

    async def _establish(self, session: Session) -> None:
        self._authenticator.reset()
        transport = self._transport_factory(self.config, self._dispatch, self._supervisor.transport_closed)
        session.transport = transport

        await transport.open()

        session.phase = SessionPhase.AUTHENTICATING
        await self._authenticator.authenticate()
        session.authenticated = True

    def _teardown(self, error: Exception) -> None:
        self._authenticator.cancel(error)
        self._multiplexer.reject_all(error)

    def _current_transport(self) -> Optional[TransportSession]:
        session = self._supervisor.session
        return session.transport if session is not None else None

    def _transport_open(self) -> bool:
        transport = self._current_transport()
        return transport is not None and transport.is_open

    async def _send(self, frame: str) -> None:
        transport = self._current_transport()
        if transport is None:
            raise NotConnected()
        await transport.send(frame)

    def _dispatch(self, message: Message) -> None:
        phase = self._supervisor.phase

        if phase is SessionPhase.CONNECTING:
            if message.kind is MessageKind.FAILED:
                self._authenticator.notice_failure()
                return
        elif phase is SessionPhase.AUTHENTICATING:
            if self._authenticator.handle(message):
                return
        elif message.kind is MessageKind.FAILED:
            logger.warning("Ignoring failure notice received while %s", phase.value)
            return

        if not self._multiplexer.handle(message):
            logger.debug("Ignoring %s frame while %s", message.kind.value, phase.value)
