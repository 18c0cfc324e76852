"""Connection supervision for the TrueNAS SDK.

``ReconnectionSupervisor`` owns the client's ``Session`` and walks it through
its phases. It brings the session up on demand, and when a ready session
drops without having been asked to, it schedules background reconnects with
a delay that grows linearly with the attempt number. Background failures are
logged and swallowed; a caller only learns that reconnection gave up when
its next operation fails.

Connect attempts never overlap: explicit connects, on-demand connects and
background reconnects all serialize on one lock.
"""

import asyncio
from contextlib import suppress
from typing import Awaitable, Callable, Optional

from .error import NotConnected, TrueNASSDKError, format_error_chain
from .logging import get_logger
from .state import Session, SessionPhase

logger = get_logger(__name__)

EstablishFunc = Callable[[Session], Awaitable[None]]
TeardownFunc = Callable[[Exception], None]


def backoff_delay(attempt: int, base: float) -> float:
    """Delay before the given (1-based) attempt: ``attempt * base`` seconds."""
    return attempt * base


class ReconnectionSupervisor:
    """Connection manager with bounded automatic reconnection.

    Examples:
        ```python
        supervisor = ReconnectionSupervisor(establish, teardown)

        # Bring the session up, retrying a few times if needed
        await supervisor.ensure_ready()

        # Stop for good; no reconnect will follow
        await supervisor.close()
        ```
    """

    def __init__(
        self,
        establish: EstablishFunc,
        teardown: TeardownFunc,
        max_reconnect_attempts: int = 5,
        reconnect_backoff: float = 2.0,
        connect_retry_attempts: int = 3,
        connect_retry_backoff: float = 1.0,
    ) -> None:
        """Initialize the supervisor.

        Args:
            establish: Opens a transport on the session, negotiates and logs in.
                Must leave ``session.transport`` set to whatever it opened.
            teardown: Called with an error whenever a session's transport goes
                away, to fail everything still waiting on it
            max_reconnect_attempts: Background reconnect bound
            reconnect_backoff: Base unit of the background reconnect delay
            connect_retry_attempts: Bound of on-demand connect attempts
            connect_retry_backoff: Base unit of the on-demand retry delay
        """
        self._establish = establish
        self._teardown = teardown
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_backoff = reconnect_backoff
        self.connect_retry_attempts = connect_retry_attempts
        self.connect_retry_backoff = connect_retry_backoff

        self.session: Optional[Session] = None
        self._lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        # Bumped by close(); on-demand connects started earlier stop retrying
        self._close_generation = 0

    @property
    def phase(self) -> SessionPhase:
        if self.session is None:
            return SessionPhase.CLOSED
        return self.session.phase

    @property
    def is_ready(self) -> bool:
        return self.session is not None and self.session.is_ready

    @property
    def reconnect_attempts(self) -> int:
        return self.session.reconnect_attempts if self.session is not None else 0

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def connect(self) -> None:
        """Bring the session to READY, creating it if needed.

        Raises:
            ConnectError: If the socket cannot be opened
            AuthError: If the login fails
        """
        if self.session is None:
            self.session = Session()
            logger.debug("Created session %s", self.session.session_id)
        session = self.session
        session.intentional_close = False

        async with self._lock:
            if session is not self.session:
                raise NotConnected("session closed")
            if session.is_ready:
                return
            await self._attempt(session)

    async def ensure_ready(self, auto_connect: bool = True) -> None:
        """Make sure a ready session exists before an operation runs.

        Args:
            auto_connect: When False, fail instead of connecting

        Raises:
            NotConnected: If not ready and ``auto_connect`` is False, or if
                the session is closed while connecting
            TrueNASSDKError: The last connect error after all attempts failed
        """
        if self.is_ready:
            return
        if not auto_connect:
            raise NotConnected()

        generation = self._close_generation
        attempt = 1
        while True:
            try:
                await self.connect()
                return
            except TrueNASSDKError as e:
                if self._close_generation != generation:
                    raise NotConnected("session closed", cause=e) from e
                if attempt >= self.connect_retry_attempts:
                    raise
                delay = backoff_delay(attempt, self.connect_retry_backoff)
                logger.warning("Connect attempt %d failed: %s. Retrying in %ss", attempt, e, delay)

            await asyncio.sleep(delay)
            if self._close_generation != generation:
                raise NotConnected("session closed")
            attempt += 1

    async def close(self) -> None:
        """Close the session for good. Idempotent."""
        self._close_generation += 1
        session = self.session
        if session is None:
            return
        self.session = None
        session.intentional_close = True

        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        transport = session.transport
        session.authenticated = False
        session.phase = SessionPhase.CLOSED
        self._teardown(NotConnected("session closed"))

        if transport is not None:
            await transport.close()
        logger.info("Session %s closed", session.session_id)

    def transport_closed(self, transport: object, intentional: bool) -> None:
        """React to a transport going away."""
        session = self.session
        if session is None or session.transport is not transport:
            return

        previous = session.phase
        session.authenticated = False
        self._teardown(NotConnected("connection lost"))

        if session.intentional_close:
            session.phase = SessionPhase.CLOSED
            return
        if intentional or previous is not SessionPhase.READY:
            # A failing connect attempt; _attempt reports it
            return

        session.phase = SessionPhase.DISCONNECTED
        logger.warning("Connection to appliance lost (session %s)", session.session_id)
        self._schedule_reconnect(session)

    async def _attempt(self, session: Session) -> None:
        session.phase = SessionPhase.CONNECTING
        try:
            await self._establish(session)
        except BaseException:
            await self._abandon(session)
            raise

        session.phase = SessionPhase.READY
        session.reconnect_attempts = 0
        logger.info("Session %s ready", session.session_id)

    async def _abandon(self, session: Session) -> None:
        transport = session.transport
        session.transport = None
        session.authenticated = False
        if session.phase is not SessionPhase.CLOSED:
            session.phase = SessionPhase.DISCONNECTED
        if transport is not None:
            await transport.close()

    def _schedule_reconnect(self, session: Session) -> None:
        if self.reconnect_pending:
            return
        if session.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(
                "Giving up on session %s after %d reconnect attempts",
                session.session_id,
                session.reconnect_attempts,
            )
            return

        session.reconnect_attempts += 1
        delay = backoff_delay(session.reconnect_attempts, self.reconnect_backoff)
        logger.info("Reconnecting in %ss (attempt %d)", delay, session.reconnect_attempts)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(session, delay)
        )

    async def _reconnect_after(self, session: Session, delay: float) -> None:
        await asyncio.sleep(delay)

        failed = False
        async with self._lock:
            if session is not self.session or session.intentional_close or session.is_ready:
                return
            try:
                await self._attempt(session)
            except TrueNASSDKError as e:
                failed = True
                logger.warning("Reconnect attempt %d failed:\n%s", session.reconnect_attempts, format_error_chain(e))
            except Exception:
                failed = True
                logger.exception("Reconnect attempt %d failed unexpectedly", session.reconnect_attempts)

        if failed and session is self.session and not session.intentional_close:
            self._reconnect_task = None
            self._schedule_reconnect(session)
