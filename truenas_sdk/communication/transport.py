"""
Websocket transport for the TrueNAS SDK.

``TransportSession`` owns one websocket. It opens the socket, performs the
connect negotiation, sends text frames and runs a reader task that parses
every inbound frame and hands it to a single message handler. Protocol level
control frames (``connected``, ``ping``, ``pong``) are consumed here and never
reach the handler.

When the reader stops, the close callback is invoked with a flag telling
whether the closure was requested locally.
"""

import asyncio
import ssl
from contextlib import suppress
from typing import Any, Callable, Dict, Optional, Set, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State

from ..core.config import ClientConfig
from ..core.error import ConnectError, HandshakeTimeout, NotConnected
from ..core.logging import get_logger
from .message import (
    Message,
    MessageError,
    MessageKind,
    connect_frame,
    decode_frame,
    encode_frame,
    pong_frame,
)

logger = get_logger(__name__)

MessageHandler = Callable[[Message], None]
CloseHandler = Callable[["TransportSession", bool], None]


def create_ssl_context(verify: bool) -> ssl.SSLContext:
    """Create the SSL context for wss:// connections.

    Args:
        verify: When False, self-signed and mismatched certificates are accepted
    """
    context = ssl.create_default_context()

    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    return context


class TransportSession:
    """A single websocket connection to the appliance."""

    def __init__(
        self,
        config: ClientConfig,
        on_message: MessageHandler,
        on_close: CloseHandler,
    ) -> None:
        self.config = config
        self._on_message = on_message
        self._on_close = on_close
        self._ws: Optional[ClientConnection] = None
        self._reader: Optional[asyncio.Task] = None
        self._connected = asyncio.Event()
        self._closing = False
        self._background: Set[asyncio.Task] = set()
        self.server_session: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    @property
    def acknowledged(self) -> bool:
        """Whether the peer answered the connect negotiation."""
        return self._connected.is_set()

    async def open(self) -> None:
        """Open the socket and run the connect negotiation.

        Returns after the peer acknowledges the negotiation, or after the
        settle delay when it stays silent (acceptance is implicit).

        Raises:
            HandshakeTimeout: If the opening handshake does not complete in time
            ConnectError: If the socket cannot be opened or drops during negotiation
        """
        await self._open_socket()

        await self.send(encode_frame(connect_frame()))
        try:
            await asyncio.wait_for(self._connected.wait(), self.config.handshake_settle_delay)
        except asyncio.TimeoutError:
            logger.debug("No connected acknowledgement within %ss, proceeding", self.config.handshake_settle_delay)

        if not self.is_open:
            raise ConnectError("connection closed during connect negotiation")

    async def send(self, frame: str) -> None:
        """Send one text frame.

        Raises:
            NotConnected: If the socket is absent or not open
        """
        if not self.is_open:
            raise NotConnected()
        await self._write(frame)

    async def close(self) -> None:
        """Close the socket. Closing an already closed session is a no-op."""
        if self._closing:
            return
        self._closing = True

        for task in list(self._background):
            task.cancel()

        await self._close_socket()

    def receive_frame(self, data: Union[str, bytes]) -> None:
        """Route one inbound frame. Never raises."""
        try:
            message = decode_frame(data)
        except MessageError as e:
            logger.warning("Dropping malformed frame: %s", e)
            return

        if message.kind is MessageKind.CONNECTED:
            self.server_session = message.raw.get("session")
            self._connected.set()
            logger.debug("Connect negotiation acknowledged (session %s)", self.server_session)
            return
        if message.kind is MessageKind.PONG:
            return
        if message.kind is MessageKind.PING:
            self._spawn(self.send(encode_frame(pong_frame(message.id))))
            return

        try:
            self._on_message(message)
        except Exception:
            logger.exception("Message handler failed for %s frame", message.kind.value)

    async def _open_socket(self) -> None:
        url = self.config.url
        kwargs: Dict[str, Any] = {
            "open_timeout": self.config.handshake_timeout,
            "ping_interval": self.config.ping_interval,
            "max_size": self.config.max_message_size,
        }
        if self.config.secure:
            kwargs["ssl"] = create_ssl_context(self.config.verify_ssl)

        logger.debug("Opening websocket to %s", url)
        try:
            self._ws = await connect(url, **kwargs)
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise HandshakeTimeout(self.config.handshake_timeout, cause=e) from e
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise ConnectError(f"cannot reach {url}", cause=e) from e

        logger.info("Websocket connected to %s", url)
        self._reader = asyncio.create_task(self._read_loop())

    async def _write(self, frame: str) -> None:
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            raise NotConnected("connection closed while sending", cause=e) from e

    async def _close_socket(self) -> None:
        if self._ws is not None:
            await self._ws.close()

        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            with suppress(asyncio.CancelledError):
                await reader

    async def _read_loop(self) -> None:
        try:
            async for data in self._ws:
                self.receive_frame(data)
        except ConnectionClosed as e:
            logger.info("Websocket closed abnormally: %s", e)
        finally:
            logger.info("Websocket closed (%s)", "local" if self._closing else "remote")
            self._on_close(self, self._closing)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Background send failed: %s", task.exception())
