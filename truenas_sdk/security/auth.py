"""
API key authentication for the TrueNAS SDK.

The primary login is a correlated method call::

    {"id": "...-auth", "msg": "method", "method": "auth.login_with_api_key", "params": [api_key]}

which succeeds only when the appliance answers that id with ``result: true``.

Some appliances answer the connect negotiation or the login with an
uncorrelated ``{"msg": "failed"}`` notice instead. In that case an alternate
login frame is sent and, after a short grace delay, the session is treated as
authenticated. The appliance never confirms this variant, so success on that
path is unverified and is logged as such.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from ..communication.message import (
    Message,
    MessageKind,
    encode_frame,
    fallback_auth_frame,
    method_frame,
)
from ..core.error import AuthError, AuthTimeout, NotConnected
from ..core.logging import get_logger
from ..internal.messaging import CorrelationIdGenerator

logger = get_logger(__name__)

LOGIN_METHOD = "auth.login_with_api_key"

SendFunc = Callable[[str], Awaitable[None]]


class Authenticator:
    """Drives the login exchange for one connection at a time."""

    def __init__(
        self,
        send: SendFunc,
        api_key: str,
        ids: Optional[CorrelationIdGenerator] = None,
        timeout: float = 10.0,
        fallback_grace: float = 1.0,
    ) -> None:
        self._send = send
        self._api_key = api_key
        self._ids = ids or CorrelationIdGenerator()
        self.timeout = timeout
        self.fallback_grace = fallback_grace

        self._future: Optional[asyncio.Future] = None
        self._request_id: Optional[str] = None
        self._fallback_id: Optional[str] = None
        self._fallback_task: Optional[asyncio.Task] = None
        self._failure_noticed = False
        self.fallback_used = False

    @property
    def in_progress(self) -> bool:
        return self._future is not None and not self._future.done()

    def reset(self) -> None:
        """Forget any state from a previous connection."""
        self._cancel_fallback()
        self._future = None
        self._request_id = None
        self._fallback_id = None
        self._failure_noticed = False
        self.fallback_used = False

    def notice_failure(self) -> None:
        """Record a failure notice that arrived before the login was sent."""
        self._failure_noticed = True

    async def authenticate(self) -> None:
        """Log in and wait for the outcome.

        Raises:
            AuthError: If the appliance rejects the key
            AuthTimeout: If no applicable answer arrives in time
        """
        self._future = asyncio.get_running_loop().create_future()
        future = self._future

        try:
            if self._failure_noticed:
                self._start_fallback()
            else:
                self._request_id = self._ids.next("auth")
                await self._send(encode_frame(method_frame(self._request_id, LOGIN_METHOD, [self._api_key])))

            try:
                await asyncio.wait_for(future, self.timeout)
            except asyncio.TimeoutError:
                raise AuthTimeout(self.timeout) from None
        finally:
            self._cancel_fallback()
            if not future.done():
                future.cancel()

        if self.fallback_used:
            logger.warning("Authenticated via fallback login; the appliance did not confirm the API key")
        else:
            logger.info("Authentication successful")

    def handle(self, message: Message) -> bool:
        """Consume a frame addressed to the login exchange.

        Returns:
            True if the frame was consumed, False if it belongs elsewhere
        """
        if not self.in_progress:
            return False

        if message.kind is MessageKind.FAILED:
            self._start_fallback()
            return True

        if not message.is_response:
            return False

        if self._fallback_task is not None:
            # The fallback login is never answered with a verdict
            logger.debug("Ignoring %s frame during fallback login", message.kind.value)
            return True

        if message.id != self._request_id:
            self._future.set_exception(AuthError(f"unexpected response id {message.id}"))
        elif message.kind is MessageKind.RESULT and message.result is True:
            self._future.set_result(None)
        elif message.kind is MessageKind.ERROR:
            self._future.set_exception(AuthError(message.error_message))
        else:
            self._future.set_exception(AuthError("invalid credentials"))
        return True

    def cancel(self, error: Optional[Exception] = None) -> None:
        """Abort an outstanding login, failing it with ``error``."""
        self._cancel_fallback()
        if self.in_progress:
            self._future.set_exception(error or NotConnected("session closed during authentication"))

    def _start_fallback(self) -> None:
        if self._fallback_task is not None:
            return
        self.fallback_used = True
        logger.info("Appliance sent a failure notice, trying fallback login")
        self._fallback_task = asyncio.get_running_loop().create_task(self._fallback())

    async def _fallback(self) -> None:
        future = self._future
        self._fallback_id = self._ids.next("auth")
        try:
            await self._send(encode_frame(fallback_auth_frame(self._fallback_id, self._api_key)))
        except Exception as e:
            if future is not None and not future.done():
                future.set_exception(e)
            return

        await asyncio.sleep(self.fallback_grace)
        if future is not None and not future.done():
            future.set_result(None)

    def _cancel_fallback(self) -> None:
        task = self._fallback_task
        self._fallback_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
