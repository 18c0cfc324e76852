"""
Request multiplexing over a single websocket.

Any number of calls may be in flight at once. Each call gets a correlation id,
a future and a deadline timer; the response frame carrying the same id
settles the future. Completion order follows the order responses arrive, not
the order calls were issued.

A pending request is settled exactly once: by its response, by its deadline,
or by ``reject_all`` when the session goes away. Whichever happens first
removes it from the pending table, so a response arriving after the deadline
finds nothing and is dropped.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..communication.message import Message, MessageKind, encode_frame, method_frame
from ..core.error import NotConnected, RemoteError, RequestTimeout
from ..core.logging import get_logger

logger = get_logger(__name__)

SendFunc = Callable[[str], Awaitable[None]]


class CorrelationIdGenerator:
    """Produces correlation ids that never repeat for the life of a client.

    Ids combine a millisecond timestamp with a monotonic counter; the counter
    alone makes collisions impossible.
    """

    def __init__(self) -> None:
        self._counter = itertools.count()

    def next(self, tag: Optional[str] = None) -> str:
        request_id = f"{int(time.time() * 1000)}-{next(self._counter)}"
        if tag:
            request_id = f"{request_id}-{tag}"
        return request_id


@dataclass
class PendingRequest:
    """Tracks a call awaiting its response."""
    request_id: str
    method: str
    future: asyncio.Future
    timeout: float
    deadline: float
    timer: Optional[asyncio.TimerHandle] = None
    created_at: float = field(default_factory=time.monotonic)

    def resolve(self, value: Any) -> None:
        if self.timer is not None:
            self.timer.cancel()
        if not self.future.done():
            self.future.set_result(value)

    def reject(self, error: Exception) -> None:
        if self.timer is not None:
            self.timer.cancel()
        if not self.future.done():
            self.future.set_exception(error)


class RequestMultiplexer:
    """Correlates concurrent calls with their responses."""

    def __init__(
        self,
        send: SendFunc,
        is_open: Callable[[], bool],
        ids: Optional[CorrelationIdGenerator] = None,
        default_timeout: float = 30.0,
    ) -> None:
        self._send = send
        self._is_open = is_open
        self._ids = ids or CorrelationIdGenerator()
        self.default_timeout = default_timeout
        self._pending: Dict[str, PendingRequest] = {}

    @property
    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    async def call(self, method: str, params: Optional[List[Any]] = None, timeout: Optional[float] = None) -> Any:
        """Issue a remote call and wait for its result.

        Args:
            method: Remote method name, e.g. ``vm.query``
            params: Positional parameters
            timeout: Deadline in seconds (uses the default if None)

        Returns:
            The ``result`` payload of the matching response

        Raises:
            NotConnected: If the socket is not open; the call is never registered
            RequestTimeout: If no response arrives before the deadline
            RemoteError: If the appliance answers with an error frame
        """
        if not self._is_open():
            raise NotConnected()

        request_timeout = self.default_timeout if timeout is None else timeout
        request_id = self._ids.next()
        loop = asyncio.get_running_loop()

        pending = PendingRequest(
            request_id=request_id,
            method=method,
            future=loop.create_future(),
            timeout=request_timeout,
            deadline=loop.time() + request_timeout,
        )
        pending.timer = loop.call_later(request_timeout, self._expire, request_id)
        self._pending[request_id] = pending

        try:
            await self._send(encode_frame(method_frame(request_id, method, params)))
            logger.debug("Sent %s (id %s)", method, request_id)
            return await pending.future
        finally:
            # Settled or abandoned (send failure, caller cancelled): drop the entry
            stale = self._pending.pop(request_id, None)
            if stale is not None and stale.timer is not None:
                stale.timer.cancel()

    def handle(self, message: Message) -> bool:
        """Settle the pending request a result/error frame answers.

        Returns:
            True if the frame was a correlated response (matched or dropped),
            False if it is not a response at all
        """
        if not message.is_response:
            return False

        pending = self._pending.pop(message.id, None)
        if pending is None:
            logger.debug("Dropping response for unknown request id %s", message.id)
            return True

        if message.kind is MessageKind.RESULT:
            pending.resolve(message.result)
        else:
            pending.reject(RemoteError(message.error_message, code=message.error_code, method=pending.method))
        return True

    def reject_all(self, error: Exception) -> int:
        """Fail every pending request with ``error``.

        Returns:
            The number of requests rejected
        """
        pending_requests = list(self._pending.values())
        self._pending.clear()
        for pending in pending_requests:
            pending.reject(error)
        if pending_requests:
            logger.info("Rejected %d pending request(s): %s", len(pending_requests), error)
        return len(pending_requests)

    def _expire(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        logger.warning("Request %s (id %s) timed out after %ss", pending.method, request_id, pending.timeout)
        pending.reject(RequestTimeout(pending.method, pending.timeout))
