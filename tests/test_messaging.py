"""Tests for request correlation."""

import asyncio
import random

import orjson
import pytest

from truenas_sdk.communication.message import decode_frame
from truenas_sdk.core.error import NotConnected, RemoteError, RequestTimeout
from truenas_sdk.internal.messaging import CorrelationIdGenerator, RequestMultiplexer


class Wire:
    """Collects outbound frames and feeds responses back."""

    def __init__(self):
        self.open = True
        self.frames = []
        self.fail_sends = False

    async def send(self, frame):
        if self.fail_sends:
            raise NotConnected("connection closed while sending")
        self.frames.append(orjson.loads(frame))

    def respond(self, multiplexer, frame, **fields):
        payload = {"id": frame["id"], **fields}
        return multiplexer.handle(decode_frame(orjson.dumps(payload)))


def make_multiplexer(wire, timeout=1.0):
    return RequestMultiplexer(wire.send, lambda: wire.open, default_timeout=timeout)


async def wait_for_frames(wire, count):
    for _ in range(100):
        if len(wire.frames) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} frames, saw {len(wire.frames)}")


class TestCorrelationIds:
    """Test correlation id generation."""

    def test_ids_are_unique(self):
        ids = CorrelationIdGenerator()
        generated = [ids.next() for _ in range(1000)]
        assert len(set(generated)) == 1000

    def test_tagged_id(self):
        assert CorrelationIdGenerator().next("auth").endswith("-auth")


class TestRequestMultiplexer:
    """Test the pending request table."""

    @pytest.mark.asyncio
    async def test_call_resolves_with_result(self):
        wire = Wire()
        multiplexer = make_multiplexer(wire)

        task = asyncio.create_task(multiplexer.call("vm.query", [[["id", "=", 1]]]))
        await wait_for_frames(wire, 1)

        frame = wire.frames[0]
        assert frame["msg"] == "method"
        assert frame["method"] == "vm.query"
        assert frame["params"] == [[["id", "=", 1]]]
        assert len(multiplexer) == 1

        assert wire.respond(multiplexer, frame, msg="result", result=[{"id": 1}])
        assert await task == [{"id": 1}]
        assert len(multiplexer) == 0

    @pytest.mark.asyncio
    async def test_not_connected_is_never_registered(self):
        wire = Wire()
        wire.open = False
        multiplexer = make_multiplexer(wire)

        with pytest.raises(NotConnected):
            await multiplexer.call("vm.query")

        assert wire.frames == []
        assert len(multiplexer) == 0

    @pytest.mark.asyncio
    async def test_out_of_order_responses(self):
        wire = Wire()
        multiplexer = make_multiplexer(wire)
        finished = []

        async def tracked(name, method):
            result = await multiplexer.call(method)
            finished.append(name)
            return result

        task_a = asyncio.create_task(tracked("A", "vm.query"))
        task_b = asyncio.create_task(tracked("B", "app.query"))
        await wait_for_frames(wire, 2)
        frame_a, frame_b = wire.frames

        wire.respond(multiplexer, frame_b, msg="result", result="apps")
        assert await task_b == "apps"
        assert not task_a.done()

        wire.respond(multiplexer, frame_a, msg="result", result="vms")
        assert await task_a == "vms"
        assert finished == ["B", "A"]

    @pytest.mark.asyncio
    async def test_each_caller_gets_its_own_result(self):
        wire = Wire()
        multiplexer = make_multiplexer(wire)

        tasks = [asyncio.create_task(multiplexer.call("echo", [n])) for n in range(20)]
        await wait_for_frames(wire, 20)

        frames = list(wire.frames)
        random.Random(7).shuffle(frames)
        for frame in frames:
            wire.respond(multiplexer, frame, msg="result", result=frame["params"][0])

        assert await asyncio.gather(*tasks) == list(range(20))

    @pytest.mark.asyncio
    async def test_error_frame_raises_remote_error(self):
        wire = Wire()
        multiplexer = make_multiplexer(wire)

        task = asyncio.create_task(multiplexer.call("vm.start", [9]))
        await wait_for_frames(wire, 1)
        wire.respond(multiplexer, wire.frames[0], msg="error", error={"code": 2, "message": "VM 9 does not exist"})

        with pytest.raises(RemoteError) as exc_info:
            await task
        assert str(exc_info.value) == "VM 9 does not exist"
        assert exc_info.value.code == 2
        assert exc_info.value.method == "vm.start"

    @pytest.mark.asyncio
    async def test_timeout_then_late_response_is_dropped(self):
        wire = Wire()
        multiplexer = make_multiplexer(wire)

        with pytest.raises(RequestTimeout) as exc_info:
            await multiplexer.call("vm.query", timeout=0.05)
        assert exc_info.value.method == "vm.query"
        assert len(multiplexer) == 0

        # Still a correlated response, just nobody waiting for it
        assert wire.respond(multiplexer, wire.frames[0], msg="result", result=[])
        assert len(multiplexer) == 0

    @pytest.mark.asyncio
    async def test_reject_all(self):
        wire = Wire()
        multiplexer = make_multiplexer(wire)

        tasks = [asyncio.create_task(multiplexer.call("app.query")) for _ in range(3)]
        await wait_for_frames(wire, 3)

        assert multiplexer.reject_all(NotConnected("connection lost")) == 3
        for task in tasks:
            with pytest.raises(NotConnected, match="connection lost"):
                await task
        assert len(multiplexer) == 0
        assert multiplexer.reject_all(NotConnected()) == 0

    @pytest.mark.asyncio
    async def test_send_failure_unregisters(self):
        wire = Wire()
        wire.fail_sends = True
        multiplexer = make_multiplexer(wire)

        with pytest.raises(NotConnected):
            await multiplexer.call("vm.query")
        assert len(multiplexer) == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_unregisters(self):
        wire = Wire()
        multiplexer = make_multiplexer(wire)

        task = asyncio.create_task(multiplexer.call("vm.query"))
        await wait_for_frames(wire, 1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert multiplexer.pending_ids == []

    def test_non_response_frames_are_not_consumed(self):
        multiplexer = make_multiplexer(Wire())
        assert not multiplexer.handle(decode_frame('{"msg": "failed"}'))
        assert not multiplexer.handle(decode_frame('{"msg": "added", "collection": "x"}'))
