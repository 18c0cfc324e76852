"""Tests for the websocket transport against a local websocket server."""

import asyncio
import json
import socket
import ssl

import pytest
from websockets.asyncio.server import serve

from truenas_sdk import ClientConfig, ConnectError, HandshakeTimeout, NotConnected, TrueNASClient
from truenas_sdk.communication.transport import TransportSession, create_ssl_context
from truenas_sdk.security.auth import LOGIN_METHOD

KEY = "1-realsocketkey"

VMS = [{"id": 7, "name": "debian", "status": {"state": "RUNNING", "pid": 99}}]


class Emulator:
    """Minimal appliance speaking the protocol over a real websocket."""

    def __init__(self):
        self.connections = []
        self.frames = []

    async def handler(self, ws):
        self.connections.append(ws)
        async for raw in ws:
            frame = json.loads(raw)
            self.frames.append(frame)
            if frame.get("msg") == "connect":
                await ws.send(json.dumps({"msg": "connected", "session": "emu"}))
            elif frame.get("msg") == "method":
                if frame["method"] == LOGIN_METHOD:
                    reply = {"id": frame["id"], "msg": "result", "result": frame["params"] == [KEY]}
                elif frame["method"] == "vm.query":
                    reply = {"id": frame["id"], "msg": "result", "result": VMS}
                else:
                    reply = {"id": frame["id"], "msg": "error", "error": {"message": "no such method"}}
                await ws.send(json.dumps(reply))


def local_config(port, **overrides):
    settings = dict(
        host="127.0.0.1",
        port=port,
        secure=False,
        api_key=KEY,
        handshake_timeout=0.5,
        handshake_settle_delay=0.5,
        auth_timeout=1.0,
        request_timeout=1.0,
        reconnect_backoff=0.01,
        connect_retry_backoff=0.01,
    )
    settings.update(overrides)
    return ClientConfig(**settings)


def unused_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestWebsocketTransport:
    """Test the client over a real socket."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        emulator = Emulator()
        async with serve(emulator.handler, "127.0.0.1", 0) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            client = TrueNASClient(local_config(port))
            try:
                vms = await client.list_vms()
                assert [vm.name for vm in vms] == ["debian"]
                assert client.is_connected()
            finally:
                await client.disconnect()

        assert emulator.frames[0] == {"msg": "connect", "version": "1", "support": ["1"]}
        assert emulator.frames[1]["method"] == LOGIN_METHOD
        assert not client.is_connected()

    @pytest.mark.asyncio
    async def test_server_close_triggers_reconnect(self, eventually):
        emulator = Emulator()
        async with serve(emulator.handler, "127.0.0.1", 0) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            client = TrueNASClient(local_config(port))
            try:
                await client.connect()
                await emulator.connections[0].close()

                await eventually(lambda: len(emulator.connections) == 2 and client.is_connected())
                assert len(await client.list_vms()) == 1
            finally:
                await client.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_frame_from_server(self):
        emulator = Emulator()
        async with serve(emulator.handler, "127.0.0.1", 0) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            client = TrueNASClient(local_config(port))
            try:
                await client.connect()
                await emulator.connections[0].send("garbage{")
                assert len(await client.list_vms()) == 1
            finally:
                await client.disconnect()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        client = TrueNASClient(local_config(unused_port()))

        with pytest.raises(ConnectError) as exc_info:
            await client.connect()
        assert not isinstance(exc_info.value, HandshakeTimeout)
        assert exc_info.value.cause is not None
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_handshake_timeout(self):
        writers = []

        async def silent(reader, writer):
            writers.append(writer)
            await reader.read()

        server = await asyncio.start_server(silent, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        client = TrueNASClient(local_config(port, handshake_timeout=0.2))
        try:
            with pytest.raises(HandshakeTimeout):
                await client.connect()
        finally:
            await client.disconnect()
            for writer in writers:
                writer.close()
            server.close()

    @pytest.mark.asyncio
    async def test_send_before_open(self):
        transport = TransportSession(local_config(1), lambda message: None, lambda t, intentional: None)

        assert not transport.is_open
        with pytest.raises(NotConnected):
            await transport.send("{}")
        await transport.close()


class TestSSLContext:
    """Test TLS settings for wss:// connections."""

    def test_unverified(self):
        context = create_ssl_context(verify=False)
        assert context.check_hostname is False
        assert context.verify_mode == ssl.CERT_NONE

    def test_verified(self):
        context = create_ssl_context(verify=True)
        assert context.check_hostname is True
        assert context.verify_mode == ssl.CERT_REQUIRED
