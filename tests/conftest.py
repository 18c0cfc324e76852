"""Shared fixtures: a scripted in-process appliance and a fast client config."""

import asyncio
import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import orjson
import pytest

from truenas_sdk import ClientConfig, TrueNASClient
from truenas_sdk.communication.transport import TransportSession
from truenas_sdk.core.error import ConnectError
from truenas_sdk.core.logging import clear_secret_registry
from truenas_sdk.security.auth import LOGIN_METHOD

API_KEY = "1-k3yk3yk3yk3y"


class ApplianceFault(Exception):
    """Raised by a fake method handler to answer with an error frame."""

    def __init__(self, message: str, code: int = 22) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


def apply_filters(rows: List[Dict[str, Any]], params: List[Any]) -> List[Dict[str, Any]]:
    if not params:
        return copy.deepcopy(rows)
    result = rows
    for field, op, value in params[0]:
        assert op == "="
        result = [row for row in result if row.get(field) == value]
    return copy.deepcopy(result)


class FakeTransport(TransportSession):
    """TransportSession whose socket is the FakeAppliance instead of a websocket."""

    def __init__(self, appliance: "FakeAppliance", config: ClientConfig, on_message: Callable, on_close: Callable) -> None:
        super().__init__(config, on_message, on_close)
        self.appliance = appliance
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def _open_socket(self) -> None:
        self.appliance.open_attempts.append(asyncio.get_running_loop().time())
        if self.appliance.refuse_connections > 0:
            self.appliance.refuse_connections -= 1
            raise ConnectError("cannot reach fake appliance", cause=ConnectionRefusedError(111, "Connection refused"))
        self._open = True
        self.appliance.transports.append(self)

    async def _write(self, frame: str) -> None:
        payload = orjson.loads(frame)
        loop = asyncio.get_running_loop()
        self.appliance.sent.append(payload)
        self.appliance.sent_at.append((loop.time(), payload))
        for delay, reply in self.appliance.reply(payload):
            loop.call_later(delay, self.deliver, reply)

    async def _close_socket(self) -> None:
        self.shutdown(intentional=True)

    def deliver(self, payload: Union[Dict[str, Any], str, bytes]) -> None:
        """Push one frame from the appliance to the client."""
        if not self._open:
            return
        if isinstance(payload, dict):
            payload = orjson.dumps(payload)
        self.receive_frame(payload)

    def drop(self) -> None:
        """The appliance goes away without being asked to."""
        self.shutdown(intentional=False)

    def shutdown(self, intentional: bool) -> None:
        if not self._open:
            return
        self._open = False
        self._on_close(self, intentional or self._closing)


class FakeAppliance:
    """Scripted peer speaking the appliance's websocket protocol."""

    def __init__(self) -> None:
        self.handshake = "connected"   # connected | failed | silent
        self.auth_mode = "accept"      # accept | reject | error | failed | silent
        self.refuse_connections = 0
        self.open_attempts: List[float] = []
        self.transports: List[FakeTransport] = []
        self.sent: List[Dict[str, Any]] = []
        self.sent_at: List[Tuple[float, Dict[str, Any]]] = []
        self.delays: Dict[str, float] = {}
        self.hold: set = set()

        self.vms = [
            {"id": 1, "name": "ubuntu", "status": {"state": "RUNNING", "pid": 4242}},
            {"id": 2, "name": "win11", "status": {"state": "STOPPED", "pid": None}},
        ]
        self.apps = [
            {"id": "plex", "name": "plex", "state": "RUNNING", "active": True},
            {"id": "nextcloud", "name": "nextcloud", "state": "STOPPED", "active": False},
        ]
        self.methods: Dict[str, Callable[[List[Any]], Any]] = {
            "vm.query": lambda params: apply_filters(self.vms, params),
            "vm.start": lambda params: self._set_vm_state(params[0], "RUNNING"),
            "vm.stop": lambda params: self._set_vm_state(params[0], "STOPPED"),
            "app.query": lambda params: apply_filters(self.apps, params),
            "app.start": lambda params: self._set_app_state(params[0], "RUNNING"),
            "app.stop": lambda params: self._set_app_state(params[0], "STOPPED"),
        }

    def factory(self, config: ClientConfig, on_message: Callable, on_close: Callable) -> FakeTransport:
        return FakeTransport(self, config, on_message, on_close)

    @property
    def transport(self) -> Optional[FakeTransport]:
        return self.transports[-1] if self.transports else None

    def calls(self, method: str) -> List[Dict[str, Any]]:
        return [f for f in self.sent if f.get("msg") == "method" and f.get("method") == method]

    def reply(self, frame: Dict[str, Any]) -> List[Tuple[float, Dict[str, Any]]]:
        msg = frame.get("msg")
        if msg == "connect":
            if self.handshake == "connected":
                return [(0, {"msg": "connected", "session": "fake-session"})]
            if self.handshake == "failed":
                return [(0, {"msg": "failed", "version": "1"})]
            return []
        if msg != "method":
            return []

        request_id = frame["id"]
        method = frame["method"]
        if method == LOGIN_METHOD:
            if self.auth_mode == "accept":
                return [(0, {"id": request_id, "msg": "result", "result": frame["params"] == [API_KEY]})]
            if self.auth_mode == "reject":
                return [(0, {"id": request_id, "msg": "result", "result": False})]
            if self.auth_mode == "error":
                return [(0, {"id": request_id, "msg": "error", "error": {"code": 13, "message": "Invalid API key"}})]
            if self.auth_mode == "failed":
                return [(0, {"msg": "failed"})]
            return []

        if method in self.hold:
            return []
        delay = self.delays.get(method, 0)
        handler = self.methods.get(method)
        if handler is None:
            return [(delay, {"id": request_id, "msg": "error", "error": {"error": 22, "reason": f"Method {method} not found"}})]
        try:
            result = handler(frame.get("params") or [])
        except ApplianceFault as e:
            return [(delay, {"id": request_id, "msg": "error", "error": {"code": e.code, "message": e.message}})]
        return [(delay, {"id": request_id, "msg": "result", "result": result})]

    def _set_vm_state(self, vm_id: int, state: str) -> None:
        for vm in self.vms:
            if vm["id"] == vm_id:
                vm["status"]["state"] = state
                return None
        raise ApplianceFault(f"VM {vm_id} does not exist")

    def _set_app_state(self, name: str, state: str) -> int:
        for app in self.apps:
            if app["name"] == name:
                app["state"] = state
                return 101
        raise ApplianceFault(f"App {name} does not exist")


@pytest.fixture(autouse=True)
def _clean_secret_registry():
    yield
    clear_secret_registry()


@pytest.fixture(autouse=True)
def _restore_sdk_log_level():
    sdk_logger = logging.getLogger("truenas_sdk")
    level = sdk_logger.level
    yield
    sdk_logger.setLevel(level)


@pytest.fixture
def appliance() -> FakeAppliance:
    return FakeAppliance()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        host="nas.local",
        api_key=API_KEY,
        request_timeout=1.0,
        auth_timeout=0.3,
        handshake_settle_delay=0.05,
        fallback_auth_grace=0.05,
        reconnect_backoff=0.01,
        connect_retry_backoff=0.01,
        vm_restart_settle_delay=0.05,
    )


@pytest.fixture
def client(config: ClientConfig, appliance: FakeAppliance) -> TrueNASClient:
    return TrueNASClient(config, transport_factory=appliance.factory)


@pytest.fixture
def eventually():
    """Poll a predicate until it holds or fail after ``timeout`` seconds."""

    async def wait(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met within timeout")
            await asyncio.sleep(interval)

    return wait
