"""Pytest configuration and shared fixtures."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from flapjack_icinga2.services.event_bridge.src.config.settings import BridgeSettings
from flapjack_icinga2.services.event_bridge.src.models import CanonicalEvent


SAMPLE_CHECK_RESULT = {
    "type": "CheckResult",
    "host": "h1",
    "service": "s1",
    "timestamp": 1000,
    "check_result": {"state": 2, "output": "disk full"}
}

SAMPLE_HOST_STATE_CHANGE = {
    "type": "StateChange",
    "host": "web01",
    "timestamp": 1500000000.25,
    "check_result": {"state": 0.0, "output": "PING OK"}
}


def event_line(event: Dict[str, Any]) -> str:
    return json.dumps(event)


def object_envelope(tags: Optional[List[str]] = None, with_vars: bool = True) -> Dict[str, Any]:
    """Icinga object query response for a single object."""
    attrs: Dict[str, Any] = {"name": "obj"}
    if with_vars:
        attrs["vars"] = {"tags": tags} if tags is not None else {"os": "linux"}
    return {"results": [{"attrs": attrs, "joins": {}, "meta": {}, "name": "obj", "type": "Host"}]}


class RecordingSink:
    """In-memory event sink."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.events: List[CanonicalEvent] = []
        self.fail_with = fail_with
        self.closed = False

    async def send(self, event: CanonicalEvent) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(event)

    async def close(self) -> None:
        self.closed = True


class FakeIcinga:
    """
    Scripted stand-in for the Icinga 2 API.

    Each call to ``add_stream`` scripts the response to one event stream
    request; requests beyond the script get an empty stream that stays open.
    """

    def __init__(self):
        self.streams: List[Dict[str, Any]] = []
        self.objects: Dict[Tuple[str, str], Any] = {}
        self.stream_requests: List[Dict[str, Any]] = []
        self.lookup_requests: List[Tuple[str, str]] = []
        self.open_streams = 0
        self._release = asyncio.Event()

    def add_stream(self, lines: List[str] = (), then: str = "hang", status: int = 200, body: Any = None):
        self.streams.append({"lines": list(lines), "then": then, "status": status, "body": body})

    def add_object(self, object_type: str, name: str, envelope: Any):
        self.objects[(object_type, name)] = envelope

    def release(self):
        self._release.set()

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/v1/events", self.handle_events)
        app.router.add_get("/v1/objects/{object_type}/{name}", self.handle_object)
        return app

    async def handle_events(self, request: web.Request) -> web.StreamResponse:
        self.stream_requests.append({
            "method": request.method,
            "queue": request.query.get("queue"),
            "types": request.query.getall("types", []),
            "authorization": request.headers.get("Authorization"),
            "accept": request.headers.get("Accept"),
        })

        script = self.streams.pop(0) if self.streams else {"lines": [], "then": "hang", "status": 200}

        if script["status"] != 200:
            body = script["body"] or {"error": script["status"], "status": "Scripted failure"}
            return web.json_response(body, status=script["status"])

        response = web.StreamResponse(headers={"Content-Type": "application/json"})
        response.enable_chunked_encoding()
        await response.prepare(request)

        self.open_streams += 1
        try:
            for line in script["lines"]:
                await response.write(line.encode() + b"\n")

            if script["then"] == "hang":
                await asyncio.wait_for(self._release.wait(), timeout=30)
            elif script["then"] == "partial":
                await response.write(b'{"type": "CheckRes')

            await response.write_eof()
        except (ConnectionResetError, asyncio.TimeoutError, asyncio.CancelledError):
            pass
        finally:
            self.open_streams -= 1

        return response

    async def handle_object(self, request: web.Request) -> web.Response:
        key = (request.match_info["object_type"], request.match_info["name"])
        self.lookup_requests.append(key)

        if key not in self.objects:
            return web.json_response(
                {"error": 404, "status": "No objects found."},
                status=404
            )

        envelope = self.objects[key]
        if isinstance(envelope, web.Response):
            return envelope
        return web.json_response(envelope)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest_asyncio.fixture
async def fake_icinga():
    """Fake Icinga API listening on localhost."""
    fake = FakeIcinga()
    server = TestServer(fake.create_app())
    await server.start_server()
    fake.server = server

    yield fake

    fake.release()
    await server.close()


def make_settings(server: str, **overrides) -> BridgeSettings:
    """Settings for tests: plain HTTP, fast backoff, test credentials."""
    icinga = {
        "server": server,
        "scheme": "http",
        "user": "root",
        "password": "icinga",
        "connect_timeout_seconds": 2.0,
        "lookup_timeout_seconds": 2.0,
    }
    icinga.update(overrides.pop("icinga", {}))

    return BridgeSettings(
        icinga=icinga,
        retry={
            "initial_backoff_seconds": 0.01,
            "max_backoff_seconds": 0.05,
            "backoff_multiplier": 2.0,
            "jitter": False
        },
        **overrides
    )


@pytest.fixture
def bridge_settings(fake_icinga) -> BridgeSettings:
    return make_settings(f"{fake_icinga.server.host}:{fake_icinga.server.port}")


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01):
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
