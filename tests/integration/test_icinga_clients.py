"""Integration tests for the Icinga stream and object clients against a local API."""

import socket

import pytest
from aiohttp import web

from flapjack_icinga2.services.event_bridge.src.clients.icinga_objects import IcingaObjectEnricher
from flapjack_icinga2.services.event_bridge.src.clients.icinga_stream import IcingaEventStream
from flapjack_icinga2.services.event_bridge.src.clients.session import create_session
from flapjack_icinga2.services.event_bridge.src.errors import (
    ConnectError,
    DecodeError,
    EnrichmentLookupError,
    HTTPStatusError,
    StreamClosedError,
)
from flapjack_icinga2.services.event_bridge.src.models import CheckState, ClassifiedEvent, EventKind
from flapjack_icinga2.services.event_bridge.src.utils.lookup_cache import LookupCache

from conftest import SAMPLE_CHECK_RESULT, event_line, make_settings, object_envelope


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def service_event(host="h1", service="s1") -> ClassifiedEvent:
    return ClassifiedEvent(EventKind.CHECK_RESULT, host, service, 1000, CheckState.CRITICAL, "disk full")


@pytest.mark.integration
class TestIcingaEventStream:
    """Test IcingaEventStream against the fake API."""

    @pytest.mark.asyncio
    async def test_values_then_peer_close(self, fake_icinga, bridge_settings):
        """Test values arrive in order and a peer close ends the iterator with an error."""
        second = dict(SAMPLE_CHECK_RESULT, service="s2")
        fake_icinga.add_stream([event_line(SAMPLE_CHECK_RESULT), event_line(second)], then="close")

        received = []
        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            stream = IcingaEventStream(session, bridge_settings.icinga)
            with pytest.raises(StreamClosedError):
                async with stream.open() as values:
                    async for value in values:
                        received.append(value)

        assert [value["service"] for value in received] == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_request_shape(self, fake_icinga, bridge_settings):
        """Test method, queue, types and credentials of the stream request."""
        fake_icinga.add_stream([], then="close")

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            stream = IcingaEventStream(session, bridge_settings.icinga)
            with pytest.raises(StreamClosedError):
                async with stream.open() as values:
                    async for _ in values:
                        pass

        request = fake_icinga.stream_requests[0]
        assert request["method"] == "POST"
        assert request["queue"] == "flapjack"
        assert request["types"] == ["CheckResult", "StateChange"]
        assert request["authorization"].startswith("Basic ")
        assert request["accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_get_method(self, fake_icinga):
        settings = make_settings(
            f"{fake_icinga.server.host}:{fake_icinga.server.port}",
            icinga={"stream_method": "GET", "event_types": ["StateChange"], "queue": "bridge"}
        )
        fake_icinga.add_stream([], then="close")

        async with create_session(settings.icinga, ssl_context=False) as session:
            with pytest.raises(StreamClosedError):
                async with IcingaEventStream(session, settings.icinga).open() as values:
                    async for _ in values:
                        pass

        request = fake_icinga.stream_requests[0]
        assert request["method"] == "GET"
        assert request["queue"] == "bridge"
        assert request["types"] == ["StateChange"]

    @pytest.mark.asyncio
    async def test_http_error_status(self, fake_icinga, bridge_settings):
        """Test a non-200 status carries the status and the error body."""
        fake_icinga.add_stream(status=401, body={"error": 401, "status": "Unauthorized. Please check your user credentials."})

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            with pytest.raises(HTTPStatusError) as exc_info:
                async with IcingaEventStream(session, bridge_settings.icinga).open():
                    pass

        assert exc_info.value.status == 401
        assert "Unauthorized" in exc_info.value.body
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, fake_icinga, bridge_settings):
        fake_icinga.add_stream(status=503)

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            with pytest.raises(HTTPStatusError) as exc_info:
                async with IcingaEventStream(session, bridge_settings.icinga).open():
                    pass

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_invalid_json_line(self, fake_icinga, bridge_settings):
        fake_icinga.add_stream([event_line(SAMPLE_CHECK_RESULT), "{broken"], then="hang")

        received = []
        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            with pytest.raises(DecodeError):
                async with IcingaEventStream(session, bridge_settings.icinga).open() as values:
                    async for value in values:
                        received.append(value)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_peer_close_mid_value(self, fake_icinga, bridge_settings):
        fake_icinga.add_stream([], then="partial")

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            with pytest.raises(StreamClosedError) as exc_info:
                async with IcingaEventStream(session, bridge_settings.icinga).open() as values:
                    async for _ in values:
                        pass

        assert "middle of a value" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        settings = make_settings(f"127.0.0.1:{unused_port()}")

        async with create_session(settings.icinga, ssl_context=False) as session:
            with pytest.raises(ConnectError) as exc_info:
                async with IcingaEventStream(session, settings.icinga).open():
                    pass

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_idle_timeout(self, fake_icinga):
        """Test a silent stream is abandoned after the idle timeout."""
        settings = make_settings(
            f"{fake_icinga.server.host}:{fake_icinga.server.port}",
            icinga={"stream_idle_timeout_seconds": 0.2}
        )
        fake_icinga.add_stream([], then="hang")

        async with create_session(settings.icinga, ssl_context=False) as session:
            with pytest.raises(ConnectError) as exc_info:
                async with IcingaEventStream(session, settings.icinga).open() as values:
                    async for _ in values:
                        pass

        assert "No data on event stream" in str(exc_info.value)


@pytest.mark.integration
class TestIcingaObjectEnricher:
    """Test IcingaObjectEnricher against the fake API."""

    @pytest.mark.asyncio
    async def test_service_tags(self, fake_icinga, bridge_settings):
        fake_icinga.add_object("services", "h1!s1", object_envelope(tags=["prod", "db"]))

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            result = await IcingaObjectEnricher(session, bridge_settings.icinga).enrich(service_event())

        assert result.tags == ("prod", "db")
        assert fake_icinga.lookup_requests == [("services", "h1!s1")]

    @pytest.mark.asyncio
    async def test_host_without_tags(self, fake_icinga, bridge_settings):
        fake_icinga.add_object("hosts", "web01", object_envelope())

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            result = await IcingaObjectEnricher(session, bridge_settings.icinga).enrich(
                service_event(host="web01", service=None)
            )

        assert result.tags == ()
        assert fake_icinga.lookup_requests == [("hosts", "web01")]

    @pytest.mark.asyncio
    async def test_not_found(self, fake_icinga, bridge_settings):
        """Test error statuses fail the lookup instead of being read as an empty envelope."""
        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            with pytest.raises(EnrichmentLookupError) as exc_info:
                await IcingaObjectEnricher(session, bridge_settings.icinga).enrich(service_event())

        assert exc_info.value.status == 404
        assert exc_info.value.entity == "h1!s1"
        assert "No objects found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_results(self, fake_icinga, bridge_settings):
        fake_icinga.add_object("services", "h1!s1", {"results": []})

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            with pytest.raises(EnrichmentLookupError):
                await IcingaObjectEnricher(session, bridge_settings.icinga).enrich(service_event())

    @pytest.mark.asyncio
    async def test_non_json_body(self, fake_icinga, bridge_settings):
        fake_icinga.add_object("services", "h1!s1", web.Response(text="<html>oops</html>"))

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            with pytest.raises(EnrichmentLookupError) as exc_info:
                await IcingaObjectEnricher(session, bridge_settings.icinga).enrich(service_event())

        assert "not JSON" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_cache_reuses_lookup(self, fake_icinga, bridge_settings):
        fake_icinga.add_object("services", "h1!s1", object_envelope(tags=["prod"]))
        cache = LookupCache(ttl_seconds=60)

        async with create_session(bridge_settings.icinga, ssl_context=False) as session:
            enricher = IcingaObjectEnricher(session, bridge_settings.icinga, cache=cache)
            first = await enricher.enrich(service_event())
            second = await enricher.enrich(service_event())

        assert first == second
        assert len(fake_icinga.lookup_requests) == 1
        assert cache.get_stats()["hits"] == 1
