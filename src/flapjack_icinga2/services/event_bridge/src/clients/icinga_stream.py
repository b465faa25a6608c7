"""Icinga 2 event stream client.

Opens one long-lived request against ``/v1/events`` and decodes the chunked
JSON-Lines body one value at a time as the bytes arrive.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterator, List, Tuple

import aiohttp

from ..config.settings import IcingaConfig
from ..errors import ConfigurationError, ConnectError, DecodeError, HTTPStatusError, StreamClosedError

logger = logging.getLogger(__name__)

# Error envelopes are small; never read more than this from a failed response
MAX_ERROR_BODY_BYTES = 64 * 1024


class JsonLinesDecoder:
    """
    Incremental decoder for newline-delimited JSON.

    Bytes are buffered only until the next newline; each complete line is
    decoded on its own. Blank lines are ignored.
    """

    def __init__(self, max_line_bytes: int = 1024 * 1024):
        self.max_line_bytes = max_line_bytes
        self._buffer = bytearray()
        self.lines_decoded = 0

    def feed(self, chunk: bytes) -> Iterator[Any]:
        """Add bytes and yield every value completed by them, in order."""
        self._buffer.extend(chunk)

        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break

            if newline > self.max_line_bytes:
                self._buffer.clear()
                raise DecodeError(f"Stream line exceeds {self.max_line_bytes} bytes ({newline} received)")

            line = bytes(self._buffer[:newline])
            del self._buffer[:newline + 1]

            if line.strip():
                yield self._decode(line)

        if len(self._buffer) > self.max_line_bytes:
            size = len(self._buffer)
            self._buffer.clear()
            raise DecodeError(f"Stream line exceeds {self.max_line_bytes} bytes ({size} buffered)")

    def close(self) -> Iterator[Any]:
        """Flush a final unterminated line at end of stream."""
        line = bytes(self._buffer)
        self._buffer.clear()

        if not line.strip():
            return

        try:
            value = json.loads(line)
        except ValueError as e:
            raise StreamClosedError(f"Stream ended in the middle of a value: {e}") from e

        self.lines_decoded += 1
        yield value

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def _decode(self, line: bytes) -> Any:
        try:
            value = json.loads(line)
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError are both ValueErrors
            raise DecodeError(f"Invalid JSON in event stream: {e}; line starts {line[:120]!r}") from e

        self.lines_decoded += 1
        return value


class IcingaEventStream:
    """
    Event stream request against the Icinga 2 API.

    ``open`` is an async context manager producing an async iterator of raw
    decoded values. The iterator never ends normally: it raises
    ``StreamClosedError`` when the peer closes, ``ConnectError`` on network
    failures and ``DecodeError`` on undecodable bytes. Leaving the context
    closes the underlying connection, which is also what aborts an in-flight
    read when the surrounding task is cancelled. A stream is not restartable;
    call ``open`` again for a new one.
    """

    def __init__(self, session: aiohttp.ClientSession, config: IcingaConfig, debug: bool = False):
        self.session = session
        self.config = config
        self.debug = debug

    @property
    def url(self) -> str:
        return f"{self.config.base_url}/v1/events"

    @property
    def params(self) -> List[Tuple[str, str]]:
        params = [("queue", self.config.queue)]
        params.extend(("types", event_type) for event_type in self.config.event_types)
        return params

    @asynccontextmanager
    async def open(self) -> AsyncIterator[AsyncIterator[Any]]:
        logger.info(f"Opening Icinga event stream {self.url} (queue={self.config.queue})")

        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=self.config.connect_timeout_seconds,
            sock_connect=self.config.connect_timeout_seconds,
            sock_read=self.config.stream_idle_timeout_seconds
        )

        try:
            response = await self.session.request(
                self.config.stream_method,
                self.url,
                params=self.params,
                timeout=timeout
            )
        except aiohttp.InvalidURL as e:
            raise ConfigurationError(f"Invalid Icinga API URL {self.url}: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise ConnectError(f"Could not connect to {self.url}: {type(e).__name__}: {e}") from e

        values = None
        try:
            if self.debug:
                logger.debug(f"URL: {response.url}")
                logger.debug(f"Response: {response.status} {response.reason}")

            if response.status != 200:
                body = await self._read_error_body(response)
                raise HTTPStatusError(response.status, body, self.url)

            values = self._values(response)
            yield values
        finally:
            if values is not None:
                await values.aclose()
            response.close()

    async def _values(self, response: aiohttp.ClientResponse) -> AsyncIterator[Any]:
        decoder = JsonLinesDecoder(self.config.max_line_bytes)

        try:
            async for chunk in response.content.iter_any():
                for value in decoder.feed(chunk):
                    yield value
        except asyncio.TimeoutError as e:
            raise ConnectError(
                f"No data on event stream for {self.config.stream_idle_timeout_seconds}s"
            ) from e
        except (aiohttp.ClientError, OSError) as e:
            raise ConnectError(f"Event stream read failed: {type(e).__name__}: {e}") from e

        for value in decoder.close():
            yield value

        raise StreamClosedError(f"Icinga closed the event stream after {decoder.lines_decoded} values")

    @staticmethod
    async def _read_error_body(response: aiohttp.ClientResponse) -> str:
        try:
            raw = await response.content.read(MAX_ERROR_BODY_BYTES)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
            return ""
        return raw.decode("utf-8", errors="replace")
