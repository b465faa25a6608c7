"""Error taxonomy for the Icinga -> Flapjack event bridge.

Every error raised inside a streaming session derives from ``BridgeError`` and
carries a ``retryable`` flag. The stream supervisor is the only component that
looks at the flag: retryable errors lead to a reconnect, the rest are fatal.
"""

from typing import Any, Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""

    retryable = True


class ConfigurationError(BridgeError):
    """Invalid configuration that no amount of retrying can fix."""

    retryable = False


class ConnectError(BridgeError):
    """Network-level failure while opening or reading the event stream."""


class StreamClosedError(BridgeError):
    """The peer ended the event stream."""


# Stream endpoint statuses that mean bad credentials or a bad request target
NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 404})


class HTTPStatusError(BridgeError):
    """Non-success HTTP status from the Icinga API."""

    def __init__(self, status: int, body: str, url: str = ""):
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"API HTTP request failed: {status} {url} {body[:200]}".rstrip())

    @property
    def retryable(self) -> bool:
        return self.status not in NON_RETRYABLE_STATUSES


class DecodeError(BridgeError):
    """Stream bytes that cannot be decoded as a JSON value."""


class SchemaError(BridgeError):
    """A decoded value violates the expected event contract."""


class MalformedEvent(SchemaError):
    """A required event field is missing or has the wrong type."""

    def __init__(self, field: str, reason: str = "missing or invalid"):
        self.field = field
        self.reason = reason
        super().__init__(f"Malformed event: field '{field}' {reason}")


class UnknownEventKind(SchemaError):
    """The event type is not one of the recognised kinds."""

    def __init__(self, kind: Any):
        self.kind = kind
        super().__init__(f"Unknown type {kind}")


class UnknownStateCode(SchemaError):
    """The check result state code has no state name."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Unknown state {value}")


class EnrichmentLookupError(BridgeError):
    """The object lookup for an event's entity failed."""

    def __init__(self, entity: str, reason: str, status: Optional[int] = None):
        self.entity = entity
        self.reason = reason
        self.status = status
        status_text = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"Lookup for '{entity}' failed{status_text}: {reason}")


class SinkError(BridgeError):
    """The event sink could not accept an event."""
