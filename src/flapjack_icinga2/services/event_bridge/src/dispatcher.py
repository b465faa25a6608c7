"""Hands translated events to the event sink."""

import logging

from .clients.redis_sink import EventSink
from .errors import SinkError
from .models import CanonicalEvent

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Delivers one event at a time to the sink.

    Delivery failures surface as ``SinkError`` and are never retried here;
    the stream supervisor decides what happens next.
    """

    def __init__(self, sink: EventSink):
        self.sink = sink
        self.stats = {
            "events_dispatched": 0,
            "dispatch_errors": 0
        }

    async def dispatch(self, event: CanonicalEvent) -> None:
        try:
            await self.sink.send(event)
        except SinkError:
            self.stats["dispatch_errors"] += 1
            raise
        except Exception as e:
            self.stats["dispatch_errors"] += 1
            raise SinkError(f"Event sink failed: {type(e).__name__}: {e}") from e

        self.stats["events_dispatched"] += 1

    async def close(self):
        """Close the sink connection."""
        try:
            await self.sink.close()
        except Exception as e:
            logger.error(f"Error closing event sink: {e}", exc_info=True)
