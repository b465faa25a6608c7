"""Stream supervisor: owns the reconnect loop and the per-event pipeline."""

import asyncio
import logging
import ssl
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import aiohttp

from .classifier import EventClassifier
from .clients.icinga_objects import IcingaObjectEnricher
from .clients.icinga_stream import IcingaEventStream
from .clients.redis_sink import EventSink
from .clients.session import create_session
from .config.settings import BridgeSettings
from .dispatcher import Dispatcher
from .errors import StreamClosedError
from .translator import translate
from .utils.logging import log_error_with_context
from .utils.lookup_cache import LookupCache
from .utils.retry import Backoff

logger = logging.getLogger(__name__)


class SupervisorState(Enum):
    """Lifecycle states of the stream supervisor."""
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    CANCELLED = "cancelled"
    FATAL = "fatal"


TERMINAL_STATES = frozenset({SupervisorState.CANCELLED, SupervisorState.FATAL})

SessionFactory = Callable[[], aiohttp.ClientSession]


class StreamSupervisor:
    """
    Keeps an Icinga event stream open and feeds every event through
    classify -> enrich -> translate -> dispatch.

    Each streaming session runs in its own task with its own HTTP session.
    The supervisor waits on that task and on the cancellation event at the
    same time. Events are handled strictly in arrival order, one at a time.

    Any error inside a session ends it. Retryable errors lead to a reconnect
    after a backoff delay; non-retryable ones end ``run`` in the FATAL state.
    ``cancel`` aborts the in-flight request and ends ``run`` in the CANCELLED
    state. The sink is closed when ``run`` returns.
    """

    def __init__(
        self,
        settings: BridgeSettings,
        sink: EventSink,
        ssl_context: Union[ssl.SSLContext, bool, None] = None,
        session_factory: Optional[SessionFactory] = None,
        backoff: Optional[Backoff] = None
    ):
        self.settings = settings
        self.config = settings.icinga
        self.debug = settings.debug

        self.classifier = EventClassifier(skip_unknown=self.config.skip_unknown_types)
        self.dispatcher = Dispatcher(sink)
        self.backoff = backoff or Backoff.from_config(settings.retry)
        self._session_factory = session_factory or (lambda: create_session(self.config, ssl_context))

        self.lookup_cache: Optional[LookupCache] = None
        if settings.enrichment.cache_ttl_seconds > 0:
            self.lookup_cache = LookupCache(
                ttl_seconds=settings.enrichment.cache_ttl_seconds,
                max_entries=settings.enrichment.cache_max_entries
            )

        self.state = SupervisorState.IDLE
        self.last_error: Optional[BaseException] = None
        self._cancel_event = asyncio.Event()

        # Statistics
        self.stats = {
            "sessions_opened": 0,
            "events_received": 0,
            "events_dispatched": 0,
            "events_skipped": 0,
            "errors": 0,
            "reconnects": 0,
            "last_event_time": None,
            "last_error": None,
            "start_time": datetime.now()
        }

        logger.info(f"StreamSupervisor initialized for {self.config.base_url} (queue={self.config.queue})")

    def cancel(self):
        """Request shutdown; safe to call from a signal handler callback."""
        if not self._cancel_event.is_set():
            logger.info("Cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def run(self) -> SupervisorState:
        """
        Stream until cancelled or a fatal error occurs.

        Returns:
            The terminal state, CANCELLED or FATAL. ``last_error`` holds the
            cause of a FATAL stop.
        """
        if self.state != SupervisorState.IDLE:
            raise RuntimeError("StreamSupervisor.run() can only be called once")

        try:
            while True:
                self._transition(SupervisorState.CONNECTING)
                error = await self._run_session()

                if error is None:
                    self._transition(SupervisorState.CANCELLED)
                    break

                self._record_error(error)

                if not getattr(error, "retryable", True):
                    self._transition(SupervisorState.FATAL)
                    break

                self._transition(SupervisorState.RECONNECTING)
                self.stats["reconnects"] += 1

                delay = self.backoff.next_delay()
                logger.info(f"Reconnecting in {delay:.2f}s (attempt {self.backoff.attempts})")

                if await self._wait_for_cancel(delay):
                    self._transition(SupervisorState.CANCELLED)
                    break
        finally:
            if self.state not in TERMINAL_STATES:
                # run() itself was cancelled
                self._transition(SupervisorState.CANCELLED)
            await self.dispatcher.close()

        return self.state

    async def _run_session(self) -> Optional[BaseException]:
        """Run one streaming session; returns the error that ended it, or None if cancelled."""
        session_task = asyncio.create_task(self._stream_session())
        cancel_task = asyncio.create_task(self._cancel_event.wait())

        try:
            await asyncio.wait({session_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            if not session_task.done():
                # Aborts the in-flight HTTP request
                session_task.cancel()
            await asyncio.gather(session_task, cancel_task, return_exceptions=True)

        if self._cancel_event.is_set() or session_task.cancelled():
            return None

        error = session_task.exception()
        if error is None:
            return StreamClosedError("Event stream ended")
        return error

    async def _stream_session(self):
        async with self._session_factory() as http_session:
            self.stats["sessions_opened"] += 1

            stream = IcingaEventStream(http_session, self.config, debug=self.debug)
            enricher = IcingaObjectEnricher(http_session, self.config, cache=self.lookup_cache)

            async with stream.open() as values:
                self._transition(SupervisorState.STREAMING)

                async for raw in values:
                    self.stats["events_received"] += 1
                    self.stats["last_event_time"] = datetime.now()
                    self.backoff.reset()

                    await self._process_value(raw, enricher)

    async def _process_value(self, raw: Any, enricher: IcingaObjectEnricher):
        if self.debug:
            logger.debug(f"Decoded Response: {raw}")

        event = self.classifier.classify(raw)
        if event is None:
            self.stats["events_skipped"] += 1
            return

        enrichment = await enricher.enrich(event)
        canonical = translate(event, enrichment)
        await self.dispatcher.dispatch(canonical)

        self.stats["events_dispatched"] += 1
        logger.debug(
            f"Dispatched {event.kind.value} for {canonical.entity}:{canonical.check} "
            f"state={canonical.state}"
        )

    async def _wait_for_cancel(self, delay: float) -> bool:
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def _transition(self, new_state: SupervisorState):
        if new_state == self.state:
            return
        logger.info(f"Stream supervisor state: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _record_error(self, error: BaseException):
        self.last_error = error
        self.stats["errors"] += 1
        self.stats["last_error"] = f"{type(error).__name__}: {error}"

        if isinstance(error, Exception) and hasattr(error, "retryable"):
            log_error_with_context(logger, error, "stream session", state=self.state.value)
        else:
            logger.error(f"Unexpected error in stream session: {error}", exc_info=error)

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the stream supervisor."""
        if self.state == SupervisorState.STREAMING:
            status = "healthy"
        elif self.state in (SupervisorState.CONNECTING, SupervisorState.RECONNECTING, SupervisorState.IDLE):
            status = "degraded"
        else:
            status = "unhealthy"

        health_status = {
            "status": status,
            "state": self.state.value,
            "timestamp": datetime.now().isoformat(),
            "stats": self.get_stats()
        }

        if self.last_error is not None:
            health_status["last_error"] = self.stats["last_error"]

        return health_status

    def get_stats(self) -> Dict[str, Any]:
        """Get supervisor statistics."""
        uptime = (datetime.now() - self.stats["start_time"]).total_seconds()

        stats = self.stats.copy()
        stats.update({
            "state": self.state.value,
            "uptime_seconds": uptime,
            "dispatcher": self.dispatcher.stats.copy()
        })

        if self.lookup_cache is not None:
            stats["lookup_cache"] = self.lookup_cache.get_stats()

        return stats
