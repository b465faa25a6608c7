"""Flapjack event sink backed by Redis."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..config.settings import FlapjackConfig
from ..errors import SinkError
from ..models import CheckState, CanonicalEvent

logger = logging.getLogger(__name__)

# Flapjack 2 expects one marker on this list for every queued event
EVENTS_ACTIONS_QUEUE = "events_actions"

VALID_STATES = frozenset(state.value for state in CheckState)


class EventSink(Protocol):
    """Downstream consumer of Flapjack events."""

    async def send(self, event: CanonicalEvent) -> None:
        ...

    async def close(self) -> None:
        ...


def validate_event(event: CanonicalEvent):
    """Reject events Flapjack would not process."""
    for field in ("entity", "check", "type", "state"):
        if not getattr(event, field):
            raise SinkError(f"Invalid event: {field} is empty")

    if event.state not in VALID_STATES:
        raise SinkError(f"Invalid event: unknown state {event.state!r}")


class FlapjackRedisSink:
    """Pushes Flapjack events onto the Redis events queue."""

    def __init__(self, config: FlapjackConfig, client: Optional[redis.Redis] = None):
        self.config = config
        self.redis_client: Optional[redis.Redis] = client

        # Statistics
        self.stats = {
            "events_sent": 0,
            "send_errors": 0,
            "last_send_time": None
        }

        logger.info(
            f"FlapjackRedisSink initialized for {config.host}:{config.port}/{config.db} "
            f"(flapjack v{config.version}, queue={config.queue})"
        )

    async def initialize(self):
        """Open the Redis connection and verify it with a ping."""
        if self.redis_client is None:
            self.redis_client = redis.Redis(
                host=self.config.host,
                port=self.config.port,
                password=self.config.password,
                db=self.config.db,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_connect_timeout,
                health_check_interval=30,
                retry_on_timeout=True,
                decode_responses=True
            )

        try:
            await self.redis_client.ping()
        except (RedisError, OSError) as e:
            raise SinkError(
                f"Couldn't establish Redis connection to {self.config.host}:{self.config.port}: {e}"
            ) from e

        logger.info("Redis connection initialized successfully")

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            logger.info("Closing Redis connection")
            await self.redis_client.aclose()
            self.redis_client = None

    async def send(self, event: CanonicalEvent) -> None:
        """Queue one event for Flapjack."""
        if not self.redis_client:
            raise SinkError("Redis client not initialized")

        validate_event(event)
        payload = json.dumps(event.to_dict())

        try:
            if self.config.version == 1:
                await self.redis_client.lpush(self.config.queue, payload)
            else:
                async with self.redis_client.pipeline(transaction=True) as pipe:
                    await pipe.lpush(self.config.queue, payload).lpush(EVENTS_ACTIONS_QUEUE, "+").execute()
        except (RedisError, OSError) as e:
            self.stats["send_errors"] += 1
            raise SinkError(f"Failed to queue event for {event.entity}:{event.check}: {e}") from e

        self.stats["events_sent"] += 1
        self.stats["last_send_time"] = datetime.now()
        logger.debug(f"Queued event {event.entity}:{event.check} state={event.state}")

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on Redis connection."""
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "stats": self.stats.copy()
        }

        if not self.redis_client:
            health_status["status"] = "unhealthy"
            health_status["error"] = "Redis client not initialized"
            return health_status

        try:
            await self.redis_client.ping()
        except (RedisError, OSError) as e:
            health_status["status"] = "unhealthy"
            health_status["error"] = str(e)

        return health_status
