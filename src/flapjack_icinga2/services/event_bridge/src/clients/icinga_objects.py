"""Icinga 2 object lookups used to enrich events with tags."""

import asyncio
import logging
from typing import Any, Optional, Tuple
from urllib.parse import quote

import aiohttp

from ..config.settings import IcingaConfig
from ..errors import EnrichmentLookupError
from ..models import ClassifiedEvent, EnrichmentResult
from ..utils.lookup_cache import LookupCache

logger = logging.getLogger(__name__)

MAX_ERROR_BODY_BYTES = 64 * 1024


def extract_tags(entity: str, data: Any) -> Tuple[str, ...]:
    """
    Pull ``results[0].attrs.vars.tags`` out of an object query envelope.

    Missing ``vars`` or ``tags`` means no tags. Anything else that does not
    match the envelope shape raises ``EnrichmentLookupError``.
    """
    if not isinstance(data, dict) or not isinstance(data.get("results"), list):
        raise EnrichmentLookupError(entity, "malformed response envelope: no results list", status=200)

    results = data["results"]
    if not results:
        raise EnrichmentLookupError(entity, "no matching object", status=200)

    first = results[0]
    attrs = first.get("attrs") if isinstance(first, dict) else None
    if not isinstance(attrs, dict):
        raise EnrichmentLookupError(entity, "malformed response envelope: no attrs", status=200)

    # Icinga reports objects without custom variables as "vars": null
    variables = attrs.get("vars")
    if variables is None:
        return ()
    if not isinstance(variables, dict):
        raise EnrichmentLookupError(entity, "malformed response envelope: vars is not an object", status=200)

    tags = variables.get("tags")
    if tags is None:
        return ()
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise EnrichmentLookupError(entity, "vars.tags is not a list of strings", status=200)

    return tuple(tags)


class IcingaObjectEnricher:
    """
    Looks up the host or service an event refers to and returns its tags.

    Lookups run on the event's processing path and are bounded by
    ``lookup_timeout_seconds``. With a cache, repeated lookups for the same
    object within the TTL are served from memory.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: IcingaConfig,
        cache: Optional[LookupCache] = None
    ):
        self.session = session
        self.config = config
        self.cache = cache

    def object_url(self, event: ClassifiedEvent) -> str:
        name = quote(event.object_name, safe="!")
        return f"{self.config.base_url}/v1/objects/{event.object_type}/{name}"

    async def enrich(self, event: ClassifiedEvent) -> EnrichmentResult:
        key = (event.object_type, event.object_name)

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        result = EnrichmentResult(tags=await self._lookup(event))

        if self.cache is not None:
            self.cache.put(key, result)

        return result

    async def _lookup(self, event: ClassifiedEvent) -> Tuple[str, ...]:
        entity = event.object_name
        url = self.object_url(event)
        timeout = aiohttp.ClientTimeout(total=self.config.lookup_timeout_seconds)

        logger.debug(f"Looking up {event.object_type} object {entity}")

        try:
            async with self.session.get(url, timeout=timeout) as response:
                if response.status != 200:
                    raw = await response.content.read(MAX_ERROR_BODY_BYTES)
                    body = raw.decode("utf-8", errors="replace")
                    raise EnrichmentLookupError(
                        entity,
                        f"API HTTP request failed: {body[:200]}".rstrip(),
                        status=response.status
                    )

                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise EnrichmentLookupError(
                        entity, f"response is not JSON: {e}", status=response.status
                    ) from e

        except asyncio.TimeoutError as e:
            raise EnrichmentLookupError(
                entity, f"timed out after {self.config.lookup_timeout_seconds}s"
            ) from e
        except (aiohttp.ClientError, OSError) as e:
            raise EnrichmentLookupError(entity, f"request failed: {type(e).__name__}: {e}") from e

        return extract_tags(entity, data)
