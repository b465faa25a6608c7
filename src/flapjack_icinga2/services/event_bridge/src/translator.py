"""Translation of classified Icinga events into Flapjack events."""

from typing import Sequence

from .models import CHECK_EVENT_TYPE, HOST_CHECK, CanonicalEvent, ClassifiedEvent, EnrichmentResult


def render_details(tags: Sequence[str]) -> str:
    """Human-readable rendering of an entity's tags."""
    if not tags:
        return "tags: (none)"
    return "tags: " + ", ".join(tags)


def translate(event: ClassifiedEvent, enrichment: EnrichmentResult) -> CanonicalEvent:
    """
    Build the Flapjack event for a classified Icinga event.

    Service events are checked under the service name, host events under
    the ``HOST`` check. Pure function of its inputs.
    """
    tags = tuple(enrichment.tags)

    return CanonicalEvent(
        entity=event.host_name,
        check=event.service_name if event.is_service else HOST_CHECK,
        type=CHECK_EVENT_TYPE,
        time=event.timestamp_seconds,
        state=event.state.value,
        summary=event.output_text,
        details=render_details(tags),
        tags=tags,
    )
