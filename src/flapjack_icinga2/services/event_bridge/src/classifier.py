"""Classification of raw Icinga 2 stream values into typed events."""

import logging
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictStr, ValidationError

from .errors import MalformedEvent, UnknownEventKind, UnknownStateCode
from .models import STATE_CODES, ClassifiedEvent, EventKind

logger = logging.getLogger(__name__)

NonEmptyStr = Annotated[StrictStr, Field(min_length=1)]

# json.loads accepts NaN, Infinity and overflowing literals like 1e400
FiniteFloat = Annotated[StrictFloat, Field(allow_inf_nan=False)]


class CheckResultPayload(BaseModel):
    """``check_result`` object of a stream event."""
    model_config = ConfigDict(extra="ignore")

    state: FiniteFloat
    output: StrictStr


class StreamEventPayload(BaseModel):
    """Fields the bridge reads from CheckResult and StateChange events."""
    model_config = ConfigDict(extra="ignore")

    host: NonEmptyStr
    service: Optional[NonEmptyStr] = None
    timestamp: FiniteFloat
    check_result: CheckResultPayload


class EventClassifier:
    """
    Validates raw stream values and projects them onto ``ClassifiedEvent``.

    Values whose ``type`` is not a recognised kind raise ``UnknownEventKind``
    unless ``skip_unknown`` is set, in which case ``classify`` returns None.
    """

    def __init__(self, skip_unknown: bool = False):
        self.skip_unknown = skip_unknown

    def classify(self, raw: Any) -> Optional[ClassifiedEvent]:
        """
        Classify one decoded stream value.

        Returns:
            The classified event, or None when the value should be skipped

        Raises:
            MalformedEvent: A required field is missing or mistyped
            UnknownEventKind: The event type is not recognised
            UnknownStateCode: The state code has no state name
        """
        if not isinstance(raw, dict):
            raise MalformedEvent("<event>", f"expected a JSON object, got {type(raw).__name__}")

        if "type" not in raw:
            raise MalformedEvent("type")

        try:
            kind = EventKind(raw["type"])
        except ValueError:
            if self.skip_unknown:
                logger.debug(f"Skipping event of type {raw['type']!r}")
                return None
            raise UnknownEventKind(raw["type"])

        try:
            payload = StreamEventPayload.model_validate(raw)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or "<event>"
            raise MalformedEvent(field, error["msg"].lower()) from e

        state_code = payload.check_result.state
        if not state_code.is_integer() or int(state_code) not in STATE_CODES:
            raise UnknownStateCode(state_code)

        return ClassifiedEvent(
            kind=kind,
            host_name=payload.host,
            service_name=payload.service,
            timestamp_seconds=int(payload.timestamp),
            state=STATE_CODES[int(state_code)],
            output_text=payload.check_result.output,
        )
