"""Event records passed between the pipeline stages."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class EventKind(Enum):
    """Icinga 2 event stream types the bridge understands."""
    CHECK_RESULT = "CheckResult"
    STATE_CHANGE = "StateChange"


class CheckState(Enum):
    """Flapjack check state names."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


# https://github.com/Icinga/icinga2/blob/master/lib/icinga/checkresult.ti
STATE_CODES: Dict[int, CheckState] = {
    0: CheckState.OK,
    1: CheckState.WARNING,
    2: CheckState.CRITICAL,
    3: CheckState.UNKNOWN,
}

# Check name used for host-level events
HOST_CHECK = "HOST"

# Flapjack event type for check results
CHECK_EVENT_TYPE = "service"


@dataclass(frozen=True)
class ClassifiedEvent:
    """Typed projection of a recognised stream event."""
    kind: EventKind
    host_name: str
    service_name: Optional[str]
    timestamp_seconds: int
    state: CheckState
    output_text: str

    @property
    def is_service(self) -> bool:
        return self.service_name is not None

    @property
    def object_type(self) -> str:
        """Icinga object collection the affected entity lives in."""
        return "services" if self.is_service else "hosts"

    @property
    def object_name(self) -> str:
        """Icinga object name: ``host`` or ``host!service``."""
        if self.is_service:
            return f"{self.host_name}!{self.service_name}"
        return self.host_name


@dataclass(frozen=True)
class EnrichmentResult:
    """Metadata fetched for the entity of one event."""
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CanonicalEvent:
    """Flapjack event record."""
    entity: str
    check: str
    type: str
    time: int
    state: str
    summary: str
    details: str
    tags: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "check": self.check,
            "type": self.type,
            "time": self.time,
            "state": self.state,
            "summary": self.summary,
            "details": self.details,
            "tags": list(self.tags),
        }
