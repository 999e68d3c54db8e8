"""Pipeline Events and the Event Sink Port.

Warnings and diagnostics raised while anonymizing a batch (k-anonymity
shortfall, suppressed groups, unparseable dates, record failures) are emitted
as structured events to an injected sink instead of being written to the
console. Callers and tests observe them through the sink.

Security Impact:
    - Events carry anonymous identifiers, record indexes and field names only
    - The original patient identifier never enters an event
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from dual_anon.domain.enums import EventLevel

logger = logging.getLogger(__name__)

# Event types
K_ANONYMITY_SKIPPED = "k_anonymity.skipped"
K_ANONYMITY_SUPPRESSED = "k_anonymity.suppressed"
RECORD_FAILED = "record.failed"
IDENTITY_PSEUDONYM_MISSING = "identity.pseudonym_missing"
CHAIN_UNPARSEABLE_DATE = "chain.unparseable_date"
CHAIN_CONSISTENCY = "chain.consistency"
BATCH_COMPLETED = "batch.completed"


class AnonymizationEvent(BaseModel):
    """A single structured pipeline event.

    Parameters:
        event_type: Dotted event name (see module constants)
        level: Severity
        message: Human-readable description
        batch_id: Batch the event belongs to, when known
        anonymous_id: Anonymous patient identifier, when the event concerns one record
        details: Extra context (counts, field names, record index)
        timestamp: When the event was emitted (UTC)
    """

    event_type: str
    level: EventLevel = EventLevel.INFO
    message: str
    batch_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class EventSinkPort(ABC):
    """Destination for pipeline events."""

    @abstractmethod
    def emit(self, event: AnonymizationEvent) -> None:
        """Record one event."""
        pass


_LEVELS = {
    EventLevel.DEBUG: logging.DEBUG,
    EventLevel.INFO: logging.INFO,
    EventLevel.WARNING: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
}


class LoggingEventSink(EventSinkPort):
    """Event sink that forwards events to the standard logging module.

    Used when the caller injects no sink. The event payload is attached as
    ``extra_fields`` so the JSON formatter can render it.
    """

    def __init__(self, logger_name: str = "dual_anon.events"):
        self._logger = logging.getLogger(logger_name)

    def emit(self, event: AnonymizationEvent) -> None:
        payload = {
            "event_type": event.event_type,
            "batch_id": event.batch_id,
            "anonymous_id": event.anonymous_id,
            **event.details,
        }
        self._logger.log(
            _LEVELS[event.level],
            f"[{event.event_type}] {event.message}",
            extra={"extra_fields": payload},
        )
