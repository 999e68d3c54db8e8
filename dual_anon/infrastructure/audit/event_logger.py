"""Audit Event Logger.

Event sink that keeps every pipeline event of a run in memory and can flush
them to a JSON-lines audit file.

Security Impact:
    - Events carry anonymous identifiers, record indexes and field names only
    - The audit file is append-only

Architecture:
    - Infrastructure implementation of EventSinkPort
    - Thread-safe: concurrent batches may share one logger
    - Optionally forwards each event to another sink (e.g. logging)
"""

import json
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from dual_anon.domain.enums import EventLevel
from dual_anon.domain.events import AnonymizationEvent, EventSinkPort
from dual_anon.domain.ports import Result

logger = logging.getLogger(__name__)


class AuditEventLogger(EventSinkPort):
    """Buffers pipeline events for inspection, reporting and audit export.

    Example Usage:
        ```python
        audit = AuditEventLogger(forward_to=LoggingEventSink())
        result = AnonymizationPipeline(context, event_sink=audit).run(records)
        skipped = audit.get_events(event_type="k_anonymity.skipped")
        audit.flush("reports/audit.jsonl")
        ```
    """

    def __init__(self, forward_to: Optional[EventSinkPort] = None):
        self._events: list[AnonymizationEvent] = []
        self._lock = threading.Lock()
        self._forward_to = forward_to

    def emit(self, event: AnonymizationEvent) -> None:
        with self._lock:
            self._events.append(event)
        if self._forward_to is not None:
            self._forward_to.emit(event)

    def get_events(
        self,
        event_type: Optional[str] = None,
        batch_id: Optional[str] = None,
        level: Optional[EventLevel] = None,
    ) -> list[AnonymizationEvent]:
        """Buffered events in emission order, optionally filtered."""
        with self._lock:
            events = list(self._events)
        if event_type is not None:
            events = [event for event in events if event.event_type == event_type]
        if batch_id is not None:
            events = [event for event in events if event.batch_id == batch_id]
        if level is not None:
            events = [event for event in events if event.level == level]
        return events

    def count_by_type(self) -> dict[str, int]:
        """Number of buffered events per event type."""
        counts: dict[str, int] = {}
        for event in self.get_events():
            counts[event.event_type] = counts.get(event.event_type, 0) + 1
        return counts

    def clear(self) -> None:
        """Drop all buffered events."""
        with self._lock:
            self._events.clear()
        logger.debug("Cleared audit event buffer")

    def flush(self, path: Union[str, Path]) -> Result[int]:
        """Append buffered events to a JSON-lines file and clear the buffer.

        Returns:
            Result[int]: Number of events written, or the write error
        """
        path = Path(path)
        with self._lock:
            events = list(self._events)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    for event in events:
                        f.write(json.dumps(event.model_dump(mode="json"), ensure_ascii=False) + "\n")
            except OSError as e:
                logger.error(f"Failed to flush audit events to {path}: {e}")
                return Result.failure_result(e, error_details={"path": str(path)})
            self._events.clear()

        logger.info(f"Flushed {len(events)} audit events to {path}")
        return Result.success_result(len(events))
