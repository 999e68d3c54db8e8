"""Tests for the audit event logger."""

import json
import threading

from dual_anon.domain import events
from dual_anon.domain.enums import EventLevel
from dual_anon.domain.events import AnonymizationEvent
from dual_anon.infrastructure.audit import AuditEventLogger


def _event(event_type=events.RECORD_FAILED, batch_id="b-1", level=EventLevel.WARNING):
    return AnonymizationEvent(event_type=event_type, level=level, message="m", batch_id=batch_id)


class TestAuditEventLogger:
    """Test event buffering and export."""

    def test_filters(self):
        audit = AuditEventLogger()
        audit.emit(_event())
        audit.emit(_event(events.K_ANONYMITY_SKIPPED, batch_id="b-2"))
        audit.emit(_event(events.BATCH_COMPLETED, level=EventLevel.INFO))

        assert len(audit.get_events()) == 3
        assert len(audit.get_events(event_type=events.RECORD_FAILED)) == 1
        assert len(audit.get_events(batch_id="b-1")) == 2
        assert len(audit.get_events(level=EventLevel.INFO)) == 1
        assert audit.count_by_type() == {
            events.RECORD_FAILED: 1,
            events.K_ANONYMITY_SKIPPED: 1,
            events.BATCH_COMPLETED: 1,
        }

    def test_forwarding(self, sink):
        audit = AuditEventLogger(forward_to=sink)
        audit.emit(_event())
        assert len(sink.events) == 1

    def test_flush_writes_jsonl_and_clears(self, tmp_path):
        audit = AuditEventLogger()
        audit.emit(_event())
        audit.emit(_event(events.BATCH_COMPLETED))

        path = tmp_path / "audit" / "events.jsonl"
        result = audit.flush(path)

        assert result.is_success()
        assert result.value == 2
        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [line["event_type"] for line in lines] == [events.RECORD_FAILED, events.BATCH_COMPLETED]
        assert lines[0]["level"] == "warning"
        assert audit.get_events() == []

    def test_flush_failure_keeps_buffer(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        audit = AuditEventLogger()
        audit.emit(_event())

        result = audit.flush(blocker / "events.jsonl")

        assert result.is_failure()
        assert len(audit.get_events()) == 1

    def test_concurrent_emit(self):
        audit = AuditEventLogger()

        def emit_many():
            for _ in range(50):
                audit.emit(_event())

        threads = [threading.Thread(target=emit_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(audit.get_events()) == 200

    def test_clear(self):
        audit = AuditEventLogger()
        audit.emit(_event())
        audit.clear()
        assert audit.count_by_type() == {}
