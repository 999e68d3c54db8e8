"""Tests for the Identity Assigner."""

import hashlib

import pytest

from dual_anon.domain import events, fields
from dual_anon.domain.ports import ConsistencyError
from dual_anon.domain.services.identity import (
    IdentityAssigner,
    IdentityStrategy,
    SaltedPseudonymStrategy,
    SequentialIdentityStrategy,
    resolve_identity_key,
)


def _records(*keys):
    return [{fields.PATIENT_ID: key} for key in keys]


class TestResolveIdentityKey:
    """Test the grouping key of a record."""

    def test_patient_id_preferred(self):
        record = {fields.PATIENT_ID: "P1", fields.PATIENT_NAME: "Jane"}
        assert resolve_identity_key(record) == "P1"

    def test_patient_name_fallback(self):
        assert resolve_identity_key({fields.PATIENT_NAME: "Jane"}) == "Jane"

    def test_no_identifier(self):
        assert resolve_identity_key({fields.PATIENT_ID: "  "}) is None


class TestSequentialAssignment:
    """Test the default sequential scheme."""

    def test_first_seen_order(self):
        """Scenario: A, B, A gives PID-001, PID-002, PID-001."""
        assignment = IdentityAssigner().assign(_records("A", "B", "A"))

        assert assignment.record_ids == ["PID-001", "PID-002", "PID-001"]
        assert assignment.identity_map.assignments == {"A": "PID-001", "B": "PID-002"}
        assert len(assignment.identity_map) == 2

    def test_deterministic(self):
        """Same batch in the same order gives the same map."""
        first = IdentityAssigner().assign(_records("X", "Y", "Z", "X"))
        second = IdentityAssigner().assign(_records("X", "Y", "Z", "X"))
        assert first.identity_map.assignments == second.identity_map.assignments

    def test_records_without_identifier_get_none(self):
        """Records with no ID and no name are left unassigned."""
        records = [{fields.PATIENT_ID: "A"}, {fields.LAB_TEST: "Glucose"}, {fields.PATIENT_NAME: "Jane"}]
        assignment = IdentityAssigner().assign(records)
        assert assignment.record_ids == ["PID-001", None, "PID-002"]

    def test_padding_grows_past_width(self):
        """Numbers beyond the pad width are not truncated."""
        strategy = SequentialIdentityStrategy(width=3)
        assert strategy.identifier_for("x", 999) == "PID-1000"

    def test_identity_map_hidden_from_repr(self):
        """Original identifiers never appear in repr()."""
        assignment = IdentityAssigner().assign(_records("SECRET-ID-42"))
        assert "SECRET-ID-42" not in repr(assignment.identity_map)
        assert "SECRET-ID-42" in assignment.identity_map
        assert assignment.identity_map.get("SECRET-ID-42") == "PID-001"
        assert assignment.identity_map.anonymous_ids() == ["PID-001"]


class TestSaltedPseudonymStrategy:
    """Test salted pseudonym identifiers."""

    def test_identifier_format(self):
        """APID- followed by 16 uppercase hex characters of SHA-256(salt:pseudonym)."""
        strategy = SaltedPseudonymStrategy({"P1": "stable-7"}, hospital_salt="salt")
        expected = hashlib.sha256(b"salt:stable-7").hexdigest()[:16].upper()
        assert strategy.identifier_for("P1", 0) == f"APID-{expected}"

    def test_stable_across_batches(self):
        """The same patient gets the same identifier in any position."""
        strategy = SaltedPseudonymStrategy({"P1": "stable-7"}, hospital_salt="salt")
        first = IdentityAssigner(strategy).assign(_records("P1", "P2"))
        second = IdentityAssigner(strategy).assign(_records("P9", "P1"))
        assert first.identity_map.get("P1") == second.identity_map.get("P1")

    def test_salt_changes_identifier(self):
        a = SaltedPseudonymStrategy({"P1": "stable-7"}, hospital_salt="one")
        b = SaltedPseudonymStrategy({"P1": "stable-7"}, hospital_salt="two")
        assert a.identifier_for("P1", 0) != b.identifier_for("P1", 0)

    def test_missing_pseudonym_falls_back_with_event(self, sink):
        """Unmapped patients get a sequential identifier and an event."""
        strategy = SaltedPseudonymStrategy({"P1": "stable-7"}, hospital_salt="salt")
        assignment = IdentityAssigner(strategy).assign(_records("P1", "P2"), sink, batch_id="b-1")

        assert assignment.record_ids[1] == "PID-002"
        missing = sink.of_type(events.IDENTITY_PSEUDONYM_MISSING)
        assert len(missing) == 1
        assert missing[0].anonymous_id == "PID-002"
        assert missing[0].batch_id == "b-1"
        assert "P2" not in missing[0].model_dump_json()

    def test_sink_unbound_after_assignment(self, sink):
        """Events are only emitted while a batch is being assigned."""
        strategy = SaltedPseudonymStrategy({}, hospital_salt="salt")
        IdentityAssigner(strategy).assign(_records("P1"), sink)
        strategy.identifier_for("P2", 1)
        assert len(sink.events) == 1


class TestDuplicateIdentifiers:
    """Test collision detection."""

    def test_colliding_strategy_raises(self):
        """Two originals must never share an identifier."""

        class ConstantStrategy(IdentityStrategy):
            def identifier_for(self, original_id, index):
                return "PID-SAME"

        with pytest.raises(ConsistencyError) as exc_info:
            IdentityAssigner(ConstantStrategy()).assign(_records("A", "B"))
        assert exc_info.value.field_name == fields.ANONYMOUS_PID
