"""Tests for the record schemas."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from dual_anon.domain import fields
from dual_anon.domain.records import ProvenanceRecord, Stage1Record, Stage2Record, format_timestamp
from dual_anon.domain.services.provenance import compose_provenance

STORAGE_HASH = "c" * 64
CHAIN_HASH = "d" * 64


class TestStage1Record:
    """Test the storage-anonymized schema."""

    @pytest.mark.parametrize("field_name", fields.DIRECT_IDENTIFIER_FIELDS)
    def test_direct_identifiers_rejected(self, stage1_record, field_name):
        with pytest.raises(ValidationError):
            stage1_record(**{field_name: "value"})

    def test_clinical_fields_kept(self, stage1_record):
        data = stage1_record(Unit="g/dL").to_dict()
        assert data["Unit"] == "g/dL"
        assert data[fields.REGION] == "Central"

    def test_frozen(self, stage1_record):
        record = stage1_record()
        with pytest.raises(ValidationError):
            record.country = "Kenya"

    def test_required_attributes(self):
        with pytest.raises(ValidationError):
            Stage1Record.model_validate({fields.ANONYMOUS_PID: "PID-001", fields.COUNTRY: "Uganda"})


class TestStage2Record:
    """Test the chain-anonymized schema."""

    @pytest.mark.parametrize("field_name", [fields.REGION, fields.DISTRICT, fields.LOCATION, fields.CITY])
    def test_sub_country_location_rejected(self, field_name):
        with pytest.raises(ValidationError):
            Stage2Record.model_validate({fields.COUNTRY: "Uganda", field_name: "x"})

    def test_to_dict_omits_missing_attributes(self):
        data = Stage2Record.model_validate({fields.COUNTRY: "Uganda"}).to_dict()
        assert data == {fields.COUNTRY: "Uganda"}


class TestProvenanceRecord:
    """Test the provenance schema and ledger message format."""

    def test_derived_from_must_match_storage_hash(self):
        with pytest.raises(ValidationError):
            ProvenanceRecord(
                storage_hash=STORAGE_HASH,
                chain_hash=CHAIN_HASH,
                derived_from=CHAIN_HASH,
                anonymous_id="PID-001",
                resource_type="Observation",
                timestamp=datetime.now(timezone.utc),
                proof="e" * 64,
            )

    def test_ledger_message_shape(self):
        record = compose_provenance(
            STORAGE_HASH,
            CHAIN_HASH,
            "PID-001",
            hospital_id="HOSP-001",
            timestamp=datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc),
        )
        message = record.to_ledger_message()

        assert message["storage"] == {
            "hash": STORAGE_HASH,
            "anonymizationLevel": "storage",
            "timestamp": "2024-06-01T12:00:00.000Z",
        }
        assert message["chain"]["anonymizationLevel"] == "chain"
        assert message["chain"]["derivedFrom"] == STORAGE_HASH
        assert message["anonymousPatientId"] == "PID-001"
        assert message["resourceType"] == "Observation"
        assert message["hospitalId"] == "HOSP-001"
        assert message["provenanceProof"] == record.proof

    def test_ledger_message_round_trip(self):
        record = compose_provenance(
            STORAGE_HASH, CHAIN_HASH, "PID-001",
            timestamp=datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc),
        )
        parsed = ProvenanceRecord.from_ledger_message(record.to_ledger_message())
        assert parsed == record

    def test_format_timestamp_non_utc_keeps_offset(self):
        value = datetime.fromisoformat("2024-06-01T12:00:00+03:00")
        assert format_timestamp(value) == "2024-06-01T12:00:00.000+03:00"
