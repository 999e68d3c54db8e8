"""Tests for the Hasher and Provenance Composer."""

import hashlib
from datetime import datetime, timezone

import pytest

from dual_anon.domain.ports import ProvenanceError
from dual_anon.domain.services.chain_generalizer import ChainGeneralizer
from dual_anon.domain.services.provenance import (
    canonical_json,
    compose_provenance,
    generate_provenance_proof,
    hash_batch,
    hash_record,
    verify_provenance,
)

STORAGE_HASH = "a" * 64
CHAIN_HASH = "b" * 64
TIMESTAMP = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestHashing:
    """Test deterministic record digests."""

    def test_key_order_irrelevant(self):
        """Logically equal records hash identically."""
        assert hash_record({"b": "2", "a": "1"}) == hash_record({"a": "1", "b": "2"})

    def test_canonical_form(self):
        """Sorted keys, compact separators, non-ASCII preserved."""
        assert canonical_json({"b": "é", "a": "1"}) == '{"a":"1","b":"é"}'

    def test_digest_is_sha256_of_canonical_json(self):
        record = {"Country": "Uganda", "Age Range": "45-49"}
        expected = hashlib.sha256(canonical_json(record).encode("utf-8")).hexdigest()
        assert hash_record(record) == expected

    def test_content_change_changes_digest(self):
        assert hash_record({"a": "1"}) != hash_record({"a": "2"})

    def test_model_and_mapping_hash_identically(self, stage1_record):
        """A Stage-1 model hashes the same as its flattened mapping."""
        record = stage1_record()
        assert hash_record(record) == hash_record(record.to_dict())

    def test_batch_hash_depends_on_order(self):
        first, second = {"a": "1"}, {"a": "2"}
        expected = hashlib.sha256(
            (hash_record(first) + hash_record(second)).encode("utf-8")
        ).hexdigest()
        assert hash_batch([first, second]) == expected
        assert hash_batch([second, first]) != expected


class TestComposeProvenance:
    """Test provenance record composition."""

    def test_links_storage_and_chain(self):
        record = compose_provenance(
            STORAGE_HASH, CHAIN_HASH, "PID-001", hospital_id="HOSP-001", timestamp=TIMESTAMP
        )
        assert record.derived_from == STORAGE_HASH
        assert record.resource_type == "Observation"
        assert record.hospital_id == "HOSP-001"
        assert record.timestamp == TIMESTAMP

    def test_proof_formula(self):
        """Proof is SHA-256 over storage + chain + anonymous id + resource type."""
        record = compose_provenance(STORAGE_HASH, CHAIN_HASH, "PID-001", "Observation")
        expected = hashlib.sha256(
            f"{STORAGE_HASH}{CHAIN_HASH}PID-001Observation".encode("utf-8")
        ).hexdigest()
        assert record.proof == expected
        assert record.proof == generate_provenance_proof(STORAGE_HASH, CHAIN_HASH, "PID-001", "Observation")

    @pytest.mark.parametrize("storage,chain,anonymous_id", [
        (None, CHAIN_HASH, "PID-001"),
        (STORAGE_HASH, "", "PID-001"),
        (STORAGE_HASH, CHAIN_HASH, None),
    ])
    def test_missing_link_raises(self, storage, chain, anonymous_id):
        with pytest.raises(ProvenanceError):
            compose_provenance(storage, chain, anonymous_id)

    def test_malformed_digest_raises(self):
        with pytest.raises(ProvenanceError):
            compose_provenance("not-a-digest", CHAIN_HASH, "PID-001")


class TestVerifyProvenance:
    """Test proof re-verification."""

    def test_round_trip_with_content(self, stage1_record):
        stage1 = stage1_record()
        stage2 = ChainGeneralizer().generalize(stage1)
        record = compose_provenance(hash_record(stage1), hash_record(stage2), stage1.anonymous_pid)

        assert verify_provenance(record)
        assert verify_provenance(record, stage1=stage1, stage2=stage2)

    def test_tampered_stage2_detected(self, stage1_record):
        stage1 = stage1_record()
        stage2 = ChainGeneralizer().generalize(stage1)
        record = compose_provenance(hash_record(stage1), hash_record(stage2), stage1.anonymous_pid)

        tampered = {**stage2.to_dict(), "Result": "99"}
        assert not verify_provenance(record, stage2=tampered)

    def test_tampered_proof_detected(self):
        record = compose_provenance(STORAGE_HASH, CHAIN_HASH, "PID-001")
        forged = record.model_copy(update={"anonymous_id": "PID-002"})
        assert not verify_provenance(forged)
