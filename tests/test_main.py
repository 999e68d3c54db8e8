"""Tests for batch orchestration."""

import csv
import json
import threading

import pytest

from dual_anon.adapters.ledger import JsonlLedgerAdapter
from dual_anon.adapters.storage import FileStorageAdapter
from dual_anon.domain.ports import (
    BatchCancelledError,
    InvalidInputError,
    LedgerPort,
    LedgerSubmissionError,
    Result,
    SourceNotFoundError,
    StorageError,
    StoragePort,
)
from dual_anon.infrastructure.config_manager import PipelineConfig
from dual_anon.main import (
    build_pipeline,
    create_identity_strategy,
    load_pseudonyms,
    process_batch,
    process_sources,
    verify_ledger,
)


class StubStorage(StoragePort):
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def persist(self, records, batch_id):
        self.calls.append((list(records), batch_id))
        if self.fail:
            return Result.failure_result("disk full", error_type="StorageError")
        return Result.success_result(f"memory://{batch_id}")


class StubLedger(LedgerPort):
    def __init__(self, reject_after=None):
        self.messages = []
        self.reject_after = reject_after

    def submit(self, message):
        if self.reject_after is not None and len(self.messages) >= self.reject_after:
            return Result.failure_result("ledger offline", error_type="LedgerSubmissionError")
        self.messages.append(message)
        return Result.success_result(f"tx-{len(self.messages)}")


@pytest.fixture
def config():
    return PipelineConfig(hospital_country="Uganda", hospital_id="HOSP-001", k_anonymity=2)


def _write_csv(path, rows):
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows[0]))
        writer.writeheader()
        writer.writerows(rows)
    return str(path)


class TestProcessBatch:
    """Test one batch through storage and ledger."""

    def test_persists_then_submits(self, config, raw_record):
        storage, ledger = StubStorage(), StubLedger()
        records = [raw_record("P1"), raw_record("P2")]

        result, storage_ref, ledger_refs = process_batch(
            records, build_pipeline(config), storage, ledger, batch_id="b-1"
        )

        assert storage_ref == "memory://b-1"
        assert ledger_refs == ["tx-1", "tx-2"]
        assert storage.calls[0][0] == result.stage1_records
        assert [m["anonymousPatientId"] for m in ledger.messages] == ["PID-001", "PID-002"]
        assert all(m["hospitalId"] == "HOSP-001" for m in ledger.messages)

    def test_nothing_released_nothing_persisted(self, config, raw_record):
        storage, ledger = StubStorage(), StubLedger()
        records = [raw_record("P1"), raw_record("P2", Sex="F")]

        result, storage_ref, ledger_refs = process_batch(records, build_pipeline(config), storage, ledger)

        assert result.record_count == 0
        assert result.suppressed_count == 2
        assert storage_ref is None
        assert ledger_refs == []
        assert storage.calls == []

    def test_cancelled_batch_persists_nothing(self, config, raw_record):
        storage, ledger = StubStorage(), StubLedger()
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(BatchCancelledError):
            process_batch([raw_record()], build_pipeline(config), storage, ledger, cancel_event=cancel_event)
        assert storage.calls == []
        assert ledger.messages == []

    def test_storage_failure_raises(self, config, raw_record):
        ledger = StubLedger()
        with pytest.raises(StorageError):
            process_batch(
                [raw_record("P1"), raw_record("P2")], build_pipeline(config), StubStorage(fail=True), ledger
            )
        assert ledger.messages == []

    def test_ledger_rejection_raises(self, config, raw_record):
        with pytest.raises(LedgerSubmissionError):
            process_batch(
                [raw_record("P1"), raw_record("P2")],
                build_pipeline(config),
                StubStorage(),
                StubLedger(reject_after=1),
            )


class TestProcessSources:
    """Test concurrent processing of independent sources."""

    def test_outcomes_in_input_order(self, config, raw_record, tmp_path):
        good = _write_csv(tmp_path / "good.csv", [raw_record("P1"), raw_record("P2"), raw_record("P3")])
        missing = str(tmp_path / "missing.csv")
        unsupported = str(tmp_path / "data.xml")
        storage = FileStorageAdapter(tmp_path / "out")
        ledger = JsonlLedgerAdapter(tmp_path / "ledger.jsonl")

        outcomes = process_sources(
            [good, missing, unsupported], config, storage, ledger,
            max_workers=3, report_dir=str(tmp_path / "reports"),
        )

        assert [outcome.source for outcome in outcomes] == [good, missing, unsupported]
        assert outcomes[0].succeeded
        assert outcomes[0].batch_result.record_count == 3
        assert len(outcomes[0].ledger_references) == 3
        assert outcomes[0].report_path is not None
        assert outcomes[1].error_type == SourceNotFoundError.__name__
        assert outcomes[2].error_type == InvalidInputError.__name__
        assert len(list(ledger.read_messages())) == 3

    def test_cancel_event_shared_by_all_batches(self, config, raw_record, tmp_path):
        sources = [
            _write_csv(tmp_path / f"batch{i}.csv", [raw_record("P1"), raw_record("P2")])
            for i in range(2)
        ]
        cancel_event = threading.Event()
        cancel_event.set()
        storage = StubStorage()

        outcomes = process_sources(sources, config, storage, StubLedger(), cancel_event=cancel_event)

        assert all(outcome.error_type == "BatchCancelledError" for outcome in outcomes)
        assert storage.calls == []

    def test_unexpected_error_confined_to_its_source(self, config, raw_record, tmp_path):
        """A non-pipeline exception in one batch leaves the other batch intact."""

        class CrashingStorage(StubStorage):
            def persist(self, records, batch_id):
                if any(record.to_dict().get("Lab Test") == "Glucose" for record in records):
                    raise RuntimeError("driver crashed")
                return super().persist(records, batch_id)

        good = _write_csv(tmp_path / "good.csv", [raw_record("P1"), raw_record("P2")])
        bad = _write_csv(
            tmp_path / "bad.csv",
            [raw_record("P3", **{"Lab Test": "Glucose"}), raw_record("P4", **{"Lab Test": "Glucose"})],
        )
        storage = CrashingStorage()

        outcomes = process_sources([good, bad], config, storage, StubLedger(), max_workers=2)

        assert outcomes[0].succeeded
        assert outcomes[0].batch_result.record_count == 2
        assert outcomes[1].error_type == "RuntimeError"
        assert "driver crashed" in outcomes[1].error
        assert outcomes[1].batch_result is None
        assert len(storage.calls) == 1

    def test_no_sources(self, config):
        assert process_sources([], config, StubStorage(), StubLedger()) == []


class TestPseudonyms:
    """Test pseudonym loading and strategy selection."""

    def test_load_pseudonyms(self, tmp_path):
        path = tmp_path / "pseudonyms.json"
        path.write_text(json.dumps({"P1": "stable-1", "P2": None}), encoding="utf-8")
        assert load_pseudonyms(str(path)) == {"P1": "stable-1"}

    def test_load_pseudonyms_rejects_array(self, tmp_path):
        path = tmp_path / "pseudonyms.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(InvalidInputError):
            load_pseudonyms(str(path))

    def test_load_pseudonyms_missing_file(self, tmp_path):
        with pytest.raises(SourceNotFoundError):
            load_pseudonyms(str(tmp_path / "missing.json"))

    def test_mapping_requires_salt(self, config):
        with pytest.raises(InvalidInputError):
            create_identity_strategy(config, {"P1": "stable-1"})

    def test_salted_identifiers_used(self, raw_record):
        config = PipelineConfig(hospital_country="Uganda", k_anonymity=1, identity_salt="salt")
        strategy = create_identity_strategy(config, {"P1": "stable-1"})
        ledger = StubLedger()

        process_batch([raw_record("P1")], build_pipeline(config, identity_strategy=strategy), StubStorage(), ledger)

        assert ledger.messages[0]["anonymousPatientId"].startswith("APID-")

    def test_no_mapping_means_default_strategy(self, config):
        assert create_identity_strategy(config, None) is None


class TestVerifyLedger:
    """Test ledger re-verification."""

    def _populated_ledger(self, config, raw_record, tmp_path):
        ledger = JsonlLedgerAdapter(tmp_path / "ledger.jsonl")
        process_batch(
            [raw_record("P1"), raw_record("P2")], build_pipeline(config), StubStorage(), ledger
        )
        return ledger

    def test_all_valid(self, config, raw_record, tmp_path):
        verification = verify_ledger(self._populated_ledger(config, raw_record, tmp_path))
        assert verification.total == 2
        assert verification.valid == 2
        assert verification.all_valid

    def test_tampered_message_detected(self, config, raw_record, tmp_path):
        ledger = self._populated_ledger(config, raw_record, tmp_path)
        lines = ledger.ledger_path.read_text(encoding="utf-8").splitlines()
        message = json.loads(lines[1])
        message["anonymousPatientId"] = "PID-999"
        lines[1] = json.dumps(message)
        ledger.ledger_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        verification = verify_ledger(JsonlLedgerAdapter(ledger.ledger_path))

        assert verification.valid == 1
        assert verification.invalid == [(2, "PID-999", "proof mismatch")]

    def test_malformed_message_reported(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        path.write_text(json.dumps({"anonymousPatientId": "PID-001"}) + "\n", encoding="utf-8")

        verification = verify_ledger(JsonlLedgerAdapter(path))

        assert verification.invalid == [(1, "PID-001", "malformed message: KeyError")]
