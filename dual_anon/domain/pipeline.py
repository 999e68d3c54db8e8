"""Anonymization Pipeline.

Runs one in-memory batch through every stage: field normalization, identity
assignment, demographic generalization, k-anonymity enforcement, chain
generalization, hashing and provenance composition.

Security Impact:
    - Per-record failures are reported by record index and anonymous
      identifier only; the original identifier never enters a failure,
      event or log line
    - Cancellation discards the whole batch; nothing partial is returned
    - Stage-2 records are derived from retained Stage-1 records only

Architecture:
    - Synchronous, no I/O; persistence and ledger submission belong to the caller
    - Identity assignment completes a full pass before any per-record step
    - Collaborators (event sink, identity strategy, chain generalizer, clock)
      are injected
"""

import logging
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Sequence

from dual_anon.domain import events
from dual_anon.domain.enums import EventLevel
from dual_anon.domain.events import AnonymizationEvent, EventSinkPort, LoggingEventSink
from dual_anon.domain.ports import (
    BatchCancelledError,
    InvalidInputError,
    MissingRequiredAttributeError,
    PrivacyConstraintWarning,
)
from dual_anon.domain.records import (
    HospitalContext,
    IdentityMap,
    ProvenanceRecord,
    Stage1Record,
    Stage2Record,
)
from dual_anon.domain.services.chain_generalizer import ChainGeneralizer
from dual_anon.domain.services.demographics import anonymize_record
from dual_anon.domain.services.field_normalizer import normalize_record
from dual_anon.domain.services.identity import IdentityAssigner, IdentityStrategy
from dual_anon.domain.services.k_anonymity import DEFAULT_K, SuppressedGroup, enforce_k_anonymity
from dual_anon.domain.services.provenance import (
    DEFAULT_RESOURCE_TYPE,
    compose_provenance,
    hash_batch,
    hash_record,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordFailure:
    """A record excluded from the batch output.

    Attributes:
        record_index: Zero-based position of the record in the input batch
        anonymous_id: Anonymous identifier of the record's patient, if assigned
        error_type: Exception class name
        message: Error message (names attributes, never values)
    """

    record_index: int
    anonymous_id: Optional[str]
    error_type: str
    message: str


@dataclass
class BatchResult:
    """Everything the pipeline produced for one batch.

    Stage-1 records are in output order: grouped by patient in first-seen
    order, input order within each patient. Stage-2 and provenance records are
    index-aligned with Stage-1 records.
    """

    batch_id: str
    stage1_records: list[Stage1Record] = field(default_factory=list)
    stage2_records: list[Stage2Record] = field(default_factory=list)
    provenance_records: list[ProvenanceRecord] = field(default_factory=list)
    identity_map: IdentityMap = field(default_factory=IdentityMap)
    failures: list[RecordFailure] = field(default_factory=list)
    warnings: list[PrivacyConstraintWarning] = field(default_factory=list)
    suppressed_count: int = 0
    suppressed_groups: list[SuppressedGroup] = field(default_factory=list)
    k: int = DEFAULT_K
    k_anonymity_skipped: bool = False
    storage_hash: Optional[str] = None
    chain_hash: Optional[str] = None
    input_count: int = 0

    @property
    def record_count(self) -> int:
        """Number of records released (Stage-1 count)."""
        return len(self.stage1_records)

    def ledger_messages(self) -> list[dict[str, Any]]:
        """Ledger message per released record, in output order."""
        return [record.to_ledger_message() for record in self.provenance_records]


class AnonymizationPipeline:
    """Two-stage anonymization of one batch.

    Parameters:
        context: Hospital context (country fallback, hospital id)
        k: Minimum quasi-identifier group size
        strict: Fail the batch on the first record-level error instead of
            collecting failures; also makes the chain generalizer strict
        identity_strategy: Anonymous identifier scheme (sequential by default)
        event_sink: Destination for pipeline events (logging by default)
        chain_generalizer: Stage-2 generalizer (built from strict/event_sink by default)
        reference_date: Date used for age computation (defaults to today)
        resource_type: Resource type label written into provenance records
        clock: Callable returning the provenance timestamp (defaults to now, UTC)

    Example:
        ```python
        pipeline = AnonymizationPipeline(HospitalContext(country="Uganda"), k=5)
        result = pipeline.run(records)
        storage.persist(result.stage1_records, result.batch_id)
        for message in result.ledger_messages():
            ledger.submit(message)
        ```
    """

    def __init__(
        self,
        context: HospitalContext,
        k: int = DEFAULT_K,
        strict: bool = False,
        identity_strategy: Optional[IdentityStrategy] = None,
        event_sink: Optional[EventSinkPort] = None,
        chain_generalizer: Optional[ChainGeneralizer] = None,
        reference_date: Optional[date] = None,
        resource_type: str = DEFAULT_RESOURCE_TYPE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if k < 1:
            raise InvalidInputError(f"k must be at least 1, got {k}", details={"k": k})
        self.context = context
        self.k = k
        self.strict = strict
        self.event_sink = event_sink or LoggingEventSink()
        self.identity_assigner = IdentityAssigner(identity_strategy)
        self.chain_generalizer = chain_generalizer or ChainGeneralizer(
            strict=strict, event_sink=self.event_sink
        )
        self.reference_date = reference_date
        self.resource_type = resource_type
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(
        self,
        records: Sequence[Mapping[str, Any]],
        cancel_event: Optional[threading.Event] = None,
        batch_id: Optional[str] = None,
    ) -> BatchResult:
        """Anonymize one batch.

        Parameters:
            records: Raw records in source order
            cancel_event: Set by the caller to abort the batch
            batch_id: Batch identifier (generated when omitted)

        Returns:
            BatchResult: Stage-1, Stage-2 and provenance output plus diagnostics

        Raises:
            InvalidInputError: If the batch is empty or a row is not a mapping
            BatchCancelledError: If cancel_event is set before the batch completes
            MissingRequiredAttributeError: In strict mode, on the first unresolvable record
            ConsistencyError: In strict mode, on a malformed Stage-1 record, or
                when the identity strategy issues a duplicate identifier
            ProvenanceError: If a provenance record cannot be composed
        """
        batch_id = batch_id or str(uuid.uuid4())
        self._validate_batch(records, batch_id)
        logger.info(f"Starting batch {batch_id}: {len(records)} records, k={self.k}")

        normalized = [normalize_record(record) for record in records]
        self._check_cancelled(cancel_event, batch_id)

        assignment = self.identity_assigner.assign(normalized, self.event_sink, batch_id)
        failures: list[RecordFailure] = []

        # Anonymous id → input indexes, in first-seen order
        patient_groups: dict[str, list[int]] = {}
        for index, anonymous_id in enumerate(assignment.record_ids):
            if anonymous_id is None:
                error = MissingRequiredAttributeError(
                    "Record has neither Patient ID nor Patient Name",
                    attribute="patient identifier",
                )
                self._record_failure(failures, index, None, error, batch_id)
                continue
            patient_groups.setdefault(anonymous_id, []).append(index)

        candidates: list[Stage1Record] = []
        for anonymous_id, indexes in patient_groups.items():
            for index in indexes:
                self._check_cancelled(cancel_event, batch_id)
                try:
                    candidates.append(anonymize_record(
                        normalized[index], anonymous_id, self.context, self.reference_date
                    ))
                except MissingRequiredAttributeError as e:
                    self._record_failure(failures, index, anonymous_id, e, batch_id)

        k_result = enforce_k_anonymity(candidates, self.k, self.event_sink, batch_id)

        stage2_records: list[Stage2Record] = []
        provenance_records: list[ProvenanceRecord] = []
        for stage1 in k_result.records:
            self._check_cancelled(cancel_event, batch_id)
            stage2 = self.chain_generalizer.generalize(stage1, batch_id)
            provenance_records.append(compose_provenance(
                storage_hash=hash_record(stage1),
                chain_hash=hash_record(stage2),
                anonymous_id=stage1.anonymous_pid,
                resource_type=self.resource_type,
                hospital_id=self.context.hospital_id,
                timestamp=self.clock(),
            ))
            stage2_records.append(stage2)

        self._check_cancelled(cancel_event, batch_id)

        failures.sort(key=lambda failure: failure.record_index)
        result = BatchResult(
            batch_id=batch_id,
            stage1_records=k_result.records,
            stage2_records=stage2_records,
            provenance_records=provenance_records,
            identity_map=assignment.identity_map,
            failures=failures,
            warnings=list(k_result.warnings),
            suppressed_count=k_result.suppressed_count,
            suppressed_groups=list(k_result.suppressed_groups),
            k=self.k,
            k_anonymity_skipped=k_result.skipped,
            storage_hash=hash_batch(k_result.records) if k_result.records else None,
            chain_hash=hash_batch(stage2_records) if stage2_records else None,
            input_count=len(records),
        )

        self.event_sink.emit(AnonymizationEvent(
            event_type=events.BATCH_COMPLETED,
            level=EventLevel.INFO,
            message=f"Batch completed: {result.record_count} of {len(records)} records released",
            batch_id=batch_id,
            details={
                "input_count": len(records),
                "released_count": result.record_count,
                "failed_count": len(failures),
                "suppressed_count": result.suppressed_count,
                "k_anonymity_skipped": result.k_anonymity_skipped,
            },
        ))
        logger.info(
            f"Batch {batch_id} completed: {result.record_count} released, "
            f"{len(failures)} failed, {result.suppressed_count} suppressed"
        )
        return result

    def _validate_batch(self, records: Sequence[Mapping[str, Any]], batch_id: str) -> None:
        if records is None or isinstance(records, (str, bytes, Mapping)):
            raise InvalidInputError("Batch must be a sequence of records", source=batch_id)
        if len(records) == 0:
            raise InvalidInputError("Batch is empty", source=batch_id)
        for index, record in enumerate(records):
            if not isinstance(record, Mapping):
                raise InvalidInputError(
                    f"Row {index} is not a record mapping",
                    source=batch_id,
                    details={"row_index": index, "type": type(record).__name__},
                )

    def _check_cancelled(self, cancel_event: Optional[threading.Event], batch_id: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Batch {batch_id} cancelled; partial results discarded")
            raise BatchCancelledError(f"Batch {batch_id} was cancelled")

    def _record_failure(
        self,
        failures: list[RecordFailure],
        index: int,
        anonymous_id: Optional[str],
        error: MissingRequiredAttributeError,
        batch_id: str,
    ) -> None:
        if self.strict:
            raise error
        failure = RecordFailure(
            record_index=index,
            anonymous_id=anonymous_id,
            error_type=type(error).__name__,
            message=str(error),
        )
        failures.append(failure)
        self.event_sink.emit(AnonymizationEvent(
            event_type=events.RECORD_FAILED,
            level=EventLevel.WARNING,
            message=f"Record {index} excluded: {error}",
            batch_id=batch_id,
            anonymous_id=anonymous_id,
            details={"record_index": index, "attribute": error.attribute},
        ))
