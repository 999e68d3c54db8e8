"""Batch orchestration for the Dual-Anon pipeline.

Connects the pure anonymization pipeline to its collaborators: reads each
source, runs the pipeline, persists Stage-1 output, submits provenance
messages to the ledger and writes privacy reports. Independent sources are
processed concurrently.

Security Impact:
    - Nothing is persisted or submitted until the whole batch has been computed;
      a failed or cancelled batch leaves no partial output behind
    - The identity map is dropped once storage and ledger calls return
    - Pseudonym files are read into a plain mapping before any batch runs

Architecture:
    - Follows Hexagonal Architecture principles
    - Source adapters are selected by file extension
    - One pipeline instance per batch; batches share no mutable state
"""

import json
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

from dual_anon.adapters.ledger import JsonlLedgerAdapter
from dual_anon.adapters.sources import get_source
from dual_anon.adapters.storage import FileStorageAdapter
from dual_anon.domain.events import EventSinkPort, LoggingEventSink
from dual_anon.domain.pipeline import AnonymizationPipeline, BatchResult
from dual_anon.domain.ports import (
    AnonymizationError,
    InvalidInputError,
    LedgerPort,
    LedgerSubmissionError,
    SourceNotFoundError,
    StorageError,
    StoragePort,
)
from dual_anon.domain.records import ProvenanceRecord
from dual_anon.domain.services.identity import IdentityStrategy, SaltedPseudonymStrategy
from dual_anon.domain.services.provenance import verify_provenance
from dual_anon.infrastructure.audit.event_logger import AuditEventLogger
from dual_anon.infrastructure.config_manager import PipelineConfig
from dual_anon.infrastructure.privacy_report import generate_privacy_report
from dual_anon.infrastructure.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """Result of processing one source end to end.

    Attributes:
        source: Source identifier
        batch_result: Pipeline output (None when the batch failed)
        storage_reference: Where Stage-1 output was written
        ledger_references: Submission reference per provenance message
        report_path: Saved privacy report, if any
        error: Error message when the batch failed
        error_type: Exception class name when the batch failed
    """

    source: str
    batch_result: Optional[BatchResult] = None
    storage_reference: Optional[str] = None
    ledger_references: list[str] = field(default_factory=list)
    report_path: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class LedgerVerification:
    """Outcome of re-verifying every message in a ledger file.

    Attributes:
        total: Number of messages checked
        valid: Number of messages whose proof verified
        invalid: (message position, anonymous id, reason) per failing message
    """

    total: int = 0
    valid: int = 0
    invalid: list[tuple[int, Optional[str], str]] = field(default_factory=list)

    @property
    def all_valid(self) -> bool:
        return not self.invalid


def create_storage_adapter(
    output_dir: Optional[str] = None,
    output_format: str = "csv",
) -> StoragePort:
    """Create the Stage-1 storage adapter.

    Raises:
        ValueError: If the output format is unsupported
    """
    directory = output_dir or settings.output_dir
    logger.info(f"Initializing file storage in {directory} ({output_format})")
    return FileStorageAdapter(directory, output_format=output_format)


def create_ledger_adapter(ledger_file: Optional[str] = None) -> JsonlLedgerAdapter:
    """Create the ledger adapter."""
    path = ledger_file or settings.ledger_file
    logger.info(f"Initializing JSON-lines ledger at {path}")
    return JsonlLedgerAdapter(path)


def load_pseudonyms(path: str) -> dict[str, str]:
    """Load a pre-resolved original identifier → pseudonym mapping (JSON object).

    Raises:
        SourceNotFoundError: If the file does not exist
        InvalidInputError: If the file is not a JSON object of strings
    """
    pseudonym_file = Path(path)
    if not pseudonym_file.exists():
        raise SourceNotFoundError(f"Pseudonym file not found: {path}", source=path)
    try:
        with open(pseudonym_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"Invalid JSON in pseudonym file: {e}", source=path) from e
    if not isinstance(data, dict):
        raise InvalidInputError("Pseudonym file must contain a JSON object", source=path)
    return {str(key): str(value) for key, value in data.items() if value is not None}


def create_identity_strategy(
    config: PipelineConfig,
    pseudonyms: Optional[dict[str, str]] = None,
) -> Optional[IdentityStrategy]:
    """Salted pseudonym strategy when both a salt and a mapping are available."""
    if pseudonyms is None:
        return None
    if config.identity_salt is None:
        raise InvalidInputError("A pseudonym mapping requires DA_IDENTITY_SALT to be set")
    return SaltedPseudonymStrategy(pseudonyms, config.identity_salt.get_secret_value())


def build_pipeline(
    config: PipelineConfig,
    event_sink: Optional[EventSinkPort] = None,
    identity_strategy: Optional[IdentityStrategy] = None,
) -> AnonymizationPipeline:
    """Build a fresh pipeline for one batch."""
    return AnonymizationPipeline(
        context=config.hospital_context(),
        k=config.k_anonymity,
        strict=config.strict_mode,
        identity_strategy=identity_strategy,
        event_sink=event_sink,
        resource_type=config.resource_type,
    )


def process_batch(
    records: Sequence[dict[str, Any]],
    pipeline: AnonymizationPipeline,
    storage: StoragePort,
    ledger: LedgerPort,
    batch_id: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> tuple[BatchResult, Optional[str], list[str]]:
    """Anonymize one batch, then persist Stage-1 output and submit provenance.

    Parameters:
        records: Raw records in source order
        pipeline: Pipeline configured for this batch
        storage: Stage-1 storage adapter
        ledger: Ledger adapter
        batch_id: Batch identifier (generated when omitted)
        cancel_event: Set by the caller to abort the batch before any output is written

    Returns:
        tuple[BatchResult, Optional[str], list[str]]: Pipeline output, storage
        reference (None when nothing was released) and ledger references

    Raises:
        StorageError: If Stage-1 output cannot be persisted
        LedgerSubmissionError: If a provenance message is rejected
        AnonymizationError: Any pipeline error (see AnonymizationPipeline.run)
    """
    batch_id = batch_id or str(uuid.uuid4())
    result = pipeline.run(records, cancel_event=cancel_event, batch_id=batch_id)

    if not result.stage1_records:
        logger.warning(f"Batch {batch_id} released no records; nothing persisted")
        return result, None, []

    storage_result = storage.persist(result.stage1_records, batch_id)
    if storage_result.is_failure():
        raise StorageError(
            f"Failed to persist batch {batch_id}: {storage_result.error}",
            operation="persist",
            details=storage_result.error_details,
        )

    ledger_references: list[str] = []
    for message in result.ledger_messages():
        submit_result = ledger.submit(message)
        if submit_result.is_failure():
            raise LedgerSubmissionError(
                f"Ledger rejected provenance for {message['anonymousPatientId']}: {submit_result.error}"
            )
        ledger_references.append(submit_result.value)

    logger.info(
        f"Batch {batch_id}: {result.record_count} records stored at {storage_result.value}, "
        f"{len(ledger_references)} provenance messages submitted"
    )
    return result, storage_result.value, ledger_references


def process_source(
    source: str,
    config: PipelineConfig,
    storage: StoragePort,
    ledger: LedgerPort,
    audit_logger: Optional[AuditEventLogger] = None,
    pseudonyms: Optional[dict[str, str]] = None,
    cancel_event: Optional[threading.Event] = None,
    report_dir: Optional[str] = None,
) -> BatchOutcome:
    """Read one source and process it as a single batch.

    Batch-level errors are captured in the returned outcome instead of raised,
    so one bad source does not stop the others.
    """
    outcome = BatchOutcome(source=source)
    batch_id = str(uuid.uuid4())
    try:
        records = get_source(source).read_batch(source)
        pipeline = build_pipeline(
            config,
            event_sink=audit_logger,
            identity_strategy=create_identity_strategy(config, pseudonyms),
        )
        result, storage_reference, ledger_references = process_batch(
            records, pipeline, storage, ledger, batch_id=batch_id, cancel_event=cancel_event
        )
    except AnonymizationError as e:
        logger.error(f"Batch {batch_id} from {source} failed: {type(e).__name__}: {e}")
        outcome.error = str(e)
        outcome.error_type = type(e).__name__
        return outcome
    except Exception as e:
        logger.exception(f"Unexpected error in batch {batch_id} from {source}: {type(e).__name__}")
        outcome.error = f"Unexpected error: {e}"
        outcome.error_type = type(e).__name__
        return outcome

    outcome.batch_result = result
    outcome.storage_reference = storage_reference
    outcome.ledger_references = ledger_references

    if report_dir:
        report_file = Path(report_dir) / f"privacy_report_{batch_id}.json"
        report_result = generate_privacy_report(
            result, output_path=str(report_file), audit_logger=audit_logger
        )
        if report_result.is_success():
            outcome.report_path = report_result.value.get("saved_to")
        else:
            logger.warning(f"Failed to save privacy report: {report_result.error}")

    return outcome


def process_sources(
    sources: Sequence[str],
    config: PipelineConfig,
    storage: StoragePort,
    ledger: LedgerPort,
    max_workers: Optional[int] = None,
    audit_logger: Optional[AuditEventLogger] = None,
    pseudonyms: Optional[dict[str, str]] = None,
    cancel_event: Optional[threading.Event] = None,
    report_dir: Optional[str] = None,
) -> list[BatchOutcome]:
    """Process independent sources concurrently, one batch per source.

    Returns:
        list[BatchOutcome]: One outcome per source, in the order given
    """
    if not sources:
        return []
    audit_logger = audit_logger or AuditEventLogger(forward_to=LoggingEventSink())
    workers = max(1, min(max_workers or settings.max_workers, len(sources)))
    logger.info(f"Processing {len(sources)} sources with {workers} workers")

    outcomes: dict[int, BatchOutcome] = {}
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="batch-worker") as executor:
        futures: dict[Future, int] = {
            executor.submit(
                process_source,
                source,
                config,
                storage,
                ledger,
                audit_logger,
                pseudonyms,
                cancel_event,
                report_dir,
            ): index
            for index, source in enumerate(sources)
        }
        for future in as_completed(futures):
            index = futures[future]
            outcomes[index] = future.result()

    return [outcomes[index] for index in range(len(sources))]


def verify_ledger(ledger: JsonlLedgerAdapter) -> LedgerVerification:
    """Recompute the provenance proof of every message in a ledger.

    Raises:
        SourceNotFoundError: If the ledger file does not exist
        InvalidInputError: If a ledger line is not a JSON object
    """
    verification = LedgerVerification()
    for position, message in enumerate(ledger.read_messages(), start=1):
        verification.total += 1
        anonymous_id = message.get("anonymousPatientId")
        try:
            record = ProvenanceRecord.from_ledger_message(message)
        except (KeyError, TypeError, ValueError) as e:
            # pydantic.ValidationError is a ValueError
            verification.invalid.append((position, anonymous_id, f"malformed message: {type(e).__name__}"))
            continue
        if verify_provenance(record):
            verification.valid += 1
        else:
            verification.invalid.append((position, anonymous_id, "proof mismatch"))
    return verification
