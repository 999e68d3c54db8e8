"""Domain Ports - Abstract Contracts for the Anonymization Core.

This module defines the Port interfaces (abstract contracts) that collaborating
adapters must implement, the Result type adapters use to report outcomes, and
the exception hierarchy raised by the core.

Security Impact:
    - The core never performs I/O; sources, storage and ledger sit behind ports
    - Exception messages name fields and anonymous identifiers only, never values
    - Storage and ledger ports only ever receive anonymized output

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Adapters (CSV/JSON sources, file storage, JSON-lines ledger) implement these
    - Domain Core is isolated from transport and persistence details
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from dual_anon.domain.records import Stage1Record

T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Adapters return Result objects so that orchestration code can decide
    whether a collaborator failure aborts the batch.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (StorageError, LedgerSubmissionError, etc.)
        error_details: Additional error context (path, batch_id, etc.)

    Example:
        ```python
        result = storage.persist(records, batch_id="b-1")
        if result.is_failure():
            raise StorageError(result.error)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (defaults to the exception class name)
            error_details: Additional context

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (
            type(error).__name__ if isinstance(error, Exception) else "UnknownError"
        )
        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class AnonymizationError(Exception):
    """Base exception for all anonymization-related errors."""
    pass


class MissingRequiredAttributeError(AnonymizationError):
    """Raised when a required demographic attribute cannot be resolved.

    Age (no Age and no birth date) and country (no address match and no
    hospital default) are required. Fatal for the record, not the batch,
    unless the pipeline runs in strict mode.

    Attributes:
        attribute: Name of the unresolvable attribute ("age", "country", ...)
    """

    def __init__(self, message: str, attribute: Optional[str] = None):
        super().__init__(message)
        self.attribute = attribute


class InvalidInputError(AnonymizationError):
    """Raised when a batch is malformed (empty, unparseable row, bad k).

    Fatal for the batch.

    Attributes:
        source: Source identifier, when known
        details: Additional context (row index, expected type, ...)
    """

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.source = source
        self.details = details or {}


class ConsistencyError(AnonymizationError):
    """Raised when a stage receives input missing an expected generalized field.

    The chain generalizer treats this as a soft failure by default (the field
    is passed through unchanged); it is only raised in strict mode. Also raised
    when an identity strategy produces the same anonymous identifier for two
    different patients.

    Attributes:
        field_name: Canonical name of the offending field, when applicable
    """

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class ProvenanceError(AnonymizationError):
    """Raised when a provenance record cannot be composed (missing link)."""
    pass


class BatchCancelledError(AnonymizationError):
    """Raised when a caller cancels a batch mid-run.

    Nothing computed for the batch is returned, persisted or submitted.
    """
    pass


class SourceNotFoundError(AnonymizationError):
    """Raised when a record source cannot be found or accessed.

    Attributes:
        source: The source identifier that was not found
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class StorageError(AnonymizationError):
    """Raised when Stage-1 output cannot be persisted.

    Attributes:
        operation: The storage operation that failed
        details: Additional error details
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class LedgerSubmissionError(AnonymizationError):
    """Raised when a provenance message cannot be submitted to the ledger."""
    pass


class PrivacyConstraintWarning(UserWarning):
    """Non-fatal signal: the batch is smaller than k, enforcement was skipped.

    Returned alongside results and emitted to the event sink; never raised.
    """

    def __init__(self, message: str, record_count: int, k: int):
        super().__init__(message)
        self.record_count = record_count
        self.k = k


# ============================================================================
# Collaborator Ports
# ============================================================================

class RecordSourcePort(ABC):
    """Abstract contract for source extraction adapters.

    A source yields one ordered batch of raw records (field name → string
    value). Field names may be any alias known to the Field Normalizer.
    """

    @abstractmethod
    def read_batch(self, source: str) -> list[dict[str, str]]:
        """Read a batch of raw records.

        Parameters:
            source: Source identifier (file path, URL, ...)

        Returns:
            list[dict[str, str]]: Raw records in source order

        Raises:
            SourceNotFoundError: If the source does not exist
            InvalidInputError: If the source is empty or cannot be parsed
        """
        pass

    @abstractmethod
    def can_read(self, source: str) -> bool:
        """Check if this adapter can handle the given source."""
        pass


class StoragePort(ABC):
    """Abstract contract for Stage-1 persistence.

    Security Impact:
        - Receives Stage-1 records only; raw records never cross this port
    """

    @abstractmethod
    def persist(self, records: list[Stage1Record], batch_id: str) -> Result[str]:
        """Durably store a batch of Stage-1 records.

        Parameters:
            records: Stage-1 records of one batch
            batch_id: Identifier of the batch

        Returns:
            Result[str]: Storage reference (path, table, ...) or error
        """
        pass


class LedgerPort(ABC):
    """Abstract contract for submitting provenance messages to a ledger."""

    @abstractmethod
    def submit(self, message: dict[str, Any]) -> Result[str]:
        """Submit one JSON-serializable provenance message.

        Returns:
            Result[str]: Submission reference or error
        """
        pass
