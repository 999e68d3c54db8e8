"""Identity Assigner.

Replaces original patient identifiers with batch-scoped anonymous identifiers.
Records are keyed by Patient ID, falling back to Patient Name; the first
occurrence of a key receives the next identifier and every later occurrence
reuses it.

Security Impact:
    - The original identifier never leaves this module except as a key of the
      returned IdentityMap (which is hidden from repr())
    - Events emitted here carry the anonymous identifier only

Architecture:
    - Strategy pattern: the sequential scheme can be swapped for a salted
      pseudonym scheme
    - Pseudonyms are resolved by the caller into a plain mapping before the
      batch runs; nothing here blocks on an external service
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from dual_anon.domain import events, fields
from dual_anon.domain.enums import EventLevel
from dual_anon.domain.events import AnonymizationEvent, EventSinkPort
from dual_anon.domain.ports import ConsistencyError
from dual_anon.domain.records import IdentityMap


def resolve_identity_key(record: Mapping[str, str]) -> Optional[str]:
    """Return the grouping key of a normalized record (Patient ID, then Patient Name)."""
    for field_name in (fields.PATIENT_ID, fields.PATIENT_NAME):
        value = record.get(field_name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


class IdentityStrategy(ABC):
    """Produces the anonymous identifier for the n-th new patient of a batch."""

    @abstractmethod
    def identifier_for(self, original_id: str, index: int) -> str:
        """Anonymous identifier for a newly seen original identifier.

        Parameters:
            original_id: Original patient identifier
            index: Zero-based first-seen position of the identifier in the batch

        Returns:
            str: Anonymous identifier
        """
        pass

    def bind(self, event_sink: Optional[EventSinkPort], batch_id: Optional[str]) -> None:
        """Attach the pipeline's event sink for the duration of a batch."""
        pass


class SequentialIdentityStrategy(IdentityStrategy):
    """Zero-padded sequence numbers: PID-001, PID-002, ..."""

    def __init__(self, prefix: str = "PID", width: int = 3):
        self.prefix = prefix
        self.width = width

    def identifier_for(self, original_id: str, index: int) -> str:
        return f"{self.prefix}-{index + 1:0{self.width}d}"


class SaltedPseudonymStrategy(IdentityStrategy):
    """Identifiers derived from a stable external pseudonym and a hospital salt.

    The identifier is ``prefix-`` followed by the first 16 hex characters
    (uppercase) of SHA-256 over ``salt:pseudonym``. Patients absent from the
    pseudonym mapping fall back to the sequential scheme and an
    ``identity.pseudonym_missing`` event is emitted.

    Parameters:
        pseudonyms: Original identifier → stable pseudonym, resolved beforehand
        hospital_salt: Per-hospital salt
        prefix: Identifier prefix
    """

    def __init__(self, pseudonyms: Mapping[str, str], hospital_salt: str, prefix: str = "APID"):
        self._pseudonyms = dict(pseudonyms)
        self._salt = hospital_salt
        self.prefix = prefix
        self._fallback = SequentialIdentityStrategy()
        self._event_sink: Optional[EventSinkPort] = None
        self._batch_id: Optional[str] = None

    def bind(self, event_sink: Optional[EventSinkPort], batch_id: Optional[str]) -> None:
        self._event_sink = event_sink
        self._batch_id = batch_id

    def identifier_for(self, original_id: str, index: int) -> str:
        pseudonym = self._pseudonyms.get(original_id)
        if not pseudonym:
            anonymous_id = self._fallback.identifier_for(original_id, index)
            if self._event_sink is not None:
                self._event_sink.emit(AnonymizationEvent(
                    event_type=events.IDENTITY_PSEUDONYM_MISSING,
                    level=EventLevel.WARNING,
                    message="No pseudonym supplied; sequential identifier used",
                    batch_id=self._batch_id,
                    anonymous_id=anonymous_id,
                ))
            return anonymous_id

        digest = hashlib.sha256(f"{self._salt}:{pseudonym}".encode("utf-8")).hexdigest()
        return f"{self.prefix}-{digest[:16].upper()}"


@dataclass(frozen=True)
class IdentityAssignment:
    """Output of the Identity Assigner.

    Attributes:
        identity_map: Original → anonymous identifier, in first-seen order
        record_ids: Anonymous identifier per input record (None when the record
            has neither Patient ID nor Patient Name)
    """

    identity_map: IdentityMap
    record_ids: list[Optional[str]] = field(default_factory=list)


class IdentityAssigner:
    """Assigns anonymous identifiers over a full, ordered batch."""

    def __init__(self, strategy: Optional[IdentityStrategy] = None):
        self.strategy = strategy or SequentialIdentityStrategy()

    def assign(
        self,
        records: Sequence[Mapping[str, str]],
        event_sink: Optional[EventSinkPort] = None,
        batch_id: Optional[str] = None,
    ) -> IdentityAssignment:
        """Assign identifiers to every record of a batch.

        Parameters:
            records: Normalized records in input order
            event_sink: Sink for strategy events
            batch_id: Batch identifier attached to events

        Returns:
            IdentityAssignment: Ordered mapping plus per-record identifiers

        Raises:
            ConsistencyError: If two different originals receive the same identifier
        """
        self.strategy.bind(event_sink, batch_id)
        assignments: dict[str, str] = {}
        issued: set[str] = set()
        record_ids: list[Optional[str]] = []

        try:
            for record in records:
                key = resolve_identity_key(record)
                if key is None:
                    record_ids.append(None)
                    continue

                anonymous_id = assignments.get(key)
                if anonymous_id is None:
                    anonymous_id = self.strategy.identifier_for(key, len(assignments))
                    if anonymous_id in issued:
                        raise ConsistencyError(
                            f"Anonymous identifier {anonymous_id} issued to two different patients",
                            field_name=fields.ANONYMOUS_PID,
                        )
                    assignments[key] = anonymous_id
                    issued.add(anonymous_id)
                record_ids.append(anonymous_id)
        finally:
            self.strategy.bind(None, None)

        return IdentityAssignment(identity_map=IdentityMap(assignments=assignments), record_ids=record_ids)
