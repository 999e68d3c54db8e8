"""Hasher & Provenance Composer.

Computes deterministic SHA-256 digests of Stage-1 and Stage-2 records and
binds them into a ProvenanceRecord whose proof any third party can recompute
from the two digests and the identifiers, without holding the records.

Security Impact:
    - Digests are one-way; the provenance record carries no record content
    - The proof never involves the original patient identifier
    - Composition raises on a missing link instead of producing a partial record

Architecture:
    - Canonical form: JSON with sorted keys, compact separators, UTF-8 preserved
    - Proof: SHA-256 over storage_hash + chain_hash + anonymous_id + resource_type
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from dual_anon.domain.ports import ProvenanceError
from dual_anon.domain.records import ProvenanceRecord

HashableRecord = Union[BaseModel, Mapping[str, Any]]

DEFAULT_RESOURCE_TYPE = "Observation"


def _as_dict(record: HashableRecord) -> dict[str, Any]:
    if isinstance(record, BaseModel):
        to_dict = getattr(record, "to_dict", None)
        if callable(to_dict):
            return to_dict()
        return record.model_dump(by_alias=True, exclude_none=True)
    return dict(record)


def canonical_json(record: HashableRecord) -> str:
    """Serialize a record with stable key order and no insignificant whitespace."""
    return json.dumps(
        _as_dict(record),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_record(record: HashableRecord) -> str:
    """SHA-256 hex digest of a record's canonical JSON.

    The same logical content gives the same digest regardless of key
    insertion order.
    """
    return sha256_hex(canonical_json(record))


def hash_batch(records: Iterable[HashableRecord]) -> str:
    """SHA-256 over the concatenated digests of the records, in order."""
    return sha256_hex("".join(hash_record(record) for record in records))


def generate_provenance_proof(
    storage_hash: str,
    chain_hash: str,
    anonymous_id: str,
    resource_type: str,
) -> str:
    """SHA-256 over the plain concatenation of the four inputs."""
    return sha256_hex(f"{storage_hash}{chain_hash}{anonymous_id}{resource_type}")


def compose_provenance(
    storage_hash: Optional[str],
    chain_hash: Optional[str],
    anonymous_id: Optional[str],
    resource_type: str = DEFAULT_RESOURCE_TYPE,
    hospital_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ProvenanceRecord:
    """Bind a Stage-1 digest to the Stage-2 digest derived from it.

    Parameters:
        storage_hash: Digest of the Stage-1 record
        chain_hash: Digest of the Stage-2 record
        anonymous_id: Anonymous patient identifier
        resource_type: Resource type label
        hospital_id: Optional hospital identifier
        timestamp: Composition time (defaults to now, UTC)

    Returns:
        ProvenanceRecord: Record with derived_from == storage_hash

    Raises:
        ProvenanceError: If a hash or the anonymous identifier is missing or malformed
    """
    if not storage_hash:
        raise ProvenanceError("Cannot compose provenance: storage hash is missing")
    if not chain_hash:
        raise ProvenanceError("Cannot compose provenance: chain hash is missing")
    if not anonymous_id:
        raise ProvenanceError("Cannot compose provenance: anonymous identifier is missing")

    proof = generate_provenance_proof(storage_hash, chain_hash, anonymous_id, resource_type)
    try:
        return ProvenanceRecord(
            storage_hash=storage_hash,
            chain_hash=chain_hash,
            derived_from=storage_hash,
            anonymous_id=anonymous_id,
            resource_type=resource_type,
            hospital_id=hospital_id,
            timestamp=timestamp or datetime.now(timezone.utc),
            proof=proof,
        )
    except ValidationError as e:
        raise ProvenanceError(f"Invalid provenance input: {e.error_count()} validation error(s)") from e


def verify_provenance(
    record: ProvenanceRecord,
    stage1: Optional[HashableRecord] = None,
    stage2: Optional[HashableRecord] = None,
) -> bool:
    """Check a provenance record.

    The proof is recomputed from the record's own digests and identifiers.
    When Stage-1/Stage-2 content is supplied, its digest must also reproduce
    storage_hash/chain_hash.
    """
    if record.derived_from != record.storage_hash:
        return False
    expected = generate_provenance_proof(
        record.storage_hash, record.chain_hash, record.anonymous_id, record.resource_type
    )
    if expected != record.proof:
        return False
    if stage1 is not None and hash_record(stage1) != record.storage_hash:
        return False
    if stage2 is not None and hash_record(stage2) != record.chain_hash:
        return False
    return True
