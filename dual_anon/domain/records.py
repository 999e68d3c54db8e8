"""Anonymized Record Schemas.

This module defines the pydantic models that carry data across the two trust
domains: the Stage-1 (storage) record handed to the internal store, the
Stage-2 (chain) record derived from it, and the provenance record binding the
two together for the public ledger.

Security Impact:
    - Stage-1 and Stage-2 models refuse to hold any direct identifier
    - Stage-2 models refuse sub-country location fields
    - The batch identity map is hidden from repr() so it never reaches logs
    - Provenance records enforce derivedFrom == storageHash at construction

Architecture:
    - Pure domain models, no infrastructure dependencies
    - Records allow extra (clinical) fields keyed by their canonical names
    - Records are immutable once validated
"""

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dual_anon.domain import fields
from dual_anon.domain.enums import AnonymizationLevel, OccupationCategory

SHA256_HEX_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class HospitalContext(BaseModel):
    """Per-batch hospital information supplied by the caller.

    Parameters:
        country: Hospital country, used when no country can be read from a record
        location: Optional free-text hospital location
        hospital_id: Optional hospital identifier, copied into provenance records
    """

    country: str = Field(..., min_length=1, description="Hospital country (fallback)")
    location: Optional[str] = Field(None, description="Hospital location")
    hospital_id: Optional[str] = Field(None, description="Hospital identifier")

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str) -> str:
        """Reject whitespace-only country names."""
        if not v.strip():
            raise ValueError("Hospital country cannot be blank")
        return v

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )


class IdentityMap(BaseModel):
    """Batch-scoped mapping of original patient identifier to anonymous identifier.

    Insertion order is the first-seen order of identifiers within the batch.
    The mapping itself is excluded from repr() because its keys are original
    identifiers.
    """

    assignments: dict[str, str] = Field(default_factory=dict, repr=False)

    def get(self, original_id: str) -> Optional[str]:
        return self.assignments.get(original_id)

    def anonymous_ids(self) -> list[str]:
        """Anonymous identifiers in assignment order."""
        return list(self.assignments.values())

    def __len__(self) -> int:
        return len(self.assignments)

    def __contains__(self, original_id: object) -> bool:
        return original_id in self.assignments

    model_config = ConfigDict(frozen=True)


def _reject_fields(data: Any, forbidden: tuple[str, ...], stage: str) -> Any:
    if isinstance(data, dict):
        present = [name for name in forbidden if name in data]
        if present:
            raise ValueError(f"{stage} record cannot contain fields: {', '.join(present)}")
    return data


class Stage1Record(BaseModel):
    """Storage-anonymized record (Stage-1).

    Direct identifiers are removed and four generalized demographic attributes
    are attached. Surviving clinical fields are kept as extra fields under
    their canonical names (e.g. "Lab Test", "Test Date").

    Parameters:
        anonymous_pid: Batch-scoped anonymous patient identifier
        age_range: 5-year age bucket ("<1", "45-49", "90+")
        country: Country name
        gender: Normalized gender
        occupation_category: Occupation bucket, "Unknown" when not supplied
    """

    anonymous_pid: str = Field(..., alias=fields.ANONYMOUS_PID, min_length=1)
    age_range: str = Field(..., alias=fields.AGE_RANGE, min_length=1)
    country: str = Field(..., alias=fields.COUNTRY, min_length=1)
    gender: str = Field(..., alias=fields.GENDER, min_length=1)
    occupation_category: str = Field(
        OccupationCategory.UNKNOWN.value, alias=fields.OCCUPATION_CATEGORY
    )

    @model_validator(mode="before")
    @classmethod
    def reject_direct_identifiers(cls, data: Any) -> Any:
        """Security Impact: a Stage-1 record can never carry a direct identifier."""
        return _reject_fields(
            data, fields.DIRECT_IDENTIFIER_FIELDS + fields.SUPERSEDED_FIELDS, "Stage-1"
        )

    def to_dict(self) -> dict[str, Any]:
        """Flatten to canonical field names (declared fields first, then clinical)."""
        return self.model_dump(by_alias=True, exclude_none=True)

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
    )


class Stage2Record(BaseModel):
    """Chain-anonymized record (Stage-2), derived only from a Stage-1 record.

    Generalized attributes are optional here because a malformed Stage-1 input
    is passed through rather than repaired.
    """

    anonymous_pid: Optional[str] = Field(None, alias=fields.ANONYMOUS_PID)
    age_range: Optional[str] = Field(None, alias=fields.AGE_RANGE)
    country: Optional[str] = Field(None, alias=fields.COUNTRY)
    gender: Optional[str] = Field(None, alias=fields.GENDER)
    occupation_category: Optional[str] = Field(None, alias=fields.OCCUPATION_CATEGORY)

    @model_validator(mode="before")
    @classmethod
    def reject_identifying_fields(cls, data: Any) -> Any:
        """Security Impact: no direct identifiers and no sub-country location."""
        return _reject_fields(
            data,
            fields.DIRECT_IDENTIFIER_FIELDS
            + fields.SUPERSEDED_FIELDS
            + fields.SUB_COUNTRY_LOCATION_FIELDS,
            "Stage-2",
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
    )


class ProvenanceRecord(BaseModel):
    """Binding between a Stage-1 digest and the Stage-2 digest derived from it.

    Security Impact:
        - Contains only digests and the anonymous identifier, never record content
        - derived_from must equal storage_hash (checked at construction)
        - proof is recomputable by any holder of the hashes and identifiers

    Parameters:
        storage_hash: SHA-256 of the canonical Stage-1 record
        chain_hash: SHA-256 of the canonical Stage-2 record
        derived_from: Digest the chain representation was derived from
        anonymous_id: Anonymous patient identifier
        resource_type: Resource type label (e.g. "Observation")
        hospital_id: Optional hospital identifier
        timestamp: Composition time (UTC)
        proof: SHA-256 over storage_hash + chain_hash + anonymous_id + resource_type
    """

    storage_hash: str = Field(..., alias="storageHash")
    chain_hash: str = Field(..., alias="chainHash")
    derived_from: str = Field(..., alias="derivedFrom")
    anonymous_id: str = Field(..., alias="anonymousId", min_length=1)
    resource_type: str = Field(..., alias="resourceType", min_length=1)
    hospital_id: Optional[str] = Field(None, alias="hospitalId")
    timestamp: datetime
    proof: str

    @field_validator("storage_hash", "chain_hash", "derived_from", "proof")
    @classmethod
    def validate_digest(cls, v: str) -> str:
        """Digests are lowercase hex SHA-256."""
        if not SHA256_HEX_PATTERN.match(v):
            raise ValueError("Digest must be a 64-character lowercase hex SHA-256")
        return v

    @model_validator(mode="after")
    def validate_derivation(self) -> "ProvenanceRecord":
        if self.derived_from != self.storage_hash:
            raise ValueError("derivedFrom must equal storageHash")
        return self

    def to_ledger_message(self) -> dict[str, Any]:
        """Render the JSON object handed to the ledger collaborator."""
        timestamp = format_timestamp(self.timestamp)
        return {
            "storage": {
                "hash": self.storage_hash,
                "anonymizationLevel": AnonymizationLevel.STORAGE.value,
                "timestamp": timestamp,
            },
            "chain": {
                "hash": self.chain_hash,
                "anonymizationLevel": AnonymizationLevel.CHAIN.value,
                "derivedFrom": self.derived_from,
                "timestamp": timestamp,
            },
            "anonymousPatientId": self.anonymous_id,
            "resourceType": self.resource_type,
            "hospitalId": self.hospital_id,
            "timestamp": timestamp,
            "provenanceProof": self.proof,
        }

    @classmethod
    def from_ledger_message(cls, message: dict[str, Any]) -> "ProvenanceRecord":
        """Parse a ledger message produced by to_ledger_message().

        Raises:
            KeyError: If a required section is missing
            pydantic.ValidationError: If digests are malformed or unlinked
        """
        return cls(
            storageHash=message["storage"]["hash"],
            chainHash=message["chain"]["hash"],
            derivedFrom=message["chain"]["derivedFrom"],
            anonymousId=message["anonymousPatientId"],
            resourceType=message["resourceType"],
            hospitalId=message.get("hospitalId"),
            timestamp=message["timestamp"],
            proof=message["provenanceProof"],
        )

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
    )


def format_timestamp(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a trailing Z for UTC."""
    text = value.isoformat(timespec="milliseconds")
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text
