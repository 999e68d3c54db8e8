"""K-Anonymity Enforcer.

Groups Stage-1 records by their quasi-identifier tuple (Country, Age Range,
Gender, Occupation Category) and suppresses every group with fewer than k
members.

Security Impact:
    - Every released group has either zero or at least k members
    - Suppression only: under-sized groups are removed, never widened
    - A batch smaller than k is released unchanged with a warning; this
      mirrors the existing behavior and is not a per-group guarantee

Architecture:
    - Group sizes computed with a pandas groupby over the quasi-identifier columns
    - Output preserves the input order of the retained records
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import pandas as pd

from dual_anon.domain import events, fields
from dual_anon.domain.enums import EventLevel, OccupationCategory
from dual_anon.domain.events import AnonymizationEvent, EventSinkPort
from dual_anon.domain.ports import InvalidInputError, PrivacyConstraintWarning
from dual_anon.domain.records import Stage1Record

logger = logging.getLogger(__name__)

DEFAULT_K = 5


@dataclass(frozen=True)
class SuppressedGroup:
    """Quasi-identifier tuple of a suppressed group and its size."""

    country: str
    age_range: str
    gender: str
    occupation_category: str
    size: int


@dataclass(frozen=True)
class KAnonymityResult:
    """Outcome of k-anonymity enforcement over one batch.

    Attributes:
        records: Retained records in input order
        suppressed_count: Number of records removed
        suppressed_groups: Groups removed, in first-seen order
        warnings: Non-fatal privacy signals (batch below k)
        skipped: True when enforcement was skipped because the batch is below k
    """

    records: list[Stage1Record]
    suppressed_count: int = 0
    suppressed_groups: list[SuppressedGroup] = field(default_factory=list)
    warnings: list[PrivacyConstraintWarning] = field(default_factory=list)
    skipped: bool = False


def quasi_identifier_tuple(record: Stage1Record) -> tuple[str, str, str, str]:
    """(Country, Age Range, Gender, Occupation Category) of a record."""
    return (
        record.country,
        record.age_range,
        record.gender,
        record.occupation_category or OccupationCategory.UNKNOWN.value,
    )


def enforce_k_anonymity(
    records: Sequence[Stage1Record],
    k: int = DEFAULT_K,
    event_sink: Optional[EventSinkPort] = None,
    batch_id: Optional[str] = None,
) -> KAnonymityResult:
    """Suppress every quasi-identifier group smaller than k.

    Parameters:
        records: Stage-1 records of one batch
        k: Minimum group size (>= 1)
        event_sink: Sink for skip/suppression events
        batch_id: Batch identifier attached to events

    Returns:
        KAnonymityResult: Retained records and suppression statistics

    Raises:
        InvalidInputError: If k < 1
    """
    if k < 1:
        raise InvalidInputError(f"k must be at least 1, got {k}", details={"k": k})

    records = list(records)
    if len(records) < k:
        message = (
            f"Batch has {len(records)} records, fewer than k={k}; "
            f"k-anonymity enforcement skipped"
        )
        warning = PrivacyConstraintWarning(message, record_count=len(records), k=k)
        logger.warning(message)
        if event_sink is not None:
            event_sink.emit(AnonymizationEvent(
                event_type=events.K_ANONYMITY_SKIPPED,
                level=EventLevel.WARNING,
                message=message,
                batch_id=batch_id,
                details={"record_count": len(records), "k": k},
            ))
        return KAnonymityResult(records=records, warnings=[warning], skipped=True)

    columns = list(fields.QUASI_IDENTIFIER_FIELDS)
    df = pd.DataFrame(
        [quasi_identifier_tuple(record) for record in records],
        columns=columns,
    )
    group_sizes = df.groupby(columns, sort=False, dropna=False)[columns[0]].transform("size")
    keep_mask = (group_sizes >= k).tolist()

    retained = [record for record, keep in zip(records, keep_mask) if keep]

    suppressed_groups: list[SuppressedGroup] = []
    small = df[~(group_sizes >= k)]
    if not small.empty:
        counts = small.groupby(columns, sort=False, dropna=False).size()
        for key, size in counts.items():
            country, age_range, gender, occupation = key
            suppressed_groups.append(SuppressedGroup(
                country=country,
                age_range=age_range,
                gender=gender,
                occupation_category=occupation,
                size=int(size),
            ))

    suppressed_count = len(records) - len(retained)
    if suppressed_count:
        logger.info(
            f"Suppressed {suppressed_count} records in {len(suppressed_groups)} groups (k={k})"
        )
        if event_sink is not None:
            event_sink.emit(AnonymizationEvent(
                event_type=events.K_ANONYMITY_SUPPRESSED,
                level=EventLevel.INFO,
                message=f"Suppressed {suppressed_count} records in groups smaller than k={k}",
                batch_id=batch_id,
                details={
                    "suppressed_count": suppressed_count,
                    "group_count": len(suppressed_groups),
                    "k": k,
                },
            ))

    return KAnonymityResult(
        records=retained,
        suppressed_count=suppressed_count,
        suppressed_groups=suppressed_groups,
    )
