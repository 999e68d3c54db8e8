"""Domain Core.

Pure anonymization logic and the contracts (ports) its collaborators
implement. Nothing in this package performs I/O.
"""

from dual_anon.domain.pipeline import AnonymizationPipeline, BatchResult, RecordFailure
from dual_anon.domain.records import (
    HospitalContext,
    IdentityMap,
    ProvenanceRecord,
    Stage1Record,
    Stage2Record,
)

__all__ = [
    "AnonymizationPipeline",
    "BatchResult",
    "RecordFailure",
    "HospitalContext",
    "IdentityMap",
    "ProvenanceRecord",
    "Stage1Record",
    "Stage2Record",
]
