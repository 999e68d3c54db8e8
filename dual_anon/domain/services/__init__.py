"""Domain Services.

Each module implements one step of the anonymization pipeline as pure
functions or small stateless classes.
"""

from dual_anon.domain.services.chain_generalizer import ChainGeneralizer
from dual_anon.domain.services.demographics import anonymize_record
from dual_anon.domain.services.field_normalizer import normalize_record
from dual_anon.domain.services.identity import (
    IdentityAssigner,
    IdentityStrategy,
    SaltedPseudonymStrategy,
    SequentialIdentityStrategy,
)
from dual_anon.domain.services.k_anonymity import enforce_k_anonymity
from dual_anon.domain.services.provenance import compose_provenance, hash_record, verify_provenance

__all__ = [
    "ChainGeneralizer",
    "anonymize_record",
    "normalize_record",
    "IdentityAssigner",
    "IdentityStrategy",
    "SaltedPseudonymStrategy",
    "SequentialIdentityStrategy",
    "enforce_k_anonymity",
    "compose_provenance",
    "hash_record",
    "verify_provenance",
]
