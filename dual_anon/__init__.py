"""Dual-Anon: two-stage anonymization and provenance for medical records.

Stage-1 output goes to an internal store, Stage-2 output to an immutable
ledger, bound together by a recomputable provenance proof.
"""

__version__ = "0.1.0"
