"""Ledger adapters for provenance messages."""

from dual_anon.adapters.ledger.jsonl_ledger import JsonlLedgerAdapter

__all__ = ["JsonlLedgerAdapter"]
