"""Adapters for Dual-Anon.

Implementations of the domain ports: record sources, Stage-1 storage and the
provenance ledger.
"""
