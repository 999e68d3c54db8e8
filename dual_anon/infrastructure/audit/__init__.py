"""Audit infrastructure components."""

from dual_anon.infrastructure.audit.event_logger import AuditEventLogger

__all__ = ["AuditEventLogger"]
