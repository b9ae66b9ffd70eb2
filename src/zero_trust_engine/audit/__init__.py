"""Append-only audit log for engine mutations."""
from __future__ import annotations

from zero_trust_engine.audit.log import AuditLog, AuditRecord, Severity

__all__ = ["AuditLog", "AuditRecord", "Severity"]
