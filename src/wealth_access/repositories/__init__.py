"""Repositories package - Data access layer."""
from .audit_sink import AuditSink
from .hierarchy_store import HierarchyStore

__all__ = [
    "AuditSink",
    "HierarchyStore",
]
