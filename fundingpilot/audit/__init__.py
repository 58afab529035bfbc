"""Audit trail of engine decisions."""

from .base import AuditSink, NullAuditSink, to_jsonable
from .sinks import BufferedDatabaseAuditSink, LoggingAuditSink, MultiAuditSink

__all__ = [
    "AuditSink",
    "NullAuditSink",
    "LoggingAuditSink",
    "BufferedDatabaseAuditSink",
    "MultiAuditSink",
    "to_jsonable",
]
