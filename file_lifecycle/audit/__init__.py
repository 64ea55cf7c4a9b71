"""
Audit log backends.

- AuditLog: interface relied upon by the orchestrator
- InMemoryAuditLog: process-local log for tests and ephemeral runs
- SqlAuditLog: durable log persisted through SQLAlchemy
"""

from .audit_log import AuditLog, InMemoryAuditLog
from .sql_audit_log import SqlAuditLog

__all__ = ["AuditLog", "InMemoryAuditLog", "SqlAuditLog"]
