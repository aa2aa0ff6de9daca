"""
Audit Core Module

Provides:
- Data model and error taxonomy
- Configuration loading
- The audit orchestrator (code_audit.core.engine)
"""
from .config import ServerConfig, load_config
from .errors import AuditError
from .types import AuditIssue, AuditRequest, AuditResult, AuditType, Priority, Severity

__all__ = [
    # Config
    "ServerConfig",
    "load_config",
    # Errors
    "AuditError",
    # Types
    "AuditIssue",
    "AuditRequest",
    "AuditResult",
    "AuditType",
    "Priority",
    "Severity",
]
