"""
Audit error taxonomy.

Every error carries a stable code, a human message, a recoverable flag and
the time it was raised. Transport adapters map these onto protocol errors.
"""
from typing import Any, Dict, Optional

from .types import utc_now


class AuditError(Exception):
    """Base class for all errors surfaced by the audit core."""

    code: str = "AUDIT_FAILED"
    recoverable: bool = True

    def __init__(self, message: str, details: Any = None, recoverable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if recoverable is not None:
            self.recoverable = recoverable
        self.timestamp = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp,
        }
        if self.details is not None:
            data["details"] = self.details
        return data

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class OllamaUnavailableError(AuditError):
    code = "OLLAMA_UNAVAILABLE"
    recoverable = False


class ModelNotFoundError(AuditError):
    code = "MODEL_NOT_FOUND"


class GenerationFailedError(AuditError):
    code = "GENERATION_FAILED"


class NoAvailableModelError(AuditError):
    code = "NO_AVAILABLE_MODEL"


class RequestValidationError(AuditError):
    code = "INVALID_REQUEST"
    recoverable = False


class AuditorUnavailableError(AuditError):
    code = "AUDITOR_UNAVAILABLE"


class AuditTimeoutError(AuditError):
    code = "AUDIT_TIMEOUT"


class ConfigError(AuditError):
    code = "INVALID_CONFIG"
    recoverable = False
