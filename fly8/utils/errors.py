"""
Engine error taxonomy.

Services raise these; main.py renders them as ``{"error", "code", ...context}``
with the HTTP status carried on the class.
"""
from typing import Any, Dict, Optional


class EngineError(Exception):
    status_code = 500
    code = "ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code}
        body.update(self.context)
        return body


class ValidationError(EngineError):
    """Missing field, out-of-range value, empty reason, payout below threshold."""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(EngineError):
    status_code = 404
    code = "NOT_FOUND"


class PreconditionError(EngineError):
    """Illegal status transition."""
    status_code = 400
    code = "INVALID_STATUS_TRANSITION"


class ConflictError(EngineError):
    """Duplicate commission for a source, or commission already tied to a payout."""
    status_code = 409
    code = "CONFLICT"


class TransientError(EngineError):
    """Datastore unavailable; the caller may retry."""
    status_code = 503
    code = "DATASTORE_UNAVAILABLE"


class NotificationError(EngineError):
    code = "NOTIFICATION_FAILED"


class AuditError(EngineError):
    code = "AUDIT_FAILED"
