"""
Engine error taxonomy.

Every failure raised by the booking, manifest and unloading services is one
of these. Each carries a machine-checkable ``code`` and an HTTP status the
API layer uses when rendering it; ``message`` is always human readable.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all lifecycle engine failures."""

    code = "ENGINE_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "type": type(self).__name__,
            "details": self.details,
        }


class ValidationFailure(EngineError):
    """Malformed or missing input. Always raised before any write."""

    code = "VALIDATION_FAILED"
    status_code = 400


class NotFoundFailure(EngineError):
    """Referenced entity does not exist or is outside the caller's scope."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictFailure(EngineError):
    """Uniqueness violation or a lost compare-and-set race."""

    code = "CONFLICT"
    status_code = 409


class PartialWorkflowFailure(EngineError):
    """
    A step of a multi-step workflow failed after earlier steps committed.

    Earlier steps are not rolled back; ``details`` says which step failed
    and what had already been written.
    """

    code = "PARTIAL_WORKFLOW_FAILURE"
    status_code = 500

    def __init__(
        self,
        message: str,
        step: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.step = step
        self.details.setdefault("step", step)


class TransientStoreFailure(EngineError):
    """Connectivity or timeout problem. Only idempotent steps may be retried."""

    code = "TRANSIENT_STORE_FAILURE"
    status_code = 503
