"""Exception hierarchy for faultline.

Two families live here:

- Errors faultline itself raises (``InvalidSample``, ``MissingIdentifier``,
  ``LastAttemptError``, ...). They share ``FaultlineError`` so the HTTP layer
  can map them to client or server responses in one place.
- Raw failure types that producers (form handlers, storage adapters) raise
  and the classifier recognises: ``FieldValidationError`` and
  ``StorageError``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

PathElement = Union[str, int]


class FaultlineError(Exception):
    """Base exception for all faultline errors."""

    def __init__(
        self,
        message: str,
        code: str = "FAULTLINE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ClientError(FaultlineError):
    """Errors caused by a malformed request (400-equivalent)."""


class InvalidSample(ClientError):
    """A metric sample with an empty name or a non-finite value."""

    def __init__(self, message: str, name: Optional[str] = None, value: Any = None):
        super().__init__(
            message,
            code="INVALID_SAMPLE",
            details={"name": name, "value": repr(value)},
        )


class MissingIdentifier(ClientError):
    """An id-keyed operation was called without an id."""

    def __init__(self, message: str = "Identifier is required", field: str = "id"):
        super().__init__(message, code="MISSING_IDENTIFIER", details={"field": field})
        self.field = field


class InvalidLogBatch(ClientError):
    """A log batch that is not a list or contains no valid entries."""

    def __init__(self, message: str, received: int = 0):
        super().__init__(message, code="INVALID_LOG_BATCH", details={"received": received})


class ActionNotAvailable(FaultlineError):
    """A recovery action outside the containment level's action set."""

    def __init__(self, action: str, level: str):
        super().__init__(
            f"Action '{action}' is not available at {level} level",
            code="ACTION_NOT_AVAILABLE",
            details={"action": action, "level": level},
        )
        self.action = action
        self.level = level


class ConfigurationError(FaultlineError):
    """Configuration errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class LastAttemptError(FaultlineError):
    """All retry attempts were exhausted.

    ``last_error`` is the exception raised by the final attempt; earlier
    attempts' errors are not kept.
    """

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(
            f"Operation failed after {attempts} attempt(s): {last_error}",
            code="RETRY_EXHAUSTED",
            details={"attempts": attempts, "last_error_type": type(last_error).__name__},
        )
        self.attempts = attempts
        self.last_error = last_error


class RetryCancelled(FaultlineError):
    """A retry loop was abandoned through its cancellation token."""

    def __init__(self, attempts: int, reason: Optional[str] = None):
        message = f"Retry cancelled after {attempts} attempt(s)"
        if reason:
            message += f": {reason}"
        super().__init__(message, code="RETRY_CANCELLED", details={"attempts": attempts})
        self.attempts = attempts
        self.reason = reason


# ============================================================================
# Raw failures raised by producers
# ============================================================================


class FieldValidationError(Exception):
    """Validation failure carrying one message per offending field path.

    Mirrors the shape of schema-library errors: each issue is a
    ``(path, message)`` pair where path is a sequence of keys/indices.

    Example:
        >>> FieldValidationError([(("address", "postcode"), "Required")])
    """

    def __init__(self, issues: Sequence[Tuple[Sequence[PathElement], str]]):
        self.issues: List[Tuple[Tuple[PathElement, ...], str]] = [
            (tuple(path), message) for path, message in issues
        ]
        summary = "; ".join(
            f"{'.'.join(str(p) for p in path)}: {message}" for path, message in self.issues
        )
        super().__init__(summary or "Validation failed")


class StorageError(Exception):
    """Backend storage error carrying a database/PostgREST error code."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.hint = hint
