"""Error formatting for faultline.

Turns a classified failure into an ``ApiError`` that is safe to show to the
caller verbatim. Only validation and storage failures surface structured
detail; every other kind gets a fixed message so exception text (stack
frames, hostnames, SQL) never leaves the process.
"""

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from faultline.classification import ErrorClassifier, ErrorKind, classify, extract_code
from faultline.errors import FieldValidationError
from faultline.logging import get_logger
from faultline.metrics import MetricsCollector

logger = get_logger(__name__, component="formatting")


class ErrorMessages:
    """User-facing messages keyed by situation."""

    NETWORK = "Network error. Please check your connection and try again."
    AUTH = "Authentication failed. Please log in again."
    PERMISSION = "You don't have permission to perform this action."
    SERVER = "Server error. Please try again later."
    VALIDATION = "Please check your input and try again."
    UNKNOWN = "An unexpected error occurred. Please try again."
    STORAGE = "Database operation failed"


KIND_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: ErrorMessages.VALIDATION,
    ErrorKind.NETWORK: ErrorMessages.NETWORK,
    ErrorKind.AUTH: ErrorMessages.AUTH,
    ErrorKind.PERMISSION: ErrorMessages.PERMISSION,
    ErrorKind.STORAGE: ErrorMessages.STORAGE,
    ErrorKind.SERVER: ErrorMessages.SERVER,
    ErrorKind.UNKNOWN: ErrorMessages.UNKNOWN,
}

# Backend storage code -> (message, code)
STORAGE_ERRORS: Dict[str, tuple[str, str]] = {
    "PGRST116": ("The requested resource was not found", "NOT_FOUND"),
    "PGRST301": ("You don't have permission to access this resource", "PERMISSION_DENIED"),
    "23505": ("This record already exists", "DUPLICATE_ENTRY"),
    "23503": ("This action would violate data integrity constraints", "FOREIGN_KEY_VIOLATION"),
    "42P01": ("Database table not found", "TABLE_NOT_FOUND"),
}


class ApiError(BaseModel):
    """Uniform error record returned to callers."""

    message: str = Field(description="User-safe message")
    code: str = Field(description="Stable machine-matchable code")
    field: Optional[str] = Field(default=None, description="First offending field, if any")
    details: Optional[Any] = Field(default=None, description="Per-kind structured payload")


class ErrorResponse(BaseModel):
    """Error envelope used by HTTP responses."""

    error: bool = True
    message: str
    code: Optional[str] = None
    details: Optional[Any] = None


def _dotted(path: Any) -> str:
    joined = ".".join(str(part) for part in path)
    return joined or "_form"


def flatten_field_errors(raw: Any) -> Dict[str, str]:
    """Flatten nested field-path errors into ``{"a.b.0": message}``.

    When a path repeats, the last message wins.
    """
    field_errors: Dict[str, str] = {}

    if isinstance(raw, PydanticValidationError):
        for issue in raw.errors():
            field_errors[_dotted(issue.get("loc", ()))] = issue.get("msg", "Invalid value")
    elif isinstance(raw, FieldValidationError):
        for path, message in raw.issues:
            field_errors[_dotted(path)] = message

    return field_errors


class ErrorFormatter:
    """Builds ``ApiError`` records from classified failures."""

    def format(self, raw: Any, kind: ErrorKind) -> ApiError:
        """Format a raw failure of a known kind. Never raises."""
        try:
            if kind == ErrorKind.VALIDATION:
                return self._format_validation(raw)
            if kind == ErrorKind.STORAGE:
                return self._format_storage(raw)
            return ApiError(message=KIND_MESSAGES[kind], code=kind.code)
        except Exception as e:
            logger.warning("error_format_failed", kind=kind.value, error=str(e))
            return ApiError(message=ErrorMessages.UNKNOWN, code=ErrorKind.UNKNOWN.code)

    def _format_validation(self, raw: Any) -> ApiError:
        field_errors = flatten_field_errors(raw)
        if not field_errors:
            details = getattr(raw, "details", None)
            if isinstance(details, Mapping):
                field_errors = {str(k): str(v) for k, v in details.items()}

        return ApiError(
            message=ErrorMessages.VALIDATION,
            code=ErrorKind.VALIDATION.code,
            field=next(iter(field_errors), None),
            details=field_errors,
        )

    def _format_storage(self, raw: Any) -> ApiError:
        code = extract_code(raw)
        if code in STORAGE_ERRORS:
            message, mapped_code = STORAGE_ERRORS[code]
            return ApiError(message=message, code=mapped_code)

        raw_message = raw.get("message") if isinstance(raw, Mapping) else getattr(raw, "message", None)
        return ApiError(
            message=str(raw_message) if raw_message else ErrorMessages.STORAGE,
            code=code or ErrorKind.STORAGE.code,
        )


_default_formatter = ErrorFormatter()


def format_error(raw: Any, kind: ErrorKind) -> ApiError:
    """Format a raw failure with the default formatter."""
    return _default_formatter.format(raw, kind)


def handle_error(
    raw: Any,
    context: Optional[str] = None,
    metrics: Optional[MetricsCollector] = None,
    classifier: Optional[ErrorClassifier] = None,
) -> ApiError:
    """Classify, log and format a raw failure.

    The raw exception text is logged server-side only.

    Args:
        raw: The failure (exception or error-shaped object).
        context: Label for the call site, e.g. ``"projects.create"``.
        metrics: Collector that receives ``errors_total{kind}``.
        classifier: Classifier to use instead of the default one.

    Returns:
        A user-safe ``ApiError``.
    """
    kind = classifier.classify(raw) if classifier else classify(raw)

    logger.error(
        "error_handled",
        context=context or "unknown",
        kind=kind.value,
        error_type=type(raw).__name__,
        error=str(raw),
    )

    if metrics is not None:
        metrics.increment("errors_total", labels={"kind": kind.value})

    return format_error(raw, kind)


def wrap_api_error(
    raw: Any,
    context: Optional[str] = None,
    metrics: Optional[MetricsCollector] = None,
    classifier: Optional[ErrorClassifier] = None,
) -> ErrorResponse:
    """Wrap a raw failure into the HTTP error envelope."""
    api_error = handle_error(raw, context=context, metrics=metrics, classifier=classifier)
    return ErrorResponse(
        message=api_error.message,
        code=api_error.code,
        details=api_error.details,
    )
