"""Error classification for faultline.

Maps any raw failure (exception, response-like object or plain mapping) to
exactly one ``ErrorKind``. Classification is total: it never raises, and
anything it cannot place is ``ErrorKind.UNKNOWN``.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from faultline.errors import FieldValidationError
from faultline.logging import get_logger

logger = get_logger(__name__, component="classification")


class ErrorKind(str, Enum):
    """Closed classification of a failure's nature."""

    VALIDATION = "validation"
    NETWORK = "network"
    AUTH = "auth"
    PERMISSION = "permission"
    STORAGE = "storage"
    SERVER = "server"
    UNKNOWN = "unknown"

    @property
    def code(self) -> str:
        """Stable machine-matchable code for the kind."""
        return _KIND_CODES[self]

    @property
    def transient(self) -> bool:
        """Whether failures of this kind may succeed when retried."""
        return self in TRANSIENT_KINDS


_KIND_CODES = {
    ErrorKind.VALIDATION: "VALIDATION_ERROR",
    ErrorKind.NETWORK: "NETWORK_ERROR",
    ErrorKind.AUTH: "AUTH_ERROR",
    ErrorKind.PERMISSION: "PERMISSION_ERROR",
    ErrorKind.STORAGE: "DATABASE_ERROR",
    ErrorKind.SERVER: "SERVER_ERROR",
    ErrorKind.UNKNOWN: "UNKNOWN_ERROR",
}

TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.SERVER})

# PostgREST "row not found" / "permission denied" plus the Postgres codes the
# formatter translates.
STORAGE_CODES = frozenset({"PGRST116", "PGRST301", "23505", "23503", "42P01"})

AUTH_CODES = frozenset({"auth_error"})
NETWORK_CODES = frozenset({"NETWORK_ERROR"})

NETWORK_EXCEPTIONS = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def _field(raw: Any, name: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name)
    return getattr(raw, name, None)


def extract_code(raw: Any) -> Optional[str]:
    """Return the application/storage code carried by a raw failure."""
    code = _field(raw, "code")
    if code is None or isinstance(code, bool):
        return None
    return str(code)


def extract_status(raw: Any) -> Optional[int]:
    """Return the HTTP status carried by a raw failure, if any."""
    for name in ("status", "status_code"):
        status = _field(raw, name)
        if isinstance(status, int) and not isinstance(status, bool):
            return status

    response = _field(raw, "response")
    if response is not None:
        status = getattr(response, "status_code", None)
        if isinstance(status, int) and not isinstance(status, bool):
            return status
    return None


class ErrorClassifier:
    """Classifies raw failures into ``ErrorKind`` values.

    Checks run from most to least specific, first match wins: a storage
    error that also carries a generic 4xx status is classified by its
    storage code.

    Args:
        connectivity: Optional check returning False when the host is
            offline. A check that raises is treated as online.
    """

    def __init__(self, connectivity: Optional[Callable[[], bool]] = None):
        self._connectivity = connectivity

    def classify(self, raw: Any) -> ErrorKind:
        """Classify a raw failure. Never raises."""
        try:
            return self._classify(raw)
        except Exception as e:
            logger.warning(
                "classification_failed",
                raw_type=type(raw).__name__,
                error=str(e),
            )
            return ErrorKind.UNKNOWN

    def _classify(self, raw: Any) -> ErrorKind:
        if isinstance(raw, (PydanticValidationError, FieldValidationError)):
            return ErrorKind.VALIDATION

        code = extract_code(raw)
        status = extract_status(raw)

        if code in STORAGE_CODES:
            return ErrorKind.STORAGE

        if code in AUTH_CODES or status == 401:
            return ErrorKind.AUTH

        if status == 403:
            return ErrorKind.PERMISSION

        if status is not None and status >= 500:
            return ErrorKind.SERVER

        if code in NETWORK_CODES or isinstance(raw, NETWORK_EXCEPTIONS) or self._offline():
            return ErrorKind.NETWORK

        return ErrorKind.UNKNOWN

    def _offline(self) -> bool:
        if self._connectivity is None:
            return False
        try:
            return not self._connectivity()
        except Exception as e:
            logger.debug("connectivity_check_failed", error=str(e))
            return False


_default_classifier = ErrorClassifier()


def classify(raw: Any) -> ErrorKind:
    """Classify a raw failure with the default (always-online) classifier."""
    return _default_classifier.classify(raw)
