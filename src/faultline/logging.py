"""Structured logging configuration for faultline.

This module provides a centralized logging setup using structlog with support
for both development (colored console output) and production (JSON) modes,
plus redaction helpers for client-supplied payloads that end up in logs.
"""

import logging
import re
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import EventDict, Processor

APP_NAME = "faultline"
APP_VERSION = "0.3.0"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log events."""
    event_dict["app"] = APP_NAME
    event_dict["version"] = APP_VERSION
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    log_file: Optional[str] = None,
) -> None:
    """Configure structured logging for faultline.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Output format - "console" for colored development output,
                   "json" for structured production logging.
        log_file: Optional file path to write logs to. If None, logs to stdout.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handlers: List[logging.Handler]
    if log_file:
        handlers = [logging.FileHandler(log_file)]
    else:
        handlers = [logging.StreamHandler(sys.stdout)]

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )

    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(
                colors=log_file is None,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger instance with optional initial context.

    Args:
        name: Logger name, typically __name__ of the calling module.
        **initial_context: Additional context to bind to all log messages.

    Returns:
        A configured structlog logger instance.

    Example:
        >>> logger = get_logger(__name__, component="alerts")
        >>> logger.info("alert_received", alert_id="alert_1700000000000")
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def bind_context(**context: Any) -> None:
    """Bind request-scoped context to every subsequent log line.

    Example:
        >>> bind_context(request_id="abc123", session_id="s-42")
    """
    structlog.contextvars.bind_contextvars(**context)


def unbind_context(*keys: str) -> None:
    """Remove keys from the current logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all context from the current task."""
    structlog.contextvars.clear_contextvars()


class Redactor:
    """Redacts sensitive values from client-supplied data before logging.

    Client log batches, alert descriptions and error contexts arrive from
    browsers and may carry tokens, passwords or PII.
    """

    SENSITIVE_PATTERNS: List[tuple[str, re.Pattern]] = [
        ("api_key", re.compile(r"(api[_-]?key|apikey)[\s:=]+['\"]?([a-zA-Z0-9_\-\.]+)", re.IGNORECASE)),
        ("bearer_token", re.compile(r"bearer[\s]+([a-zA-Z0-9_\-\.]+)", re.IGNORECASE)),
        ("auth_token", re.compile(r"(auth[_-]?token|token)[\s:=]+['\"]?([a-zA-Z0-9_\-\.]+)", re.IGNORECASE)),
        ("password", re.compile(r"(password|passwd|pwd)[\s:=]+['\"]?([^\s'\"]+)", re.IGNORECASE)),
        ("credit_card", re.compile(r"\b\d{4}[\s\-]?\d{4}[\s\-]?\d{4}[\s\-]?\d{4}\b")),
        ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b")),
    ]

    SENSITIVE_FIELDS = {
        "password",
        "passwd",
        "pwd",
        "api_key",
        "apikey",
        "secret",
        "token",
        "authorization",
        "cookie",
        "credit_card",
    }

    def __init__(self, max_length: int = 1000, redact_patterns: bool = True):
        """Initialize redactor.

        Args:
            max_length: Maximum length of logged strings before truncation.
            redact_patterns: Enable pattern-based redaction inside strings.
        """
        self.max_length = max_length
        self.redact_patterns = redact_patterns

    def redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Redact sensitive fields from a dictionary, recursively."""
        redacted: Dict[str, Any] = {}
        for key, value in data.items():
            key_lower = str(key).lower()

            if any(sensitive in key_lower for sensitive in self.SENSITIVE_FIELDS):
                redacted[key] = "[REDACTED]"
            elif isinstance(value, dict):
                redacted[key] = self.redact_dict(value)
            elif isinstance(value, list):
                redacted[key] = [
                    self.redact_dict(item) if isinstance(item, dict) else item
                    for item in value
                ]
            elif isinstance(value, str):
                redacted[key] = self.truncate(self.redact_string(value))
            else:
                redacted[key] = value

        return redacted

    def redact_string(self, text: str) -> str:
        """Redact sensitive patterns from a string."""
        if not self.redact_patterns:
            return text

        redacted = text
        for pattern_name, pattern in self.SENSITIVE_PATTERNS:
            redacted = pattern.sub(f"[REDACTED_{pattern_name.upper()}]", redacted)

        return redacted

    def truncate(self, text: str) -> str:
        """Truncate text to max length."""
        if len(text) <= self.max_length:
            return text

        return text[: self.max_length] + "... [truncated]"


# Initialize with sensible defaults
configure_logging()
