"""faultline: error classification, recovery and operational signals.

faultline normalizes heterogeneous failures into a small set of kinds,
retries transient work with bounded backoff, contains failures per UI
boundary, and routes alerts, metrics and client logs.
"""

__version__ = "0.3.0"

# Logging exports
from faultline.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Error exports
from faultline.errors import (
    ActionNotAvailable,
    ConfigurationError,
    FaultlineError,
    FieldValidationError,
    InvalidLogBatch,
    InvalidSample,
    LastAttemptError,
    MissingIdentifier,
    RetryCancelled,
    StorageError,
)

# Classification and formatting exports
from faultline.classification import ErrorClassifier, ErrorKind, classify
from faultline.formatting import ApiError, ErrorFormatter, format_error, handle_error

# Recovery exports
from faultline.retry import CancellationToken, RetryPolicy, retry, with_retry
from faultline.containment import ContainmentLevel, ContainmentScope, RecoveryAction

# Signal exports
from faultline.alerts import AlertRouter, AlertSeverity, AlertType
from faultline.metrics import MetricsCollector, MetricSample, TimeRange
from faultline.reporting import ErrorReporter
from faultline.ingestion import LogIngestor
from faultline.security import CsrfTokenIssuer

# Config exports
from faultline.config import FaultlineConfig, load_config

__all__ = [
    "__version__",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    # Errors
    "FaultlineError",
    "InvalidSample",
    "MissingIdentifier",
    "LastAttemptError",
    "RetryCancelled",
    "ActionNotAvailable",
    "InvalidLogBatch",
    "ConfigurationError",
    "FieldValidationError",
    "StorageError",
    # Classification and formatting
    "ErrorKind",
    "ErrorClassifier",
    "classify",
    "ApiError",
    "ErrorFormatter",
    "format_error",
    "handle_error",
    # Recovery
    "RetryPolicy",
    "CancellationToken",
    "retry",
    "with_retry",
    "ContainmentLevel",
    "ContainmentScope",
    "RecoveryAction",
    # Signals
    "AlertRouter",
    "AlertSeverity",
    "AlertType",
    "MetricsCollector",
    "MetricSample",
    "TimeRange",
    "ErrorReporter",
    "LogIngestor",
    "CsrfTokenIssuer",
    # Config
    "FaultlineConfig",
    "load_config",
]
