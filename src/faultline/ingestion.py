"""Client log batch ingestion for faultline.

Browsers ship batches of log entries. Entries missing a required field or
carrying an unknown level are dropped silently (counted, not reported one
by one). A batch with many errors produces a rate warning, and every
critical entry is surfaced on its own, immediately.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from faultline.errors import InvalidLogBatch
from faultline.logging import Redactor, get_logger
from faultline.metrics import MetricsCollector

logger = get_logger(__name__, component="ingestion")

ERROR_RATE_THRESHOLD = 10


class LogLevel(str, Enum):
    """Levels accepted from clients."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    CRITICAL = "critical"


class LogEntry(BaseModel):
    """One client log entry."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    timestamp: str
    level: LogLevel
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = Field(default=None, alias="userId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    component: Optional[str] = None


class IngestResult(BaseModel):
    """Outcome of one batch."""

    received: int
    processed: int
    dropped: int
    errors: int = 0
    critical: int = 0
    rate_warning: bool = False
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


CriticalHook = Callable[[LogEntry], Any]


class LogIngestor:
    """Filters, inspects and forwards client log batches.

    Args:
        metrics: Collector for ingestion counters.
        on_critical: Called once per critical entry; failures are logged.
        error_rate_threshold: More error entries than this in one batch
            triggers a rate warning.
        redactor: Scrubs entry context before it is logged.
    """

    def __init__(
        self,
        metrics: Optional[MetricsCollector] = None,
        on_critical: Optional[CriticalHook] = None,
        error_rate_threshold: int = ERROR_RATE_THRESHOLD,
        redactor: Optional[Redactor] = None,
    ):
        self._metrics = metrics
        self._on_critical = on_critical
        self._error_rate_threshold = error_rate_threshold
        self._redactor = redactor or Redactor()

    def parse(self, entries: Any) -> List[LogEntry]:
        """Keep only well-formed entries."""
        if not isinstance(entries, list):
            raise InvalidLogBatch("Invalid logs format. Expected array of log entries.")

        valid: List[LogEntry] = []
        for raw in entries:
            if not isinstance(raw, dict) or not all(raw.get(f) for f in ("timestamp", "level", "message")):
                continue
            try:
                valid.append(LogEntry.model_validate(raw))
            except ValidationError:
                continue
        return valid

    def ingest(self, entries: Any) -> IngestResult:
        """Process one batch.

        Raises:
            InvalidLogBatch: If ``entries`` is not a list or nothing in it is valid.
        """
        valid = self.parse(entries)
        if not valid:
            raise InvalidLogBatch("No valid log entries found", received=len(entries))

        errors = [e for e in valid if e.level == LogLevel.ERROR]
        critical = [e for e in valid if e.level == LogLevel.CRITICAL]

        logger.info(
            "client_logs_received",
            received=len(entries),
            processed=len(valid),
            dropped=len(entries) - len(valid),
        )

        for entry in critical:
            self._surface(entry)

        rate_warning = len(errors) > self._error_rate_threshold
        if rate_warning:
            logger.warning(
                "client_error_rate_high",
                errors=len(errors),
                threshold=self._error_rate_threshold,
            )

        if self._metrics is not None:
            for entry in valid:
                self._metrics.increment("client_logs", labels={"level": entry.level.value})
            dropped = len(entries) - len(valid)
            if dropped:
                self._metrics.increment("client_logs_dropped", dropped)

        return IngestResult(
            received=len(entries),
            processed=len(valid),
            dropped=len(entries) - len(valid),
            errors=len(errors),
            critical=len(critical),
            rate_warning=rate_warning,
        )

    def _surface(self, entry: LogEntry) -> None:
        logger.critical(
            "client_critical_log",
            message=self._redactor.redact_string(entry.message),
            component=entry.component,
            user_id=entry.user_id,
            session_id=entry.session_id,
            client_timestamp=entry.timestamp,
            context=self._redactor.redact_dict(entry.context),
        )
        if self._on_critical is None:
            return
        try:
            self._on_critical(entry)
        except Exception as e:
            logger.error("critical_log_hook_failed", error_type=type(e).__name__, error=str(e))
