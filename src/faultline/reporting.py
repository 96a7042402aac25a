"""Error reporting for captured failures.

``ErrorReporter`` is the collaborator containment scopes notify. It turns a
``FailureReport`` into an ``ErrorReport`` (classified, user-safe, with a
redacted context), keeps a bounded buffer of recent reports, records user
feedback, and forwards page/section failures to the ``AlertRouter``.
"""

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from faultline.alerts import AlertRouter, AlertSeverity, AlertType
from faultline.classification import ErrorClassifier, ErrorKind
from faultline.containment import ContainmentLevel, FailureReport, new_correlation_id
from faultline.formatting import ErrorFormatter
from faultline.logging import Redactor, get_logger
from faultline.metrics import MetricsCollector

logger = get_logger(__name__, component="reporting")

# Which captured failures are worth an alert, and how loud.
LEVEL_SEVERITY: Dict[ContainmentLevel, AlertSeverity] = {
    ContainmentLevel.PAGE: AlertSeverity.HIGH,
    ContainmentLevel.SECTION: AlertSeverity.MEDIUM,
}


class ErrorReport(BaseModel):
    """A normalized, log-safe record of one captured failure."""

    correlation_id: str
    kind: ErrorKind
    user_message: str
    error_type: str
    error_message: str = Field(description="Raw text; kept server-side only")
    level: Optional[ContainmentLevel] = None
    scope: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    feedback: Optional[str] = None
    feedback_email: Optional[str] = None


class ErrorReporter:
    """Receives captured failures and routes them onward.

    Args:
        alerts: Router receiving alerts for page and section failures.
        metrics: Collector for report counters.
        classifier: Classifier for the captured error's kind.
        max_reports: Size of the in-memory recent-reports buffer.
        redactor: Scrubs sensitive context values before they are kept.
    """

    def __init__(
        self,
        alerts: Optional[AlertRouter] = None,
        metrics: Optional[MetricsCollector] = None,
        classifier: Optional[ErrorClassifier] = None,
        max_reports: int = 100,
        redactor: Optional[Redactor] = None,
    ):
        self._alerts = alerts
        self._metrics = metrics
        self._classifier = classifier or ErrorClassifier()
        self._formatter = ErrorFormatter()
        self._redactor = redactor or Redactor()
        self._reports: Deque[ErrorReport] = deque(maxlen=max_reports)
        self._pending: Set[asyncio.Task] = set()

    def capture(self, failure: FailureReport) -> ErrorReport:
        """Notification hook for ``ContainmentScope``."""
        report = self._build(
            failure.error,
            failure.correlation_id,
            failure.context,
            level=failure.level,
            scope=failure.scope,
        )
        self._store(report)

        severity = LEVEL_SEVERITY.get(failure.level)
        if severity is not None and self._alerts is not None:
            self._forward(report, severity)
        return report

    def capture_exception(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> ErrorReport:
        """Report a failure that was not caught by a containment scope."""
        report = self._build(error, new_correlation_id(), context or {})
        self._store(report)
        return report

    def capture_feedback(self, failure: FailureReport, feedback: str, email: Optional[str] = None) -> None:
        """Feedback sink for ``ContainmentScope.send_feedback``."""
        for report in self._reports:
            if report.correlation_id == failure.correlation_id:
                report.feedback = feedback
                report.feedback_email = email
                break

        logger.info(
            "user_feedback_received",
            correlation_id=failure.correlation_id,
            scope=failure.scope,
            feedback=self._redactor.truncate(self._redactor.redact_string(feedback)),
        )
        if self._metrics is not None:
            self._metrics.increment("feedback_reports", labels={"level": failure.level.value})

    def recent(self) -> List[ErrorReport]:
        """Recent reports, newest first."""
        return list(reversed(self._reports))

    def clear(self) -> None:
        self._reports.clear()

    async def drain(self) -> None:
        """Wait for alert forwards still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _build(
        self,
        error: BaseException,
        correlation_id: str,
        context: Dict[str, Any],
        level: Optional[ContainmentLevel] = None,
        scope: Optional[str] = None,
    ) -> ErrorReport:
        kind = self._classifier.classify(error)
        return ErrorReport(
            correlation_id=correlation_id,
            kind=kind,
            user_message=self._formatter.format(error, kind).message,
            error_type=type(error).__name__,
            error_message=self._redactor.truncate(self._redactor.redact_string(str(error))),
            level=level,
            scope=scope,
            context=self._redactor.redact_dict(context),
        )

    def _store(self, report: ErrorReport) -> None:
        self._reports.append(report)
        logger.error(
            "error_reported",
            correlation_id=report.correlation_id,
            kind=report.kind.value,
            level=report.level.value if report.level else None,
            scope=report.scope,
            error_type=report.error_type,
            error=report.error_message,
            url=report.context.get("url"),
        )
        if self._metrics is not None:
            self._metrics.increment("error_reports", labels={"kind": report.kind.value})

    def _forward(self, report: ErrorReport, severity: AlertSeverity) -> None:
        event = {
            "id": report.correlation_id,
            "type": AlertType.ERROR.value,
            "severity": severity.value,
            "title": f"{report.level.value.capitalize()} failure in {report.scope}",
            "description": f"{report.error_type} ({report.kind.value}) at {report.context.get('url', 'unknown')}",
            "timestamp": report.captured_at.isoformat(),
        }
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("error_report_alert_skipped", correlation_id=report.correlation_id, reason="no_event_loop")
            return

        task = loop.create_task(self._alerts.submit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
