"""Alert ingestion, severity routing and escalation for faultline.

``AlertRouter.submit`` validates an incoming event, logs it, and picks an
escalation path from its severity:

- critical: immediate channels (page on-call, open an incident), awaited
  before ``submit`` returns;
- high: deferred channels (team notification), dispatched in the background;
- medium / low: logged only.

Escalation channels are fallible external calls. Each send runs under a
timeout and its own retry policy, and a failing channel never fails the
submission.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from faultline.errors import MissingIdentifier
from faultline.logging import get_logger
from faultline.metrics import MetricsCollector
from faultline.retry import RetryPolicy, retry

logger = get_logger(__name__, component="alerts")


class AlertType(str, Enum):
    """Alert categories."""

    PERFORMANCE = "performance"
    ERROR = "error"
    SECURITY = "security"
    BUSINESS = "business"


class AlertSeverity(str, Enum):
    """Alert severities, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EscalationPath(str, Enum):
    """Where an accepted alert was routed."""

    LOG = "log"
    TEAM = "team_notification"
    ON_CALL = "on_call"


SEVERITY_PATHS: Dict[AlertSeverity, EscalationPath] = {
    AlertSeverity.CRITICAL: EscalationPath.ON_CALL,
    AlertSeverity.HIGH: EscalationPath.TEAM,
    AlertSeverity.MEDIUM: EscalationPath.LOG,
    AlertSeverity.LOW: EscalationPath.LOG,
}

SEVERITY_ACTIONS: Dict[AlertSeverity, str] = {
    AlertSeverity.CRITICAL: "Immediate notification sent to on-call engineer",
    AlertSeverity.HIGH: "Notification sent to engineering team",
    AlertSeverity.MEDIUM: "Alert logged for review",
    AlertSeverity.LOW: "Information logged",
}

REQUIRED_FIELDS = ("type", "severity", "title", "description")

FORMAT_REASON = "Invalid alert format. Required: " + ", ".join(REQUIRED_FIELDS)
TYPE_REASON = "Invalid alert type. Must be one of: " + ", ".join(t.value for t in AlertType)
SEVERITY_REASON = "Invalid alert severity. Must be one of: " + ", ".join(s.value for s in AlertSeverity)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AlertEvent(BaseModel):
    """A validated alert."""

    model_config = {"extra": "ignore"}

    type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    id: Optional[str] = None
    timestamp: Optional[str] = Field(default=None, description="ISO-8601 time the producer observed the condition")


class AlertAccepted(BaseModel):
    """Response for an accepted alert."""

    status: str = "received"
    id: str
    action: str
    path: EscalationPath
    timestamp: str
    channels_notified: int = Field(default=0, description="Immediate channels that confirmed delivery")


class AlertRejected(BaseModel):
    """Response for an alert that failed validation."""

    reason: str


class AlertRecord(BaseModel):
    """An accepted alert kept in the recent-alerts buffer."""

    event: AlertEvent
    received_at: str
    path: EscalationPath
    resolved: bool = False
    resolution: Optional[str] = None
    resolved_at: Optional[str] = None


class AlertUpdate(BaseModel):
    """Result of a resolve/remove call."""

    status: str
    alert_id: str
    resolved: Optional[bool] = None
    timestamp: str


# ============================================================================
# Escalation channels
# ============================================================================


class EscalationChannel(ABC):
    """Abstract base class for escalation channels."""

    name: str = "channel"

    @abstractmethod
    async def send(self, alert: AlertEvent) -> bool:
        """Deliver an alert.

        Returns:
            True if delivered. Raising is also allowed; the router retries
            transient failures.
        """

    async def close(self) -> None:
        """Release channel resources."""


class LogEscalationChannel(EscalationChannel):
    """Log-only escalation channel (development and tests)."""

    def __init__(self, name: str = "log"):
        self.name = name

    async def send(self, alert: AlertEvent) -> bool:
        logger.warning(
            "alert_escalated",
            channel=self.name,
            alert_id=alert.id,
            severity=alert.severity.value,
            title=alert.title,
        )
        return True


class WebhookConfig(BaseModel):
    """Webhook-specific configuration."""

    model_config = {"extra": "forbid"}

    url: str = Field(description="Webhook URL")
    method: str = Field(default="POST", description="HTTP method")
    headers: Dict[str, str] = Field(default_factory=dict, description="HTTP headers")
    timeout_seconds: float = Field(default=10.0, gt=0, le=60, description="Request timeout")

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        """Validate HTTP method."""
        v = v.upper()
        if v not in {"POST", "PUT", "PATCH"}:
            raise ValueError(f"Invalid HTTP method: {v}")
        return v


class WebhookEscalationChannel(EscalationChannel):
    """Posts alerts to a webhook (paging service, incident tracker, chat)."""

    def __init__(
        self,
        config: WebhookConfig,
        name: str = "webhook",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.name = name
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def send(self, alert: AlertEvent) -> bool:
        payload = {
            "id": alert.id,
            "type": alert.type.value,
            "severity": alert.severity.value,
            "title": alert.title,
            "description": alert.description,
            "timestamp": alert.timestamp,
        }
        response = await self._client.request(
            method=self.config.method,
            url=self.config.url,
            json=payload,
            headers=self.config.headers,
        )
        response.raise_for_status()

        logger.info(
            "webhook_alert_sent",
            channel=self.name,
            alert_id=alert.id,
            url=self.config.url,
            status_code=response.status_code,
        )
        return True

    async def close(self) -> None:
        await self._client.aclose()


# ============================================================================
# Router
# ============================================================================


class AlertRouter:
    """Validates alerts and dispatches them along their escalation path.

    Example:
        >>> router = AlertRouter(immediate=[pager], deferred=[team_webhook])
        >>> result = await router.submit({"type": "error", "severity": "critical",
        ...                               "title": "DB down", "description": "primary unreachable"})
        >>> result.action
        'Immediate notification sent to on-call engineer'
    """

    def __init__(
        self,
        immediate: Sequence[EscalationChannel] = (),
        deferred: Sequence[EscalationChannel] = (),
        *,
        metrics: Optional[MetricsCollector] = None,
        channel_policy: Optional[RetryPolicy] = None,
        channel_timeout: float = 10.0,
        max_recent: int = 500,
    ):
        """Initialize alert router.

        Args:
            immediate: Channels used for critical alerts (paging, incidents).
            deferred: Channels used for high alerts (team notification).
            metrics: Collector for alert counters.
            channel_policy: Retry policy applied to every channel send.
            channel_timeout: Seconds allowed per channel send attempt.
            max_recent: Accepted alerts kept in memory for listing.
        """
        self.immediate = list(immediate)
        self.deferred = list(deferred)
        self._metrics = metrics
        self.channel_policy = channel_policy or RetryPolicy(max_attempts=3, base_delay=0.5)
        self._channel_timeout = channel_timeout
        self._max_recent = max_recent
        self._recent: "OrderedDict[str, AlertRecord]" = OrderedDict()
        self._pending: Set[asyncio.Task] = set()

    # Validation

    def validate(self, payload: Any) -> Union[AlertEvent, AlertRejected]:
        """Check required fields, then type, then severity."""
        if isinstance(payload, AlertEvent):
            return payload

        if not isinstance(payload, Mapping) or any(not payload.get(f) for f in REQUIRED_FIELDS):
            return AlertRejected(reason=FORMAT_REASON)

        alert_type = payload["type"]
        if not isinstance(alert_type, str) or alert_type not in {t.value for t in AlertType}:
            return AlertRejected(reason=TYPE_REASON)

        severity = payload["severity"]
        if not isinstance(severity, str) or severity not in {s.value for s in AlertSeverity}:
            return AlertRejected(reason=SEVERITY_REASON)

        try:
            return AlertEvent.model_validate(dict(payload))
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            return AlertRejected(reason=f"{FORMAT_REASON} (invalid: {fields})")

    # Submission

    async def submit(self, payload: Any) -> Union[AlertAccepted, AlertRejected]:
        """Validate and route one alert event."""
        validated = self.validate(payload)
        if isinstance(validated, AlertRejected):
            logger.warning("alert_rejected", reason=validated.reason)
            if self._metrics is not None:
                self._metrics.increment("alerts_rejected")
            return validated

        event = validated
        if not event.id:
            event = event.model_copy(update={"id": f"alert_{int(time.time() * 1000)}"})
        if not event.timestamp:
            event = event.model_copy(update={"timestamp": _now_iso()})

        path = SEVERITY_PATHS[event.severity]
        self._log_event(event)
        self._remember(event, path)

        if self._metrics is not None:
            self._metrics.increment(
                "alerts_received",
                labels={"type": event.type.value, "severity": event.severity.value},
            )

        notified = 0
        if path == EscalationPath.ON_CALL:
            notified = await self._escalate(path, self.immediate, event)
        elif path == EscalationPath.TEAM:
            task = asyncio.create_task(self._escalate(path, self.deferred, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return AlertAccepted(
            id=event.id,
            action=SEVERITY_ACTIONS[event.severity],
            path=path,
            timestamp=_now_iso(),
            channels_notified=notified,
        )

    def _log_event(self, event: AlertEvent) -> None:
        log = {
            AlertSeverity.CRITICAL: logger.critical,
            AlertSeverity.HIGH: logger.warning,
        }.get(event.severity, logger.info)
        log(
            "alert_received",
            alert_id=event.id,
            type=event.type.value,
            severity=event.severity.value,
            title=event.title,
            description=event.description,
            timestamp=event.timestamp,
        )

    async def _escalate(
        self,
        path: EscalationPath,
        channels: Sequence[EscalationChannel],
        event: AlertEvent,
    ) -> int:
        """Send to every channel; return how many confirmed delivery."""
        delivered = 0
        for channel in channels:

            async def attempt(channel: EscalationChannel = channel) -> bool:
                return await asyncio.wait_for(channel.send(event), timeout=self._channel_timeout)

            try:
                ok = await retry(attempt, self.channel_policy, metrics=self._metrics, name=f"escalate_{channel.name}")
            except Exception as e:
                logger.error(
                    "alert_escalation_failed",
                    alert_id=event.id,
                    path=path.value,
                    channel=channel.name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                ok = False

            if ok:
                delivered += 1
            if self._metrics is not None:
                self._metrics.increment(
                    "alert_escalations",
                    labels={"path": path.value, "channel": channel.name, "outcome": "delivered" if ok else "failed"},
                )

        logger.info(
            "alert_escalation_complete",
            alert_id=event.id,
            path=path.value,
            delivered=delivered,
            total_channels=len(channels),
        )
        return delivered

    # Update / removal / listing

    def resolve(self, alert_id: Optional[str], resolved: bool = True, resolution: Optional[str] = None) -> AlertUpdate:
        """Mark an alert resolved or unresolved.

        Raises:
            MissingIdentifier: If ``alert_id`` is empty.
        """
        if not alert_id:
            raise MissingIdentifier("Alert ID is required", field="alertId")

        now = _now_iso()
        record = self._recent.get(alert_id)
        if record is not None:
            record.resolved = bool(resolved)
            record.resolution = resolution
            record.resolved_at = now if resolved else None

        logger.info(
            "alert_resolved" if resolved else "alert_updated",
            alert_id=alert_id,
            resolution=resolution,
            known=record is not None,
        )
        return AlertUpdate(status="updated", alert_id=alert_id, resolved=bool(resolved), timestamp=now)

    def remove(self, alert_id: Optional[str]) -> AlertUpdate:
        """Remove an alert.

        Raises:
            MissingIdentifier: If ``alert_id`` is empty.
        """
        if not alert_id:
            raise MissingIdentifier("Alert ID is required", field="id")

        known = self._recent.pop(alert_id, None) is not None
        logger.info("alert_deleted", alert_id=alert_id, known=known)
        return AlertUpdate(status="deleted", alert_id=alert_id, timestamp=_now_iso())

    def list(
        self,
        severity: Optional[str] = None,
        type: Optional[str] = None,
        resolved: Optional[bool] = None,
        limit: int = 50,
    ) -> List[AlertRecord]:
        """Most recent accepted alerts first, optionally filtered."""
        records = []
        for record in reversed(self._recent.values()):
            if severity and record.event.severity.value != severity:
                continue
            if type and record.event.type.value != type:
                continue
            if resolved is not None and record.resolved != resolved:
                continue
            records.append(record)
            if len(records) >= limit:
                break
        return records

    def _remember(self, event: AlertEvent, path: EscalationPath) -> None:
        self._recent[event.id] = AlertRecord(event=event, received_at=_now_iso(), path=path)
        self._recent.move_to_end(event.id)
        while len(self._recent) > self._max_recent:
            self._recent.popitem(last=False)

    # Lifecycle

    async def drain(self) -> None:
        """Wait for background (deferred) escalations to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Drain pending escalations and close every channel."""
        await self.drain()
        for channel in self.immediate + self.deferred:
            try:
                await channel.close()
            except Exception as e:
                logger.error("alert_channel_close_failed", channel=channel.name, error=str(e))
