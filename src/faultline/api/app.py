"""FastAPI application factory.

``create_app()`` is the single composition root: the lifespan builds the
metrics collector, classifier, retry policy, alert router, error reporter,
log ingestor and CSRF issuer once, stores them on ``app.state`` and
closes them on shutdown. Routers receive them through ``faultline.api.deps``.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from faultline.alerts import AlertRouter, EscalationChannel, LogEscalationChannel, WebhookConfig, WebhookEscalationChannel
from faultline.classification import ErrorClassifier, ErrorKind
from faultline.config import FaultlineConfig
from faultline.errors import ClientError
from faultline.formatting import format_error, wrap_api_error
from faultline.ingestion import LogEntry, LogIngestor
from faultline.logging import APP_VERSION, configure_logging, get_logger
from faultline.metrics import MetricsCollector
from faultline.reporting import ErrorReporter
from faultline.retry import RetryPolicy
from faultline.security import CsrfTokenIssuer

logger = get_logger(__name__, component="api")


@dataclass
class Components:
    """Everything the routes need, built once per application."""

    config: FaultlineConfig
    metrics: MetricsCollector
    classifier: ErrorClassifier
    alerts: AlertRouter
    reporter: ErrorReporter
    ingestor: LogIngestor
    csrf: CsrfTokenIssuer
    retry_policy: RetryPolicy

    async def close(self) -> None:
        await self.reporter.drain()
        await self.alerts.close()


def _webhook_channels(configs: List[WebhookConfig], prefix: str) -> List[EscalationChannel]:
    return [
        WebhookEscalationChannel(cfg, name=f"{prefix}_webhook_{i}")
        for i, cfg in enumerate(configs)
    ]


def build_components(config: FaultlineConfig) -> Components:
    """Construct and wire every component from configuration."""
    metrics = MetricsCollector(max_samples=config.metrics.max_samples)
    metrics.describe("errors_total", "Handled errors by kind")
    metrics.describe("alerts_received_total", "Accepted alerts by type and severity")
    metrics.describe("client_logs_total", "Ingested client log entries by level")
    metrics.describe("process_uptime_seconds", "Seconds since the collector started")
    metrics.describe("process_max_resident_memory_bytes", "Peak resident memory of the process in bytes")

    classifier = ErrorClassifier()
    retry_policy = config.retry.to_policy()

    immediate = _webhook_channels(config.alerts.immediate_webhooks, "immediate")
    deferred = _webhook_channels(config.alerts.deferred_webhooks, "deferred")
    if config.alerts.log_channel:
        immediate.insert(0, LogEscalationChannel("on_call_log"))
        deferred.insert(0, LogEscalationChannel("team_log"))

    alerts = AlertRouter(
        immediate,
        deferred,
        metrics=metrics,
        channel_policy=retry_policy.model_copy(update={"max_attempts": config.alerts.channel_max_attempts}),
        channel_timeout=config.alerts.channel_timeout,
        max_recent=config.alerts.max_recent,
    )
    reporter = ErrorReporter(
        alerts=alerts,
        metrics=metrics,
        classifier=classifier,
        max_reports=config.reporting.max_reports,
    )

    def on_critical(entry: LogEntry) -> None:
        reporter.capture_exception(
            RuntimeError(entry.message),
            {"source": "client_log", "component": entry.component, "session_id": entry.session_id},
        )

    ingestor = LogIngestor(
        metrics=metrics,
        on_critical=on_critical,
        error_rate_threshold=config.ingestion.error_rate_threshold,
    )
    csrf = CsrfTokenIssuer(
        secret=config.security.csrf_secret,
        ttl=config.security.csrf_ttl_seconds,
    )

    return Components(
        config=config,
        metrics=metrics,
        classifier=classifier,
        alerts=alerts,
        reporter=reporter,
        ingestor=ingestor,
        csrf=csrf,
        retry_policy=retry_policy,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: build components on startup, close on shutdown."""
    config: FaultlineConfig = app.state.config
    components = build_components(config)
    app.state.components = components
    logger.info("faultline_api_starting", version=APP_VERSION, environment=config.environment)

    try:
        yield
    finally:
        await components.close()
        logger.info("faultline_api_stopped")


async def client_error_handler(request: Request, exc: ClientError) -> JSONResponse:
    """Malformed requests: 400 with the error message."""
    logger.warning("client_error", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=400, content={"error": exc.message, "code": exc.code})


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Request bodies that fail model validation: 400 with field details."""
    api_error = format_error(exc, ErrorKind.VALIDATION)
    return JSONResponse(status_code=400, content={"error": api_error.message, **api_error.model_dump(exclude_none=True)})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: 500 with a formatted, user-safe error body."""
    components: Optional[Components] = getattr(request.app.state, "components", None)
    body = wrap_api_error(
        exc,
        context=f"{request.method} {request.url.path}",
        metrics=components.metrics if components else None,
        classifier=components.classifier if components else None,
    )
    return JSONResponse(status_code=500, content=body.model_dump())


def create_app(config: Optional[FaultlineConfig] = None) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Args:
        config: Configuration to use. Defaults to ``FaultlineConfig()``.
    """
    config = config or FaultlineConfig()
    configure_logging(
        log_level=config.logging.level,
        log_format=config.logging.format,
        log_file=str(config.logging.file) if config.logging.file else None,
    )

    app = FastAPI(title="faultline", version=APP_VERSION, lifespan=lifespan)
    app.state.config = config

    app.add_exception_handler(ClientError, client_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    from faultline.api.routers import alerts, csrf, logs, metrics

    app.include_router(alerts.router, prefix="/api")
    app.include_router(metrics.router, prefix="/api")
    app.include_router(csrf.router, prefix="/api")
    app.include_router(logs.router, prefix="/api")

    return app
