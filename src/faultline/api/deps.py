"""FastAPI dependency injection for the components built in the lifespan.

Usage in routers::

    from faultline.api.deps import Alerts

    @router.post("")
    async def submit(router: Alerts):
        ...
"""

from typing import Annotated

from fastapi import Depends, Request

from faultline.alerts import AlertRouter
from faultline.api.app import Components
from faultline.ingestion import LogIngestor
from faultline.metrics import MetricsCollector
from faultline.security import CsrfTokenIssuer


def get_components(request: Request) -> Components:
    return request.app.state.components


def get_alerts(request: Request) -> AlertRouter:
    return get_components(request).alerts


def get_metrics(request: Request) -> MetricsCollector:
    return get_components(request).metrics


def get_ingestor(request: Request) -> LogIngestor:
    return get_components(request).ingestor


def get_csrf(request: Request) -> CsrfTokenIssuer:
    return get_components(request).csrf


Alerts = Annotated[AlertRouter, Depends(get_alerts)]
Metrics = Annotated[MetricsCollector, Depends(get_metrics)]
Ingestor = Annotated[LogIngestor, Depends(get_ingestor)]
Csrf = Annotated[CsrfTokenIssuer, Depends(get_csrf)]
