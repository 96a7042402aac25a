"""Metrics router: export and ingestion of metric samples.

Endpoints:
    GET  /metrics?format=json|prometheus&range=5m|1h|24h|7d
    POST /metrics
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

from faultline.api.deps import Metrics
from faultline.errors import InvalidSample
from faultline.metrics import ExportFormat, TimeRange

router = APIRouter(prefix="/metrics", tags=["metrics"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("")
def export_metrics(
    metrics: Metrics,
    format: str = Query(default=ExportFormat.JSON.value),
    range: str = Query(default=TimeRange.ONE_HOUR.value),
):
    """Export the current metrics snapshot."""
    metrics.sample_runtime()

    if format == ExportFormat.PROMETHEUS.value:
        return PlainTextResponse(
            metrics.export(ExportFormat.PROMETHEUS, range),
            media_type=CONTENT_TYPE_LATEST,
            headers=NO_CACHE_HEADERS,
        )
    return JSONResponse(metrics.export(ExportFormat.JSON, range), headers=NO_CACHE_HEADERS)


@router.post("")
async def record_metric(request: Request, metrics: Metrics) -> Dict[str, Any]:
    """Record one custom metric sample."""
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise InvalidSample("Invalid metric format. Required: name, value")

    timestamp: Optional[datetime] = None
    raw_ts = body.get("timestamp")
    if raw_ts is not None:
        timestamp = _parse_timestamp(raw_ts)

    labels = body.get("labels") or {}
    if not isinstance(labels, dict):
        raise InvalidSample("Metric labels must be an object", body.get("name"), body.get("value"))

    metrics.record(body.get("name"), body.get("value"), labels, timestamp)
    return {"status": "received", "timestamp": datetime.now(timezone.utc).isoformat()}


def _parse_timestamp(raw: Any) -> datetime:
    try:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            # Browsers send epoch milliseconds
            return datetime.fromtimestamp(raw / 1000.0, tz=timezone.utc)
        if isinstance(raw, str):
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        pass
    raise InvalidSample("Invalid metric timestamp", value=raw)
