"""Alerts router: ingestion, listing and resolution of operational alerts.

Endpoints:
    POST   /alerts          Submit an alert
    GET    /alerts          List recent alerts
    PUT    /alerts          Resolve or reopen an alert
    DELETE /alerts?id=      Delete an alert
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from faultline.alerts import AlertRejected
from faultline.api.deps import Alerts
from faultline.errors import MissingIdentifier

router = APIRouter(prefix="/alerts", tags=["alerts"])


class AlertUpdateRequest(BaseModel):
    """Request body for resolving an alert."""

    alert_id: Optional[str] = Field(default=None, alias="alertId")
    resolved: bool = Field(default=True)
    resolution: Optional[str] = Field(default=None)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("")
async def submit_alert(request: Request, alerts: Alerts):
    """Validate and route an alert by severity."""
    result = await alerts.submit(await _json_body(request))
    if isinstance(result, AlertRejected):
        return JSONResponse(status_code=400, content={"error": result.reason})

    return {
        "status": result.status,
        "alertId": result.id,
        "timestamp": result.timestamp,
        "action": result.action,
    }


@router.get("")
def list_alerts(
    alerts: Alerts,
    severity: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None),
    resolved: Optional[bool] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
) -> Dict[str, Any]:
    """List recent alerts, newest first."""
    records = alerts.list(severity=severity, type=type, resolved=resolved, limit=limit)
    return {
        "alerts": [
            {
                **record.event.model_dump(mode="json"),
                "receivedAt": record.received_at,
                "path": record.path.value,
                "resolved": record.resolved,
                "resolution": record.resolution,
                "resolvedAt": record.resolved_at,
            }
            for record in records
        ],
        "total": len(records),
        "filters": {"severity": severity, "type": type, "resolved": resolved},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.put("")
async def update_alert(request: Request, alerts: Alerts) -> Dict[str, Any]:
    """Mark an alert resolved or unresolved."""
    body = await _json_body(request)
    if not isinstance(body, dict):
        raise MissingIdentifier("Alert ID is required", field="alertId")

    update = AlertUpdateRequest.model_validate(body)
    result = alerts.resolve(update.alert_id, update.resolved, update.resolution)
    return {
        "status": result.status,
        "alertId": result.alert_id,
        "resolved": result.resolved,
        "timestamp": result.timestamp,
    }


@router.delete("")
def delete_alert(alerts: Alerts, id: Optional[str] = Query(default=None)) -> Dict[str, Any]:
    """Delete an alert by id."""
    result = alerts.remove(id)
    return {"status": result.status, "alertId": result.alert_id, "timestamp": result.timestamp}
