"""Logs router: client log batch ingestion.

Endpoints:
    POST /logs    ``{"logs": [...]}``
"""

from typing import Any, Dict

from fastapi import APIRouter, Request

from faultline.api.deps import Ingestor

router = APIRouter(prefix="/logs", tags=["logs"])


@router.post("")
async def ingest_logs(request: Request, ingestor: Ingestor) -> Dict[str, Any]:
    """Accept a batch of client log entries."""
    try:
        body = await request.json()
    except ValueError:
        body = None

    result = ingestor.ingest(body.get("logs") if isinstance(body, dict) else None)
    return {"status": "received", "processed": result.processed, "timestamp": result.timestamp}
