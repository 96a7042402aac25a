"""CSRF router: token issuance and presence check.

Endpoints:
    GET  /security/csrf    Issue a token (body and ``__Host-`` cookie)
    POST /security/csrf    Check that a token was supplied
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Cookie, Header, Request, Response

from faultline.api.deps import Csrf
from faultline.security import CSRF_COOKIE_NAME

router = APIRouter(prefix="/security/csrf", tags=["security"])


@router.get("")
def issue_token(
    response: Response,
    csrf: Csrf,
    session_cookie: Optional[str] = Cookie(default=None, alias="session-id"),
    session_header: Optional[str] = Header(default=None, alias="x-session-id"),
) -> Dict[str, Any]:
    """Issue a session-bound token and set it as a strict cookie."""
    token = csrf.issue(session_cookie or session_header)
    response.set_cookie(
        CSRF_COOKIE_NAME,
        token.token,
        max_age=token.max_age,
        path="/",
        secure=True,
        httponly=True,
        samesite="strict",
    )
    return {"csrfToken": token.token, "timestamp": datetime.now(timezone.utc).isoformat()}


@router.post("")
async def verify_token(request: Request, csrf: Csrf) -> Dict[str, Any]:
    """Presence check only; signature verification happens in middleware."""
    try:
        body = await request.json()
    except ValueError:
        body = None
    csrf.verify_present(body.get("token") if isinstance(body, dict) else None)
    return {
        "valid": True,
        "message": "CSRF token validation endpoint (validation occurs in middleware)",
    }
