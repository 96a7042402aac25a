"""Session-bound CSRF tokens.

Tokens are ``base64url(payload).base64url(signature)`` where the payload is
``session_id|issued_ms|nonce`` and the signature is an HMAC-SHA256 over the
encoded payload. The issuer keeps no state; validity is checked from the
token itself.
"""

import base64
import hashlib
import hmac
import secrets
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, Field

from faultline.errors import MissingIdentifier
from faultline.logging import get_logger

logger = get_logger(__name__, component="security")

CSRF_COOKIE_NAME = "__Host-csrf-token"
CSRF_TTL_SECONDS = 4 * 60 * 60
ANONYMOUS_SESSION = "anonymous"


class CsrfToken(BaseModel):
    """An issued token and its lifetime."""

    token: str
    session_id: str
    issued_at: datetime
    expires_at: datetime
    max_age: int = Field(description="Cookie max-age in seconds")


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class CsrfTokenIssuer:
    """Issues and validates HMAC-signed CSRF tokens.

    Args:
        secret: Signing key. A random key is generated when omitted, so
            tokens do not survive a restart.
        ttl: Token lifetime in seconds.
        clock: Time source in epoch seconds, injectable for tests.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        ttl: int = CSRF_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if secret is None:
            logger.warning("csrf_secret_generated", reason="no secret configured")
            secret = secrets.token_urlsafe(32)
        self._key = secret.encode("utf-8")
        self.ttl = ttl
        self._clock = clock

    def issue(self, session_id: Optional[str] = None) -> CsrfToken:
        session = session_id or ANONYMOUS_SESSION
        now = self._clock()
        issued_ms = int(now * 1000)
        payload = f"{session}|{issued_ms}|{secrets.token_hex(8)}".encode("utf-8")
        encoded = _b64(payload)
        token = f"{encoded}.{self._sign(encoded)}"

        logger.debug("csrf_token_issued", session_id=session)
        return CsrfToken(
            token=token,
            session_id=session,
            issued_at=datetime.fromtimestamp(now, timezone.utc),
            expires_at=datetime.fromtimestamp(now + self.ttl, timezone.utc),
            max_age=self.ttl,
        )

    def verify_present(self, token: Optional[str]) -> str:
        """Reject a request that carries no token at all."""
        if not token:
            raise MissingIdentifier("CSRF token is required", field="token")
        return token

    def validate(self, token: Optional[str], session_id: Optional[str] = None) -> bool:
        """Check signature, expiry and (when given) the bound session.

        Never raises; anything malformed is simply invalid.
        """
        if not token or token.count(".") != 1:
            return False

        encoded, signature = token.split(".")
        if not hmac.compare_digest(self._sign(encoded).encode("utf-8"), signature.encode("utf-8")):
            logger.warning("csrf_signature_mismatch")
            return False

        try:
            session, issued_ms, _nonce = _unb64(encoded).decode("utf-8").rsplit("|", 2)
            issued = int(issued_ms) / 1000.0
        except ValueError:
            return False

        if self._clock() > issued + self.ttl:
            return False
        if session_id and session != session_id:
            logger.warning("csrf_session_mismatch", expected=session_id)
            return False
        return True

    def _sign(self, encoded: str) -> str:
        return _b64(hmac.new(self._key, encoded.encode("utf-8"), hashlib.sha256).digest())
