"""
auth/tokens.py -- Token Issuer: signed identity assertions.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry userId (the session id),
       username, employeeId, iat and exp (iat + 2 hours by default). They are
       stateless bearer tokens; nothing is persisted.

  Key: a single process-wide signing key, passed to the constructor once at
       startup (see core.config.Settings for the fail-fast rules). There is no
       module-level key and no runtime rotation.

  Verification returns None on any failure -- bad signature, an algorithm
       other than HS256, missing claims, or expiry passed. The route layer
       turns that into a 401.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from jose import JWTError, jwt

from auth.store import utcnow

logger = logging.getLogger("hrauth.tokens")

ALGORITHM = "HS256"
DEFAULT_EXPIRE_SECONDS = 2 * 60 * 60

_REQUIRED_CLAIMS = ("userId", "username", "employeeId", "exp")


class TokenIssuer:
    """Mint and verify HS256 identity tokens.

    Usage:
        issuer = TokenIssuer(settings.secret_key)
        token = issuer.issue(session_id, "alice", "E1001")
        claims = issuer.verify(token)  # dict, or None if invalid/expired
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("A signing key is required.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    def issue(self, user_id: str, username: str, employee_id: str) -> str:
        """Encode a signed token for a freshly opened session."""
        issued = self._clock()
        payload = {
            "userId": user_id,
            "username": username,
            "employeeId": employee_id,
            "iat": int(issued.timestamp()),
            "exp": int((issued + timedelta(seconds=self.expire_seconds)).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> dict | None:
        """Decode and verify a token. Returns the claims or None on any failure."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except JWTError as exc:
            logger.info("Rejected identity token: %s", exc)
            return None
        if any(claim not in payload for claim in _REQUIRED_CLAIMS):
            return None
        return payload
