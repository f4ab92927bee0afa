"""
auth/dependencies.py -- FastAPI helpers for request authorization.

Two independent checks guard the endpoints:

  enforce_api_policy()    -- every endpoint. The body's "token" field is the
                             client application's pre-shared access key; it
                             must be alphanumeric (400 otherwise) and pass the
                             PolicyStore check (PolicyRejectedError otherwise,
                             rendered as an encrypted rejection by api/main.py).

  require_bearer_token()  -- session endpoints only. Authorization: Bearer
                             <jwt> issued at login; 401 if missing, malformed,
                             badly signed or expired.

  require_session_owner() -- session endpoints only. The token's userId must
                             name the session in the body; 403 otherwise.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.gatekeeper import AccessKeyFormatError, AccessReason, PolicyRejectedError, validate_access_key_format


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_api_policy(request: Request, api_name: str, access_key: str) -> None:
    """Run the gatekeeper for one request. Returns normally only on Success."""
    try:
        validate_access_key_format(access_key)
    except AccessKeyFormatError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_token", "message": str(exc)},
        ) from exc

    policy = request.app.state.policy
    reason = policy.check(access_key, client_ip(request), api_name, request.url.path)
    if reason is not AccessReason.success:
        raise PolicyRejectedError(reason)


def require_bearer_token(request: Request) -> dict:
    """Require a valid identity token. Returns its claims.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(claims: dict = Depends(require_bearer_token)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authorization header missing"},
        )
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid Authorization header format"},
        )

    claims = request.app.state.token_issuer.verify(auth_header[7:])
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid or expired token"},
        )
    return claims


def require_session_owner(claims: dict, session_id: str) -> None:
    """403 unless the identity token was issued for this session.

    The token's userId is the session id created at login, so a client can
    only read or close the session it logged in with.
    """
    if claims.get("userId") != session_id:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Token was not issued for this session"},
        )
