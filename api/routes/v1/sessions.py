"""
api/routes/v1/sessions.py -- Session lifecycle endpoints.

Routes:
  POST /api/v1/auth/session/timeout   -- close a session (API "session_timeout")
  POST /api/v1/auth/session           -- read a session record (API "session_data")

Both require Authorization: Bearer <token> from login (checked first), a
granted access key in the body (checked second), and that the token was
issued for the session_id in the body (checked last, 403 otherwise).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.envelope import encrypted_response
from api.models import (
    SessionDataPayload,
    SessionDataRequest,
    SessionRecords,
    SessionRow,
    SessionTimeoutRequest,
    SessionUpdatePayload,
)
from auth.dependencies import enforce_api_policy, require_bearer_token, require_session_owner
from auth.sessions import SessionRegister

router = APIRouter()


@router.post("/auth/session/timeout")
def session_timeout(
    request: Request,
    body: SessionTimeoutRequest,
    claims: dict = Depends(require_bearer_token),
) -> JSONResponse:
    """Mark a session inactive. idletimeout=1 records an inactivity timeout.

    Closing an already closed session, or one whose row no longer exists,
    is not an error; the response is the same either way.
    """
    enforce_api_policy(request, "session_timeout", body.token)
    require_session_owner(claims, body.session_id)
    register: SessionRegister = request.app.state.sessions
    register.close_session(body.session_id, idle_timeout=bool(body.idletimeout))
    return encrypted_response(
        request,
        SessionUpdatePayload(message=f"Session updated successfully with idletimeout={body.idletimeout}"),
    )


@router.post("/auth/session")
def session_data(
    request: Request,
    body: SessionDataRequest,
    claims: dict = Depends(require_bearer_token),
) -> JSONResponse:
    """Return the session record for session_id (zero or one rows)."""
    enforce_api_policy(request, "session_data", body.token)
    require_session_owner(claims, body.session_id)
    register: SessionRegister = request.app.state.sessions
    record = register.get_session(body.session_id)

    rows = []
    if record is not None:
        rows.append(
            SessionRow(
                session_id=record.session_id,
                employee_id=record.employee_id,
                username=record.username,
                department=record.department,
                is_active=record.is_active,
                idle_timeout=record.idle_timeout,
                login_date=record.login_date,
                logout_date=record.logout_date,
            )
        )
    return encrypted_response(request, SessionDataPayload(Data=SessionRecords(count=len(rows), records=rows)))
