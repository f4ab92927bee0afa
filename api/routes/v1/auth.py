"""
api/routes/v1/auth.py -- Login endpoint.

Routes:
  POST /api/v1/auth/login   -- directory login; returns an encrypted envelope

Flow:
  1. Gatekeeper: body "token" must be a granted access key for API "login"
     from this client IP. Rejections are sealed by the PolicyRejectedError
     handler in api/main.py.
  2. LoginService decodes the hex credentials, verifies them against the
     directory, looks up the employee, supersedes the previous session and
     issues an identity token.

Response payloads (sealed):
  success   {valid: true, userId, username, EmployeeId, MobileNumber, token}
  rejected  {valid: false, username?, error?}

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every envelope.
  Malformed hex never reaches the cipher; CredentialFormatError is a plain 400.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.envelope import encrypted_response
from api.limiter import limiter
from api.models import LoginFailurePayload, LoginRequest, LoginSuccessPayload
from auth.dependencies import enforce_api_policy
from auth.models import LoginRejected
from auth.service import LoginService
from core.config import get_settings

router = APIRouter()


@router.post("/auth/login")
@limiter.limit(get_settings().login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate encrypted directory credentials and open a session."""
    enforce_api_policy(request, "login", body.token)

    service: LoginService = request.app.state.login_service
    result = service.login(body.username, body.password)
    if isinstance(result, LoginRejected):
        return encrypted_response(request, LoginFailurePayload(username=result.username, error=result.error))

    return encrypted_response(
        request,
        LoginSuccessPayload(
            userId=result.user_id,
            username=result.username,
            EmployeeId=result.employee_id,
            MobileNumber=result.mobile_number,
            token=result.token,
        ),
    )
