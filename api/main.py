"""
api/main.py -- FastAPI application entry point for hrauth.

Run with:  uvicorn asgi:app
           python main.py serve

Middleware stack (outermost to innermost):
  1. log_requests        -- method, path, status, latency, client IP
  2. SlowAPIMiddleware   -- enforces rate limits from api.limiter

Lifespan builds every long-lived collaborator once from Settings and hangs it
on app.state; route handlers read them from request.app.state. Keys are
handed to SymmetricCipher and TokenIssuer here and nowhere else.

Error mapping (all handlers below):
  format errors     -> plain ErrorResponse, 400
  policy rejection  -> sealed {"Status", "Message", "Data": []}, 401/403
  rate limit        -> plain ErrorResponse, 429
  anything else     -> plain "Internal Server Error", 500 (logged in full)
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.envelope import encrypted_response
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse, PolicyRejectionPayload
from api.routes.v1.auth import router as auth_router
from api.routes.v1.otp import router as otp_router
from api.routes.v1.sessions import router as sessions_router
from auth.credentials import CredentialFormatError
from auth.directory import DirectoryUnavailableError, DirectoryVerifier
from auth.employees import EmployeeStore
from auth.gatekeeper import PolicyRejectedError, PolicyStore
from auth.otp import OtpLedger
from auth.service import EmployeeRecordMissingError, LoginService
from auth.sessions import SessionRegister
from auth.store import create_store_engine
from auth.tokens import TokenIssuer
from core.cipher import SymmetricCipher
from core.config import get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("hrauth.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build collaborators on startup; dispose engines on shutdown.

    Stores that point at the same database URL share one engine.
    """
    settings = get_settings()
    logger.info("hrauth API starting up (supersede policy=%s)", settings.session_supersede_policy)

    engines: dict = {}

    def engine_for(url: str):
        if url not in engines:
            engines[url] = create_store_engine(url)
        return engines[url]

    app.state.cipher = SymmetricCipher(settings.encryption_key)
    app.state.token_issuer = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
    app.state.sessions = SessionRegister(
        engine_for(settings.database_url),
        supersede_policy=settings.session_supersede_policy,
    )
    app.state.otp = OtpLedger(engine_for(settings.database_url), valid_seconds=settings.otp_valid_seconds)
    app.state.employees = EmployeeStore(engine_for(settings.resolved_hr_database_url))
    app.state.policy = PolicyStore(engine_for(settings.resolved_policy_database_url), settings.secret_key)
    app.state.directory = DirectoryVerifier.from_settings(settings)
    app.state.login_service = LoginService(
        cipher=app.state.cipher,
        directory=app.state.directory,
        employees=app.state.employees,
        sessions=app.state.sessions,
        tokens=app.state.token_issuer,
    )
    logger.info("Stores initialized (%d database engine(s))", len(engines))

    yield

    for engine in engines.values():
        engine.dispose()
    logger.info("hrauth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="hrauth API",
    description="Directory login, session and one-time passcode service with encrypted responses.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Login"])
app.include_router(otp_router, prefix="/api/v1", tags=["OTP"])
app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON and missing or mistyped fields are a plain 400."""
    return _error(400, "invalid_request", "Invalid request body.", str(exc.errors()))


@app.exception_handler(CredentialFormatError)
async def credential_format_handler(request: Request, exc: CredentialFormatError) -> JSONResponse:
    logger.warning("Rejected malformed credentials on %s (field=%s)", request.url.path, exc.field)
    return _error(400, "invalid_format", exc.message)


@app.exception_handler(PolicyRejectedError)
async def policy_rejected_handler(request: Request, exc: PolicyRejectedError) -> JSONResponse:
    """Seal the gatekeeper's reason; the numeric code travels inside the envelope."""
    return encrypted_response(
        request,
        PolicyRejectionPayload(Status=exc.reason.code, Message=exc.reason.value),
        status_code=exc.reason.http_status,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Registered on Starlette's base class so router-level 404/405 get the same
    envelope. Route helpers raise HTTPException with a dict detail; use it
    directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(
            exclude_none=True
        ),
        headers=exc.headers,
    )


@app.exception_handler(DirectoryUnavailableError)
@app.exception_handler(EmployeeRecordMissingError)
@app.exception_handler(SQLAlchemyError)
async def infrastructure_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Known infrastructure faults. Detail goes to the log, never to the client."""
    logger.exception("Infrastructure failure on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "Internal Server Error")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. Same body as infrastructure faults."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "Internal Server Error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Not rate limited and not behind the gatekeeper: load balancers must reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a session database probe."""
    database = "ok" if request.app.state.sessions.ping() else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
