"""
api/routes/v1/otp.py -- One-time passcode bookkeeping endpoints.

Routes:
  POST /api/v1/auth/otp            -- record a sent code (API name "otp")
  POST /api/v1/auth/otp/resend     -- record a re-sent code ("otp_resend")
  POST /api/v1/auth/otp/validate   -- verify a submitted code ("otp_validate")

The client application delivers the SMS itself; these endpoints only keep
the ledger. A code is accepted at most once, only while unexpired, and only
for the exact (username, mobileno, session_id) it was recorded for.

/validate adds a plain "validcheck" field ("1" accepted, "0" otherwise) next
to the sealed "Data" so clients can branch without decrypting.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.envelope import encrypted_response
from api.limiter import limiter
from api.models import OtpIssuedPayload, OtpRequest, OtpValidateRequest, OtpValidationPayload
from auth.dependencies import enforce_api_policy
from auth.models import OtpOutcome, OtpRecord
from auth.otp import OtpLedger
from core.config import get_settings

logger = logging.getLogger("hrauth.api.otp")

router = APIRouter()

_MESSAGES = {
    OtpOutcome.verified: "OTP verified successfully",
    OtpOutcome.expired: "OTP expired or invalid",
    OtpOutcome.not_found: "Invalid OTP or OTP not found",
}


@router.post("/auth/otp")
def record_otp(request: Request, body: OtpRequest) -> JSONResponse:
    """Record a freshly sent code for a login session."""
    enforce_api_policy(request, "otp", body.token)
    ledger: OtpLedger = request.app.state.otp
    record = ledger.issue(body.username, body.mobileno, body.otp, body.session_id)
    return encrypted_response(request, _issued(record))


@router.post("/auth/otp/resend")
def resend_otp(request: Request, body: OtpRequest) -> JSONResponse:
    """Record a re-sent code. Earlier codes keep their own expiry."""
    enforce_api_policy(request, "otp_resend", body.token)
    ledger: OtpLedger = request.app.state.otp
    record = ledger.resend(body.username, body.mobileno, body.otp, body.session_id)
    return encrypted_response(request, _issued(record))


@router.post("/auth/otp/validate")
@limiter.limit(get_settings().otp_rate_limit)
def validate_otp(request: Request, body: OtpValidateRequest) -> JSONResponse:
    """Verify a submitted code. Marks it used on success."""
    enforce_api_policy(request, "otp_validate", body.token)
    ledger: OtpLedger = request.app.state.otp
    result = ledger.validate(body.username, body.mobileno, body.session_id, body.otp)

    validcheck = "1" if result.matched else "0"
    if result.matched:
        payload = OtpValidationPayload(
            success=True,
            message=_MESSAGES[result.outcome],
            validcheck=validcheck,
            username=body.username,
            mobileno=body.mobileno,
            session_id=body.session_id,
        )
    else:
        logger.info("OTP rejected for session %s: %s", body.session_id, result.outcome.value)
        payload = OtpValidationPayload(success=False, message=_MESSAGES[result.outcome], validcheck=validcheck)
    return encrypted_response(request, payload, validcheck=validcheck)


def _issued(record: OtpRecord) -> OtpIssuedPayload:
    return OtpIssuedPayload(
        message="OTP record inserted successfully",
        id=record.id,
        session_id=record.session_id,
        resend_count=record.resend_count,
        valid_till=record.valid_till,
    )
