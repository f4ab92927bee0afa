"""
API request and response models for hrauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Payload models describe the JSON that is sealed inside the {"Data": ...}
envelope. Their field names are the wire names the client application
already parses (userId, EmployeeId, MobileNumber, ...), so they are not
snake_case.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    username and password are hex-encoded block ciphertext. Their format is
    checked by the credential decoder, not here, so that a missing field and
    a malformed field produce the same 400 message.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = ""
    username: str = ""
    password: str = ""


def _digits(value: object) -> object:
    # Clients send mobile numbers and codes as JSON numbers or strings.
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value


class OtpRequest(BaseModel):
    """Request body for POST /api/v1/auth/otp and /auth/otp/resend."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = ""
    username: str = Field(min_length=1, max_length=255)
    mobileno: str = Field(min_length=1, max_length=20, pattern=r"^\+?\d+$")
    otp: str = Field(min_length=1, max_length=12, pattern=r"^\d+$")
    session_id: str = Field(min_length=1, max_length=64)

    @field_validator("mobileno", "otp", mode="before")
    @classmethod
    def coerce_numbers(cls, value: object) -> object:
        return _digits(value)


class OtpValidateRequest(OtpRequest):
    """Request body for POST /api/v1/auth/otp/validate. Same fields as OtpRequest."""


class SessionTimeoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/session/timeout.

    idletimeout is 1 when the client closed the session because of
    inactivity, 0 for an explicit logout. Any other value is treated as 0.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = ""
    session_id: str = Field(min_length=1, max_length=64)
    idletimeout: int = 0

    @field_validator("idletimeout", mode="before")
    @classmethod
    def clamp_idletimeout(cls, value: object) -> int:
        if value in (1, "1") and not isinstance(value, bool):
            return 1
        return 0


class SessionDataRequest(BaseModel):
    """Request body for POST /api/v1/auth/session."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = ""
    session_id: str = Field(min_length=1, max_length=64)


# ---------------------------------------------------------------------------
# Envelope payloads
# ---------------------------------------------------------------------------


class LoginSuccessPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool = True
    userId: str
    username: str
    EmployeeId: str
    MobileNumber: str
    token: str


class LoginFailurePayload(BaseModel):
    """valid=false. username is the plaintext login name on a directory
    mismatch, "Invalid" when the credentials could not be decrypted."""

    model_config = ConfigDict(frozen=True)

    valid: bool = False
    username: Optional[str] = None
    error: Optional[str] = None


class OtpIssuedPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    id: int
    session_id: str
    resend_count: int
    valid_till: str


class OtpValidationPayload(BaseModel):
    """Identity fields are echoed back only when the code was accepted."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    validcheck: str
    username: Optional[str] = None
    mobileno: Optional[str] = None
    session_id: Optional[str] = None


class SessionUpdatePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: int = 200
    message: str


class SessionRow(BaseModel):
    """One session_data record as returned by POST /auth/session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    employee_id: str
    username: str
    department: str
    is_active: bool
    idle_timeout: bool
    login_date: str
    logout_date: Optional[str] = None


class SessionRecords(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int
    records: list[SessionRow] = Field(default_factory=list)


class SessionDataPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    Status: int = 200
    message: str = "Success"
    Data: SessionRecords


class PolicyRejectionPayload(BaseModel):
    """Sealed body of a gatekeeper rejection. Status is the numeric reason code."""

    model_config = ConfigDict(frozen=True)

    Status: int
    Message: str
    Data: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Plain (unencrypted) responses
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on plain 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
