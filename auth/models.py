"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work; these only carry shape between them.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass
class SessionRecord:
    """One login session.

    session_id doubles as the userId handed back to the client and embedded
    in the identity token. department holds the directory scope tag
    ("staff", "faculty", "project") that verified the login.

    At most one record per employee_id has is_active=True; the Session
    Register deactivates the previous one before inserting a new one.
    """

    session_id: str
    employee_id: str
    username: str
    department: str
    is_active: bool = True
    idle_timeout: bool = False
    login_date: str = ""  # ISO 8601, set by store on insert
    logout_date: str | None = None
    user_id: str | None = None
    id: int | None = None


@dataclass
class OtpRecord:
    """One passcode sent to a mobile number.

    status is 0 while pending and 1 once verified. A resend is a new row with
    a higher resend_count; older rows stay as audit history.
    """

    username: str
    mobile_no: str
    otp: str
    session_id: str
    sent_on: str
    valid_till: str
    status: int = 0
    verified_on: str | None = None
    resend_count: int = 1
    id: int | None = None


@dataclass
class Employee:
    """Employee facts looked up by directory login name."""

    login_name: str
    employee_id: str
    mobile_number: str


@dataclass(frozen=True)
class DirectoryMatch:
    """A directory entry that accepted the supplied password."""

    scope: str  # scope tag, e.g. "faculty"
    dn: str
    username: str


class OtpOutcome(str, Enum):
    verified = "verified"
    expired = "expired"
    not_found = "not_found"


@dataclass(frozen=True)
class OtpValidation:
    outcome: OtpOutcome

    @property
    def matched(self) -> bool:
        return self.outcome is OtpOutcome.verified


# ---------------------------------------------------------------------------
# Login results -- a closed set of shapes instead of free-form dicts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoginSuccess:
    user_id: str
    username: str
    employee_id: str
    mobile_number: str
    token: str
    scope: str


@dataclass(frozen=True)
class LoginRejected:
    """Credential-category failure. Never carries a plaintext secret.

    username is the decrypted username for a directory mismatch, the literal
    "Invalid" when decryption failed, and None when nothing was decoded.
    """

    error: str | None = None
    username: str | None = None
