"""
auth/otp.py -- OTP Ledger: short-lived numeric passcodes tied to a session.

State machine per row:

    Pending (status=0) --validate ok--> Verified (status=1, verified_on set)
    Pending            --valid_till passes--> Expired (implicit, checked lazily)

There is no expiry job. A row is eligible for validation only while
verified_on IS NULL, status = 0 and now <= valid_till. Rows are never
deleted; every code sent, including resends, stays as history.

Exactly-once verification:
  validate() selects the newest eligible row and flips it with a conditional
  UPDATE (WHERE id = ? AND status = 0 AND verified_on IS NULL) inside the
  same transaction. Two concurrent validations of the same code can both
  select the row, but only one UPDATE matches it; the other sees rowcount 0
  and reports not_found.

The passcode itself is generated and delivered by the caller (SMS gateway);
this module only records and checks it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.models import OtpOutcome, OtpRecord, OtpValidation
from auth.store import to_iso, utcnow

logger = logging.getLogger("hrauth.otp")

DEFAULT_VALID_SECONDS = 45

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_otp = Table(
    "otp_details",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False),
    Column("mobile_no", String(32), nullable=False),
    Column("otp", String(16), nullable=False),
    Column("sent_on", String(32), nullable=False),
    Column("verified_on", Text),
    Column("status", Integer, nullable=False, server_default="0"),  # 0 pending, 1 verified
    Column("valid_till", String(32), nullable=False),
    Column("session_id", String(64), nullable=False, index=True),
    Column("resend_count", Integer, nullable=False, server_default="1"),
)


class OtpLedger:
    """Repository for OtpRecord entities.

    Usage:
        ledger = OtpLedger(engine)
        ledger.issue("alice", "9876543210", "482913", session_id)
        result = ledger.validate("alice", "9876543210", session_id, "482913")
        result.matched  # True once, False afterwards
    """

    def __init__(
        self,
        engine: Engine,
        valid_seconds: int = DEFAULT_VALID_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.valid_seconds = valid_seconds
        self._clock = clock
        _metadata.create_all(self.engine)

    def issue(self, username: str, mobile_no: str, code: str, session_id: str) -> OtpRecord:
        """Record a freshly sent code. resend_count starts at 1."""
        with self.engine.begin() as conn:
            return self._insert(conn, username, mobile_no, code, session_id, resend_count=1)

    def resend(self, username: str, mobile_no: str, code: str, session_id: str) -> OtpRecord:
        """Record a re-sent code as a new row.

        The previous rows are left untouched (an older code stays valid until
        its own window closes). resend_count is one more than the highest
        count already recorded for this session, username and mobile number.
        """
        with self.engine.begin() as conn:
            previous = conn.execute(
                select(func.max(_otp.c.resend_count)).where(
                    (_otp.c.session_id == session_id)
                    & (_otp.c.username == username)
                    & (_otp.c.mobile_no == mobile_no)
                )
            ).scalar()
            record = self._insert(conn, username, mobile_no, code, session_id, resend_count=(previous or 0) + 1)
        logger.info("OTP resent for session %s (count=%d)", session_id, record.resend_count)
        return record

    def validate(self, username: str, mobile_no: str, session_id: str, code: str) -> OtpValidation:
        """Check a submitted code and mark it verified on success.

        Picks the most recently sent pending row matching all four values.
        No mutation happens unless the outcome is verified.
        """
        now = to_iso(self._clock())
        with self.engine.begin() as conn:
            row = conn.execute(
                _otp.select()
                .where(
                    (_otp.c.username == username)
                    & (_otp.c.mobile_no == mobile_no)
                    & (_otp.c.session_id == session_id)
                    & (_otp.c.otp == code)
                    & (_otp.c.status == 0)
                    & (_otp.c.verified_on.is_(None))
                )
                .order_by(_otp.c.sent_on.desc(), _otp.c.id.desc())
                .limit(1)
            ).fetchone()
            if row is None:
                return OtpValidation(OtpOutcome.not_found)
            if row.valid_till < now:
                return OtpValidation(OtpOutcome.expired)

            result = conn.execute(
                _otp.update()
                .where((_otp.c.id == row.id) & (_otp.c.status == 0) & (_otp.c.verified_on.is_(None)))
                .values(status=1, verified_on=now)
            )
            if result.rowcount != 1:
                # Another request verified the same row between our SELECT and UPDATE.
                return OtpValidation(OtpOutcome.not_found)

        logger.info("OTP verified for session %s", session_id)
        return OtpValidation(OtpOutcome.verified)

    def history(self, session_id: str) -> list[OtpRecord]:
        """All codes recorded for a session, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_otp.select().where(_otp.c.session_id == session_id).order_by(_otp.c.id)).fetchall()
        return [_row_to_otp(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()

    def _insert(self, conn, username: str, mobile_no: str, code: str, session_id: str, resend_count: int) -> OtpRecord:
        sent = self._clock()
        record = OtpRecord(
            username=username,
            mobile_no=mobile_no,
            otp=code,
            session_id=session_id,
            sent_on=to_iso(sent),
            valid_till=to_iso(sent + timedelta(seconds=self.valid_seconds)),
            resend_count=resend_count,
        )
        result = conn.execute(
            _otp.insert().values(
                username=record.username,
                mobile_no=record.mobile_no,
                otp=record.otp,
                sent_on=record.sent_on,
                verified_on=None,
                status=0,
                valid_till=record.valid_till,
                session_id=record.session_id,
                resend_count=record.resend_count,
            )
        )
        record.id = result.inserted_primary_key[0]
        return record


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_otp(row) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        username=row.username,
        mobile_no=row.mobile_no,
        otp=row.otp,
        session_id=row.session_id,
        sent_on=row.sent_on,
        valid_till=row.valid_till,
        status=row.status,
        verified_on=row.verified_on,
        resend_count=row.resend_count,
    )
