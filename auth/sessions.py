"""
auth/sessions.py -- Session Register: one active session per employee.

Every successful login calls open_session(), which first deactivates all of
the employee's active sessions (supersede) and then inserts the new one.
Records are never deleted; session_data is an append-only login history.

Supersede policy:
  strict  -- supersede and insert share one transaction. If either fails the
             login fails and nothing is written.
  lenient -- supersede runs in its own transaction. If it fails the error is
             logged and the new session is still inserted, so a login is never
             blocked by cleanup of old rows. Two concurrent logins for the same
             employee can then leave two active rows.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import SessionRecord
from auth.store import to_iso, utcnow

logger = logging.getLogger("hrauth.sessions")

SUPERSEDE_POLICIES = ("lenient", "strict")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "session_data",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", String(36), nullable=False, unique=True),
    Column("user_id", String(36), nullable=False),
    Column("employee_id", String(64), nullable=False, index=True),
    Column("username", String(255), nullable=False),
    Column("department", String(64), nullable=False),  # directory scope tag
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("idle_timeout", Integer, nullable=False, server_default="0"),
    Column("login_date", String(32), nullable=False),
    Column("logout_date", Text),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionRegister:
    """Repository for SessionRecord entities.

    Usage:
        register = SessionRegister(engine)
        sid = register.open_session("E1001", "alice", "faculty")
        register.close_session(sid, idle_timeout=False)
    """

    def __init__(
        self,
        engine: Engine,
        supersede_policy: str = "lenient",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if supersede_policy not in SUPERSEDE_POLICIES:
            raise ValueError(f"Unknown supersede policy: {supersede_policy!r}")
        self.engine = engine
        self.supersede_policy = supersede_policy
        self._clock = clock
        _metadata.create_all(self.engine)

    def open_session(self, employee_id: str, username: str, scope: str) -> str:
        """Deactivate the employee's active sessions, then insert a new active one.

        Returns the new session identifier (a uuid4 string).
        """
        session_id = str(uuid.uuid4())
        now = to_iso(self._clock())
        record = SessionRecord(
            session_id=session_id,
            user_id=session_id,
            employee_id=employee_id,
            username=username,
            department=scope,
            login_date=now,
        )

        if self.supersede_policy == "strict":
            with self.engine.begin() as conn:
                self._supersede(conn, employee_id, now)
                self._insert(conn, record)
        else:
            try:
                with self.engine.begin() as conn:
                    self._supersede(conn, employee_id, now)
            except SQLAlchemyError:
                logger.warning("Failed to deactivate previous sessions for employee %s", employee_id, exc_info=True)
            with self.engine.begin() as conn:
                self._insert(conn, record)

        logger.info("New session created for employee %s with session ID %s", employee_id, session_id)
        return session_id

    def close_session(self, session_id: str, idle_timeout: bool) -> bool:
        """Mark a session inactive and stamp its logout time.

        Returns True if a row was updated, False if session_id was not found.
        An unknown id is not an error.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.session_id == session_id)
                .values(
                    is_active=0,
                    idle_timeout=1 if idle_timeout else 0,
                    logout_date=to_iso(self._clock()),
                )
            )
            updated = result.rowcount
        return updated > 0

    def get_session(self, session_id: str) -> SessionRecord | None:
        """Look up a session by its identifier. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.session_id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def active_sessions(self, employee_id: str) -> list[SessionRecord]:
        """Return the employee's active sessions, oldest first. Normally zero or one."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.employee_id == employee_id) & (_sessions.c.is_active == 1))
                .order_by(_sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def sessions_for(self, employee_id: str) -> list[SessionRecord]:
        """Full login history for an employee, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.employee_id == employee_id).order_by(_sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_sessions.select().limit(1)).fetchall()
        except SQLAlchemyError:
            logger.exception("Session store health check failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Steps (take an open connection so the caller owns the transaction)
    # ------------------------------------------------------------------

    def _supersede(self, conn: Connection, employee_id: str, now: str) -> int:
        result = conn.execute(
            _sessions.update()
            .where((_sessions.c.employee_id == employee_id) & (_sessions.c.is_active == 1))
            .values(is_active=0, idle_timeout=1, logout_date=now)
        )
        if result.rowcount:
            logger.info("Deactivated %d previous active sessions for employee %s", result.rowcount, employee_id)
        return result.rowcount

    def _insert(self, conn: Connection, record: SessionRecord) -> None:
        conn.execute(
            _sessions.insert().values(
                session_id=record.session_id,
                user_id=record.user_id or record.session_id,
                employee_id=record.employee_id,
                username=record.username,
                department=record.department,
                is_active=1,
                idle_timeout=0,
                login_date=record.login_date,
                logout_date=None,
            )
        )


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        session_id=row.session_id,
        user_id=row.user_id,
        employee_id=row.employee_id,
        username=row.username,
        department=row.department,
        is_active=bool(row.is_active),
        idle_timeout=bool(row.idle_timeout),
        login_date=row.login_date,
        logout_date=row.logout_date,
    )
