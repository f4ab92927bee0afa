"""
auth/store.py -- Shared SQLAlchemy Core plumbing for the auth repositories.

Pattern: Repository + Data Mapper. Each repository module (sessions.py,
otp.py, employees.py, gatekeeper.py) owns its Table definitions on its own
MetaData and creates them on the engine it is given. This module only builds
engines and timestamps so every repository does both the same way.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps:
  Stored as UTC ISO 8601 strings with fixed microsecond precision. A fixed
  width means lexical comparison in SQL equals chronological comparison,
  which the OTP expiry check relies on.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Create an Engine for a repository.

    SQLite URLs get check_same_thread=False (FastAPI runs sync handlers in a
    thread pool) and WAL mode. Other backends are used as configured.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")
