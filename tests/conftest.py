"""
tests/conftest.py -- Shared test fixtures for hrauth unit and integration tests.

This module provides:
  - cipher: SymmetricCipher bound to the test ENCRYPTION_KEY
  - memory_engine: isolated named shared-memory SQLite engine per test
  - directory_server / directory: ldap3 MOCK_SYNC directory seeded with users
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment must be set before any api/auth/core import so get_settings()
sees the test keys and the relaxed rate limits (routes read them at import).

Directory contents (password in parentheses):
  staff    bob (bobpw), carol (wrong-for-carol), dave (davepw)
  faculty  alice (alicepw), dave (davepw), eve (evepw)
  project  carol (carolpw)
eve has no employee record; every other user does.
"""

from __future__ import annotations

import json
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any project import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-0123456789")
os.environ.setdefault("ENCRYPTION_KEY", "0123456789abcdef0123456789abcdef")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("OTP_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from ldap3 import MOCK_SYNC, NONE, Connection, Server

from api.main import app
from auth.directory import DirectoryScope, DirectoryVerifier
from auth.employees import EmployeeStore
from auth.gatekeeper import PolicyStore
from auth.models import Employee
from auth.otp import OtpLedger
from auth.service import LoginService
from auth.sessions import SessionRegister
from auth.store import create_store_engine
from auth.tokens import TokenIssuer
from core.cipher import SymmetricCipher
from core.config import get_settings

ACCESS_KEY = "TestPortalKey2024"
ALL_API_NAMES = ["login", "otp", "otp_resend", "otp_validate", "session_timeout", "session_data"]

BIND_DN = "cn=bind,ou=bind,dc=example,dc=org"
BIND_PASSWORD = "bindpw"
TEST_SCOPES = [
    DirectoryScope("staff", "ou=staff,ou=people,dc=example,dc=org"),
    DirectoryScope("faculty", "ou=faculty,ou=people,dc=example,dc=org"),
    DirectoryScope("project", "ou=project,ou=employee,dc=example,dc=org"),
]

_DIRECTORY_USERS = [
    ("staff", "bob", "bobpw"),
    ("staff", "carol", "wrong-for-carol"),
    ("staff", "dave", "davepw"),
    ("faculty", "alice", "alicepw"),
    ("faculty", "dave", "davepw"),
    ("faculty", "eve", "evepw"),
    ("project", "carol", "carolpw"),
]

EMPLOYEES = [
    Employee(login_name="alice", employee_id="E1001", mobile_number="9876543210"),
    Employee(login_name="bob", employee_id="E1002", mobile_number="9876543211"),
    Employee(login_name="carol", employee_id="E1003", mobile_number="9876543212"),
    Employee(login_name="dave", employee_id="E1004", mobile_number="9876543213"),
]


def memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Crypto and storage
# ---------------------------------------------------------------------------


@pytest.fixture
def cipher() -> SymmetricCipher:
    return SymmetricCipher(get_settings().encryption_key)


@pytest.fixture
def memory_engine():
    """Engine over a private named shared-memory database. Disposed after the test."""
    engine = create_store_engine(memory_url("test"))
    yield engine
    engine.dispose()


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


def _seed_directory() -> Server:
    """Build a mock directory server. The DIT lives on the Server object, so
    any MOCK_SYNC connection opened against it later sees these entries."""
    server = Server("mock_directory", get_info=NONE)
    seed = Connection(server, user=BIND_DN, password=BIND_PASSWORD, client_strategy=MOCK_SYNC)
    seed.strategy.add_entry(BIND_DN, {"objectClass": "person", "cn": "bind", "userPassword": BIND_PASSWORD})
    for scope in TEST_SCOPES:
        seed.strategy.add_entry(scope.base_dn, {"objectClass": "organizationalUnit", "ou": scope.tag})
    for tag, uid, password in _DIRECTORY_USERS:
        base = next(s.base_dn for s in TEST_SCOPES if s.tag == tag)
        seed.strategy.add_entry(
            f"uid={uid},{base}",
            {"objectClass": "inetOrgPerson", "uid": uid, "cn": uid, "userPassword": password},
        )
    return server


@pytest.fixture
def directory_server() -> Server:
    return _seed_directory()


@pytest.fixture
def directory(directory_server: Server) -> DirectoryVerifier:
    return DirectoryVerifier(
        directory_server,
        bind_dn=BIND_DN,
        bind_password=BIND_PASSWORD,
        scopes=TEST_SCOPES,
        client_strategy=MOCK_SYNC,
    )


# ---------------------------------------------------------------------------
# API integration
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    """Everything an integration test needs: the client plus the live stores."""

    client: TestClient
    cipher: SymmetricCipher
    tokens: TokenIssuer
    sessions: SessionRegister
    otp: OtpLedger
    employees: EmployeeStore
    policy: PolicyStore

    def credential(self, value: str) -> str:
        """Hex ciphertext as the client application would send it."""
        return self.cipher.encrypt_block(value.encode("utf-8")).hex()

    def open(self, resp) -> dict:
        """Decrypt the Data field of an envelope response."""
        return json.loads(self.cipher.open(resp.json()["Data"]))

    def login(self, username: str, password: str, token: str = ACCESS_KEY):
        return self.client.post(
            "/api/v1/auth/login",
            json={"token": token, "username": self.credential(username), "password": self.credential(password)},
        )


def _patch_lifespan(ctx_parts: dict):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test collaborators into app.state so routes hit the
    isolated in-memory databases and the mock directory.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        for name, value in ctx_parts.items():
            setattr(app.state, name, value)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The access key is granted for every API name from the TestClient's
    address ("testclient"). Employee records exist for everyone in the
    directory except eve.
    """
    settings = get_settings()
    engine = create_store_engine(memory_url("api"))

    cipher = SymmetricCipher(settings.encryption_key)
    tokens = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
    sessions = SessionRegister(engine)
    otp = OtpLedger(engine)
    employees = EmployeeStore(engine)
    policy = PolicyStore(engine, settings.secret_key)
    directory = DirectoryVerifier(
        _seed_directory(),
        bind_dn=BIND_DN,
        bind_password=BIND_PASSWORD,
        scopes=TEST_SCOPES,
        client_strategy=MOCK_SYNC,
    )

    for employee in EMPLOYEES:
        employees.upsert(employee)
    policy.grant("test-portal", ACCESS_KEY, api_names=ALL_API_NAMES, ip_addresses=["testclient"])

    app.router.lifespan_context = _patch_lifespan(
        {
            "cipher": cipher,
            "token_issuer": tokens,
            "sessions": sessions,
            "otp": otp,
            "employees": employees,
            "policy": policy,
            "directory": directory,
            "login_service": LoginService(cipher, directory, employees, sessions, tokens),
        }
    )

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, cipher, tokens, sessions, otp, employees, policy)

    engine.dispose()


class FakeClock:
    """Mutable clock for stores that take a clock callable."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
