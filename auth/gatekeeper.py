"""
auth/gatekeeper.py -- Request Gatekeeper: API access-key policy.

Every endpoint is called by a registered client application (a "vendor")
that presents a pre-shared access key in the request body's "token" field.
Before any credential is decrypted the gatekeeper checks:

  1. the key's format (alphanumeric only),
  2. that the key exists and its vendor is active,
  3. that the vendor is granted the API being called,
  4. that the caller's IP address is whitelisted for the vendor.

Each decision is appended to client_requests for audit.

Access keys are stored as HMAC-SHA256(SECRET_KEY, raw_key). The hash is
deterministic so lookup is a single indexed query, and a copy of the table
alone is useless without SECRET_KEY.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.store import to_iso, utcnow

logger = logging.getLogger("hrauth.gatekeeper")

_ACCESS_KEY_RE = re.compile(r"\A[A-Za-z0-9]+\Z")


class AccessReason(str, Enum):
    """Named outcomes of the policy check.

    code is the numeric reason code carried in the encrypted rejection body;
    http_status is what the response is sent with.
    """

    success = "Success"
    invalid_key = "Invalid_Key"
    invalid_api_name = "Invalid_APIName"
    invalid_ip_address = "Invalid_IPAddress"
    inactive_api_name = "Inactive_APIName"
    inactive_vendor = "Inactive_Vendor"
    inactive_ip_address = "Inactive_Ip_Address"

    @property
    def code(self) -> int:
        return _REASON_CODES[self]

    @property
    def http_status(self) -> int:
        if self is AccessReason.success:
            return 200
        return 401 if self is AccessReason.invalid_key else 403


_REASON_CODES = {
    AccessReason.success: 200,
    AccessReason.invalid_key: 400,
    AccessReason.invalid_api_name: 401,
    AccessReason.invalid_ip_address: 402,
    AccessReason.inactive_api_name: 403,
    AccessReason.inactive_vendor: 404,
    AccessReason.inactive_ip_address: 405,
}


class AccessKeyFormatError(ValueError):
    """The access key contains characters other than letters and digits."""


class PolicyRejectedError(Exception):
    """Raised by the HTTP layer when the policy check does not return Success."""

    def __init__(self, reason: AccessReason) -> None:
        super().__init__(reason.value)
        self.reason = reason


def validate_access_key_format(access_key: str) -> None:
    """Raise AccessKeyFormatError unless access_key is non-empty and alphanumeric."""
    if not access_key or not _ACCESS_KEY_RE.match(access_key):
        raise AccessKeyFormatError("Invalid TOKEN provided")


def hash_access_key(secret_key: str, raw_key: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_key) as a hex string."""
    return hmac.new(secret_key.encode(), raw_key.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_vendors = Table(
    "api_vendors",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vendor_name", String(255), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_routes = Table(
    "api_routes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vendor_id", Integer, nullable=False, index=True),
    Column("api_name", String(100), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_ip_addresses = Table(
    "api_ip_addresses",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vendor_id", Integer, nullable=False, index=True),
    Column("ip_address", String(45), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_client_requests = Table(
    "client_requests",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ip_address", String(45), nullable=False),
    Column("api_name", String(100), nullable=False),
    Column("request_data", Text, nullable=False),
    Column("status", String(32), nullable=False),
    Column("error", String(64), nullable=False, server_default=""),
    Column("request_on", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PolicyStore:
    """Access-key policy store.

    Usage:
        policy = PolicyStore(engine, secret_key=settings.secret_key)
        policy.grant("hr-portal", raw_key, api_names=["login"], ip_addresses=["10.0.0.5"])
        policy.check(raw_key, "10.0.0.5", "login", "/api/v1/auth/login")  # AccessReason.success
    """

    def __init__(self, engine: Engine, secret_key: str, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self._secret_key = secret_key
        self._clock = clock
        _metadata.create_all(self.engine)

    def check(self, access_key: str, client_ip: str, api_name: str, request_path: str) -> AccessReason:
        """Evaluate the policy for one request and log the decision."""
        reason = self._evaluate(access_key, client_ip, api_name)
        with self.engine.begin() as conn:
            conn.execute(
                _client_requests.insert().values(
                    ip_address=client_ip,
                    api_name=api_name,
                    request_data=request_path,
                    status="Success" if reason is AccessReason.success else "Rejected",
                    error="" if reason is AccessReason.success else reason.value,
                    request_on=to_iso(self._clock()),
                )
            )
        if reason is not AccessReason.success:
            logger.warning("Policy rejected %s from %s: %s", api_name, client_ip, reason.value)
        return reason

    def grant(
        self,
        vendor_name: str,
        access_key: str,
        api_names: Iterable[str],
        ip_addresses: Iterable[str],
    ) -> int:
        """Register a vendor key with its allowed API names and client IPs.

        Raises AccessKeyFormatError for a key the format check would reject,
        and sqlalchemy.exc.IntegrityError if the key is already registered.
        Returns the vendor id.
        """
        validate_access_key_format(access_key)
        with self.engine.begin() as conn:
            result = conn.execute(
                _vendors.insert().values(
                    vendor_name=vendor_name,
                    key_hash=hash_access_key(self._secret_key, access_key),
                    is_active=1,
                )
            )
            vendor_id = result.inserted_primary_key[0]
            for name in api_names:
                conn.execute(_routes.insert().values(vendor_id=vendor_id, api_name=name, is_active=1))
            for ip in ip_addresses:
                conn.execute(_ip_addresses.insert().values(vendor_id=vendor_id, ip_address=ip, is_active=1))
        return vendor_id

    def set_vendor_active(self, vendor_id: int, active: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _vendors.update().where(_vendors.c.id == vendor_id).values(is_active=1 if active else 0)
            )
            updated = result.rowcount
        return updated > 0

    def set_api_active(self, vendor_id: int, api_name: str, active: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _routes.update()
                .where((_routes.c.vendor_id == vendor_id) & (_routes.c.api_name == api_name))
                .values(is_active=1 if active else 0)
            )
            updated = result.rowcount
        return updated > 0

    def set_ip_active(self, vendor_id: int, ip_address: str, active: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _ip_addresses.update()
                .where((_ip_addresses.c.vendor_id == vendor_id) & (_ip_addresses.c.ip_address == ip_address))
                .values(is_active=1 if active else 0)
            )
            updated = result.rowcount
        return updated > 0

    def request_log(self, limit: int = 50) -> list[dict]:
        """Most recent gatekeeper decisions, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _client_requests.select().order_by(_client_requests.c.id.desc()).limit(limit)
            ).fetchall()
        return [dict(r._mapping) for r in rows]

    def close(self) -> None:
        self.engine.dispose()

    def _evaluate(self, access_key: str, client_ip: str, api_name: str) -> AccessReason:
        key_hash = hash_access_key(self._secret_key, access_key)
        with self.engine.connect() as conn:
            vendor = conn.execute(_vendors.select().where(_vendors.c.key_hash == key_hash)).fetchone()
            if vendor is None:
                return AccessReason.invalid_key
            if not vendor.is_active:
                return AccessReason.inactive_vendor

            route = conn.execute(
                _routes.select().where((_routes.c.vendor_id == vendor.id) & (_routes.c.api_name == api_name))
            ).fetchone()
            if route is None:
                return AccessReason.invalid_api_name
            if not route.is_active:
                return AccessReason.inactive_api_name

            address = conn.execute(
                _ip_addresses.select().where(
                    (_ip_addresses.c.vendor_id == vendor.id) & (_ip_addresses.c.ip_address == client_ip)
                )
            ).fetchone()
            if address is None:
                return AccessReason.invalid_ip_address
            if not address.is_active:
                return AccessReason.inactive_ip_address
        return AccessReason.success
