"""
tests/test_gatekeeper.py -- Unit tests for auth/gatekeeper.py.

Covers:
  - Access key format check
  - Reason evaluation order and reason codes / HTTP statuses
  - Every decision is written to the request log
  - Keys are stored hashed
"""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from auth.gatekeeper import (
    AccessKeyFormatError,
    AccessReason,
    PolicyStore,
    hash_access_key,
    validate_access_key_format,
)

SECRET = "s" * 40
KEY = "VendorKey123"
IP = "10.0.0.5"


@pytest.fixture
def policy(memory_engine) -> PolicyStore:
    return PolicyStore(memory_engine, SECRET)


@pytest.fixture
def vendor_id(policy: PolicyStore) -> int:
    return policy.grant("hr-portal", KEY, api_names=["login", "otp"], ip_addresses=[IP])


class TestKeyFormat:
    @pytest.mark.parametrize("key", ["abc123", "ABC", "0"])
    def test_alphanumeric_accepted(self, key: str) -> None:
        validate_access_key_format(key)

    @pytest.mark.parametrize("key", ["", "abc-123", "abc 123", "abc'; --", "key\n"])
    def test_other_characters_rejected(self, key: str) -> None:
        with pytest.raises(AccessKeyFormatError, match="Invalid TOKEN provided"):
            validate_access_key_format(key)


class TestReasons:
    def test_codes_and_statuses(self) -> None:
        assert AccessReason.invalid_key.code == 400
        assert AccessReason.invalid_api_name.code == 401
        assert AccessReason.invalid_ip_address.code == 402
        assert AccessReason.inactive_api_name.code == 403
        assert AccessReason.inactive_vendor.code == 404
        assert AccessReason.inactive_ip_address.code == 405
        assert AccessReason.invalid_key.http_status == 401
        assert AccessReason.inactive_vendor.http_status == 403
        assert AccessReason.success.http_status == 200


class TestCheck:
    def test_granted_request_succeeds(self, policy: PolicyStore, vendor_id: int) -> None:
        assert policy.check(KEY, IP, "login", "/api/v1/auth/login") is AccessReason.success

    def test_unknown_key(self, policy: PolicyStore, vendor_id: int) -> None:
        assert policy.check("NotAKey", IP, "login", "/x") is AccessReason.invalid_key

    def test_inactive_vendor(self, policy: PolicyStore, vendor_id: int) -> None:
        policy.set_vendor_active(vendor_id, False)
        assert policy.check(KEY, IP, "login", "/x") is AccessReason.inactive_vendor

    def test_api_not_granted(self, policy: PolicyStore, vendor_id: int) -> None:
        assert policy.check(KEY, IP, "session_data", "/x") is AccessReason.invalid_api_name

    def test_api_inactive(self, policy: PolicyStore, vendor_id: int) -> None:
        policy.set_api_active(vendor_id, "login", False)
        assert policy.check(KEY, IP, "login", "/x") is AccessReason.inactive_api_name
        assert policy.check(KEY, IP, "otp", "/x") is AccessReason.success

    def test_ip_not_granted(self, policy: PolicyStore, vendor_id: int) -> None:
        assert policy.check(KEY, "10.9.9.9", "login", "/x") is AccessReason.invalid_ip_address

    def test_ip_inactive(self, policy: PolicyStore, vendor_id: int) -> None:
        policy.set_ip_active(vendor_id, IP, False)
        assert policy.check(KEY, IP, "login", "/x") is AccessReason.inactive_ip_address

    def test_vendor_checked_before_api_and_ip(self, policy: PolicyStore, vendor_id: int) -> None:
        policy.set_vendor_active(vendor_id, False)
        assert policy.check(KEY, "10.9.9.9", "session_data", "/x") is AccessReason.inactive_vendor

    def test_decisions_are_logged(self, policy: PolicyStore, vendor_id: int) -> None:
        policy.check(KEY, IP, "login", "/api/v1/auth/login")
        policy.check("NotAKey", IP, "otp", "/api/v1/auth/otp")

        rejected, accepted = policy.request_log(limit=2)
        assert accepted["status"] == "Success"
        assert accepted["request_data"] == "/api/v1/auth/login"
        assert rejected["status"] == "Rejected"
        assert rejected["error"] == "Invalid_Key"
        assert rejected["api_name"] == "otp"


class TestGrant:
    def test_key_stored_hashed(self, policy: PolicyStore, vendor_id: int, memory_engine) -> None:
        with memory_engine.connect() as conn:
            stored = conn.execute(text("SELECT key_hash FROM api_vendors")).scalar()
        assert stored == hash_access_key(SECRET, KEY)
        assert KEY not in stored

    def test_duplicate_key_rejected(self, policy: PolicyStore, vendor_id: int) -> None:
        with pytest.raises(IntegrityError):
            policy.grant("copycat", KEY, api_names=["login"], ip_addresses=[IP])

    def test_malformed_key_rejected(self, policy: PolicyStore) -> None:
        with pytest.raises(AccessKeyFormatError):
            policy.grant("bad", "not-alnum", api_names=["login"], ip_addresses=[IP])

    def test_same_key_under_other_secret_is_unknown(self, memory_engine, vendor_id: int) -> None:
        other = PolicyStore(memory_engine, "x" * 40)
        assert other.check(KEY, IP, "login", "/x") is AccessReason.invalid_key
