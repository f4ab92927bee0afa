"""
tests/test_tokens.py -- Unit tests for auth/tokens.py (TokenIssuer).

Covers:
  - Claims and expiry window
  - Expired, tampered, wrong-key and wrong-algorithm tokens are rejected
  - Tokens missing required claims are rejected
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import ALGORITHM, TokenIssuer

KEY = "k" * 40
OTHER_KEY = "o" * 40


def _clock(delta: timedelta):
    moment = datetime.now(timezone.utc) + delta
    return lambda: moment


class TestIssue:
    def test_claims(self) -> None:
        issuer = TokenIssuer(KEY)
        claims = issuer.verify(issuer.issue("sid-1", "alice", "E1001"))
        assert claims is not None
        assert claims["userId"] == "sid-1"
        assert claims["username"] == "alice"
        assert claims["employeeId"] == "E1001"
        assert claims["exp"] - claims["iat"] == 7200

    def test_header_is_hs256(self) -> None:
        token = TokenIssuer(KEY).issue("sid-1", "alice", "E1001")
        assert jwt.get_unverified_header(token)["alg"] == "HS256"

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            TokenIssuer("")


class TestVerify:
    def test_token_issued_just_under_two_hours_ago_is_valid(self) -> None:
        token = TokenIssuer(KEY, clock=_clock(-timedelta(hours=1, minutes=59))).issue("sid", "alice", "E1001")
        assert TokenIssuer(KEY).verify(token) is not None

    def test_expired_token_rejected(self) -> None:
        token = TokenIssuer(KEY, clock=_clock(-timedelta(hours=2, seconds=1))).issue("sid", "alice", "E1001")
        assert TokenIssuer(KEY).verify(token) is None

    def test_wrong_key_rejected(self) -> None:
        token = TokenIssuer(OTHER_KEY).issue("sid", "alice", "E1001")
        assert TokenIssuer(KEY).verify(token) is None

    def test_tampered_token_rejected(self) -> None:
        token = TokenIssuer(KEY).issue("sid", "alice", "E1001")
        header, payload, signature = token.split(".")
        forged = jwt.encode({"userId": "other", "username": "mallory", "employeeId": "E9", "exp": 9999999999}, OTHER_KEY)
        assert TokenIssuer(KEY).verify(f"{header}.{forged.split('.')[1]}.{signature}") is None

    def test_other_algorithm_rejected(self) -> None:
        claims = {"userId": "sid", "username": "alice", "employeeId": "E1001", "exp": 9999999999}
        token = jwt.encode(claims, KEY, algorithm="HS512")
        assert TokenIssuer(KEY).verify(token) is None

    def test_missing_claim_rejected(self) -> None:
        token = jwt.encode({"userId": "sid", "username": "alice", "exp": 9999999999}, KEY, algorithm=ALGORITHM)
        assert TokenIssuer(KEY).verify(token) is None

    @pytest.mark.parametrize("token", ["", "not.a.jwt", "abc"])
    def test_garbage_rejected(self, token: str) -> None:
        assert TokenIssuer(KEY).verify(token) is None
