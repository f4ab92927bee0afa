"""
tests/test_otp.py -- Unit tests for auth/otp.py (OtpLedger).

Covers:
  - issue/resend counters and validity window
  - validate: verified once, expired, mismatch on any field, most recent row
  - Only a verified outcome mutates the ledger
  - Concurrent retries of one code verify it exactly once
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from auth.models import OtpOutcome
from auth.otp import OtpLedger
from auth.store import create_store_engine

SID = "6f1c2c8e-1b7a-4a4e-9a51-2d5b8f0f9d11"


class TestIssue:
    def test_issue_records_pending_code(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, clock=clock)
        record = ledger.issue("alice", "9876543210", "482913", SID)

        assert record.id is not None
        assert record.resend_count == 1
        assert record.status == 0
        assert record.verified_on is None
        assert record.valid_till.startswith("2025-01-15T09:30:45")

    def test_validity_window_is_configurable(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, valid_seconds=300, clock=clock)
        record = ledger.issue("alice", "9876543210", "482913", SID)
        assert record.valid_till.startswith("2025-01-15T09:35:00")

    def test_resend_increments_counter(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, clock=clock)
        ledger.issue("alice", "9876543210", "111111", SID)
        second = ledger.resend("alice", "9876543210", "222222", SID)
        third = ledger.resend("alice", "9876543210", "333333", SID)

        assert second.resend_count == 2
        assert third.resend_count == 3
        assert [r.otp for r in ledger.history(SID)] == ["111111", "222222", "333333"]

    def test_resend_without_prior_issue_starts_at_one(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, clock=clock)
        assert ledger.resend("alice", "9876543210", "222222", SID).resend_count == 1


class TestValidate:
    def test_valid_code_verifies_once(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, clock=clock)
        ledger.issue("alice", "9876543210", "482913", SID)
        clock.advance(10)

        first = ledger.validate("alice", "9876543210", SID, "482913")
        second = ledger.validate("alice", "9876543210", SID, "482913")

        assert first.outcome is OtpOutcome.verified
        assert first.matched is True
        assert second.outcome is OtpOutcome.not_found
        assert second.matched is False

        (record,) = ledger.history(SID)
        assert record.status == 1
        assert record.verified_on is not None

    def test_expired_code_rejected_and_left_pending(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, clock=clock)
        ledger.issue("alice", "9876543210", "482913", SID)
        clock.advance(46)

        result = ledger.validate("alice", "9876543210", SID, "482913")

        assert result.outcome is OtpOutcome.expired
        (record,) = ledger.history(SID)
        assert record.status == 0
        assert record.verified_on is None

    def test_code_valid_at_last_second(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, clock=clock)
        ledger.issue("alice", "9876543210", "482913", SID)
        clock.advance(45)
        assert ledger.validate("alice", "9876543210", SID, "482913").matched

    def test_any_mismatched_field_is_not_found(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, clock=clock)
        ledger.issue("alice", "9876543210", "482913", SID)

        assert ledger.validate("bob", "9876543210", SID, "482913").outcome is OtpOutcome.not_found
        assert ledger.validate("alice", "9999999999", SID, "482913").outcome is OtpOutcome.not_found
        assert ledger.validate("alice", "9876543210", "other-session", "482913").outcome is OtpOutcome.not_found
        assert ledger.validate("alice", "9876543210", SID, "000000").outcome is OtpOutcome.not_found
        # None of the failures consumed the code.
        assert ledger.validate("alice", "9876543210", SID, "482913").matched

    def test_most_recent_matching_row_is_checked(self, memory_engine, clock) -> None:
        """Two rows with the same code: the old one expired, the new one is live."""
        ledger = OtpLedger(memory_engine, clock=clock)
        ledger.issue("alice", "9876543210", "482913", SID)
        clock.advance(60)
        ledger.resend("alice", "9876543210", "482913", SID)
        clock.advance(5)

        assert ledger.validate("alice", "9876543210", SID, "482913").matched
        old, new = ledger.history(SID)
        assert old.status == 0
        assert new.status == 1

    def test_older_unexpired_code_still_valid_after_resend(self, memory_engine, clock) -> None:
        ledger = OtpLedger(memory_engine, clock=clock)
        ledger.issue("alice", "9876543210", "111111", SID)
        clock.advance(5)
        ledger.resend("alice", "9876543210", "222222", SID)
        assert ledger.validate("alice", "9876543210", SID, "111111").matched


class TestConcurrentValidate:
    WORKERS = 8

    def test_simultaneous_retries_verify_exactly_once(self, tmp_path, clock) -> None:
        """Every worker submits the same code at once; one wins, the rest see not_found.

        A file database gives each pooled connection its own SQLite handle, so
        the SELECT-then-UPDATE sequences really interleave.
        """
        engine = create_store_engine(f"sqlite:///{tmp_path / 'otp.db'}")
        try:
            ledger = OtpLedger(engine, clock=clock)
            ledger.issue("alice", "9876543210", "482913", SID)
            barrier = threading.Barrier(self.WORKERS)

            def attempt():
                barrier.wait(timeout=10)
                return ledger.validate("alice", "9876543210", SID, "482913")

            with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
                futures = [pool.submit(attempt) for _ in range(self.WORKERS)]
                # result() re-raises anything a worker raised.
                outcomes = [f.result(timeout=30).outcome for f in futures]

            assert outcomes.count(OtpOutcome.verified) == 1
            assert outcomes.count(OtpOutcome.not_found) == self.WORKERS - 1
            (record,) = ledger.history(SID)
            assert record.status == 1
        finally:
            engine.dispose()
