"""
Tests for BalanceLedger: the balance invariant, idempotency and optimistic concurrency.
"""

from datetime import date
from unittest.mock import patch

import pytest

from leave_engine.balance_ledger import BalanceLedger
from leave_engine.errors import (
    AlreadyAccruedError,
    AlreadyProcessedError,
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InvalidTransitionError,
    ValidationError,
)
from leave_engine.models import EntryState, LeaveBalance, LeaveRequest, LedgerEntry
from leave_engine.repository import InMemoryRepository


def assert_invariant(balance: LeaveBalance):
    assert balance.available == (
        balance.total_entitlement
        + balance.carry_forward_in
        - balance.used
        - balance.pending
        - balance.expired
        - balance.encashed
    )
    assert balance.pending == sum(
        entry.days for entry in balance.entries.values() if entry.state == EntryState.RESERVED
    )


@pytest.fixture
def ledger_repo():
    return InMemoryRepository()


@pytest.fixture
def ledger(ledger_repo, test_settings, clock):
    return BalanceLedger(ledger_repo, test_settings, clock)


def store_request(repository, request_id: str, employee_id: str = "E1", code: str = "CL"):
    request = LeaveRequest(
        id=request_id, employee_id=employee_id, leave_type_code=code, start_date=date(2025, 3, 10), end_date=date(2025, 3, 11)
    )
    repository.save_request(request, expected_version=0)
    return request


class TestCredit:
    """Accrual credits."""

    def test_credit_creates_row(self, ledger):
        balance = ledger.credit("E1", "CL", 2025, 1.0, key="accrual:E1:CL:2025-01")

        assert balance.total_entitlement == 1.0
        assert balance.accrued == 1.0
        assert balance.available == 1.0
        assert balance.version == 1
        assert_invariant(balance)

    def test_same_key_twice_is_rejected_and_balance_unchanged(self, ledger):
        ledger.credit("E1", "CL", 2025, 1.0, key="accrual:E1:CL:2025-01")

        with pytest.raises(AlreadyAccruedError):
            ledger.credit("E1", "CL", 2025, 1.0, key="accrual:E1:CL:2025-01")

        assert ledger.available("E1", "CL", 2025) == 1.0

    def test_negative_credit_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.credit("E1", "CL", 2025, -1.0, key="k")

    def test_credit_is_audited(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 1.0, key="accrual:E1:CL:2025-01")

        record = ledger_repo.audit_records[-1]
        assert record.action == "ACCRUAL"
        assert record.reference == "accrual:E1:CL:2025-01"

    def test_carry_in_once_per_key(self, ledger):
        ledger.carry_in("E1", "PL", 2026, 5.0, key="carry-forward:E1:PL:2025")

        with pytest.raises(AlreadyProcessedError):
            ledger.carry_in("E1", "PL", 2026, 5.0, key="carry-forward:E1:PL:2025")
        assert ledger.available("E1", "PL", 2026) == 5.0


class TestRequestLifecycle:
    """reserve / commit / release / refund."""

    def test_reserve_then_release_restores_available(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        store_request(ledger_repo, "R1")
        before = ledger.available("E1", "CL", 2025)

        reserved = ledger.reserve("E1", "CL", 2025, 2.5, "R1")
        assert reserved.pending == 2.5
        assert_invariant(reserved)

        released = ledger.release("R1")
        assert released.available == before
        assert released.entries["R1"].state == EntryState.RELEASED
        assert_invariant(released)

    def test_commit_moves_pending_to_used(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        store_request(ledger_repo, "R1")
        ledger.reserve("E1", "CL", 2025, 2.0, "R1")

        balance = ledger.commit("R1")

        assert balance.pending == 0
        assert balance.used == 2.0
        assert balance.available == 3.0
        assert_invariant(balance)

    def test_commit_twice_is_a_noop(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        store_request(ledger_repo, "R1")
        ledger.reserve("E1", "CL", 2025, 2.0, "R1")

        first = ledger.commit("R1")
        second = ledger.commit("R1")

        assert second.used == 2.0
        assert second.version == first.version

    def test_release_after_commit_is_invalid(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        store_request(ledger_repo, "R1")
        ledger.reserve("E1", "CL", 2025, 2.0, "R1")
        ledger.commit("R1")

        with pytest.raises(InvalidTransitionError):
            ledger.release("R1")

    def test_refund_returns_used_days(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        store_request(ledger_repo, "R1")
        ledger.reserve("E1", "CL", 2025, 2.0, "R1")
        ledger.commit("R1")

        balance = ledger.refund("R1")

        assert balance.used == 0
        assert balance.available == 5.0
        assert balance.entries["R1"].state == EntryState.REFUNDED

    def test_reserve_beyond_available(self, ledger):
        ledger.credit("E1", "CL", 2025, 1.0, key="seed")

        with pytest.raises(InsufficientBalanceError) as exc:
            ledger.reserve("E1", "CL", 2025, 2.0, "R1")

        assert exc.value.details["shortage"] == 1.0
        assert ledger.get_balance("E1", "CL", 2025).pending == 0

    def test_negative_balance_when_allowed(self, ledger):
        balance = ledger.reserve("E1", "LWP", 2025, 3.0, "R1", allow_negative=True)

        assert balance.available == -3.0
        assert_invariant(balance)

    def test_reserve_is_idempotent_per_request(self, ledger):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")

        ledger.reserve("E1", "CL", 2025, 2.0, "R1")
        balance = ledger.reserve("E1", "CL", 2025, 2.0, "R1")

        assert balance.pending == 2.0

    def test_discard_drops_reservation(self, ledger):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        ledger.reserve("E1", "CL", 2025, 2.0, "R1")

        balance = ledger.discard("E1", "CL", 2025, "R1")

        assert balance.pending == 0
        assert "R1" not in balance.entries

    def test_closed_year_rejects_reservations(self, ledger):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        ledger.close_year("E1", "CL", 2025, lambda unused: 0.0)

        with pytest.raises(ValidationError):
            ledger.reserve("E1", "CL", 2025, 1.0, "R1")


class TestCloseYearAndEncash:
    def test_close_year_splits_carry_and_expiry(self, ledger):
        ledger.credit("E1", "PL", 2025, 12.0, key="seed")

        balance, carried, expired, newly_closed = ledger.close_year("E1", "PL", 2025, lambda unused: min(unused, 5))

        assert (carried, expired, newly_closed) == (5.0, 7.0, True)
        assert balance.archived
        assert balance.carry_forward_out == 5.0
        assert balance.available == 5.0
        assert_invariant(balance)

    def test_close_year_twice_returns_recorded_result(self, ledger):
        ledger.credit("E1", "PL", 2025, 12.0, key="seed")
        ledger.close_year("E1", "PL", 2025, lambda unused: 5.0)

        _, carried, expired, newly_closed = ledger.close_year("E1", "PL", 2025, lambda unused: 5.0)

        assert (carried, expired, newly_closed) == (5.0, 0.0, False)

    def test_release_after_close_expires_the_days(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        store_request(ledger_repo, "R1")
        ledger.reserve("E1", "CL", 2025, 2.0, "R1")
        _, _, expired, _ = ledger.close_year("E1", "CL", 2025, lambda unused: 0.0)

        balance = ledger.release("R1")

        assert expired == 3.0
        assert (balance.pending, balance.available, balance.expired) == (0, 0, 5.0)
        assert_invariant(balance)
        [record] = ledger_repo.expiry_records
        assert (record.days, record.year) == (2.0, 2025)

    def test_commit_after_close_keeps_the_days_used(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        store_request(ledger_repo, "R1")
        ledger.reserve("E1", "CL", 2025, 2.0, "R1")
        ledger.close_year("E1", "CL", 2025, lambda unused: 0.0)

        balance = ledger.commit("R1")

        assert (balance.used, balance.available) == (2.0, 0)
        assert ledger_repo.expiry_records == []

    def test_close_missing_row(self, ledger):
        with pytest.raises(ValidationError):
            ledger.close_year("E1", "PL", 2025, lambda unused: 0.0)

    def test_encash(self, ledger):
        ledger.credit("E1", "PL", 2025, 10.0, key="seed")

        balance = ledger.encash("E1", "PL", 2025, 4.0, reference="ENC-1")

        assert balance.encashed == 4.0
        assert balance.available == 6.0
        assert_invariant(balance)
        with pytest.raises(AlreadyProcessedError):
            ledger.encash("E1", "PL", 2025, 4.0, reference="ENC-1")
        with pytest.raises(InsufficientBalanceError):
            ledger.encash("E1", "PL", 2025, 7.0, reference="ENC-2")


class TestOptimisticConcurrency:
    """Version conflicts are retried against fresh state."""

    def test_conflict_is_retried(self, ledger, ledger_repo):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")
        real_save = ledger_repo.save_balance
        calls = {"n": 0}

        def flaky_save(balance, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConcurrencyConflictError("raced")
            return real_save(balance, expected_version)

        with patch.object(ledger_repo, "save_balance", side_effect=flaky_save):
            balance = ledger.reserve("E1", "CL", 2025, 1.0, "R1")

        assert calls["n"] == 2
        assert balance.pending == 1.0

    def test_gives_up_after_bound(self, ledger, ledger_repo, test_settings):
        ledger.credit("E1", "CL", 2025, 5.0, key="seed")

        with patch.object(ledger_repo, "save_balance", side_effect=ConcurrencyConflictError("raced")) as save:
            with pytest.raises(ConcurrencyConflictError):
                ledger.reserve("E1", "CL", 2025, 1.0, "R1")

        assert save.call_count == test_settings.ledger_max_retries

    def test_interleaved_writer_rules_reevaluated(self, ledger, ledger_repo):
        """Two reservations that together exceed the balance: the second loses cleanly."""
        ledger.credit("E1", "CL", 2025, 3.0, key="seed")
        real_save = ledger_repo.save_balance
        injected = {"done": False}

        def racing_save(balance, expected_version):
            if not injected["done"]:
                injected["done"] = True
                # Another writer reserves 2 days between our read and our save.
                other = ledger_repo.load_balance("E1", "CL", 2025)
                other.pending += 2.0
                other.entries["R-other"] = LedgerEntry(request_id="R-other", days=2.0)
                real_save(other, expected_version=other.version)
            return real_save(balance, expected_version)

        with patch.object(ledger_repo, "save_balance", side_effect=racing_save):
            with pytest.raises(InsufficientBalanceError):
                ledger.reserve("E1", "CL", 2025, 2.0, "R-mine")

        final = ledger.get_balance("E1", "CL", 2025)
        assert final.pending == 2.0
        assert set(final.entries) == {"R-other"}
        assert_invariant(final)
