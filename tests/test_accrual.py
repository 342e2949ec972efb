"""
Tests for AccrualEngine: monthly credit, annual allocation and batch jobs.
"""

from datetime import date

import pytest

from leave_engine.accrual import AccrualEngine, accrual_key
from leave_engine.errors import AlreadyAccruedError
from leave_engine.models import LeaveRequest, LeaveStatus, Region
from leave_engine.repository import InMemoryEmployeeDirectory
from tests.conftest import make_employee


@pytest.fixture
def accrual_for(engine, repository, test_settings):
    def build(*employees):
        directory = InMemoryEmployeeDirectory(employees)
        return AccrualEngine(engine.ledger, engine.catalog, repository, directory, test_settings)

    return build


class TestMonthlyAccrual:
    """India CL / PL monthly credit."""

    def test_mid_month_joiner_gets_half(self, accrual_for, engine):
        """Joined 20 March: March CL and PL each accrue 0.5."""
        joiner = make_employee(id="J1", joining_date=date(2025, 3, 20))
        accrual = accrual_for(joiner)

        cl = accrual.accrue_monthly(joiner, "CL", 2025, 3)
        pl = accrual.accrue_monthly(joiner, "PL", 2025, 3)

        assert cl.days == 0.5 and cl.prorated
        assert pl.days == 0.5
        assert engine.ledger.available("J1", "CL", 2025) == 0.5
        assert engine.ledger.available("J1", "PL", 2025) == 0.5

    def test_joining_on_cutoff_day_gets_full_month(self, accrual_for):
        joiner = make_employee(id="J2", joining_date=date(2025, 3, 15))

        result = accrual_for(joiner).accrue_monthly(joiner, "CL", 2025, 3)

        assert result.days == 1.0
        assert not result.prorated

    def test_month_before_joining_skipped(self, accrual_for, engine):
        joiner = make_employee(id="J3", joining_date=date(2025, 3, 20))

        result = accrual_for(joiner).accrue_monthly(joiner, "CL", 2025, 2)

        assert result.status == "SKIPPED"
        assert engine.ledger.get_balance("J3", "CL", 2025) is None

    def test_same_period_twice(self, accrual_for, engine):
        employee = make_employee(id="J4")
        accrual = accrual_for(employee)
        accrual.accrue_monthly(employee, "CL", 2025, 1)
        before = engine.ledger.get_balance("J4", "CL", 2025)

        with pytest.raises(AlreadyAccruedError):
            accrual.accrue_monthly(employee, "CL", 2025, 1)

        after = engine.ledger.get_balance("J4", "CL", 2025)
        assert after.available == before.available
        assert accrual_key("J4", "CL", "2025-01") in after.applied_keys

    def test_suspended_profile_records_zero(self, accrual_for, engine):
        employee = make_employee(id="J5", suspended_accrual=True)

        result = accrual_for(employee).accrue_monthly(employee, "CL", 2025, 1)

        assert result.status == "SUSPENDED"
        balance = engine.ledger.get_balance("J5", "CL", 2025)
        assert balance.available == 0
        assert accrual_key("J5", "CL", "2025-01") in balance.applied_keys

    def test_approved_maternity_suspends_accrual(self, accrual_for, repository):
        employee = make_employee(id="J6")
        repository.save_request(
            LeaveRequest(
                employee_id="J6",
                leave_type_code="MATERNITY",
                start_date=date(2025, 1, 20),
                end_date=date(2025, 7, 20),
                status=LeaveStatus.APPROVED,
            ),
            expected_version=0,
        )
        accrual = accrual_for(employee)

        assert accrual.accrue_monthly(employee, "PL", 2025, 2).status == "SUSPENDED"
        assert accrual.accrue_monthly(employee, "PL", 2025, 8).status == "CREDITED"

    def test_pending_maternity_does_not_suspend(self, accrual_for, repository):
        employee = make_employee(id="J7")
        repository.save_request(
            LeaveRequest(
                employee_id="J7",
                leave_type_code="MATERNITY",
                start_date=date(2025, 2, 1),
                end_date=date(2025, 7, 31),
                status=LeaveStatus.PENDING,
            ),
            expected_version=0,
        )

        assert accrual_for(employee).accrue_monthly(employee, "PL", 2025, 2).status == "CREDITED"


class TestAnnualAllocation:
    """USA PTO by designation band with pro-ration."""

    @pytest.mark.parametrize(
        "designation,expected",
        [("DEVELOPER", 15.0), ("AVP", 20.0), ("VP", 25.0), ("CEO", 25.0)],
    )
    def test_designation_bands(self, accrual_for, engine, designation, expected):
        employee = make_employee(id=f"U-{designation}", region=Region.USA, designation=designation, joining_date=date(2020, 1, 1))

        result = accrual_for(employee).allocate_annual(employee, "PTO", 2025)

        assert result.days == expected
        assert engine.ledger.available(employee.id, "PTO", 2025) == expected

    def test_joiner_is_prorated_and_rounded(self, accrual_for):
        """Joined 20 March: 15 * 10 / 12 = 12.5."""
        employee = make_employee(id="U1", region=Region.USA, joining_date=date(2025, 3, 20))

        result = accrual_for(employee).allocate_annual(employee, "PTO", 2025)

        assert result.prorated
        assert result.days == 12.5

    def test_future_joiner_skipped(self, accrual_for):
        employee = make_employee(id="U2", region=Region.USA, joining_date=date(2026, 2, 1))

        assert accrual_for(employee).allocate_annual(employee, "PTO", 2025).status == "SKIPPED"


class TestAccrualJobs:
    """Batch runs collect failures per employee."""

    def test_monthly_run_is_idempotent(self, accrual_for):
        accrual = accrual_for(make_employee(id="B1"), make_employee(id="B2"))

        first = accrual.run_monthly(2025, 1)
        second = accrual.run_monthly(2025, 1)

        assert first.processed == 4  # CL and PL for two employees
        assert first.succeeded
        assert second.processed == 0
        assert second.skipped == 4

    def test_one_bad_employee_does_not_abort_batch(self, accrual_for):
        accrual = accrual_for(make_employee(id="B3", joining_date=None), make_employee(id="B4"))

        result = accrual.run_monthly(2025, 1)

        assert result.processed == 2
        assert [f.employee_id for f in result.failures] == ["B3", "B3"]
        assert result.failures[0].error_code == "VALIDATION_ERROR"

    def test_annual_run_covers_region_and_global(self, accrual_for):
        employee = make_employee(id="B5", region=Region.USA, joining_date=date(2020, 1, 1))

        result = accrual_for(employee).run_annual(2025)

        # PTO, SICK and GLOBAL BEREAVEMENT
        assert result.processed == 3
