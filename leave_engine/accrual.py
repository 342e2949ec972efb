"""
Periodic entitlement credit.

Monthly mode (India CL/PL):
- one ``accrual_rate`` unit per month
- joining month after the cutoff day (15th) earns half
- months before joining earn nothing and are skipped
- suspended periods (profile flag, or an approved leave whose policy suspends
  accrual, e.g. maternity) earn 0, recorded as an explicit zero credit

Annual mode (USA PTO):
- baseline by designation band, else ``entitlement_days``
- joiners in the allocation year get ``baseline * remaining_months / 12`` rounded per
  policy

Every credit carries an idempotency key ``accrual:{employee}:{type}:{period}``; the
ledger refuses a repeat with ``AlreadyAccruedError``.
"""

import logging
from datetime import date
from typing import Literal

from pydantic import BaseModel

from leave_engine.balance_ledger import BalanceLedger
from leave_engine.config import Settings
from leave_engine.config import settings as default_settings
from leave_engine.errors import AlreadyAccruedError, PolicyNotFoundError, ValidationError
from leave_engine.models import (
    AccrualFrequency,
    EmployeeProfile,
    JobResult,
    LeavePolicy,
    LeaveStatus,
    designation_band,
)
from leave_engine.observability import trace_span
from leave_engine.policy_catalog import PolicyCatalog
from leave_engine.repository import EmployeeDirectory, Repository
from leave_engine.utils.dates import month_bounds, remaining_months_in_year, round_days

logger = logging.getLogger(__name__)


class AccrualResult(BaseModel):
    employee_id: str
    leave_type_code: str
    period: str
    days: float
    status: Literal["CREDITED", "SUSPENDED", "SKIPPED"]
    prorated: bool = False
    message: str = ""


def accrual_key(employee_id: str, leave_type_code: str, period: str) -> str:
    return f"accrual:{employee_id}:{leave_type_code}:{period}"


class AccrualEngine:
    def __init__(
        self,
        ledger: BalanceLedger,
        catalog: PolicyCatalog,
        repository: Repository,
        directory: EmployeeDirectory,
        settings: Settings = default_settings,
    ):
        self._ledger = ledger
        self._catalog = catalog
        self._repository = repository
        self._directory = directory
        self.settings = settings

    # ------------------------------------------------------------------
    # Monthly mode
    # ------------------------------------------------------------------

    def is_suspended(self, employee: EmployeeProfile, year: int, month: int) -> bool:
        if employee.suspended_accrual:
            return True

        first, last = month_bounds(year, month)
        for request in self._repository.load_requests(employee.id):
            if request.status != LeaveStatus.APPROVED:
                continue
            if request.start_date > last or request.end_date < first:
                continue
            try:
                policy = self._catalog.lookup(request.leave_type_code, employee.region, request.start_date)
            except PolicyNotFoundError:
                continue
            if policy.suspends_accrual:
                return True
        return False

    def monthly_delta(
        self, employee: EmployeeProfile, policy: LeavePolicy, year: int, month: int
    ) -> AccrualResult:
        """Compute (without applying) one month's accrual."""
        period = f"{year:04d}-{month:02d}"
        base = dict(employee_id=employee.id, leave_type_code=policy.leave_type_code, period=period)

        if employee.joining_date is None:
            raise ValidationError(f"Employee {employee.id} has no joining date; cannot accrue.")

        joined = employee.joining_date
        if (year, month) < (joined.year, joined.month):
            return AccrualResult(**base, days=0.0, status="SKIPPED", message="No accrual before joining date")

        if self.is_suspended(employee, year, month):
            return AccrualResult(
                **base, days=0.0, status="SUSPENDED", message="Accrual suspended for this period"
            )

        if (year, month) == (joined.year, joined.month) and joined.day > self.settings.mid_month_cutoff_day:
            return AccrualResult(
                **base,
                days=policy.accrual_rate * 0.5,
                status="CREDITED",
                prorated=True,
                message=f"Joined after day {self.settings.mid_month_cutoff_day}; half accrual",
            )

        return AccrualResult(**base, days=policy.accrual_rate, status="CREDITED")

    def accrue_monthly(
        self, employee: EmployeeProfile, leave_type_code: str, year: int, month: int
    ) -> AccrualResult:
        _, last = month_bounds(year, month)
        policy = self._catalog.lookup(leave_type_code, employee.region, last)
        if policy.accrual_frequency != AccrualFrequency.MONTHLY:
            raise ValidationError(f"{leave_type_code} does not accrue monthly for {employee.region.value}.")

        result = self.monthly_delta(employee, policy, year, month)
        if result.status == "SKIPPED":
            return result

        self._ledger.credit(
            employee.id,
            leave_type_code,
            year,
            result.days,
            key=accrual_key(employee.id, leave_type_code, result.period),
            reason="ACCRUAL" if result.status == "CREDITED" else "ACCRUAL_SUSPENDED",
        )
        return result

    # ------------------------------------------------------------------
    # Annual mode
    # ------------------------------------------------------------------

    def annual_entitlement(self, employee: EmployeeProfile, policy: LeavePolicy, year: int) -> AccrualResult:
        """Compute (without applying) the annual allocation for ``year``."""
        base = dict(employee_id=employee.id, leave_type_code=policy.leave_type_code, period=f"{year:04d}")

        baseline = policy.designation_entitlements.get(
            designation_band(employee.designation), policy.entitlement_days
        )
        if baseline is None:
            raise ValidationError(f"{policy.leave_type_code} has no entitlement configured.")

        joined = employee.joining_date
        if joined is not None and joined.year > year:
            return AccrualResult(**base, days=0.0, status="SKIPPED", message="No allocation before joining year")

        if joined is not None and joined.year == year:
            remaining = remaining_months_in_year(joined, year)
            days = round_days(baseline * remaining / 12, policy.rounding_precision, policy.rounding_mode)
            return AccrualResult(
                **base,
                days=days,
                status="CREDITED",
                prorated=True,
                message=f"Prorated for {remaining} of 12 months",
            )

        return AccrualResult(**base, days=float(baseline), status="CREDITED")

    def allocate_annual(self, employee: EmployeeProfile, leave_type_code: str, year: int) -> AccrualResult:
        as_of = max(date(year, 1, 1), employee.joining_date or date(year, 1, 1))
        policy = self._catalog.lookup(leave_type_code, employee.region, as_of)
        if policy.accrual_frequency != AccrualFrequency.ANNUAL:
            raise ValidationError(f"{leave_type_code} is not allocated annually for {employee.region.value}.")

        result = self.annual_entitlement(employee, policy, year)
        if result.status == "SKIPPED":
            return result

        self._ledger.credit(
            employee.id,
            leave_type_code,
            year,
            result.days,
            key=accrual_key(employee.id, leave_type_code, result.period),
            reason="ANNUAL_ALLOCATION",
        )
        return result

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def _run(self, job: str, frequency: AccrualFrequency, as_of: date, apply) -> JobResult:
        result = JobResult(job=job)
        for employee in self._directory.list_employees():
            for policy in self._catalog.policies_for_region(employee.region, as_of):
                if policy.accrual_frequency != frequency:
                    continue
                try:
                    outcome = apply(employee, policy.leave_type_code)
                except AlreadyAccruedError:
                    result.skipped += 1
                    continue
                except Exception as e:
                    logger.error(
                        f"{job} failed for employee={employee.id}, "
                        f"leave_type={policy.leave_type_code}: {e}"
                    )
                    result.record_failure(employee.id, e)
                    continue

                if outcome.status == "SKIPPED":
                    result.skipped += 1
                else:
                    result.processed += 1
        return result

    def run_monthly(self, year: int, month: int) -> JobResult:
        """Credit one month for every active employee and monthly policy."""
        _, last = month_bounds(year, month)
        with trace_span("monthly_accrual", period=f"{year:04d}-{month:02d}"):
            result = self._run(
                "monthly_accrual",
                AccrualFrequency.MONTHLY,
                last,
                lambda employee, code: self.accrue_monthly(employee, code, year, month),
            )
        logger.info(
            f"Monthly accrual {year:04d}-{month:02d}: processed={result.processed}, "
            f"skipped={result.skipped}, failures={len(result.failures)}"
        )
        return result

    def run_annual(self, year: int) -> JobResult:
        """Allocate the year's entitlement for every active employee and annual policy."""
        with trace_span("annual_allocation", year=year):
            result = self._run(
                "annual_allocation",
                AccrualFrequency.ANNUAL,
                date(year, 1, 1),
                lambda employee, code: self.allocate_annual(employee, code, year),
            )
        logger.info(
            f"Annual allocation {year}: processed={result.processed}, "
            f"skipped={result.skipped}, failures={len(result.failures)}"
        )
        return result
