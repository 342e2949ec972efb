"""
Year-end expiry vs. carry-forward.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timezone

from pydantic import BaseModel

from leave_engine.balance_ledger import BalanceLedger
from leave_engine.errors import AlreadyProcessedError, ValidationError
from leave_engine.events import CarryForwardProcessed, EventPublisher
from leave_engine.models import (
    CarryForwardRule,
    EmployeeProfile,
    ExpiryRecord,
    JobResult,
    LeavePolicy,
    designation_band,
)
from leave_engine.observability import trace_span
from leave_engine.policy_catalog import PolicyCatalog
from leave_engine.repository import EmployeeDirectory, Repository

logger = logging.getLogger(__name__)


class CarryForwardResult(BaseModel):
    employee_id: str
    leave_type_code: str
    from_year: int
    to_year: int
    rule: CarryForwardRule
    carried_forward: float
    expired: float


def carry_forward_cap(policy: LeavePolicy, employee: EmployeeProfile) -> float:
    """Most days of ``policy`` that ``employee`` may take into the next year."""
    if policy.carry_forward_rule == CarryForwardRule.EXPIRE_ALL:
        return 0.0
    if policy.carry_forward_rule == CarryForwardRule.DESIGNATION_BASED:
        return policy.designation_carry_forward_caps.get(
            designation_band(employee.designation), policy.carry_forward_max_days
        )
    return policy.carry_forward_max_days


class CarryForwardProcessor:
    """
    Rules
    -----
    - EXPIRE_ALL: everything unused expires (e.g. Casual Leave)
    - CAP_AT_MAX: ``min(available, carry_forward_max_days)`` moves, the rest expires
      (e.g. Privilege / Earned Leave)
    - DESIGNATION_BASED: the cap depends on the designation band (e.g. USA PTO:
      5 days below VP, 0 for VP and above)

    Retries are safe: the old row carries a processed marker and the new row an
    idempotency key. A run that closed the old year but never seeded the new one is
    completed on retry; a fully processed pair raises ``AlreadyProcessedError``.
    """

    def __init__(
        self,
        ledger: BalanceLedger,
        catalog: PolicyCatalog,
        repository: Repository,
        directory: EmployeeDirectory,
        events: EventPublisher,
        clock: Callable[[], datetime] | None = None,
    ):
        self._ledger = ledger
        self._catalog = catalog
        self._repository = repository
        self._directory = directory
        self._events = events
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def process_year_end(
        self,
        employee: EmployeeProfile,
        leave_type_code: str,
        from_year: int,
        to_year: int | None = None,
    ) -> CarryForwardResult:
        to_year = from_year + 1 if to_year is None else to_year
        if to_year <= from_year:
            raise ValidationError(f"Carry-forward target year {to_year} must follow {from_year}.")

        policy = self._catalog.lookup(leave_type_code, employee.region, date(from_year, 12, 31))
        cap = carry_forward_cap(policy, employee)

        _, carried, expired, newly_closed = self._ledger.close_year(
            employee.id, leave_type_code, from_year, lambda unused: min(unused, cap)
        )

        if newly_closed and expired > 0:
            self._repository.save_expiry_record(
                ExpiryRecord(
                    employee_id=employee.id,
                    leave_type_code=leave_type_code,
                    year=from_year,
                    days=expired,
                    reason=f"{policy.carry_forward_rule.value}: unused balance expired at year end",
                    created_at=self._clock(),
                )
            )

        key = f"carry-forward:{employee.id}:{leave_type_code}:{from_year}"
        try:
            self._ledger.carry_in(employee.id, leave_type_code, to_year, carried, key)
            seeded = True
        except AlreadyProcessedError:
            seeded = False

        if not newly_closed and not seeded:
            raise AlreadyProcessedError(
                f"{leave_type_code} {from_year} year-end already processed for {employee.id}."
            )

        logger.info(
            f"Year-end {leave_type_code} {from_year}->{to_year} for {employee.id}: "
            f"carried={carried}, expired={expired}, rule={policy.carry_forward_rule.value}"
        )
        self._events.publish(
            CarryForwardProcessed(
                employee_id=employee.id,
                occurred_at=self._clock(),
                leave_type_code=leave_type_code,
                from_year=from_year,
                to_year=to_year,
                carried_forward=carried,
                expired=expired,
            )
        )
        return CarryForwardResult(
            employee_id=employee.id,
            leave_type_code=leave_type_code,
            from_year=from_year,
            to_year=to_year,
            rule=policy.carry_forward_rule,
            carried_forward=carried,
            expired=expired,
        )

    def run_year_end(self, from_year: int) -> JobResult:
        """Process every balance row of ``from_year`` for all active employees."""
        result = JobResult(job="year_end_carry_forward")
        with trace_span("year_end_carry_forward", year=from_year):
            for employee in self._directory.list_employees():
                for balance in self._repository.load_balances(employee.id, from_year):
                    try:
                        self.process_year_end(employee, balance.leave_type_code, from_year)
                        result.processed += 1
                    except AlreadyProcessedError:
                        result.skipped += 1
                    except Exception as e:
                        logger.error(
                            f"Year-end failed for employee={employee.id}, "
                            f"leave_type={balance.leave_type_code}: {e}"
                        )
                        result.record_failure(employee.id, e)

        logger.info(
            f"Year-end {from_year}: processed={result.processed}, "
            f"skipped={result.skipped}, failures={len(result.failures)}"
        )
        return result
