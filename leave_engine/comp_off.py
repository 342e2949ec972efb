"""
Compensatory-off sub-ledger.

Grants are earned by working a non-working day, expire ``expiry_months`` (3) after
the work date, and are consumed oldest first.

Earning thresholds (defaults):
- >= 8 hours  -> 1.0 day
- >= 5 hours  -> 0.5 day
- < 5 hours   -> InsufficientHoursError
- > 12 hours  -> rejected as an implausible log

Every change to an employee's grants is one versioned write of all the grants it
touches, re-applied to fresh rows on a conflict, so two requests cannot spend the
same grant.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timezone

from leave_engine.config import Settings
from leave_engine.config import settings as default_settings
from leave_engine.errors import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InsufficientHoursError,
    ValidationError,
)
from leave_engine.events import CompOffExpiringSoon, EventPublisher
from leave_engine.models import (
    AuditRecord,
    CompOffGrant,
    CompOffRules,
    CompOffStatus,
    CompOffWorkLog,
    EmployeeProfile,
    JobResult,
    WorkType,
)
from leave_engine.observability import trace_span
from leave_engine.policy_catalog import PolicyCatalog
from leave_engine.repository import Repository
from leave_engine.utils.dates import add_months, is_weekend

logger = logging.getLogger(__name__)

COMP_OFF = "COMP_OFF"

GrantChange = Callable[[list[CompOffGrant]], list[CompOffGrant]]


class CompOffLedger:
    def __init__(
        self,
        repository: Repository,
        catalog: PolicyCatalog,
        events: EventPublisher,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] | None = None,
        leave_type_code: str = COMP_OFF,
    ):
        self._repository = repository
        self._catalog = catalog
        self._events = events
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.leave_type_code = leave_type_code

    def rules_for(self, employee: EmployeeProfile, as_of: date) -> CompOffRules:
        policy = self._catalog.lookup(self.leave_type_code, employee.region, as_of)
        return policy.comp_off_rules or CompOffRules()

    def _audit(self, action: str, employee_id: str, amount: float, reference: str | None, **details):
        self._repository.append_audit_record(
            AuditRecord(
                action=action,
                employee_id=employee_id,
                leave_type_code=self.leave_type_code,
                amount=amount,
                reference=reference,
                details=details,
                created_at=self._clock(),
            )
        )

    # ------------------------------------------------------------------
    # Earning
    # ------------------------------------------------------------------

    @staticmethod
    def days_for_hours(hours_worked: float, rules: CompOffRules) -> float:
        if hours_worked >= rules.full_day_hours:
            return 1.0
        if hours_worked >= rules.half_day_hours:
            return 0.5
        raise InsufficientHoursError(
            f"Minimum {rules.half_day_hours:g} hours required for comp off eligibility; "
            f"logged {hours_worked:g}.",
            details={"hours_worked": hours_worked, "minimum_hours": rules.half_day_hours},
        )

    def record_work_log(
        self,
        employee: EmployeeProfile,
        work_date: date,
        hours_worked: float,
        work_type: WorkType,
    ) -> CompOffGrant:
        rules = self.rules_for(employee, work_date)

        errors: list[str] = []
        if hours_worked <= 0:
            errors.append("Hours worked must be greater than 0.")
        if hours_worked > rules.max_hours_per_day:
            errors.append(f"Maximum {rules.max_hours_per_day:g} hours allowed per day.")
        if work_date > self._clock().date():
            errors.append("Work date cannot be in the future.")

        if rules.requires_non_working_day:
            holidays = self._repository.load_holidays(employee.region)
            if work_type == WorkType.WEEKEND and not is_weekend(work_date):
                errors.append("Work date must be a Saturday or Sunday for weekend work.")
            elif work_type == WorkType.HOLIDAY and work_date not in holidays:
                errors.append("Work date must be a declared holiday for holiday work.")
            elif work_type == WorkType.EXTENDED_HOURS:
                errors.append("Comp off can only be earned for work on a weekend or holiday.")

        if errors:
            raise ValidationError("Work log rejected.", reasons=errors)

        if self._repository.load_work_log(employee.id, work_date) is not None:
            raise ValidationError(
                f"A work log for {work_date.isoformat()} already exists for {employee.id}."
            )

        days = self.days_for_hours(hours_worked, rules)

        work_log = CompOffWorkLog(
            employee_id=employee.id,
            work_date=work_date,
            hours_worked=hours_worked,
            work_type=work_type,
            days_granted=days,
        )
        grant = CompOffGrant(
            employee_id=employee.id,
            work_log_id=work_log.id,
            earned_date=work_date,
            day_equivalent=days,
            remaining=days,
            expiry_date=add_months(work_date, rules.expiry_months),
        )
        self._repository.save_work_log(work_log)
        self._repository.save_comp_off_grant(grant, expected_version=0)
        self._audit("COMP_OFF_EARNED", employee.id, days, grant.id, work_date=work_date.isoformat())

        logger.info(
            f"Comp off earned: employee={employee.id}, work_date={work_date}, "
            f"hours={hours_worked}, days={days}, expires={grant.expiry_date}"
        )
        return grant

    # ------------------------------------------------------------------
    # Spending
    # ------------------------------------------------------------------

    @staticmethod
    def _usable(grants: list[CompOffGrant], as_of: date) -> list[CompOffGrant]:
        return sorted(
            (grant for grant in grants if grant.is_usable_on(as_of)),
            key=lambda g: (g.earned_date, g.expiry_date),
        )

    def usable_grants(self, employee_id: str, as_of: date) -> list[CompOffGrant]:
        """Grants usable on ``as_of``, oldest first."""
        return self._usable(self._repository.load_comp_off_grants(employee_id), as_of)

    def available_days(self, employee_id: str, as_of: date) -> float:
        return sum(grant.remaining for grant in self.usable_grants(employee_id, as_of))

    def holds(self, employee_id: str, reference: str) -> bool:
        """Whether any grant still carries a consumption for ``reference``."""
        return any(
            reference in grant.consumptions for grant in self._repository.load_comp_off_grants(employee_id)
        )

    def _rewrite(self, employee_id: str, change: GrantChange) -> list[CompOffGrant]:
        """
        Apply ``change`` to the employee's grants and save what it returns in one
        versioned write.

        ``change`` returns the grants it modified, or an empty list when there is
        nothing to do. A conflict re-reads the grants and re-runs ``change``, up to
        ``settings.ledger_max_retries`` attempts.
        """
        attempts = max(1, self.settings.ledger_max_retries)
        for attempt in range(1, attempts + 1):
            touched = change(self._repository.load_comp_off_grants(employee_id))
            if not touched:
                return []
            try:
                return self._repository.save_comp_off_grants(touched)
            except ConcurrencyConflictError:
                logger.warning(f"Version conflict on comp off grants of {employee_id}, attempt {attempt}/{attempts}")

        raise ConcurrencyConflictError(
            f"Comp off grants of {employee_id} kept changing; gave up after {attempts} attempts."
        )

    def consume(self, employee_id: str, days: float, as_of: date, reference: str) -> list[CompOffGrant]:
        """
        Debit ``days`` from the oldest usable grants (FIFO by earned date).

        Partial consumption reduces a grant's ``remaining`` in place. Consuming the
        same ``reference`` twice is a no-op.
        """
        if days <= 0:
            raise ValidationError(f"Cannot consume {days} comp off days.")

        def change(grants: list[CompOffGrant]) -> list[CompOffGrant]:
            if any(reference in grant.consumptions for grant in grants):
                return []

            usable = self._usable(grants, as_of)
            available = sum(grant.remaining for grant in usable)
            if days > available:
                raise InsufficientBalanceError(
                    f"Insufficient comp off balance. {available:g} days usable on "
                    f"{as_of.isoformat()} but {days:g} requested.",
                    details={"available": available, "requested": days},
                )

            touched = []
            outstanding = days
            for grant in usable:
                if outstanding <= 0:
                    break
                take = min(grant.remaining, outstanding)
                grant.remaining -= take
                grant.consumptions[reference] = take
                if grant.remaining <= 0:
                    grant.status = CompOffStatus.USED
                outstanding -= take
                touched.append(grant)
            return touched

        touched = self._rewrite(employee_id, change)
        if touched:
            self._audit("COMP_OFF_CONSUMED", employee_id, days, reference, grants=[g.id for g in touched])
        return touched

    def restore(self, employee_id: str, reference: str, as_of: date) -> float:
        """
        Give back a cancelled consumption. Grants that expired in the meantime stay
        expired; their share is lost. Returns the days restored.
        """
        restored: list[float] = []

        def change(grants: list[CompOffGrant]) -> list[CompOffGrant]:
            restored.clear()
            touched = []
            for grant in grants:
                taken = grant.consumptions.pop(reference, None)
                if taken is None:
                    continue
                if grant.status != CompOffStatus.EXPIRED and grant.expiry_date >= as_of:
                    grant.remaining += taken
                    grant.status = CompOffStatus.AVAILABLE
                    restored.append(taken)
                touched.append(grant)
            return touched

        self._rewrite(employee_id, change)
        total = sum(restored)
        if total:
            self._audit("COMP_OFF_RESTORED", employee_id, total, reference)
        return total

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def _expire(self, grant_id: str, employee_id: str, as_of: date) -> CompOffGrant | None:
        def change(grants: list[CompOffGrant]) -> list[CompOffGrant]:
            for grant in grants:
                if grant.id == grant_id and grant.status == CompOffStatus.AVAILABLE and grant.expiry_date < as_of:
                    grant.status = CompOffStatus.EXPIRED
                    return [grant]
            return []

        expired = self._rewrite(employee_id, change)
        return expired[0] if expired else None

    def sweep_expired(self, as_of: date) -> JobResult:
        """AVAILABLE grants past their expiry date become EXPIRED. Unused days are lost."""
        result = JobResult(job="comp_off_expiry_sweep")
        with trace_span("comp_off_expiry_sweep", as_of=as_of.isoformat()):
            for grant in self._repository.load_available_comp_off_grants():
                if grant.expiry_date >= as_of:
                    continue
                try:
                    expired = self._expire(grant.id, grant.employee_id, as_of)
                except Exception as e:
                    logger.error(f"Comp off expiry failed for grant={grant.id}: {e}")
                    result.record_failure(grant.employee_id, e)
                    continue
                if expired is None:
                    result.skipped += 1
                    continue
                self._audit("COMP_OFF_EXPIRED", expired.employee_id, expired.remaining, expired.id)
                result.processed += 1

        logger.info(f"Comp off sweep {as_of}: expired={result.processed}, failures={len(result.failures)}")
        return result

    def remind_expiring(self, as_of: date) -> int:
        """Publish ``CompOffExpiringSoon`` for grants on a reminder day. Returns the count."""
        reminder_days = set(self.settings.comp_off_reminder_days)
        sent = 0
        for grant in self._repository.load_available_comp_off_grants():
            days_until_expiry = (grant.expiry_date - as_of).days
            if grant.remaining <= 0 or days_until_expiry not in reminder_days:
                continue
            self._events.publish(
                CompOffExpiringSoon(
                    employee_id=grant.employee_id,
                    occurred_at=self._clock(),
                    grant_id=grant.id,
                    expiry_date=grant.expiry_date,
                    days_until_expiry=days_until_expiry,
                    remaining=grant.remaining,
                )
            )
            sent += 1
        return sent
