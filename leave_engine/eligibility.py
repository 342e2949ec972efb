"""
Employee eligibility against a leave policy.
"""

import logging
from datetime import date

from pydantic import BaseModel, Field

from leave_engine.config import Settings
from leave_engine.config import settings as default_settings
from leave_engine.models import EmployeeProfile, LeavePolicy
from leave_engine.utils.dates import add_months, months_of_service

logger = logging.getLogger(__name__)


class EligibilityResult(BaseModel):
    eligible: bool
    reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class EligibilityEvaluator:
    """
    Decide whether an employee may take a leave type at all.

    Guarantees
    ----------
    - restrictions come from the policy, nothing is hardcoded per leave type
    - missing employee attributes that a rule needs make the employee ineligible
    - never raises; every outcome carries human-readable reasons
    """

    def __init__(self, settings: Settings = default_settings):
        self.settings = settings

    def probation_end(self, employee: EmployeeProfile) -> date | None:
        if employee.probation_end_date is not None:
            return employee.probation_end_date
        if employee.joining_date is None:
            return None
        return add_months(employee.joining_date, self.settings.probation_months)

    def evaluate(self, employee: EmployeeProfile, policy: LeavePolicy, as_of: date) -> EligibilityResult:
        reasons: list[str] = []
        warnings: list[str] = []
        leave_name = policy.name or policy.leave_type_code

        if not employee.active:
            reasons.append(f"Employee {employee.id} is not active.")

        # 1. Gender restriction
        if policy.allowed_genders is not None:
            if employee.gender is None:
                reasons.append(f"{leave_name} requires a gender on file; none recorded.")
            elif employee.gender not in policy.allowed_genders:
                allowed = ", ".join(sorted(g.value for g in policy.allowed_genders))
                reasons.append(f"{leave_name} is only available to: {allowed}.")

        # 2. Marital status restriction
        if policy.allowed_marital_statuses is not None:
            if employee.marital_status is None:
                reasons.append(f"{leave_name} requires a marital status on file; none recorded.")
            elif employee.marital_status not in policy.allowed_marital_statuses:
                allowed = ", ".join(sorted(m.value for m in policy.allowed_marital_statuses))
                reasons.append(f"{leave_name} requires marital status: {allowed}.")

        missing_joining_date = f"{leave_name} requires a joining date on file; none recorded."

        # 3. Minimum service
        if policy.min_service_months > 0:
            if employee.joining_date is None:
                reasons.append(missing_joining_date)
            else:
                served = months_of_service(employee.joining_date, as_of)
                if served < policy.min_service_months:
                    reasons.append(
                        f"{leave_name} requires {policy.min_service_months} months of service; "
                        f"employee has {served}."
                    )

        # 4. Probation
        if not policy.available_during_probation:
            probation_end = self.probation_end(employee)
            if probation_end is None:
                if missing_joining_date not in reasons:
                    reasons.append(missing_joining_date)
            elif as_of < probation_end:
                reasons.append(
                    f"{leave_name} is not available during probation "
                    f"(ends {probation_end.isoformat()})."
                )

        # Soft requirements shown alongside the decision
        if policy.documentation_threshold_days:
            warnings.append(
                f"Supporting documentation required for requests longer than "
                f"{policy.documentation_threshold_days:g} days."
            )
        if policy.advance_notice_days:
            warnings.append(f"{leave_name} requires {policy.advance_notice_days} days advance notice.")

        eligible = not reasons
        logger.info(
            f"Eligibility: employee={employee.id}, leave_type={policy.leave_type_code}, "
            f"eligible={eligible}, reasons={len(reasons)}"
        )
        return EligibilityResult(eligible=eligible, reasons=reasons, warnings=warnings)
