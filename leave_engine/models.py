"""
Domain model for the leave engine.

Snapshots that must not change once loaded (policies, employee profiles, workflow
definitions) are frozen pydantic models. Ledger rows and requests are mutable; they
are always copied out of the repository, changed, and saved back under a version check.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from leave_engine.predicates import Predicate


def new_id() -> str:
    return uuid.uuid4().hex


class Region(str, Enum):
    INDIA = "INDIA"
    USA = "USA"
    GLOBAL = "GLOBAL"


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class MaritalStatus(str, Enum):
    SINGLE = "SINGLE"
    MARRIED = "MARRIED"
    DIVORCED = "DIVORCED"
    WIDOWED = "WIDOWED"


class AccrualFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    ANNUAL = "ANNUAL"
    NONE = "NONE"


class RoundingMode(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    NEAREST = "NEAREST"


class CarryForwardRule(str, Enum):
    EXPIRE_ALL = "EXPIRE_ALL"
    CAP_AT_MAX = "CAP_AT_MAX"
    DESIGNATION_BASED = "DESIGNATION_BASED"


class DesignationBand(str, Enum):
    BELOW_AVP = "BELOW_AVP"
    AVP = "AVP"
    VP_AND_ABOVE = "VP_AND_ABOVE"


class LeaveStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class HalfDaySession(str, Enum):
    FIRST_HALF = "FIRST_HALF"
    SECOND_HALF = "SECOND_HALF"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"
    ESCALATED = "ESCALATED"


class ExecutionMode(str, Enum):
    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class Decision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SKIP = "SKIP"


class EntryState(str, Enum):
    RESERVED = "RESERVED"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class CompOffStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    USED = "USED"
    EXPIRED = "EXPIRED"


class WorkType(str, Enum):
    WEEKEND = "WEEKEND"
    HOLIDAY = "HOLIDAY"
    EXTENDED_HOURS = "EXTENDED_HOURS"


HR_ADMIN = "HR_ADMIN"
L1_MANAGER = "L1_MANAGER"
L2_MANAGER = "L2_MANAGER"

APPROVER_ROLES = frozenset({L1_MANAGER, L2_MANAGER, HR_ADMIN})

_VP_AND_ABOVE = {"VP", "SVP", "EVP", "CEO", "CTO", "CFO", "COO"}


def designation_band(designation: str | None) -> DesignationBand:
    """Map a designation title onto its PTO band. Unknown titles fall below AVP."""
    if not designation:
        return DesignationBand.BELOW_AVP
    title = designation.strip().upper()
    if title in _VP_AND_ABOVE:
        return DesignationBand.VP_AND_ABOVE
    if title == "AVP":
        return DesignationBand.AVP
    return DesignationBand.BELOW_AVP


# ---------------------------------------------------------------------------
# Policies and employees
# ---------------------------------------------------------------------------


class CompOffRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_day_hours: float = 8.0
    half_day_hours: float = 5.0
    max_hours_per_day: float = 12.0
    expiry_months: int = 3
    requires_non_working_day: bool = True


class LeavePolicy(BaseModel):
    """Immutable snapshot of one leave type's rules for a region."""

    model_config = ConfigDict(frozen=True)

    leave_type_code: str
    name: str = ""
    region: Region
    effective_from: date
    effective_to: date | None = None

    entitlement_days: float | None = None
    accrual_rate: float = 1.0
    accrual_frequency: AccrualFrequency = AccrualFrequency.NONE
    designation_entitlements: dict[DesignationBand, float] = Field(default_factory=dict)
    rounding_mode: RoundingMode = RoundingMode.NEAREST
    rounding_precision: float = 0.5

    min_service_months: int = 0
    allowed_genders: frozenset[Gender] | None = None
    allowed_marital_statuses: frozenset[MaritalStatus] | None = None
    available_during_probation: bool = True

    max_consecutive_days: float | None = None
    carry_forward_rule: CarryForwardRule = CarryForwardRule.EXPIRE_ALL
    carry_forward_max_days: float = 0.0
    designation_carry_forward_caps: dict[DesignationBand, float] = Field(default_factory=dict)
    documentation_threshold_days: float | None = None
    approval_levels: int | None = None
    allow_multiple_per_year: bool = True
    advance_notice_days: int = 0

    allow_negative_balance: bool = False
    encashment_allowed: bool = False
    suspends_accrual: bool = False
    counts_calendar_days: bool = False
    allow_cancel_after_approval: bool = True
    uses_comp_off_ledger: bool = False
    comp_off_rules: CompOffRules | None = None

    def is_effective_on(self, as_of: date) -> bool:
        if self.effective_from > as_of:
            return False
        return self.effective_to is None or self.effective_to >= as_of


class EmployeeProfile(BaseModel):
    """Read-only employee data served by the employee directory."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    region: Region
    gender: Gender | None = None
    marital_status: MaritalStatus | None = None
    designation: str | None = None
    joining_date: date | None = None
    suspended_accrual: bool = False
    probation_end_date: date | None = None
    reporting_manager_id: str | None = None
    roles: frozenset[str] = frozenset()
    active: bool = True


LEAVE_APPROVALS = "leave_approvals"


class Delegation(BaseModel):
    """
    Temporary hand-over of a delegator's approval authority to a delegate.

    Only delegations carrying the ``leave_approvals`` permission let the delegate act
    on approval steps, and only on dates inside ``[start_date, end_date]``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    delegator_id: str
    delegate_id: str
    start_date: date
    end_date: date
    permissions: frozenset[str] = frozenset({LEAVE_APPROVALS})
    reason: str | None = None
    active: bool = True

    def grants_approvals_on(self, on: date) -> bool:
        return (
            self.active
            and LEAVE_APPROVALS in self.permissions
            and self.start_date <= on <= self.end_date
        )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class LedgerEntry(BaseModel):
    """Days held against a balance row on behalf of one request."""

    request_id: str
    days: float
    state: EntryState = EntryState.RESERVED


class LeaveBalance(BaseModel):
    employee_id: str
    leave_type_code: str
    year: int

    total_entitlement: float = 0.0
    accrued: float = 0.0
    used: float = 0.0
    pending: float = 0.0
    carry_forward_in: float = 0.0
    expired: float = 0.0
    encashed: float = 0.0

    version: int = 0
    archived: bool = False
    applied_keys: list[str] = Field(default_factory=list)
    entries: dict[str, LedgerEntry] = Field(default_factory=dict)
    carry_forward_processed: bool = False
    carry_forward_out: float = 0.0

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.employee_id, self.leave_type_code, self.year)

    @property
    def available(self) -> float:
        return (
            self.total_entitlement
            + self.carry_forward_in
            - self.used
            - self.pending
            - self.expired
            - self.encashed
        )


class ExpiryRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    employee_id: str
    leave_type_code: str
    year: int
    days: float
    reason: str
    created_at: datetime | None = None


class AuditRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    action: str
    employee_id: str | None = None
    leave_type_code: str | None = None
    year: int | None = None
    amount: float = 0.0
    reference: str | None = None
    actor_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Comp-off
# ---------------------------------------------------------------------------


class CompOffWorkLog(BaseModel):
    id: str = Field(default_factory=new_id)
    employee_id: str
    work_date: date
    hours_worked: float
    work_type: WorkType
    days_granted: float


class CompOffGrant(BaseModel):
    id: str = Field(default_factory=new_id)
    employee_id: str
    work_log_id: str | None = None
    earned_date: date
    day_equivalent: float
    remaining: float
    expiry_date: date
    status: CompOffStatus = CompOffStatus.AVAILABLE
    consumptions: dict[str, float] = Field(default_factory=dict)
    version: int = 0

    def is_usable_on(self, as_of: date) -> bool:
        return (
            self.status == CompOffStatus.AVAILABLE
            and self.remaining > 0
            and self.expiry_date >= as_of
        )


# ---------------------------------------------------------------------------
# Workflows and requests
# ---------------------------------------------------------------------------


class StepTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int
    approver_role: str
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    auto_approve_after_hours: float | None = None
    escalate_after_hours: float | None = None
    escalate_to_role: str | None = None
    is_optional: bool = False


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    workflow_type: str
    name: str = ""
    priority: int = 0
    is_default: bool = False
    is_active: bool = True
    condition: Predicate | None = None
    steps: tuple[StepTemplate, ...] = ()


class ApprovalStep(BaseModel):
    id: str = Field(default_factory=new_id)
    level: int
    approver_role: str
    assignee_id: str | None = None
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    status: StepStatus = StepStatus.PENDING
    is_optional: bool = False

    auto_approve_after_hours: float | None = None
    escalate_after_hours: float | None = None
    escalate_to_role: str | None = None
    activated_at: datetime | None = None
    auto_approve_deadline: datetime | None = None
    escalate_deadline: datetime | None = None

    decided_by: str | None = None
    decided_at: datetime | None = None
    comments: str | None = None
    system_generated: bool = False
    escalated_from: str | None = None
    acting_for: str | None = None

    @property
    def is_actionable(self) -> bool:
        return self.status == StepStatus.PENDING and self.activated_at is not None


class EscalationRoute(BaseModel):
    """Onward escalation for steps addressed to a role, snapshotted at submit."""

    after_hours: float
    to_role: str


class LeaveRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    employee_id: str
    leave_type_code: str
    start_date: date
    end_date: date
    is_half_day: bool = False
    half_day_session: HalfDaySession | None = None
    total_days: float = 0.0
    status: LeaveStatus = LeaveStatus.DRAFT
    reason: str | None = None
    workflow_type: str | None = None
    approval_chain: list[ApprovalStep] = Field(default_factory=list)
    escalation_routes: dict[str, EscalationRoute] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    submitted_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    resolved_at: datetime | None = None
    version: int = 0

    @property
    def balance_year(self) -> int:
        return self.start_date.year

    @property
    def is_terminal(self) -> bool:
        return self.status in (LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED)


class JobFailure(BaseModel):
    employee_id: str
    error_code: str
    message: str


class JobResult(BaseModel):
    """Outcome of a scheduled batch job. Partial success is normal."""

    job: str
    processed: int = 0
    skipped: int = 0
    failures: list[JobFailure] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def record_failure(self, employee_id: str, error: Exception) -> None:
        self.failures.append(
            JobFailure(
                employee_id=employee_id,
                error_code=getattr(error, "error_code", type(error).__name__),
                message=str(error),
            )
        )
