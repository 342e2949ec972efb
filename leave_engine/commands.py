"""
Typed commands accepted by ``LeaveEngine.execute`` and the results it returns.

The API layer and the job scheduler build these; the engine never parses wire formats
itself.
"""

from datetime import date, datetime
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator

from leave_engine.errors import LeaveEngineError
from leave_engine.models import Decision, HalfDaySession, WorkType, new_id


class SubmitLeaveRequest(BaseModel):
    employee_id: str
    leave_type_code: str
    start_date: date
    end_date: date
    is_half_day: bool = False
    half_day_session: HalfDaySession | None = None
    reason: str | None = None
    actor_id: str | None = None
    request_id: str = Field(default_factory=new_id)


class ActOnApprovalStep(BaseModel):
    request_id: str
    actor_id: str
    decision: Decision
    comments: str | None = None
    step_id: str | None = None


class CancelLeaveRequest(BaseModel):
    request_id: str
    actor_id: str
    reason: str | None = None


class TriggerAccrual(BaseModel):
    """``period`` is ``YYYY-MM`` for a monthly run or ``YYYY`` for annual allocation."""

    period: str

    @field_validator("period")
    @classmethod
    def validate_period(cls, v: str) -> str:
        parts = v.split("-")
        if len(parts) not in (1, 2) or not all(part.isdigit() for part in parts):
            raise ValueError("period must be YYYY or YYYY-MM")
        if len(parts) == 2 and not 1 <= int(parts[1]) <= 12:
            raise ValueError("month must be between 1 and 12")
        return v

    @property
    def year(self) -> int:
        return int(self.period.split("-")[0])

    @property
    def month(self) -> int | None:
        parts = self.period.split("-")
        return int(parts[1]) if len(parts) == 2 else None


class TriggerCarryForward(BaseModel):
    year: int


class RecordCompOffWorkLog(BaseModel):
    employee_id: str
    work_date: date
    hours_worked: float
    work_type: WorkType


class TriggerCompOffExpirySweep(BaseModel):
    as_of: date | None = None


class SweepWorkflowTimers(BaseModel):
    now: datetime | None = None


class EncashLeave(BaseModel):
    employee_id: str
    leave_type_code: str
    year: int
    days: float
    reference: str = Field(default_factory=new_id)


class ReconcileSettlements(BaseModel):
    pass


class DelegateApprovals(BaseModel):
    delegator_id: str
    delegate_id: str
    start_date: date
    end_date: date
    reason: str | None = None


class RevokeDelegation(BaseModel):
    delegation_id: str


Command = Union[
    SubmitLeaveRequest,
    ActOnApprovalStep,
    CancelLeaveRequest,
    TriggerAccrual,
    TriggerCarryForward,
    RecordCompOffWorkLog,
    TriggerCompOffExpirySweep,
    SweepWorkflowTimers,
    EncashLeave,
    ReconcileSettlements,
    DelegateApprovals,
    RevokeDelegation,
]


class ErrorInfo(BaseModel):
    code: str
    message: str
    reasons: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error: LeaveEngineError) -> "ErrorInfo":
        return cls(
            code=error.error_code,
            message=error.message,
            reasons=list(error.reasons),
            details=dict(error.details),
        )


class CommandResult(BaseModel):
    command: str
    success: bool
    value: Any = None
    error: ErrorInfo | None = None

    @classmethod
    def ok(cls, command: str, value: Any = None) -> "CommandResult":
        return cls(command=command, success=True, value=value)

    @classmethod
    def failed(cls, command: str, error: LeaveEngineError) -> "CommandResult":
        return cls(command=command, success=False, error=ErrorInfo.from_error(error))
