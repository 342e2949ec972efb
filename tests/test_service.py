"""
Tests for the command service and the job runner.
"""

from datetime import date
from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from leave_engine import main as runner
from leave_engine.circuit_breaker import CircuitBreaker
from leave_engine.commands import (
    ActOnApprovalStep,
    CancelLeaveRequest,
    DelegateApprovals,
    EncashLeave,
    ReconcileSettlements,
    RecordCompOffWorkLog,
    RevokeDelegation,
    SubmitLeaveRequest,
    SweepWorkflowTimers,
    TriggerAccrual,
    TriggerCarryForward,
    TriggerCompOffExpirySweep,
)
from leave_engine.errors import ConcurrencyConflictError
from leave_engine.models import CompOffGrant, Decision, JobResult, LeaveStatus, WorkType
from leave_engine.service import LeaveEngine


def cl_request(**fields) -> SubmitLeaveRequest:
    values = {
        "employee_id": "E102",
        "leave_type_code": "CL",
        "start_date": date(2025, 3, 10),
        "end_date": date(2025, 3, 11),
    }
    values.update(fields)
    return SubmitLeaveRequest(**values)


class TestExecute:
    """Typed commands in, typed results out."""

    def test_submit_success(self, engine, funded):
        funded("E102", "CL", 5)

        result = engine.execute(cl_request())

        assert result.success
        assert result.command == "SubmitLeaveRequest"
        assert result.value.status == LeaveStatus.PENDING

    def test_business_error_becomes_failed_result(self, engine):
        result = engine.execute(cl_request())

        assert not result.success
        assert result.error.code == "INSUFFICIENT_BALANCE"
        assert result.error.details["requested"] == 2

    def test_act_and_cancel_commands(self, engine, funded):
        funded("E102", "CL", 5)
        request = engine.execute(cl_request()).value

        approved = engine.execute(ActOnApprovalStep(request_id=request.id, actor_id="E101", decision=Decision.APPROVE))
        cancelled = engine.execute(CancelLeaveRequest(request_id=request.id, actor_id="E102", reason="Trip moved"))

        assert approved.value.status == LeaveStatus.APPROVED
        assert cancelled.value.status == LeaveStatus.CANCELLED
        assert engine.ledger.available("E102", "CL", 2025) == 5

    def test_unauthorized_actor_result(self, engine, funded):
        funded("E102", "CL", 5)
        request = engine.execute(cl_request()).value

        result = engine.execute(ActOnApprovalStep(request_id=request.id, actor_id="E200", decision=Decision.APPROVE))

        assert result.error.code == "UNAUTHORIZED_ACTOR"

    def test_eligibility_reasons_are_returned(self, engine):
        result = engine.execute(cl_request(leave_type_code="PATERNITY"))

        assert result.error.code == "NOT_ELIGIBLE"
        assert result.error.reasons

    def test_unknown_command(self, engine):
        with pytest.raises(TypeError):
            engine.execute(object())


class TestJobCommands:
    @pytest.mark.parametrize("period", ["2025-13", "March", "2025-3-1", ""])
    def test_accrual_period_format(self, period):
        with pytest.raises(PydanticValidationError):
            TriggerAccrual(period=period)

    def test_period_parts(self):
        assert (TriggerAccrual(period="2025-03").year, TriggerAccrual(period="2025-03").month) == (2025, 3)
        assert TriggerAccrual(period="2025").month is None

    def test_monthly_accrual_command(self, engine):
        result = engine.execute(TriggerAccrual(period="2025-01"))

        assert isinstance(result.value, JobResult)
        assert result.value.job == "monthly_accrual"
        assert engine.ledger.available("E102", "CL", 2025) == 1

    def test_annual_allocation_command(self, engine):
        result = engine.execute(TriggerAccrual(period="2025"))

        assert result.success
        assert engine.ledger.available("E201", "PTO", 2025) == 15

    def test_carry_forward_command(self, engine, funded):
        funded("E102", "PL", 6, year=2024)

        result = engine.execute(TriggerCarryForward(year=2024))

        assert result.success
        assert engine.ledger.available("E102", "PL", 2025) == 6

    def test_work_log_command(self, engine):
        result = engine.execute(
            RecordCompOffWorkLog(
                employee_id="E102", work_date=date(2025, 3, 1), hours_worked=8, work_type=WorkType.WEEKEND
            )
        )

        assert result.value.day_equivalent == 1.0

    def test_work_log_for_unknown_employee(self, engine):
        result = engine.execute(
            RecordCompOffWorkLog(employee_id="X1", work_date=date(2025, 3, 1), hours_worked=8, work_type=WorkType.WEEKEND)
        )

        assert result.error.code == "VALIDATION_ERROR"

    def test_comp_off_sweep_command(self, engine, repository):
        repository.save_comp_off_grant(
            CompOffGrant(
                employee_id="E102",
                earned_date=date(2024, 11, 2),
                day_equivalent=1.0,
                remaining=1.0,
                expiry_date=date(2025, 2, 2),
            ),
            expected_version=0,
        )

        result = engine.execute(TriggerCompOffExpirySweep())

        assert result.value.processed == 1

    def test_timer_sweep_command(self, engine, funded, clock):
        funded("E102", "PL", 10)
        engine.execute(cl_request(leave_type_code="PL", start_date=date(2025, 3, 17), end_date=date(2025, 3, 18)))
        clock.advance(hours=48)

        result = engine.execute(SweepWorkflowTimers())

        assert result.value.processed == 1

    def test_reconcile_command(self, engine, funded):
        funded("E102", "CL", 5)
        request = engine.execute(cl_request()).value
        with patch.object(engine.ledger, "release", side_effect=ConcurrencyConflictError("row busy")):
            with pytest.raises(ConcurrencyConflictError):
                engine.orchestrator.cancel(request.id, "E102")

        result = engine.execute(ReconcileSettlements())

        assert result.value.job == "settlement_reconcile"
        assert result.value.processed == 1
        assert engine.ledger.available("E102", "CL", 2025) == 5


class TestDelegationCommands:
    def command(self, **fields) -> DelegateApprovals:
        values = {
            "delegator_id": "E101",
            "delegate_id": "E100",
            "start_date": date(2025, 3, 1),
            "end_date": date(2025, 3, 14),
            "reason": "Annual leave",
        }
        values.update(fields)
        return DelegateApprovals(**values)

    def test_delegate_then_act(self, engine, funded):
        funded("E102", "CL", 5)
        request = engine.execute(cl_request()).value

        delegation = engine.execute(self.command()).value
        approved = engine.execute(ActOnApprovalStep(request_id=request.id, actor_id="E100", decision=Decision.APPROVE))

        assert delegation.delegate_id == "E100"
        assert approved.value.status == LeaveStatus.APPROVED

    def test_revoke(self, engine, funded):
        funded("E102", "CL", 5)
        request = engine.execute(cl_request()).value
        delegation = engine.execute(self.command()).value

        revoked = engine.execute(RevokeDelegation(delegation_id=delegation.id))
        result = engine.execute(ActOnApprovalStep(request_id=request.id, actor_id="E100", decision=Decision.APPROVE))

        assert not revoked.value.active
        assert result.error.code == "UNAUTHORIZED_ACTOR"

    def test_delegator_without_approver_role(self, engine):
        result = engine.execute(self.command(delegator_id="E102"))

        assert result.error.code == "VALIDATION_ERROR"

    def test_unknown_delegate(self, engine):
        result = engine.execute(self.command(delegate_id="NOBODY"))

        assert result.error.code == "VALIDATION_ERROR"

    def test_revoke_unknown(self, engine):
        assert engine.execute(RevokeDelegation(delegation_id="missing")).error.code == "VALIDATION_ERROR"


class TestEncash:
    def test_encashable_policy(self, engine, funded):
        funded("E102", "PL", 10)

        result = engine.execute(EncashLeave(employee_id="E102", leave_type_code="PL", year=2025, days=4))

        assert result.success
        assert result.value.encashed == 4
        assert engine.ledger.available("E102", "PL", 2025) == 6

    def test_non_encashable_policy(self, engine, funded):
        funded("E102", "CL", 5)

        result = engine.execute(EncashLeave(employee_id="E102", leave_type_code="CL", year=2025, days=1))

        assert result.error.code == "VALIDATION_ERROR"
        assert engine.ledger.available("E102", "CL", 2025) == 5

    def test_same_reference_twice(self, engine, funded):
        funded("E102", "PL", 10)
        command = EncashLeave(employee_id="E102", leave_type_code="PL", year=2025, days=2, reference="PAYROLL-2025-03")

        engine.execute(command)
        repeat = engine.execute(command)

        assert repeat.error.code == "ALREADY_PROCESSED"
        assert engine.ledger.available("E102", "PL", 2025) == 8


class TestRepositoryOutage:
    def test_breaker_opens_after_infrastructure_failures(self, repository, directory, test_settings, clock):
        engine = LeaveEngine(
            repository,
            directory,
            settings=test_settings,
            clock=clock,
            circuit_breaker=CircuitBreaker(failure_threshold=1, timeout=60, name="test"),
        )

        with patch.object(repository, "load_request", side_effect=ConnectionError("store unreachable")):
            with pytest.raises(ConnectionError):
                engine.execute(cl_request())

            result = engine.execute(cl_request())

        assert result.error.code == "REPOSITORY_UNAVAILABLE"


class TestRunner:
    """Command-line entry point over the seeded stores."""

    def test_timer_sweep_job(self):
        assert runner.main(["sweep-timers"]) == 0

    def test_comp_off_sweep_job(self):
        assert runner.main(["comp-off-sweep", "--as-of", "2025-04-11"]) == 0

    def test_reconcile_job(self):
        assert runner.main(["reconcile"]) == 0

    def test_unknown_job(self):
        with pytest.raises(SystemExit):
            runner.main(["payroll"])
