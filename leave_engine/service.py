"""
Command service: the single entry point for the API layer and the job scheduler.

``LeaveEngine`` wires the components together over an injected repository, employee
directory and event publisher, and dispatches typed commands. Every business-rule
violation comes back as a failed ``CommandResult``; unexpected exceptions propagate.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from leave_engine.accrual import AccrualEngine
from leave_engine.balance_ledger import BalanceLedger
from leave_engine.carry_forward import CarryForwardProcessor
from leave_engine.circuit_breaker import CircuitBreaker
from leave_engine.commands import (
    ActOnApprovalStep,
    CancelLeaveRequest,
    Command,
    CommandResult,
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
from leave_engine.comp_off import CompOffLedger
from leave_engine.config import Settings
from leave_engine.config import settings as default_settings
from leave_engine.eligibility import EligibilityEvaluator
from leave_engine.errors import LeaveEngineError, ValidationError
from leave_engine.events import EventBus, EventPublisher
from leave_engine.observability import trace_span
from leave_engine.orchestrator import LeaveRequestOrchestrator
from leave_engine.overlap import OverlapValidator
from leave_engine.policy_catalog import PolicyCatalog
from leave_engine.models import APPROVER_ROLES, Delegation
from leave_engine.repository import (
    DelegationRegistry,
    EmployeeDirectory,
    GuardedRepository,
    InMemoryDelegationRegistry,
    Repository,
)
from leave_engine.workflow import ApprovalWorkflowEngine

logger = logging.getLogger(__name__)


class LeaveEngine:
    def __init__(
        self,
        repository: Repository,
        directory: EmployeeDirectory,
        events: EventPublisher | None = None,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        delegations: DelegationRegistry | None = None,
    ):
        self.settings = settings
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.events = events if events is not None else EventBus()
        self.repository = GuardedRepository(repository, circuit_breaker) if circuit_breaker else repository
        self.directory = directory
        self.delegations = delegations if delegations is not None else InMemoryDelegationRegistry()

        self.catalog = PolicyCatalog(self.repository)
        self.eligibility = EligibilityEvaluator(settings)
        self.overlap = OverlapValidator()
        self.ledger = BalanceLedger(self.repository, settings, self.clock)
        self.comp_off = CompOffLedger(self.repository, self.catalog, self.events, settings, self.clock)
        self.workflow = ApprovalWorkflowEngine(self.repository)
        self.accrual = AccrualEngine(self.ledger, self.catalog, self.repository, directory, settings)
        self.carry_forward = CarryForwardProcessor(
            self.ledger, self.catalog, self.repository, directory, self.events, self.clock
        )
        self.orchestrator = LeaveRequestOrchestrator(
            self.repository,
            directory,
            self.catalog,
            self.eligibility,
            self.overlap,
            self.ledger,
            self.comp_off,
            self.workflow,
            self.events,
            settings,
            self.clock,
            self.delegations,
        )

        self._handlers = {
            SubmitLeaveRequest: self._submit,
            ActOnApprovalStep: self._act,
            CancelLeaveRequest: self._cancel,
            TriggerAccrual: self._accrue,
            TriggerCarryForward: self._carry_forward,
            RecordCompOffWorkLog: self._record_work_log,
            TriggerCompOffExpirySweep: self._sweep_comp_off,
            SweepWorkflowTimers: self._sweep_timers,
            EncashLeave: self._encash,
            ReconcileSettlements: self._reconcile,
            DelegateApprovals: self._delegate,
            RevokeDelegation: self._revoke_delegation,
        }

    def reload(self) -> None:
        """Re-read policies and workflow definitions after configuration changes."""
        self.catalog.reload()
        self.workflow.reload()

    def execute(self, command: Command) -> CommandResult:
        name = type(command).__name__
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported command: {name}")

        with trace_span("command", command=name):
            try:
                return CommandResult.ok(name, handler(command))
            except LeaveEngineError as e:
                logger.warning(f"{name} rejected: {e.error_code} {e.message}")
                return CommandResult.failed(name, e)

    # Handlers

    def _submit(self, command: SubmitLeaveRequest):
        return self.orchestrator.submit(command)

    def _act(self, command: ActOnApprovalStep):
        return self.orchestrator.act(
            command.request_id, command.actor_id, command.decision, command.comments, command.step_id
        )

    def _cancel(self, command: CancelLeaveRequest):
        return self.orchestrator.cancel(command.request_id, command.actor_id, command.reason)

    def _accrue(self, command: TriggerAccrual):
        if command.month is None:
            return self.accrual.run_annual(command.year)
        return self.accrual.run_monthly(command.year, command.month)

    def _carry_forward(self, command: TriggerCarryForward):
        return self.carry_forward.run_year_end(command.year)

    def _record_work_log(self, command: RecordCompOffWorkLog):
        employee = self.directory.get_employee(command.employee_id)
        if employee is None:
            raise ValidationError(f"Employee {command.employee_id} not found.")
        return self.comp_off.record_work_log(
            employee, command.work_date, command.hours_worked, command.work_type
        )

    def _sweep_comp_off(self, command: TriggerCompOffExpirySweep):
        as_of = command.as_of or self.clock().date()
        result = self.comp_off.sweep_expired(as_of)
        self.comp_off.remind_expiring(as_of)
        return result

    def _sweep_timers(self, command: SweepWorkflowTimers):
        return self.orchestrator.sweep_timers(command.now)

    def _encash(self, command: EncashLeave):
        employee = self.directory.get_employee(command.employee_id)
        if employee is None:
            raise ValidationError(f"Employee {command.employee_id} not found.")
        policy = self.catalog.lookup(command.leave_type_code, employee.region, self.clock().date())
        if not policy.encashment_allowed:
            raise ValidationError(f"{policy.leave_type_code} cannot be encashed.")
        return self.ledger.encash(
            employee.id, command.leave_type_code, command.year, command.days, command.reference
        )

    def _reconcile(self, command: ReconcileSettlements):
        return self.orchestrator.reconcile()

    def _delegate(self, command: DelegateApprovals):
        delegator = self.directory.get_employee(command.delegator_id)
        delegate = self.directory.get_employee(command.delegate_id)
        if delegator is None or delegate is None:
            raise ValidationError("Delegator and delegate must both be known employees.")
        if not delegator.roles & APPROVER_ROLES:
            raise ValidationError(f"{delegator.id} holds no approver role to delegate.")
        if not delegate.active:
            raise ValidationError(f"{delegate.id} is not an active employee.")
        return self.delegations.add(
            Delegation(
                delegator_id=delegator.id,
                delegate_id=delegate.id,
                start_date=command.start_date,
                end_date=command.end_date,
                reason=command.reason,
            )
        )

    def _revoke_delegation(self, command: RevokeDelegation):
        return self.delegations.revoke(command.delegation_id)
