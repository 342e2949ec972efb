"""
Leave request lifecycle: submit, act, cancel and timer sweeps.

Submit pipeline
---------------
1. request shape (dates, half-day session)
2. eligibility (gender, marital status, tenure, probation)
3. leave-day count over working days and regional holidays
4. overlap with the employee's PENDING / APPROVED requests
5. advance notice, max consecutive days, one-per-year
6. reserve the days (balance ledger, or comp-off grants)
7. instantiate the matching approval workflow

Each stage fails fast with a typed error carrying human-readable reasons. Soft
findings (documentation needed, HR overlap override) are kept on the request as
warnings.

The new request is stored only if no other request of the same employee was stored
since the overlap check read them; otherwise the checks run again on fresh data.

Terminal transitions settle the balance: APPROVED commits, REJECTED and CANCELLED
release (or refund, when an approved request is cancelled). Comp-off requests debit
their grants at submit and restore them when the request does not go ahead.
Settlement is derived from the request status and the ledger entry state, so it can
be repeated. A failed settlement is retried by repeating the cancel or decision, or
by the ``reconcile`` sweep.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timezone

from leave_engine.balance_ledger import BalanceLedger
from leave_engine.commands import SubmitLeaveRequest
from leave_engine.comp_off import CompOffLedger
from leave_engine.config import Settings
from leave_engine.config import settings as default_settings
from leave_engine.eligibility import EligibilityEvaluator
from leave_engine.errors import (
    ConcurrencyConflictError,
    EligibilityError,
    InvalidTransitionError,
    LeaveEngineError,
    UnauthorizedActorError,
    ValidationError,
)
from leave_engine.events import (
    BalanceLow,
    EventPublisher,
    RequestApproved,
    RequestCancelled,
    RequestRejected,
    RequestSubmitted,
    StepActionable,
)
from leave_engine.models import (
    HR_ADMIN,
    L1_MANAGER,
    L2_MANAGER,
    ApprovalStep,
    Decision,
    EmployeeProfile,
    EntryState,
    JobResult,
    LeavePolicy,
    LeaveRequest,
    LeaveStatus,
    LedgerEntry,
    StepStatus,
    designation_band,
)
from leave_engine.observability import trace_span
from leave_engine.overlap import BLOCKING_STATUSES, DateRange, OverlapValidator
from leave_engine.policy_catalog import PolicyCatalog
from leave_engine.repository import (
    DelegationRegistry,
    EmployeeDirectory,
    InMemoryDelegationRegistry,
    Repository,
)
from leave_engine.utils.dates import count_leave_days
from leave_engine.workflow import SYSTEM_ACTOR, ApprovalWorkflowEngine, DueTransition, WorkflowOutcome

logger = logging.getLogger(__name__)

RequestChange = Callable[[LeaveRequest], WorkflowOutcome | None]

TERMINAL_STATUSES = (LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED)

_DECIDED_AS = {
    Decision.APPROVE: StepStatus.APPROVED,
    Decision.REJECT: StepStatus.REJECTED,
    Decision.SKIP: StepStatus.SKIPPED,
}


class LeaveRequestOrchestrator:
    def __init__(
        self,
        repository: Repository,
        directory: EmployeeDirectory,
        catalog: PolicyCatalog,
        eligibility: EligibilityEvaluator,
        overlap: OverlapValidator,
        ledger: BalanceLedger,
        comp_off: CompOffLedger,
        workflow: ApprovalWorkflowEngine,
        events: EventPublisher,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] | None = None,
        delegations: DelegationRegistry | None = None,
    ):
        self._repository = repository
        self._directory = directory
        self._catalog = catalog
        self._eligibility = eligibility
        self._overlap = overlap
        self._ledger = ledger
        self._comp_off = comp_off
        self._workflow = workflow
        self._events = events
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._delegations = delegations if delegations is not None else InMemoryDelegationRegistry()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _employee(self, employee_id: str) -> EmployeeProfile:
        employee = self._directory.get_employee(employee_id)
        if employee is None:
            raise ValidationError(f"Employee {employee_id} not found.")
        return employee

    def _actor(self, actor_id: str) -> EmployeeProfile:
        actor = self._directory.get_employee(actor_id)
        if actor is None or not actor.active:
            raise UnauthorizedActorError(f"Actor {actor_id} is not a known active employee.")
        return actor

    def _load(self, request_id: str) -> LeaveRequest:
        request = self._repository.load_request(request_id)
        if request is None:
            raise ValidationError(f"Leave request {request_id} not found.")
        return request

    def assignee_resolver(self, employee: EmployeeProfile) -> Callable[[str], str | None]:
        """Map L1 / L2 manager roles onto the requester's reporting line."""

        def resolve(role: str) -> str | None:
            if role == L1_MANAGER:
                return employee.reporting_manager_id
            if role == L2_MANAGER and employee.reporting_manager_id:
                manager = self._directory.get_employee(employee.reporting_manager_id)
                return manager.reporting_manager_id if manager else None
            return None

        return resolve

    def _ledger_entry(self, request: LeaveRequest) -> LedgerEntry | None:
        balance = self._ledger.get_balance(request.employee_id, request.leave_type_code, request.balance_year)
        return balance.entries.get(request.id) if balance else None

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    @staticmethod
    def _shape_errors(cmd: SubmitLeaveRequest) -> list[str]:
        errors = []
        if cmd.end_date < cmd.start_date:
            errors.append("End date cannot be before start date.")
        if cmd.is_half_day:
            if cmd.start_date != cmd.end_date:
                errors.append("A half-day request must start and end on the same date.")
            if cmd.half_day_session is None:
                errors.append("A half-day request needs a session (FIRST_HALF or SECOND_HALF).")
        elif cmd.half_day_session is not None:
            errors.append("Half-day session given for a full-day request.")
        return errors

    def _policy_errors(
        self, cmd: SubmitLeaveRequest, policy: LeavePolicy, total_days: float, today: date
    ) -> list[str]:
        errors = []
        leave_name = policy.name or policy.leave_type_code

        if policy.advance_notice_days:
            notice = (cmd.start_date - today).days
            if notice < policy.advance_notice_days:
                errors.append(
                    f"{leave_name} requires {policy.advance_notice_days} days advance notice; "
                    f"request gives {max(notice, 0)}."
                )

        if policy.max_consecutive_days is not None and total_days > policy.max_consecutive_days:
            errors.append(
                f"{leave_name} allows at most {policy.max_consecutive_days:g} consecutive days; "
                f"requested {total_days:g}."
            )

        if not policy.allow_multiple_per_year:
            taken = [
                request.id
                for request in self._repository.load_requests(cmd.employee_id)
                if request.leave_type_code == policy.leave_type_code
                and request.status in BLOCKING_STATUSES
                and request.balance_year == cmd.start_date.year
            ]
            if taken:
                errors.append(
                    f"{leave_name} can be taken once per year; request {taken[0]} already exists "
                    f"for {cmd.start_date.year}."
                )
        return errors

    def _selection_context(
        self, employee: EmployeeProfile, policy: LeavePolicy, cmd: SubmitLeaveRequest, total_days: float
    ) -> dict:
        return {
            "leave_type_code": policy.leave_type_code,
            "region": employee.region.value,
            "total_days": total_days,
            "is_half_day": cmd.is_half_day,
            "designation": employee.designation,
            "designation_band": designation_band(employee.designation).value,
            "employee_id": employee.id,
        }

    def submit(self, cmd: SubmitLeaveRequest) -> LeaveRequest:
        with trace_span("submit_leave_request", employee=cmd.employee_id, leave_type=cmd.leave_type_code):
            now = self._clock()
            today = now.date()

            employee = self._employee(cmd.employee_id)
            actor_id = cmd.actor_id or cmd.employee_id
            actor = self._actor(actor_id)
            if actor.id != employee.id and HR_ADMIN not in actor.roles:
                raise UnauthorizedActorError(f"{actor.id} may not submit leave on behalf of {employee.id}.")

            if self._repository.load_request(cmd.request_id) is not None:
                raise ValidationError(f"Leave request {cmd.request_id} was already submitted.")

            shape_errors = self._shape_errors(cmd)
            if shape_errors:
                raise ValidationError("Invalid leave request.", reasons=shape_errors)

            policy = self._catalog.lookup(cmd.leave_type_code, employee.region, cmd.start_date)

            eligibility = self._eligibility.evaluate(employee, policy, cmd.start_date)
            if not eligibility.eligible:
                raise EligibilityError(
                    f"{employee.id} is not eligible for {policy.leave_type_code}.",
                    reasons=eligibility.reasons,
                )

            holidays = self._repository.load_holidays(employee.region)
            total_days = count_leave_days(
                cmd.start_date,
                cmd.end_date,
                is_half_day=cmd.is_half_day,
                holidays=holidays,
                calendar_days=policy.counts_calendar_days,
            )
            if total_days <= 0:
                raise ValidationError("The requested dates contain no working days.")

            index_version = self._repository.request_index_version(employee.id)
            span = DateRange(
                start=cmd.start_date,
                end=cmd.end_date,
                is_half_day=cmd.is_half_day,
                half_day_session=cmd.half_day_session,
            )

            def check_conflicts() -> list[str]:
                found = self._overlap.enforce(
                    employee.id, span, self._repository.load_requests(employee.id), actor_roles=actor.roles
                )
                policy_errors = self._policy_errors(cmd, policy, total_days, today)
                if policy_errors:
                    raise ValidationError(
                        f"Request violates {policy.leave_type_code} policy.", reasons=policy_errors
                    )
                return found

            warnings = check_conflicts()

            if policy.documentation_threshold_days is not None and total_days > policy.documentation_threshold_days:
                warnings.append(
                    f"Supporting documentation required for {policy.name or policy.leave_type_code} "
                    f"longer than {policy.documentation_threshold_days:g} days."
                )

            definition = self._workflow.select(self._selection_context(employee, policy, cmd, total_days))

            request = LeaveRequest(
                id=cmd.request_id,
                employee_id=employee.id,
                leave_type_code=policy.leave_type_code,
                start_date=cmd.start_date,
                end_date=cmd.end_date,
                is_half_day=cmd.is_half_day,
                half_day_session=cmd.half_day_session,
                total_days=total_days,
                reason=cmd.reason,
                warnings=warnings,
                submitted_by=actor.id,
                created_at=now,
                updated_at=now,
            )

            self._hold_days(request, policy)
            try:
                outcome = self._workflow.instantiate(
                    request,
                    definition,
                    now,
                    assignees=self.assignee_resolver(employee),
                    max_levels=policy.approval_levels,
                )
                saved = self._insert(request, index_version, check_conflicts)
            except LeaveEngineError:
                # a stored request with this id owns the hold
                if self._repository.load_request(request.id) is None:
                    self._drop_hold(request, policy)
                raise

            logger.info(
                f"Leave request {saved.id} submitted: employee={employee.id}, "
                f"type={policy.leave_type_code}, days={total_days}, workflow={definition.workflow_type}"
            )
            self._events.publish(
                RequestSubmitted(
                    employee_id=employee.id,
                    occurred_at=now,
                    request_id=saved.id,
                    leave_type_code=policy.leave_type_code,
                    total_days=total_days,
                    actor_id=actor.id,
                )
            )
            self._after_transition(saved, outcome, actor.id)
            return self._load(saved.id) if outcome.terminal else saved

    def _insert(
        self, request: LeaveRequest, index_version: int, check_conflicts: Callable[[], list[str]]
    ) -> LeaveRequest:
        """
        Store a new request against the employee's request index version.

        If another request of the same employee was stored in the meantime, the
        overlap and policy checks run again on the fresh requests before retrying.
        """
        attempts = max(1, self.settings.ledger_max_retries)
        for attempt in range(1, attempts + 1):
            try:
                return self._repository.save_request(request, expected_version=0, employee_version=index_version)
            except ConcurrencyConflictError:
                logger.warning(
                    f"Requests of {request.employee_id} changed during submit of {request.id}, "
                    f"attempt {attempt}/{attempts}"
                )
            if self._repository.load_request(request.id) is not None:
                raise ValidationError(f"Leave request {request.id} was already submitted.")
            index_version = self._repository.request_index_version(request.employee_id)
            request.warnings.extend(w for w in check_conflicts() if w not in request.warnings)

        raise ConcurrencyConflictError(
            f"Requests of {request.employee_id} kept changing; gave up after {attempts} attempts."
        )

    def _hold_days(self, request: LeaveRequest, policy: LeavePolicy) -> None:
        if policy.uses_comp_off_ledger:
            self._comp_off.consume(request.employee_id, request.total_days, request.start_date, request.id)
            return

        balance = self._ledger.reserve(
            request.employee_id,
            request.leave_type_code,
            request.balance_year,
            request.total_days,
            request.id,
            allow_negative=policy.allow_negative_balance,
        )
        if balance.available <= self.settings.balance_low_threshold:
            self._events.publish(
                BalanceLow(
                    employee_id=request.employee_id,
                    occurred_at=self._clock(),
                    leave_type_code=request.leave_type_code,
                    year=request.balance_year,
                    available=balance.available,
                )
            )

    def _drop_hold(self, request: LeaveRequest, policy: LeavePolicy) -> None:
        """Undo ``_hold_days`` for a request that was never saved."""
        if policy.uses_comp_off_ledger:
            self._comp_off.restore(request.employee_id, request.id, request.start_date)
            return

        self._ledger.discard(request.employee_id, request.leave_type_code, request.balance_year, request.id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _update_request(self, request_id: str, change: RequestChange) -> tuple[LeaveRequest, WorkflowOutcome | None]:
        """
        Apply ``change`` to the stored request under its version check.

        ``change`` returns None when there is nothing to do. On a conflict the request
        is re-read and ``change`` re-run, so decisions are validated against the
        latest state.
        """
        attempts = max(1, self.settings.ledger_max_retries)
        for attempt in range(1, attempts + 1):
            request = self._load(request_id)
            outcome = change(request)
            if outcome is None:
                return request, None
            request.updated_at = self._clock()
            try:
                return self._repository.save_request(request, expected_version=request.version), outcome
            except ConcurrencyConflictError:
                logger.warning(f"Version conflict on leave request {request_id}, attempt {attempt}/{attempts}")

        raise ConcurrencyConflictError(
            f"Leave request {request_id} kept changing; gave up after {attempts} attempts."
        )

    def _after_transition(self, request: LeaveRequest, outcome: WorkflowOutcome, actor_id: str) -> None:
        now = self._clock()
        for step in outcome.newly_actionable:
            self._events.publish(
                StepActionable(
                    employee_id=request.employee_id,
                    occurred_at=now,
                    request_id=request.id,
                    step_id=step.id,
                    approver_role=step.approver_role,
                    assignee_id=step.assignee_id,
                )
            )

        if not outcome.terminal:
            return

        if request.status == LeaveStatus.APPROVED:
            self._events.publish(
                RequestApproved(
                    employee_id=request.employee_id, occurred_at=now, request_id=request.id, actor_id=actor_id
                )
            )
        elif request.status == LeaveStatus.REJECTED:
            self._events.publish(
                RequestRejected(
                    employee_id=request.employee_id, occurred_at=now, request_id=request.id, actor_id=actor_id
                )
            )
        logger.info(f"Leave request {request.id} resolved {request.status.value}")
        self.settle(request)

    def settle(self, request: LeaveRequest) -> bool:
        """
        Bring the balance in line with a resolved request. Returns whether anything moved.

        The ledger move follows from the request status and the entry state:
        APPROVED + RESERVED commits, REJECTED / CANCELLED + RESERVED releases, and
        CANCELLED + COMMITTED refunds. Comp-off requests get their grants restored.
        Anything else is already settled.
        """
        if request.status not in TERMINAL_STATUSES:
            return False

        entry = self._ledger_entry(request)
        if entry is None:
            if request.status == LeaveStatus.APPROVED or not self._comp_off.holds(request.employee_id, request.id):
                return False
            self._comp_off.restore(request.employee_id, request.id, self._clock().date())
            return True

        if entry.state == EntryState.RESERVED:
            if request.status == LeaveStatus.APPROVED:
                self._ledger.commit(request.id)
            else:
                self._ledger.release(request.id)
            return True
        if entry.state == EntryState.COMMITTED and request.status == LeaveStatus.CANCELLED:
            self._ledger.refund(request.id)
            return True
        return False

    def reconcile(self) -> JobResult:
        """Settle resolved requests whose balance movement did not complete."""
        result = JobResult(job="settlement_reconcile")
        with trace_span("settlement_reconcile"):
            for request in self._repository.load_requests_with_status(TERMINAL_STATUSES):
                try:
                    settled = self.settle(request)
                except LeaveEngineError as e:
                    logger.error(f"Settlement failed for request={request.id}: {e}")
                    result.record_failure(request.employee_id, e)
                    continue
                if settled:
                    logger.info(f"Settled {request.status.value} request {request.id}")
                    result.processed += 1

        logger.info(f"Settlement reconcile: settled={result.processed}, failures={len(result.failures)}")
        return result

    # ------------------------------------------------------------------
    # Approver authority
    # ------------------------------------------------------------------

    @staticmethod
    def _holds_step(approver: EmployeeProfile, step: ApprovalStep) -> bool:
        if step.assignee_id is not None:
            return approver.id == step.assignee_id
        return step.approver_role in approver.roles

    def delegator_for(self, actor: EmployeeProfile, step: ApprovalStep, on: date) -> str | None:
        """The approver ``actor`` stands in for on ``step``, through a delegation active on ``on``."""
        for delegation in self._delegations.delegations_to(actor.id):
            if not delegation.grants_approvals_on(on):
                continue
            delegator = self._directory.get_employee(delegation.delegator_id)
            if delegator is not None and delegator.active and self._holds_step(delegator, step):
                return delegator.id
        return None

    def can_act(self, actor: EmployeeProfile, step: ApprovalStep, on: date | None = None) -> bool:
        if self._holds_step(actor, step):
            return True
        return self.delegator_for(actor, step, on or self._clock().date()) is not None

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def act(
        self,
        request_id: str,
        actor_id: str,
        decision: Decision,
        comments: str | None = None,
        step_id: str | None = None,
    ) -> LeaveRequest:
        """
        Record an approver's decision on the step ``actor_id`` is entitled to act on.

        Repeating a decision the actor already made on a resolved request does not
        change it; it only re-runs the settlement.
        """
        with trace_span("act_on_approval_step", request=request_id, actor=actor_id, decision=decision.value):
            actor = self._actor(actor_id)

            def change(request: LeaveRequest) -> WorkflowOutcome | None:
                if request.status != LeaveStatus.PENDING:
                    repeated = any(
                        step.decided_by == actor.id and step.status == _DECIDED_AS[decision]
                        for step in request.approval_chain
                    )
                    if request.status in TERMINAL_STATUSES and repeated:
                        return None
                    raise InvalidTransitionError(
                        f"Request {request.id} is {request.status.value}; no further decisions allowed."
                    )
                if actor.id == request.employee_id:
                    raise UnauthorizedActorError("Employees cannot act on their own leave requests.")

                steps = self._workflow.actionable_steps(request)
                if step_id is not None:
                    steps = [step for step in steps if step.id == step_id]
                    if not steps:
                        raise InvalidTransitionError(f"Step {step_id} is not actionable on request {request.id}.")

                now = self._clock()
                authorized = [step for step in steps if self.can_act(actor, step, now.date())]
                if not authorized:
                    raise UnauthorizedActorError(
                        f"{actor.id} is not an approver for any actionable step of request {request.id}."
                    )
                chosen = authorized[0]
                acting_for = None
                if not self._holds_step(actor, chosen):
                    acting_for = self.delegator_for(actor, chosen, now.date())
                outcome = self._workflow.decide(request, chosen.id, decision, actor.id, now, comments)
                if acting_for is not None:
                    for step in request.approval_chain:
                        if step.id == chosen.id:
                            step.acting_for = acting_for
                    logger.info(f"{actor.id} decided step {chosen.id} of request {request.id} for {acting_for}")
                return outcome

            request, outcome = self._update_request(request_id, change)
            if outcome is None:
                self.settle(request)
                return self._load(request.id)
            self._after_transition(request, outcome, actor.id)
            return self._load(request.id) if outcome.terminal else request

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(self, request_id: str, actor_id: str, reason: str | None = None) -> LeaveRequest:
        """Cancel a pending request, or an approved one before it starts. Repeating a cancel is a no-op."""
        with trace_span("cancel_leave_request", request=request_id, actor=actor_id):
            actor = self._actor(actor_id)
            previous: dict[str, LeaveStatus] = {}

            def change(request: LeaveRequest) -> WorkflowOutcome | None:
                if actor.id != request.employee_id and HR_ADMIN not in actor.roles:
                    raise UnauthorizedActorError(f"{actor.id} may not cancel request {request.id}.")

                now = self._clock()
                if request.status == LeaveStatus.CANCELLED:
                    return None
                if request.status == LeaveStatus.APPROVED:
                    employee = self._employee(request.employee_id)
                    policy = self._catalog.lookup(request.leave_type_code, employee.region, request.start_date)
                    if not policy.allow_cancel_after_approval:
                        raise InvalidTransitionError(
                            f"{policy.leave_type_code} cannot be cancelled once approved."
                        )
                    if request.start_date <= now.date():
                        raise InvalidTransitionError(
                            "Approved leave can only be cancelled before its start date."
                        )
                elif request.status != LeaveStatus.PENDING:
                    raise InvalidTransitionError(f"Request {request.id} is {request.status.value}; cannot cancel.")

                previous["status"] = request.status
                self._workflow.withdraw(request, now, reason or "request cancelled")
                request.status = LeaveStatus.CANCELLED
                request.resolved_at = now
                return WorkflowOutcome(status=request.status, terminal=True)

            request, outcome = self._update_request(request_id, change)
            if outcome is None:
                if self.settle(request):
                    logger.info(f"Leave request {request.id} was already cancelled; settled its balance")
                return request

            self._events.publish(
                RequestCancelled(
                    employee_id=request.employee_id,
                    occurred_at=self._clock(),
                    request_id=request.id,
                    actor_id=actor.id,
                )
            )
            logger.info(f"Leave request {request.id} cancelled by {actor.id} (was {previous['status'].value})")
            self.settle(request)
            return request

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _apply_due(self, transition: DueTransition, now: datetime) -> tuple[LeaveRequest, WorkflowOutcome | None]:
        def change(request: LeaveRequest) -> WorkflowOutcome | None:
            still_due = {
                (due.step_id, due.kind) for due in self._workflow.due_transitions(request, now)
            }
            if (transition.step_id, transition.kind) not in still_due:
                return None
            employee = self._employee(request.employee_id)
            return self._workflow.apply_transition(
                request, transition, now, assignees=self.assignee_resolver(employee)
            )

        return self._update_request(transition.request_id, change)

    def sweep_timers(self, now: datetime | None = None) -> JobResult:
        """Apply every auto-approval and escalation due at ``now``."""
        now = now or self._clock()
        result = JobResult(job="workflow_timer_sweep")
        with trace_span("workflow_timer_sweep", now=now.isoformat()):
            for pending in self._repository.load_pending_requests():
                for transition in self._workflow.due_transitions(pending, now):
                    try:
                        request, outcome = self._apply_due(transition, now)
                        if outcome is None:
                            result.skipped += 1
                            continue
                        self._after_transition(request, outcome, SYSTEM_ACTOR)
                    except LeaveEngineError as e:
                        logger.error(f"Timer {transition.kind} failed for request={transition.request_id}: {e}")
                        result.record_failure(pending.employee_id, e)
                        continue
                    result.processed += 1

        logger.info(
            f"Timer sweep {now.isoformat()}: applied={result.processed}, "
            f"skipped={result.skipped}, failures={len(result.failures)}"
        )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def pending_for(self, actor_id: str) -> list[LeaveRequest]:
        """Requests with a step ``actor_id`` may act on right now."""
        actor = self._actor(actor_id)
        return [
            request
            for request in self._repository.load_pending_requests()
            if request.employee_id != actor.id
            and any(self.can_act(actor, step) for step in self._workflow.actionable_steps(request))
        ]
