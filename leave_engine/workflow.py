"""
Multi-level approval state machine.

Vocabulary
----------
- A request's ``approval_chain`` is a snapshot of a ``WorkflowDefinition``'s step
  templates taken at submit time. Later edits to the definition never reach
  in-flight requests.
- A *tier* is the set of steps sharing a level. Levels run in order; a SEQUENTIAL
  level holds one step, a PARALLEL level's steps are actionable together.
- A tier resolves when every non-optional member is APPROVED (or SKIPPED). A tier made
  only of optional steps resolves once none of them is pending. Optional members still
  pending when their tier resolves are SKIPPED.
- A non-optional REJECTED step rejects the whole request at once; every other pending
  step becomes SKIPPED with reason "upstream rejection".

Timers
------
A step carries at most one timer: ``auto_approve_after_hours`` (elapses -> APPROVED by
the system) or ``escalate_after_hours`` (elapses -> step ESCALATED and a new step for
``escalate_to_role`` inserted at the same level). Timers are deadlines, not callbacks:
``due_transitions(request, now)`` is pure and an external scheduler applies what it
returns through ``apply_transition``.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from leave_engine.errors import InvalidTransitionError, ValidationError
from leave_engine.models import (
    ApprovalStep,
    Decision,
    EscalationRoute,
    ExecutionMode,
    LeaveRequest,
    LeaveStatus,
    StepStatus,
    WorkflowDefinition,
)
from leave_engine.predicates import evaluate
from leave_engine.repository import Repository

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
UPSTREAM_REJECTION = "upstream rejection"

AssigneeResolver = Callable[[str], str | None]


class DueTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    step_id: str
    kind: Literal["AUTO_APPROVE", "ESCALATE"]
    due_at: datetime


class WorkflowOutcome(BaseModel):
    status: LeaveStatus
    terminal: bool = False
    newly_actionable: list[ApprovalStep] = Field(default_factory=list)


def _no_assignee(role: str) -> str | None:
    return None


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


def escalation_routes(definition: WorkflowDefinition) -> dict[str, EscalationRoute]:
    """Role -> onward escalation, taken from the first template per role with a timer."""
    routes: dict[str, EscalationRoute] = {}
    for template in definition.steps:
        if template.escalate_after_hours and template.escalate_to_role:
            routes.setdefault(
                template.approver_role,
                EscalationRoute(after_hours=template.escalate_after_hours, to_role=template.escalate_to_role),
            )
    return routes


def validate_definition(definition: WorkflowDefinition) -> None:
    """Raise ``ValidationError`` listing every problem with ``definition``."""
    problems: list[str] = []
    levels = [template.level for template in definition.steps]

    if levels != sorted(levels):
        problems.append("Step templates must be ordered by level.")

    for template in definition.steps:
        label = f"Level {template.level} ({template.approver_role})"
        if template.level < 1:
            problems.append(f"{label}: level must be 1 or higher.")
        if template.auto_approve_after_hours is not None and template.escalate_after_hours is not None:
            problems.append(f"{label}: a step may carry an auto-approve or an escalation timer, not both.")
        for hours in (template.auto_approve_after_hours, template.escalate_after_hours):
            if hours is not None and hours <= 0:
                problems.append(f"{label}: timer hours must be positive.")
        if template.escalate_after_hours is not None and not template.escalate_to_role:
            problems.append(f"{label}: escalation timer needs escalate_to_role.")
        if template.escalate_to_role and template.escalate_after_hours is None:
            problems.append(f"{label}: escalate_to_role set without an escalation timer.")
        if template.escalate_to_role:
            earlier_roles = {t.approver_role for t in definition.steps if t.level < template.level}
            if template.escalate_to_role in earlier_roles:
                problems.append(
                    f"{label}: escalation to {template.escalate_to_role} points back to an earlier level."
                )

        tier = [t for t in definition.steps if t.level == template.level]
        if len(tier) > 1 and template.execution_mode != ExecutionMode.PARALLEL:
            problems.append(f"{label}: steps sharing a level must be PARALLEL.")

    # Escalation graph must be acyclic so every chain ends.
    routes = escalation_routes(definition)
    for start in routes:
        seen = {start}
        role = routes[start].to_role
        while role in routes:
            if role in seen:
                problems.append(f"Escalation from {start} cycles back to {role}.")
                break
            seen.add(role)
            role = routes[role].to_role

    if problems:
        raise ValidationError(
            f"Workflow definition '{definition.workflow_type}' is invalid.", reasons=problems
        )


def select_definition(
    definitions: Iterable[WorkflowDefinition], context: Mapping[str, Any]
) -> WorkflowDefinition:
    """Highest-priority active definition whose condition matches, else the default."""
    active = [definition for definition in definitions if definition.is_active]

    matching = [d for d in active if not d.is_default and evaluate(d.condition, context)]
    if matching:
        return max(matching, key=lambda d: d.priority)

    defaults = [d for d in active if d.is_default]
    if defaults:
        return max(defaults, key=lambda d: d.priority)

    raise ValidationError("No workflow definition matches this request and no default is configured.")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ApprovalWorkflowEngine:
    def __init__(self, repository: Repository):
        self._repository = repository
        self._definitions: list[WorkflowDefinition] = []
        self.reload()

    @property
    def definitions(self) -> list[WorkflowDefinition]:
        return list(self._definitions)

    def reload(self) -> int:
        """Load and validate definitions. Invalid ones are logged and left out."""
        valid = []
        for definition in self._repository.load_workflow_definitions():
            try:
                validate_definition(definition)
            except ValidationError as e:
                logger.error(f"Skipping workflow '{definition.workflow_type}': {e.reasons}")
                continue
            valid.append(definition)
        self._definitions = valid
        logger.info(f"Loaded {len(valid)} workflow definitions")
        return len(valid)

    def select(self, context: Mapping[str, Any]) -> WorkflowDefinition:
        return select_definition(self._definitions, context)

    # Chain helpers

    @staticmethod
    def find_step(request: LeaveRequest, step_id: str) -> ApprovalStep:
        for step in request.approval_chain:
            if step.id == step_id:
                return step
        raise ValidationError(f"Step {step_id} is not part of request {request.id}.")

    @staticmethod
    def actionable_steps(request: LeaveRequest) -> list[ApprovalStep]:
        if request.status != LeaveStatus.PENDING:
            return []
        return [step for step in request.approval_chain if step.is_actionable]

    @staticmethod
    def _current_level(request: LeaveRequest) -> int | None:
        pending = [step.level for step in request.approval_chain if step.status == StepStatus.PENDING]
        return min(pending) if pending else None

    @staticmethod
    def _tier_resolved(tier: list[ApprovalStep]) -> bool:
        members = [step for step in tier if step.status != StepStatus.ESCALATED]
        required = [step for step in members if not step.is_optional]
        if required:
            return all(step.status in (StepStatus.APPROVED, StepStatus.SKIPPED) for step in required)
        return all(step.status != StepStatus.PENDING for step in members)

    @staticmethod
    def _activate(step: ApprovalStep, now: datetime) -> None:
        step.activated_at = now
        if step.auto_approve_after_hours:
            step.auto_approve_deadline = now + timedelta(hours=step.auto_approve_after_hours)
        if step.escalate_after_hours:
            step.escalate_deadline = now + timedelta(hours=step.escalate_after_hours)

    def _advance(self, request: LeaveRequest, now: datetime) -> WorkflowOutcome:
        chain = request.approval_chain

        if any(step.status == StepStatus.REJECTED and not step.is_optional for step in chain):
            for step in chain:
                if step.status == StepStatus.PENDING:
                    step.status = StepStatus.SKIPPED
                    step.comments = UPSTREAM_REJECTION
                    step.decided_at = now
                    step.system_generated = True
            request.status = LeaveStatus.REJECTED
            request.resolved_at = now
            return WorkflowOutcome(status=request.status, terminal=True)

        newly_actionable: list[ApprovalStep] = []
        while True:
            level = self._current_level(request)
            if level is None:
                request.status = LeaveStatus.APPROVED
                request.resolved_at = now
                return WorkflowOutcome(status=request.status, terminal=True)

            tier = [step for step in chain if step.level == level]
            if self._tier_resolved(tier):
                for step in tier:
                    if step.status == StepStatus.PENDING:
                        step.status = StepStatus.SKIPPED
                        step.comments = "tier resolved"
                        step.decided_at = now
                        step.system_generated = True
                continue

            for step in tier:
                if step.status == StepStatus.PENDING and step.activated_at is None:
                    self._activate(step, now)
                    newly_actionable.append(step)
            return WorkflowOutcome(status=request.status, newly_actionable=newly_actionable)

    # Lifecycle

    def instantiate(
        self,
        request: LeaveRequest,
        definition: WorkflowDefinition,
        now: datetime,
        assignees: AssigneeResolver = _no_assignee,
        max_levels: int | None = None,
    ) -> WorkflowOutcome:
        """Snapshot ``definition`` onto ``request`` and open its first tier."""
        templates = [t for t in definition.steps if max_levels is None or t.level <= max_levels]

        request.workflow_type = definition.workflow_type
        request.escalation_routes = escalation_routes(definition)
        request.approval_chain = [
            ApprovalStep(
                level=template.level,
                approver_role=template.approver_role,
                assignee_id=assignees(template.approver_role),
                execution_mode=template.execution_mode,
                is_optional=template.is_optional,
                auto_approve_after_hours=template.auto_approve_after_hours,
                escalate_after_hours=template.escalate_after_hours,
                escalate_to_role=template.escalate_to_role,
            )
            for template in templates
        ]
        request.status = LeaveStatus.PENDING

        outcome = self._advance(request, now)
        logger.info(
            f"Workflow '{definition.workflow_type}' instantiated for request {request.id}: "
            f"{len(request.approval_chain)} steps, status={outcome.status.value}"
        )
        return outcome

    def decide(
        self,
        request: LeaveRequest,
        step_id: str,
        decision: Decision,
        actor_id: str,
        now: datetime,
        comments: str | None = None,
        system: bool = False,
    ) -> WorkflowOutcome:
        if request.status != LeaveStatus.PENDING:
            raise InvalidTransitionError(
                f"Request {request.id} is {request.status.value}; no further decisions allowed."
            )

        step = self.find_step(request, step_id)
        if not step.is_actionable:
            raise InvalidTransitionError(
                f"Step {step.id} (level {step.level}, {step.approver_role}) is not actionable; "
                f"status={step.status.value}."
            )

        if decision == Decision.APPROVE:
            step.status = StepStatus.APPROVED
        elif decision == Decision.REJECT:
            step.status = StepStatus.REJECTED
        elif step.is_optional:
            step.status = StepStatus.SKIPPED
        else:
            raise InvalidTransitionError(f"Step {step.id} is not optional and cannot be skipped.")

        step.decided_by = actor_id
        step.decided_at = now
        step.comments = comments
        step.system_generated = system

        logger.info(
            f"Request {request.id} level {step.level} {step.approver_role}: "
            f"{step.status.value} by {actor_id}"
        )
        return self._advance(request, now)

    def withdraw(self, request: LeaveRequest, now: datetime, reason: str = "request cancelled") -> None:
        """Close every pending step of a request that is being cancelled."""
        for step in request.approval_chain:
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.SKIPPED
                step.comments = reason
                step.decided_at = now
                step.system_generated = True

    def due_transitions(self, request: LeaveRequest, now: datetime) -> list[DueTransition]:
        """Timer firings due at ``now``. Pure: does not modify ``request``."""
        due = []
        for step in self.actionable_steps(request):
            if step.auto_approve_deadline is not None and step.auto_approve_deadline <= now:
                due.append(
                    DueTransition(
                        request_id=request.id,
                        step_id=step.id,
                        kind="AUTO_APPROVE",
                        due_at=step.auto_approve_deadline,
                    )
                )
            elif step.escalate_deadline is not None and step.escalate_deadline <= now:
                due.append(
                    DueTransition(
                        request_id=request.id,
                        step_id=step.id,
                        kind="ESCALATE",
                        due_at=step.escalate_deadline,
                    )
                )
        return sorted(due, key=lambda transition: transition.due_at)

    def apply_transition(
        self,
        request: LeaveRequest,
        transition: DueTransition,
        now: datetime,
        assignees: AssigneeResolver = _no_assignee,
    ) -> WorkflowOutcome:
        if transition.kind == "AUTO_APPROVE":
            step = self.find_step(request, transition.step_id)
            return self.decide(
                request,
                step.id,
                Decision.APPROVE,
                SYSTEM_ACTOR,
                now,
                comments=f"Auto-approved after {step.auto_approve_after_hours:g} hours without action",
                system=True,
            )
        return self.escalate(request, transition.step_id, now, assignees)

    def escalate(
        self,
        request: LeaveRequest,
        step_id: str,
        now: datetime,
        assignees: AssigneeResolver = _no_assignee,
    ) -> WorkflowOutcome:
        if request.status != LeaveStatus.PENDING:
            raise InvalidTransitionError(f"Request {request.id} is {request.status.value}.")

        step = self.find_step(request, step_id)
        if not step.is_actionable or not step.escalate_to_role:
            raise InvalidTransitionError(f"Step {step.id} cannot be escalated.")

        step.status = StepStatus.ESCALATED
        step.decided_at = now
        step.decided_by = SYSTEM_ACTOR
        step.system_generated = True
        step.comments = f"Escalated to {step.escalate_to_role} after {step.escalate_after_hours:g} hours"

        route = request.escalation_routes.get(step.escalate_to_role)
        replacement = ApprovalStep(
            level=step.level,
            approver_role=step.escalate_to_role,
            assignee_id=assignees(step.escalate_to_role),
            execution_mode=step.execution_mode,
            is_optional=step.is_optional,
            escalate_after_hours=route.after_hours if route else None,
            escalate_to_role=route.to_role if route else None,
            escalated_from=step.id,
        )
        self._activate(replacement, now)

        position = request.approval_chain.index(step)
        request.approval_chain.insert(position + 1, replacement)

        logger.info(
            f"Request {request.id} level {step.level}: escalated {step.approver_role} -> "
            f"{replacement.approver_role}"
        )
        return WorkflowOutcome(status=request.status, newly_actionable=[replacement])
