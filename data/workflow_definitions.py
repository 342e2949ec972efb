"""
Default approval workflows.

Selection order: the highest-priority active definition whose condition matches the
request, else the default. Policies may truncate a chain with ``approval_levels``.
"""

from leave_engine.models import (
    HR_ADMIN,
    L1_MANAGER,
    L2_MANAGER,
    ExecutionMode,
    StepTemplate,
    WorkflowDefinition,
)
from leave_engine.predicates import all_of, any_of, condition

STANDARD = WorkflowDefinition(
    workflow_type="STANDARD",
    name="Manager then skip-level",
    is_default=True,
    steps=(
        StepTemplate(level=1, approver_role=L1_MANAGER, auto_approve_after_hours=48),
        StepTemplate(level=2, approver_role=L2_MANAGER, escalate_after_hours=72, escalate_to_role=HR_ADMIN),
    ),
)

LONG_LEAVE = WorkflowDefinition(
    workflow_type="LONG_LEAVE",
    name="Long leave with HR sign-off",
    priority=10,
    condition=all_of(
        condition("total_days", "gt", 10),
        condition("leave_type_code", "not_in", ["MATERNITY", "PATERNITY"]),
    ),
    steps=(
        StepTemplate(level=1, approver_role=L1_MANAGER, escalate_after_hours=48, escalate_to_role=L2_MANAGER),
        StepTemplate(level=2, approver_role=L2_MANAGER, execution_mode=ExecutionMode.PARALLEL),
        StepTemplate(level=2, approver_role=HR_ADMIN, execution_mode=ExecutionMode.PARALLEL),
    ),
)

PARENTAL = WorkflowDefinition(
    workflow_type="PARENTAL",
    name="Parental leave",
    priority=20,
    condition=any_of(
        condition("leave_type_code", "eq", "MATERNITY"),
        condition("leave_type_code", "eq", "PATERNITY"),
    ),
    steps=(
        StepTemplate(level=1, approver_role=L1_MANAGER, auto_approve_after_hours=24),
        StepTemplate(level=2, approver_role=HR_ADMIN),
    ),
)

WORKFLOW_DEFINITIONS = [STANDARD, LONG_LEAVE, PARENTAL]
