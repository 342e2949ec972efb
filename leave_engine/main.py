"""
Command-line runner for the leave engine's scheduled jobs.

Builds an engine over the in-memory repository seeded from ``data/`` and dispatches
one job command, e.g.:

    python -m leave_engine.main accrue 2025-03
    python -m leave_engine.main carry-forward 2024
    python -m leave_engine.main comp-off-sweep --as-of 2025-04-11
    python -m leave_engine.main sweep-timers
    python -m leave_engine.main reconcile
"""

import argparse
import logging
import sys
from datetime import date

from data.leave_policies import EMPLOYEES, HOLIDAYS, LEAVE_POLICIES
from data.workflow_definitions import WORKFLOW_DEFINITIONS
from leave_engine.circuit_breaker import CircuitBreaker
from leave_engine.commands import (
    ReconcileSettlements,
    SweepWorkflowTimers,
    TriggerAccrual,
    TriggerCarryForward,
    TriggerCompOffExpirySweep,
)
from leave_engine.config import settings
from leave_engine.repository import InMemoryEmployeeDirectory, InMemoryRepository
from leave_engine.service import LeaveEngine

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_engine() -> LeaveEngine:
    """Engine over the seeded in-memory stores, repository calls behind a circuit breaker."""
    repository = InMemoryRepository(
        policies=LEAVE_POLICIES,
        workflow_definitions=WORKFLOW_DEFINITIONS,
        holidays=HOLIDAYS,
    )
    directory = InMemoryEmployeeDirectory(EMPLOYEES)
    circuit_breaker = CircuitBreaker(
        failure_threshold=settings.circuit_breaker_failure_threshold,
        timeout=settings.circuit_breaker_timeout,
        name="leave-repository",
    )
    return LeaveEngine(repository, directory, settings=settings, circuit_breaker=circuit_breaker)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Leave engine scheduled jobs")
    subparsers = parser.add_subparsers(dest="job", required=True)

    accrue = subparsers.add_parser("accrue", help="Monthly accrual (YYYY-MM) or annual allocation (YYYY)")
    accrue.add_argument("period")

    carry = subparsers.add_parser("carry-forward", help="Year-end carry-forward for a closing year")
    carry.add_argument("year", type=int)

    sweep = subparsers.add_parser("comp-off-sweep", help="Expire comp-off grants and send reminders")
    sweep.add_argument("--as-of", type=date.fromisoformat, default=None)

    subparsers.add_parser("sweep-timers", help="Apply due auto-approvals and escalations")
    subparsers.add_parser("reconcile", help="Settle resolved requests whose balance move did not complete")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger.info(f"Environment: {settings.environment}")

    if args.job == "accrue":
        command = TriggerAccrual(period=args.period)
    elif args.job == "carry-forward":
        command = TriggerCarryForward(year=args.year)
    elif args.job == "comp-off-sweep":
        command = TriggerCompOffExpirySweep(as_of=args.as_of)
    elif args.job == "reconcile":
        command = ReconcileSettlements()
    else:
        command = SweepWorkflowTimers()

    result = build_engine().execute(command)
    if not result.success:
        logger.error(f"{result.command} failed: {result.error.code} {result.error.message}")
        return 1

    job = result.value
    logger.info(
        f"{job.job}: processed={job.processed}, skipped={job.skipped}, failures={len(job.failures)}"
    )
    for failure in job.failures:
        logger.warning(f"  {failure.employee_id}: {failure.error_code} {failure.message}")
    return 0 if job.succeeded else 2


if __name__ == "__main__":
    sys.exit(main())
