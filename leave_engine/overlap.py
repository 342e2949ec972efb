"""
Date-range conflict detection between leave requests.
"""

import logging
from collections.abc import Iterable
from datetime import date

from pydantic import BaseModel

from leave_engine.errors import OverlapConflictError, ValidationError
from leave_engine.models import HR_ADMIN, HalfDaySession, LeaveRequest, LeaveStatus

logger = logging.getLogger(__name__)

BLOCKING_STATUSES = (LeaveStatus.PENDING, LeaveStatus.APPROVED)


class DateRange(BaseModel):
    start: date
    end: date
    is_half_day: bool = False
    half_day_session: HalfDaySession | None = None

    @classmethod
    def of(cls, request: LeaveRequest) -> "DateRange":
        return cls(
            start=request.start_date,
            end=request.end_date,
            is_half_day=request.is_half_day,
            half_day_session=request.half_day_session,
        )

    def intersects(self, other: "DateRange") -> bool:
        return self.start <= other.end and other.start <= self.end

    def complements(self, other: "DateRange") -> bool:
        """Opposite halves of the same single day."""
        return (
            self.is_half_day
            and other.is_half_day
            and self.start == self.end == other.start == other.end
            and self.half_day_session is not None
            and other.half_day_session is not None
            and self.half_day_session != other.half_day_session
        )


class OverlapValidator:
    """
    Conflicts are reported as request IDs so the caller can show them.

    Blocking is role-dependent: HR_ADMIN may override a conflict when a half-day
    request is involved; full-day against full-day is never overridable, so no two
    approved full-day requests of one employee can intersect.
    """

    def check(
        self,
        employee_id: str,
        candidate: DateRange,
        existing_requests: Iterable[LeaveRequest],
        exclude_request_id: str | None = None,
    ) -> list[str]:
        if candidate.end < candidate.start:
            raise ValidationError("End date cannot be before start date.")

        conflicts = []
        for request in existing_requests:
            if request.employee_id != employee_id or request.id == exclude_request_id:
                continue
            if request.status not in BLOCKING_STATUSES:
                continue
            other = DateRange.of(request)
            if candidate.intersects(other) and not candidate.complements(other):
                conflicts.append(request.id)
        return conflicts

    def enforce(
        self,
        employee_id: str,
        candidate: DateRange,
        existing_requests: Iterable[LeaveRequest],
        actor_roles: Iterable[str] = (),
    ) -> list[str]:
        """
        Raise ``OverlapConflictError`` for blocking conflicts.

        Returns warnings describing conflicts an HR_ADMIN overrode.
        """
        existing = list(existing_requests)
        conflict_ids = self.check(employee_id, candidate, existing)
        if not conflict_ids:
            return []

        by_id = {request.id: request for request in existing}
        full_day_clash = not candidate.is_half_day and any(
            not by_id[request_id].is_half_day for request_id in conflict_ids
        )
        if HR_ADMIN in set(actor_roles) and not full_day_clash:
            logger.info(f"HR override of overlap for employee={employee_id}: {conflict_ids}")
            return [f"Overlaps existing request(s) {', '.join(conflict_ids)}; overridden by HR."]

        raise OverlapConflictError(
            f"Requested dates overlap existing leave request(s): {', '.join(conflict_ids)}.",
            conflict_ids,
        )
