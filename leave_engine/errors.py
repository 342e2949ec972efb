"""
Typed business errors raised by the engine.

Every rule violation surfaces as one of these. The command service turns them into
``CommandResult`` objects; nothing in the engine converts a violation into a silent
default.
"""

from typing import Any


class LeaveEngineError(Exception):
    """Base class for all engine errors."""

    error_code = "LEAVE_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        reasons: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.reasons = reasons or [message]
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "reasons": list(self.reasons),
            "details": dict(self.details),
        }


class ValidationError(LeaveEngineError):
    error_code = "VALIDATION_ERROR"


class InsufficientHoursError(ValidationError):
    """Work log hours fall below the half-day comp-off threshold."""

    error_code = "INSUFFICIENT_HOURS"


class EligibilityError(LeaveEngineError):
    error_code = "NOT_ELIGIBLE"


class InsufficientBalanceError(LeaveEngineError):
    error_code = "INSUFFICIENT_BALANCE"


class OverlapConflictError(LeaveEngineError):
    error_code = "OVERLAP_CONFLICT"

    def __init__(self, message: str, conflicting_request_ids: list[str]):
        super().__init__(
            message,
            details={"conflicting_request_ids": list(conflicting_request_ids)},
        )
        self.conflicting_request_ids = list(conflicting_request_ids)


class AlreadyAccruedError(LeaveEngineError):
    error_code = "ALREADY_ACCRUED"


class AlreadyProcessedError(LeaveEngineError):
    error_code = "ALREADY_PROCESSED"


class UnauthorizedActorError(LeaveEngineError):
    error_code = "UNAUTHORIZED_ACTOR"


class InvalidTransitionError(LeaveEngineError):
    error_code = "INVALID_TRANSITION"


class ConcurrencyConflictError(LeaveEngineError):
    """Raised when an optimistic version check keeps failing."""

    error_code = "CONCURRENCY_CONFLICT"


class PolicyNotFoundError(LeaveEngineError):
    error_code = "POLICY_NOT_FOUND"


class RepositoryUnavailableError(LeaveEngineError):
    """Raised when the repository circuit breaker blocks a call."""

    error_code = "REPOSITORY_UNAVAILABLE"
