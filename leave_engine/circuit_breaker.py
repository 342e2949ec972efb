"""
Circuit breaker for repository calls.

Persistence is an external collaborator with opaque latency. When it starts failing,
the breaker stops sending it traffic so commands and scheduled jobs fail fast with
``RepositoryUnavailableError`` instead of piling up behind a dead store.
"""

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from leave_engine.errors import LeaveEngineError, RepositoryUnavailableError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking calls
    HALF_OPEN = "half_open"  # Probing recovery


class CircuitBreaker:
    """
    Transitions:
    - CLOSED -> OPEN: after ``failure_threshold`` consecutive infrastructure failures
    - OPEN -> HALF_OPEN: once ``timeout`` seconds have passed
    - HALF_OPEN -> CLOSED: the trial call succeeds
    - HALF_OPEN -> OPEN: the trial call fails

    Business errors (``LeaveEngineError``) raised by the wrapped call are the store
    answering correctly, so they never count as failures.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        name: str = "RepositoryCircuitBreaker",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.name = name
        self._clock = clock

        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.opened_at: float | None = None

        logger.info(
            f"CircuitBreaker '{name}' initialized: "
            f"threshold={failure_threshold}, timeout={timeout}s"
        )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == CircuitState.OPEN:
            if self._clock() - (self.opened_at or 0.0) >= self.timeout:
                logger.info(f"CircuitBreaker '{self.name}': OPEN -> HALF_OPEN")
                self.state = CircuitState.HALF_OPEN
            else:
                raise RepositoryUnavailableError(
                    f"CircuitBreaker '{self.name}' is OPEN. Repository unavailable."
                )

        try:
            result = func(*args, **kwargs)
        except LeaveEngineError:
            self._record_success()
            raise
        except Exception as e:
            self._record_failure()
            logger.error(
                f"CircuitBreaker '{self.name}' failure "
                f"({self.failure_count}/{self.failure_threshold}): {e}"
            )
            raise

        self._record_success()
        return result

    def _record_success(self):
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"CircuitBreaker '{self.name}': HALF_OPEN -> CLOSED")
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.opened_at = None

    def _record_failure(self):
        self.failure_count += 1
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            logger.warning(f"CircuitBreaker '{self.name}': -> OPEN")
            self.state = CircuitState.OPEN
            self.opened_at = self._clock()

    def get_state(self) -> dict:
        """Current breaker state for health reporting."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "opened_at": self.opened_at,
        }
