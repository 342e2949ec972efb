"""
Domain events published for an external notifier.

Payloads stay minimal (request / employee / actor / timestamp plus a few facts);
delivery channels such as email or calendar sync subscribe to the bus and look up
whatever else they need themselves.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Callable
from datetime import date, datetime
from typing import Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class LeaveEvent(BaseModel):
    employee_id: str
    occurred_at: datetime | None = None

    @property
    def name(self) -> str:
        return type(self).__name__


class RequestSubmitted(LeaveEvent):
    request_id: str
    leave_type_code: str
    total_days: float
    actor_id: str | None = None


class StepActionable(LeaveEvent):
    request_id: str
    step_id: str
    approver_role: str
    assignee_id: str | None = None


class RequestApproved(LeaveEvent):
    request_id: str
    actor_id: str | None = None


class RequestRejected(LeaveEvent):
    request_id: str
    actor_id: str | None = None


class RequestCancelled(LeaveEvent):
    request_id: str
    actor_id: str | None = None


class BalanceLow(LeaveEvent):
    leave_type_code: str
    year: int
    available: float


class CompOffExpiringSoon(LeaveEvent):
    grant_id: str
    expiry_date: date
    days_until_expiry: int
    remaining: float


class CarryForwardProcessed(LeaveEvent):
    leave_type_code: str
    from_year: int
    to_year: int
    carried_forward: float
    expired: float


class EventPublisher(Protocol):
    def publish(self, event: LeaveEvent) -> None: ...


Subscriber = Callable[[LeaveEvent], None]


class EventBus:
    """
    Synchronous in-process publisher.

    Subscribers run in registration order. A failing subscriber is logged and does
    not stop delivery to the others or roll back the engine operation that emitted
    the event.

    ``history`` keeps the last N published events in ``published`` for inspection;
    the default of 0 keeps none.
    """

    def __init__(self, history: int = 0):
        self._subscribers: dict[type[LeaveEvent], list[Subscriber]] = defaultdict(list)
        self.published: deque[LeaveEvent] = deque(maxlen=history)

    def subscribe(self, event_type: type[LeaveEvent], subscriber: Subscriber) -> None:
        self._subscribers[event_type].append(subscriber)

    def publish(self, event: LeaveEvent) -> None:
        self.published.append(event)
        logger.info(f"Event {event.name}: employee={event.employee_id}")
        for event_type, subscribers in self._subscribers.items():
            if not isinstance(event, event_type):
                continue
            for subscriber in subscribers:
                try:
                    subscriber(event)
                except Exception:
                    logger.exception(f"Subscriber failed handling {event.name}")

    def of_type(self, event_type: type[LeaveEvent]) -> list[LeaveEvent]:
        return [event for event in self.published if isinstance(event, event_type)]
