"""
Pytest configuration and fixtures.
Shared test utilities and seed data.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from data.leave_policies import EMPLOYEES, HOLIDAYS, LEAVE_POLICIES
from data.workflow_definitions import WORKFLOW_DEFINITIONS
from leave_engine.config import Settings
from leave_engine.events import EventBus
from leave_engine.models import EmployeeProfile, Gender, MaritalStatus, Region
from leave_engine.repository import InMemoryEmployeeDirectory, InMemoryRepository
from leave_engine.service import LeaveEngine


class FrozenClock:
    """Deterministic clock; tests move time with ``advance``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


def make_employee(**overrides) -> EmployeeProfile:
    """India developer with a reporting line unless overridden."""
    fields = {
        "id": "T001",
        "name": "Test Employee",
        "region": Region.INDIA,
        "gender": Gender.FEMALE,
        "marital_status": MaritalStatus.SINGLE,
        "designation": "DEVELOPER",
        "joining_date": date(2020, 1, 6),
        "reporting_manager_id": "E101",
    }
    fields.update(overrides)
    return EmployeeProfile(**fields)


@pytest.fixture
def clock():
    """Monday 3 March 2025, 09:00 UTC."""
    return FrozenClock(datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_settings():
    return Settings(
        ledger_max_retries=5,
        balance_low_threshold=2.0,
        probation_months=6,
        mid_month_cutoff_day=15,
    )


@pytest.fixture
def repository():
    return InMemoryRepository(
        policies=LEAVE_POLICIES,
        workflow_definitions=WORKFLOW_DEFINITIONS,
        holidays=HOLIDAYS,
    )


@pytest.fixture
def directory():
    return InMemoryEmployeeDirectory(EMPLOYEES)


@pytest.fixture
def events():
    return EventBus(history=1000)


@pytest.fixture
def engine(repository, directory, events, test_settings, clock):
    return LeaveEngine(repository, directory, events=events, settings=test_settings, clock=clock)


@pytest.fixture
def india_employee(directory):
    """Priya Sharma: India developer reporting to E101, whose manager is E100."""
    return directory.get_employee("E102")


@pytest.fixture
def usa_employee(directory):
    """Sarah Johnson: USA senior developer reporting to E200."""
    return directory.get_employee("E201")


@pytest.fixture
def funded(engine):
    """Credit a balance row directly through the ledger."""

    def fund(employee_id: str, leave_type_code: str, days: float, year: int = 2025):
        return engine.ledger.credit(
            employee_id, leave_type_code, year, days, key=f"seed:{employee_id}:{leave_type_code}:{year}"
        )

    return fund
