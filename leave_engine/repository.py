"""
Persistence and employee-directory boundaries.

The engine never talks to storage directly. It receives a ``Repository`` and an
``EmployeeDirectory``; ``InMemoryRepository`` / ``InMemoryEmployeeDirectory`` are the
reference implementations used by tests and the command-line runner.

Version contract: ``save_balance``, ``save_request`` and ``save_comp_off_grant`` take the
version the caller read. A mismatch raises ``ConcurrencyConflictError``; a successful
save stores and returns the row with ``version = expected_version + 1``. A row that
does not exist yet has version 0. ``save_comp_off_grants`` checks every grant against
the version it carries and writes all of them or none.

Each employee also has a request index version, bumped whenever a new request is
stored for them. Passing ``employee_version`` to ``save_request`` makes the insert fail
if another request was stored for that employee since the caller read the index.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import date
from functools import wraps
from typing import Any, Protocol

from leave_engine.circuit_breaker import CircuitBreaker
from leave_engine.errors import ConcurrencyConflictError, ValidationError
from leave_engine.models import (
    AuditRecord,
    CompOffGrant,
    CompOffStatus,
    CompOffWorkLog,
    Delegation,
    EmployeeProfile,
    ExpiryRecord,
    LeaveBalance,
    LeavePolicy,
    LeaveRequest,
    LeaveStatus,
    Region,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)


class Repository(Protocol):
    def load_balance(self, employee_id: str, leave_type_code: str, year: int) -> LeaveBalance | None: ...

    def load_balances(self, employee_id: str, year: int | None = None) -> list[LeaveBalance]: ...

    def save_balance(self, balance: LeaveBalance, expected_version: int) -> LeaveBalance: ...

    def load_request(self, request_id: str) -> LeaveRequest | None: ...

    def load_requests(self, employee_id: str) -> list[LeaveRequest]: ...

    def load_pending_requests(self) -> list[LeaveRequest]: ...

    def load_requests_with_status(self, statuses: Iterable[LeaveStatus]) -> list[LeaveRequest]: ...

    def request_index_version(self, employee_id: str) -> int: ...

    def save_request(
        self, request: LeaveRequest, expected_version: int, employee_version: int | None = None
    ) -> LeaveRequest: ...

    def load_policies(self) -> list[LeavePolicy]: ...

    def load_workflow_definitions(self) -> list[WorkflowDefinition]: ...

    def append_audit_record(self, record: AuditRecord) -> None: ...

    def load_comp_off_grants(self, employee_id: str) -> list[CompOffGrant]: ...

    def load_available_comp_off_grants(self) -> list[CompOffGrant]: ...

    def save_comp_off_grant(self, grant: CompOffGrant, expected_version: int) -> CompOffGrant: ...

    def save_comp_off_grants(self, grants: list[CompOffGrant]) -> list[CompOffGrant]: ...

    def load_work_log(self, employee_id: str, work_date: date) -> CompOffWorkLog | None: ...

    def save_work_log(self, work_log: CompOffWorkLog) -> None: ...

    def save_expiry_record(self, record: ExpiryRecord) -> None: ...

    def load_holidays(self, region: Region) -> set[date]: ...


class EmployeeDirectory(Protocol):
    def get_employee(self, employee_id: str) -> EmployeeProfile | None: ...

    def list_employees(self, region: Region | None = None) -> list[EmployeeProfile]: ...


class DelegationRegistry(Protocol):
    def add(self, delegation: Delegation) -> Delegation: ...

    def revoke(self, delegation_id: str) -> Delegation: ...

    def delegations_to(self, delegate_id: str) -> list[Delegation]: ...


class InMemoryDelegationRegistry:
    """Delegations keyed by id. Revoking keeps the record with ``active=False``."""

    def __init__(self, delegations: Iterable[Delegation] = ()):
        self._lock = threading.Lock()
        self._delegations: dict[str, Delegation] = {}
        for delegation in delegations:
            self.add(delegation)

    def add(self, delegation: Delegation) -> Delegation:
        if delegation.delegator_id == delegation.delegate_id:
            raise ValidationError("An approver cannot delegate to themselves.")
        if delegation.end_date < delegation.start_date:
            raise ValidationError("Delegation end date cannot be before its start date.")
        with self._lock:
            self._delegations[delegation.id] = delegation
        logger.info(
            f"Delegation {delegation.id}: {delegation.delegator_id} -> {delegation.delegate_id} "
            f"({delegation.start_date} to {delegation.end_date})"
        )
        return delegation

    def revoke(self, delegation_id: str) -> Delegation:
        with self._lock:
            delegation = self._delegations.get(delegation_id)
            if delegation is None:
                raise ValidationError(f"Delegation {delegation_id} not found.")
            revoked = delegation.model_copy(update={"active": False})
            self._delegations[delegation_id] = revoked
        logger.info(f"Delegation {delegation_id} revoked")
        return revoked

    def delegations_to(self, delegate_id: str) -> list[Delegation]:
        with self._lock:
            return [d for d in self._delegations.values() if d.delegate_id == delegate_id]


class InMemoryEmployeeDirectory:
    """Employee directory backed by a dict. ``list_employees`` returns active staff only."""

    def __init__(self, employees: Iterable[EmployeeProfile] = ()):
        self._employees: dict[str, EmployeeProfile] = {}
        self.seed(*employees)

    def seed(self, *employees: EmployeeProfile) -> None:
        for employee in employees:
            self._employees[employee.id] = employee

    def get_employee(self, employee_id: str) -> EmployeeProfile | None:
        return self._employees.get(employee_id)

    def list_employees(self, region: Region | None = None) -> list[EmployeeProfile]:
        return [
            employee
            for employee in self._employees.values()
            if employee.active and (region is None or employee.region == region)
        ]


class InMemoryRepository:
    """
    Thread-safe in-memory repository.

    Rows are deep-copied on the way in and out, so callers can only change stored
    state through the save methods.
    """

    def __init__(
        self,
        policies: Iterable[LeavePolicy] = (),
        workflow_definitions: Iterable[WorkflowDefinition] = (),
        holidays: dict[Region, Iterable[date]] | None = None,
    ):
        self._lock = threading.Lock()
        self._policies = list(policies)
        self._definitions = list(workflow_definitions)
        self._holidays = {region: set(days) for region, days in (holidays or {}).items()}

        self._balances: dict[tuple[str, str, int], LeaveBalance] = {}
        self._requests: dict[str, LeaveRequest] = {}
        self._request_index: dict[str, int] = {}
        self._grants: dict[str, CompOffGrant] = {}
        self._work_logs: dict[tuple[str, date], CompOffWorkLog] = {}
        self.audit_records: list[AuditRecord] = []
        self.expiry_records: list[ExpiryRecord] = []

    # Policies and workflow definitions

    def load_policies(self) -> list[LeavePolicy]:
        with self._lock:
            return list(self._policies)

    def set_policies(self, policies: Iterable[LeavePolicy]) -> None:
        with self._lock:
            self._policies = list(policies)

    def load_workflow_definitions(self) -> list[WorkflowDefinition]:
        with self._lock:
            return list(self._definitions)

    def set_workflow_definitions(self, definitions: Iterable[WorkflowDefinition]) -> None:
        with self._lock:
            self._definitions = list(definitions)

    def load_holidays(self, region: Region) -> set[date]:
        with self._lock:
            return set(self._holidays.get(region, set())) | set(
                self._holidays.get(Region.GLOBAL, set())
            )

    # Balances

    def load_balance(self, employee_id: str, leave_type_code: str, year: int) -> LeaveBalance | None:
        with self._lock:
            balance = self._balances.get((employee_id, leave_type_code, year))
            return balance.model_copy(deep=True) if balance else None

    def load_balances(self, employee_id: str, year: int | None = None) -> list[LeaveBalance]:
        with self._lock:
            return [
                balance.model_copy(deep=True)
                for (owner, _, balance_year), balance in self._balances.items()
                if owner == employee_id and (year is None or balance_year == year)
            ]

    def save_balance(self, balance: LeaveBalance, expected_version: int) -> LeaveBalance:
        with self._lock:
            current = self._balances.get(balance.key)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise ConcurrencyConflictError(
                    f"Balance {balance.key} changed: expected version "
                    f"{expected_version}, found {current_version}"
                )
            stored = balance.model_copy(deep=True, update={"version": expected_version + 1})
            self._balances[balance.key] = stored
            return stored.model_copy(deep=True)

    # Requests

    def load_request(self, request_id: str) -> LeaveRequest | None:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy(deep=True) if request else None

    def load_requests(self, employee_id: str) -> list[LeaveRequest]:
        with self._lock:
            return [
                request.model_copy(deep=True)
                for request in self._requests.values()
                if request.employee_id == employee_id
            ]

    def load_pending_requests(self) -> list[LeaveRequest]:
        with self._lock:
            return [
                request.model_copy(deep=True)
                for request in self._requests.values()
                if request.status == LeaveStatus.PENDING
            ]

    def load_requests_with_status(self, statuses: Iterable[LeaveStatus]) -> list[LeaveRequest]:
        wanted = set(statuses)
        with self._lock:
            return [
                request.model_copy(deep=True)
                for request in self._requests.values()
                if request.status in wanted
            ]

    def request_index_version(self, employee_id: str) -> int:
        with self._lock:
            return self._request_index.get(employee_id, 0)

    def save_request(
        self, request: LeaveRequest, expected_version: int, employee_version: int | None = None
    ) -> LeaveRequest:
        with self._lock:
            current = self._requests.get(request.id)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise ConcurrencyConflictError(
                    f"Leave request {request.id} changed: expected version "
                    f"{expected_version}, found {current_version}"
                )
            index_version = self._request_index.get(request.employee_id, 0)
            if employee_version is not None and employee_version != index_version:
                raise ConcurrencyConflictError(
                    f"Requests of {request.employee_id} changed: expected index version "
                    f"{employee_version}, found {index_version}"
                )
            if current is None:
                self._request_index[request.employee_id] = index_version + 1
            stored = request.model_copy(deep=True, update={"version": expected_version + 1})
            self._requests[request.id] = stored
            return stored.model_copy(deep=True)

    # Audit and expiry

    def append_audit_record(self, record: AuditRecord) -> None:
        with self._lock:
            self.audit_records.append(record.model_copy(deep=True))

    def save_expiry_record(self, record: ExpiryRecord) -> None:
        with self._lock:
            self.expiry_records.append(record.model_copy(deep=True))

    # Comp-off

    def load_comp_off_grants(self, employee_id: str) -> list[CompOffGrant]:
        with self._lock:
            return [
                grant.model_copy(deep=True)
                for grant in self._grants.values()
                if grant.employee_id == employee_id
            ]

    def load_available_comp_off_grants(self) -> list[CompOffGrant]:
        with self._lock:
            return [
                grant.model_copy(deep=True)
                for grant in self._grants.values()
                if grant.status == CompOffStatus.AVAILABLE
            ]

    def _check_grant_version(self, grant: CompOffGrant, expected_version: int) -> None:
        current = self._grants.get(grant.id)
        current_version = current.version if current else 0
        if current_version != expected_version:
            raise ConcurrencyConflictError(
                f"Comp off grant {grant.id} changed: expected version "
                f"{expected_version}, found {current_version}"
            )

    def save_comp_off_grant(self, grant: CompOffGrant, expected_version: int) -> CompOffGrant:
        with self._lock:
            self._check_grant_version(grant, expected_version)
            stored = grant.model_copy(deep=True, update={"version": expected_version + 1})
            self._grants[grant.id] = stored
            return stored.model_copy(deep=True)

    def save_comp_off_grants(self, grants: list[CompOffGrant]) -> list[CompOffGrant]:
        with self._lock:
            for grant in grants:
                self._check_grant_version(grant, grant.version)
            saved = []
            for grant in grants:
                stored = grant.model_copy(deep=True, update={"version": grant.version + 1})
                self._grants[grant.id] = stored
                saved.append(stored.model_copy(deep=True))
            return saved

    def load_work_log(self, employee_id: str, work_date: date) -> CompOffWorkLog | None:
        with self._lock:
            work_log = self._work_logs.get((employee_id, work_date))
            return work_log.model_copy(deep=True) if work_log else None

    def save_work_log(self, work_log: CompOffWorkLog) -> None:
        with self._lock:
            self._work_logs[(work_log.employee_id, work_log.work_date)] = work_log.model_copy(
                deep=True
            )


class GuardedRepository:
    """
    Wrap any repository so every call goes through a circuit breaker.

    Usage:
        repository = GuardedRepository(SqlRepository(...), CircuitBreaker(name="leave-db"))
    """

    def __init__(self, inner: Any, circuit_breaker: CircuitBreaker):
        self._inner = inner
        self.circuit_breaker = circuit_breaker

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        @wraps(attr)
        def guarded(*args, **kwargs):
            return self.circuit_breaker.call(attr, *args, **kwargs)

        return guarded
