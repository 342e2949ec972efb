"""
Authoritative leave balance ledger.

One row per (employee, leave type, year). Every mutation is read-modify-write under
an optimistic version check:

    load row (version v) -> apply change to a copy -> save(expected_version=v)

A version mismatch means another writer got there first; the mutation is re-applied
to the fresh row, up to ``settings.ledger_max_retries`` attempts, before
``ConcurrencyConflictError`` surfaces. Business rules are re-evaluated on every
attempt, so a retried reserve can legitimately fail with
``InsufficientBalanceError``.

Idempotency lives on the row itself (``applied_keys`` and ``entries``) so it is
checked and recorded in the same atomic save as the amounts.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from leave_engine.config import Settings
from leave_engine.config import settings as default_settings
from leave_engine.errors import (
    AlreadyAccruedError,
    AlreadyProcessedError,
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InvalidTransitionError,
    ValidationError,
)
from leave_engine.models import AuditRecord, EntryState, ExpiryRecord, LeaveBalance, LedgerEntry
from leave_engine.repository import Repository

logger = logging.getLogger(__name__)

Mutation = Callable[[LeaveBalance], bool]


class BalanceLedger:
    def __init__(
        self,
        repository: Repository,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] | None = None,
    ):
        self._repository = repository
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, employee_id: str, leave_type_code: str, year: int) -> LeaveBalance | None:
        return self._repository.load_balance(employee_id, leave_type_code, year)

    def available(self, employee_id: str, leave_type_code: str, year: int) -> float:
        balance = self.get_balance(employee_id, leave_type_code, year)
        return balance.available if balance else 0.0

    # ------------------------------------------------------------------
    # Core mutation loop
    # ------------------------------------------------------------------

    def _mutate(
        self,
        employee_id: str,
        leave_type_code: str,
        year: int,
        mutation: Mutation,
        *,
        create: bool = True,
    ) -> LeaveBalance:
        """
        Apply ``mutation`` under the optimistic version check.

        ``mutation`` changes the row in place and returns True, or returns False when
        the change is already applied (idempotent no-op; nothing is saved).
        """
        attempts = max(1, self.settings.ledger_max_retries)
        for attempt in range(1, attempts + 1):
            current = self._repository.load_balance(employee_id, leave_type_code, year)
            if current is None:
                if not create:
                    raise ValidationError(
                        f"No {leave_type_code} balance for employee {employee_id} in {year}."
                    )
                current = LeaveBalance(
                    employee_id=employee_id, leave_type_code=leave_type_code, year=year
                )

            working = current.model_copy(deep=True)
            if not mutation(working):
                return current

            try:
                return self._repository.save_balance(working, expected_version=current.version)
            except ConcurrencyConflictError:
                logger.warning(
                    f"Version conflict on balance ({employee_id}, {leave_type_code}, {year}), "
                    f"attempt {attempt}/{attempts}"
                )

        raise ConcurrencyConflictError(
            f"Balance ({employee_id}, {leave_type_code}, {year}) kept changing; "
            f"gave up after {attempts} attempts."
        )

    def _audit(self, action: str, balance: LeaveBalance, amount: float, reference: str | None, **details):
        self._repository.append_audit_record(
            AuditRecord(
                action=action,
                employee_id=balance.employee_id,
                leave_type_code=balance.leave_type_code,
                year=balance.year,
                amount=amount,
                reference=reference,
                details={"available": balance.available, **details},
                created_at=self._clock(),
            )
        )

    # ------------------------------------------------------------------
    # Seeding and credits
    # ------------------------------------------------------------------

    def open_balance(self, employee_id: str, leave_type_code: str, year: int) -> LeaveBalance:
        """Create an empty row if none exists yet (onboarding / year start)."""

        def mutation(balance: LeaveBalance) -> bool:
            return balance.version == 0

        return self._mutate(employee_id, leave_type_code, year, mutation)

    def credit(
        self,
        employee_id: str,
        leave_type_code: str,
        year: int,
        days: float,
        key: str,
        reason: str = "ACCRUAL",
    ) -> LeaveBalance:
        """
        Credit accrued entitlement exactly once per idempotency key.

        A zero credit is still recorded under its key; that is how a suspended accrual
        period leaves an explicit trace.
        """
        if days < 0:
            raise ValidationError(f"Accrual credit cannot be negative: {days}")

        def mutation(balance: LeaveBalance) -> bool:
            if key in balance.applied_keys:
                raise AlreadyAccruedError(
                    f"Accrual {key} already applied.", details={"key": key}
                )
            balance.total_entitlement += days
            balance.accrued += days
            balance.applied_keys.append(key)
            return True

        balance = self._mutate(employee_id, leave_type_code, year, mutation)
        self._audit(reason, balance, days, key)
        logger.info(f"Credited {days} {leave_type_code} to {employee_id} for {year} ({key})")
        return balance

    def carry_in(
        self, employee_id: str, leave_type_code: str, year: int, days: float, key: str
    ) -> LeaveBalance:
        """Seed ``carry_forward_in`` of a new year's row exactly once per key."""

        def mutation(balance: LeaveBalance) -> bool:
            if key in balance.applied_keys:
                raise AlreadyProcessedError(
                    f"Carry-forward {key} already applied.", details={"key": key}
                )
            balance.carry_forward_in += days
            balance.applied_keys.append(key)
            return True

        balance = self._mutate(employee_id, leave_type_code, year, mutation)
        self._audit("CARRY_FORWARD_IN", balance, days, key)
        return balance

    def close_year(
        self,
        employee_id: str,
        leave_type_code: str,
        year: int,
        carry_amount: Callable[[float], float],
    ) -> tuple[LeaveBalance, float, float, bool]:
        """
        Expire what will not carry forward and archive the row.

        ``carry_amount`` maps the unused (positive) balance to the days that move into
        the next year. Returns ``(row, carried, expired, newly_closed)``; a row that
        was already closed is returned untouched with its recorded carry-out.

        Open reservations stay on the closed row. If they are later released or
        refunded, the returned days expire with an ``ExpiryRecord``.
        """
        closing: dict[str, float] = {}

        def mutation(balance: LeaveBalance) -> bool:
            closing.clear()
            if balance.carry_forward_processed:
                return False
            unused = max(balance.available, 0.0)
            carried = min(carry_amount(unused), unused) if unused > 0 else 0.0
            expired = unused - carried
            balance.expired += expired
            balance.carry_forward_out = carried
            balance.carry_forward_processed = True
            balance.archived = True
            closing.update(carried=carried, expired=expired)
            return True

        balance = self._mutate(employee_id, leave_type_code, year, mutation, create=False)
        if not closing:
            return balance, balance.carry_forward_out, 0.0, False

        self._audit(
            "YEAR_END_CLOSE", balance, closing["expired"], None, carried_forward=closing["carried"]
        )
        return balance, closing["carried"], closing["expired"], True

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    def reserve(
        self,
        employee_id: str,
        leave_type_code: str,
        year: int,
        days: float,
        request_id: str,
        *,
        allow_negative: bool = False,
    ) -> LeaveBalance:
        """Move ``days`` from available to pending for ``request_id``."""
        if days <= 0:
            raise ValidationError(f"Cannot reserve {days} days.")

        def mutation(balance: LeaveBalance) -> bool:
            if balance.archived:
                raise ValidationError(f"{leave_type_code} balance for {year} is closed.")

            existing = balance.entries.get(request_id)
            if existing is not None:
                if existing.state == EntryState.RESERVED and existing.days == days:
                    return False
                raise InvalidTransitionError(
                    f"Request {request_id} already holds a {existing.state.value} entry."
                )

            if not allow_negative and days > balance.available:
                raise InsufficientBalanceError(
                    f"Insufficient {leave_type_code} balance. "
                    f"You have {balance.available:g} days available but requested {days:g} days.",
                    details={
                        "available": balance.available,
                        "requested": days,
                        "shortage": days - balance.available,
                    },
                )

            balance.pending += days
            balance.entries[request_id] = LedgerEntry(request_id=request_id, days=days)
            return True

        balance = self._mutate(employee_id, leave_type_code, year, mutation)
        self._audit("RESERVE", balance, days, request_id)
        return balance

    def discard(self, employee_id: str, leave_type_code: str, year: int, request_id: str) -> LeaveBalance:
        """Drop a reservation whose request was never stored."""
        dropped: list[float] = []

        def mutation(balance: LeaveBalance) -> bool:
            entry = balance.entries.get(request_id)
            if entry is None:
                return False
            if entry.state != EntryState.RESERVED:
                raise InvalidTransitionError(
                    f"Cannot discard request {request_id}: entry is {entry.state.value}."
                )
            del balance.entries[request_id]
            balance.pending -= entry.days
            dropped.append(entry.days)
            return True

        balance = self._mutate(employee_id, leave_type_code, year, mutation, create=False)
        if dropped:
            self._audit("DISCARD", balance, dropped[-1], request_id)
        return balance

    def _settle(
        self,
        request_id: str,
        action: str,
        from_state: EntryState,
        to_state: EntryState,
        apply: Callable[[LeaveBalance, float], None],
    ) -> LeaveBalance:
        request = self._repository.load_request(request_id)
        if request is None:
            raise ValidationError(f"Unknown leave request {request_id}.")

        settled: list[float] = []
        lapsed: list[float] = []

        def mutation(balance: LeaveBalance) -> bool:
            settled.clear()
            lapsed.clear()
            entry = balance.entries.get(request_id)
            if entry is None:
                raise ValidationError(f"No ledger entry for request {request_id}.")
            if entry.state == to_state:
                return False
            if entry.state != from_state:
                raise InvalidTransitionError(
                    f"Cannot {action.lower()} request {request_id}: entry is {entry.state.value}."
                )
            before = balance.available
            apply(balance, entry.days)
            entry.state = to_state
            settled.append(entry.days)
            if balance.archived and balance.available > before:
                # the year is closed; returned days cannot be used or carried any more
                lapsed.append(balance.available - before)
                balance.expired += lapsed[-1]
            return True

        balance = self._mutate(
            request.employee_id, request.leave_type_code, request.balance_year, mutation, create=False
        )
        if settled:
            self._audit(action, balance, settled[-1], request_id)
        if lapsed:
            self._repository.save_expiry_record(
                ExpiryRecord(
                    employee_id=balance.employee_id,
                    leave_type_code=balance.leave_type_code,
                    year=balance.year,
                    days=lapsed[-1],
                    reason=f"{action}: days returned after the year was closed",
                    created_at=self._clock(),
                )
            )
            logger.info(
                f"{lapsed[-1]} {balance.leave_type_code} days of request {request_id} expired "
                f"on closed {balance.year} row"
            )
        return balance

    def commit(self, request_id: str) -> LeaveBalance:
        """Final approval: pending -> used."""

        def apply(balance: LeaveBalance, days: float) -> None:
            balance.pending -= days
            balance.used += days

        return self._settle(request_id, "COMMIT", EntryState.RESERVED, EntryState.COMMITTED, apply)

    def release(self, request_id: str) -> LeaveBalance:
        """Rejection or cancellation while pending: pending -> available."""

        def apply(balance: LeaveBalance, days: float) -> None:
            balance.pending -= days

        return self._settle(request_id, "RELEASE", EntryState.RESERVED, EntryState.RELEASED, apply)

    def refund(self, request_id: str) -> LeaveBalance:
        """Cancellation of an approved request: used -> available."""

        def apply(balance: LeaveBalance, days: float) -> None:
            balance.used -= days

        return self._settle(request_id, "REFUND", EntryState.COMMITTED, EntryState.REFUNDED, apply)

    # ------------------------------------------------------------------
    # Encashment
    # ------------------------------------------------------------------

    def encash(
        self, employee_id: str, leave_type_code: str, year: int, days: float, reference: str
    ) -> LeaveBalance:
        if days <= 0:
            raise ValidationError(f"Cannot encash {days} days.")

        def mutation(balance: LeaveBalance) -> bool:
            if reference in balance.applied_keys:
                raise AlreadyProcessedError(f"Encashment {reference} already applied.")
            if days > balance.available:
                raise InsufficientBalanceError(
                    f"Cannot encash {days:g} days; only {balance.available:g} available.",
                    details={"available": balance.available, "requested": days},
                )
            balance.encashed += days
            balance.applied_keys.append(reference)
            return True

        balance = self._mutate(employee_id, leave_type_code, year, mutation, create=False)
        self._audit("ENCASH", balance, days, reference)
        return balance
