from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from leave_ledger.exceptions import (
    ConflictError,
    DirectoryDataError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from leave_ledger.models.balance import EmployeeLedgerLock, LeaveBalance
from leave_ledger.models.base import now_utc
from leave_ledger.models.enums import LeaveType, LedgerOperation
from leave_ledger.schemas.balance import LeaveBalanceListResponse, LeaveBalanceResponse

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator, Hashable

    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.services.employee import EmployeeDirectory

logger = logging.getLogger(__name__)

_ZERO = Decimal(0)

_UPSERT_BY_DIALECT = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


# ---------------------------------------------------------------------------
# Counter arithmetic
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceCounters:
    """Immutable view of the four balance counters.

    Every mutation returns a new instance; nothing here touches storage.
    """

    total_days: Decimal
    used_days: Decimal
    pending_days: Decimal
    carry_forward_days: Decimal

    @classmethod
    def from_row(cls, balance: LeaveBalance) -> BalanceCounters:
        return cls(
            total_days=Decimal(balance.total_days),
            used_days=Decimal(balance.used_days),
            pending_days=Decimal(balance.pending_days),
            carry_forward_days=Decimal(balance.carry_forward_days),
        )

    @property
    def entitlement(self) -> Decimal:
        return self.total_days + self.carry_forward_days

    @property
    def available_days(self) -> Decimal:
        return self.entitlement - self.used_days - self.pending_days

    def is_consistent(self) -> bool:
        """True when no counter is negative and consumption fits the entitlement."""
        counters = (self.total_days, self.used_days, self.pending_days, self.carry_forward_days)
        return all(c >= _ZERO for c in counters) and self.used_days + self.pending_days <= self.entitlement

    def reserve(self, amount: Decimal) -> BalanceCounters:
        _require_positive(amount)
        if self.available_days < amount:
            raise InsufficientBalanceError(
                f"Insufficient leave balance. Available: {self.available_days} days, Requested: {amount} days"
            )
        return replace(self, pending_days=self.pending_days + amount)

    def commit(self, amount: Decimal) -> BalanceCounters:
        _require_positive(amount)
        if self.pending_days < amount:
            raise InvalidStateError(
                f"Cannot commit {amount} days; only {self.pending_days} days are pending",
            )
        return replace(self, pending_days=self.pending_days - amount, used_days=self.used_days + amount)

    def release(self, amount: Decimal) -> BalanceCounters:
        _require_positive(amount)
        # Clamped so a replayed release cannot drive pending negative.
        return replace(self, pending_days=max(_ZERO, self.pending_days - amount))

    def apply(self, operation: LedgerOperation, amount: Decimal) -> BalanceCounters:
        if operation is LedgerOperation.RESERVE:
            return self.reserve(amount)
        if operation is LedgerOperation.COMMIT:
            return self.commit(amount)
        return self.release(amount)


def _require_positive(amount: Decimal) -> None:
    if amount <= _ZERO:
        raise ValidationError(f"Ledger amount must be positive, got {amount}")


# ---------------------------------------------------------------------------
# Per-key serialization
# ---------------------------------------------------------------------------


class KeyedLockRegistry:
    """One asyncio lock per key, created on demand and dropped once unused."""

    def __init__(self, timeout_seconds: float) -> None:
        self._timeout_seconds = timeout_seconds
        self._locks: weakref.WeakValueDictionary[Hashable, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for ``key``; raise ConflictError if it cannot be taken in time."""
        lock = self._lock_for(key)
        try:
            async with asyncio.timeout(self._timeout_seconds):
                await lock.acquire()
        except TimeoutError:
            logger.warning("Timed out after %.2fs waiting for lock %s", self._timeout_seconds, key)
            raise ConflictError("Leave balance is busy; retry the operation") from None
        try:
            yield
        finally:
            lock.release()


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def _build_balance_response(balance: LeaveBalance) -> LeaveBalanceResponse:
    """Map a balance row to its response schema."""
    counters = BalanceCounters.from_row(balance)
    return LeaveBalanceResponse(
        employee_id=balance.employee_id,
        leave_type=LeaveType(balance.leave_type),
        total_days=counters.total_days,
        used_days=counters.used_days,
        pending_days=counters.pending_days,
        carry_forward_days=counters.carry_forward_days,
        available_days=counters.available_days,
        updated_at=balance.updated_at,
    )


class BalanceLedger:
    """Owns every write to ``leave_balance`` rows.

    Callers hold :meth:`lock` for the key across the whole unit of work,
    including the commit, and call :meth:`lock_employee` as the first write of
    the transaction. The in-process lock keeps waiting cheap inside one worker.
    The employee row serializes workers that share the database, and each
    balance write is also checked against the row version.
    """

    def __init__(self, directory: EmployeeDirectory, lock_timeout_seconds: float) -> None:
        self._directory = directory
        self._locks = KeyedLockRegistry(lock_timeout_seconds)

    @property
    def locks(self) -> KeyedLockRegistry:
        return self._locks

    def lock(self, employee_id: uuid.UUID, leave_type: LeaveType | str) -> AbstractAsyncContextManager[None]:
        """Serialize work on one (employee, leave type) balance."""
        return self._locks.hold(("balance", employee_id, LeaveType(leave_type)))

    def calendar_lock(self, employee_id: uuid.UUID) -> AbstractAsyncContextManager[None]:
        """Serialize submissions of one employee across leave types."""
        return self._locks.hold(("calendar", employee_id))

    # -- write path ---------------------------------------------------------

    async def lock_employee(self, session: AsyncSession, employee_id: uuid.UUID) -> None:
        """Take the database-level lock of one employee for the rest of the transaction.

        Must be the first write of the transaction. The upsert holds the row
        lock (PostgreSQL) or the database write lock (SQLite) until commit, so
        a second process blocks here and then reads everything the first
        one committed.
        """
        dialect = session.get_bind().dialect.name
        dialect_insert = _UPSERT_BY_DIALECT.get(dialect)
        if dialect_insert is None:
            raise RuntimeError(f"Employee ledger lock is not supported on {dialect}")
        now = now_utc()
        stmt = dialect_insert(EmployeeLedgerLock).values(employee_id=employee_id, version=1, updated_at=now)
        await session.execute(
            stmt.on_conflict_do_update(
                index_elements=[col(EmployeeLedgerLock.employee_id)],
                set_={"version": col(EmployeeLedgerLock.version) + 1, "updated_at": now},
            )
        )

    async def reserve(
        self, session: AsyncSession, employee_id: uuid.UUID, leave_type: LeaveType | str, amount: Decimal
    ) -> LeaveBalance:
        """Move ``amount`` into pending if enough days are available."""
        return await self.apply(session, LedgerOperation.RESERVE, employee_id, leave_type, amount)

    async def commit(
        self, session: AsyncSession, employee_id: uuid.UUID, leave_type: LeaveType | str, amount: Decimal
    ) -> LeaveBalance:
        """Convert ``amount`` of pending days into used days."""
        return await self.apply(session, LedgerOperation.COMMIT, employee_id, leave_type, amount)

    async def release(
        self, session: AsyncSession, employee_id: uuid.UUID, leave_type: LeaveType | str, amount: Decimal
    ) -> LeaveBalance:
        """Return ``amount`` of pending days to the available pool."""
        return await self.apply(session, LedgerOperation.RELEASE, employee_id, leave_type, amount)

    async def apply(
        self,
        session: AsyncSession,
        operation: LedgerOperation,
        employee_id: uuid.UUID,
        leave_type: LeaveType | str,
        amount: Decimal,
    ) -> LeaveBalance:
        """Apply one ledger operation inside the caller's transaction.

        Nothing is written when the operation is rejected.
        """
        balance = await self._get_or_seed_for_update(session, employee_id, LeaveType(leave_type))
        before = BalanceCounters.from_row(balance)
        after = before.apply(operation, Decimal(amount))
        await self._write(session, balance, after)
        logger.debug(
            "Ledger %s %s days for %s/%s: pending %s -> %s, used %s -> %s",
            operation.value,
            amount,
            employee_id,
            balance.leave_type,
            before.pending_days,
            after.pending_days,
            before.used_days,
            after.used_days,
        )
        return balance

    async def _get_or_seed_for_update(
        self,
        session: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
    ) -> LeaveBalance:
        """Get the balance row with a FOR UPDATE lock, seeding it from the directory if absent."""
        result = await session.execute(
            select(LeaveBalance)
            .where(
                col(LeaveBalance.employee_id) == employee_id,
                col(LeaveBalance.leave_type) == leave_type.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        balance = result.scalar_one_or_none()
        if balance is not None:
            return balance

        seed = await self._directory.get_balance_seed(employee_id, leave_type)
        if seed is None:
            raise NotFoundError(f"No {leave_type.value} leave balance for employee {employee_id}")

        seeded = BalanceCounters(
            total_days=Decimal(seed.total_days),
            used_days=Decimal(seed.used_days),
            pending_days=_ZERO,
            carry_forward_days=Decimal(seed.carry_forward_days),
        )
        if not seeded.is_consistent():
            logger.error("Rejected %s seed for employee %s: %s", leave_type.value, employee_id, seeded)
            raise DirectoryDataError(
                f"Employee directory returned an invalid {leave_type.value} entitlement for employee {employee_id}"
            )

        balance = LeaveBalance(
            employee_id=employee_id,
            leave_type=leave_type.value,
            total_days=seed.total_days,
            used_days=seed.used_days,
            pending_days=_ZERO,
            carry_forward_days=seed.carry_forward_days,
            version=1,
        )
        session.add(balance)
        try:
            await session.flush()
        except IntegrityError as exc:
            # Counters were checked above, so only the primary key can collide.
            raise ConflictError("Leave balance was seeded concurrently; retry the operation") from exc
        return balance

    async def _write(self, session: AsyncSession, balance: LeaveBalance, counters: BalanceCounters) -> None:
        """Compare-and-swap the counters on ``balance.version``."""
        if not counters.is_consistent():
            raise InvalidStateError(
                f"Ledger write would break the balance invariant for {balance.employee_id}/{balance.leave_type}"
            )
        result = await session.execute(
            update(LeaveBalance)
            .where(
                col(LeaveBalance.employee_id) == balance.employee_id,
                col(LeaveBalance.leave_type) == balance.leave_type,
                col(LeaveBalance.version) == balance.version,
            )
            .values(
                total_days=counters.total_days,
                used_days=counters.used_days,
                pending_days=counters.pending_days,
                carry_forward_days=counters.carry_forward_days,
                version=balance.version + 1,
                updated_at=now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Leave balance was modified concurrently; retry the operation")
        await session.refresh(balance)

    # -- read path ----------------------------------------------------------

    async def get_balance(
        self, session: AsyncSession, employee_id: uuid.UUID, leave_type: LeaveType | str
    ) -> LeaveBalanceResponse:
        """Return one balance summary. Raises NotFoundError if the row does not exist."""
        result = await session.execute(
            select(LeaveBalance).where(
                col(LeaveBalance.employee_id) == employee_id,
                col(LeaveBalance.leave_type) == LeaveType(leave_type).value,
            )
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError(f"No {LeaveType(leave_type).value} leave balance for employee {employee_id}")
        return _build_balance_response(balance)

    async def list_balances(self, session: AsyncSession, employee_id: uuid.UUID) -> LeaveBalanceListResponse:
        """Return every balance row of an employee ordered by leave type."""
        result = await session.execute(
            select(LeaveBalance)
            .where(col(LeaveBalance.employee_id) == employee_id)
            .order_by(col(LeaveBalance.leave_type))
        )
        items = [_build_balance_response(b) for b in result.scalars().all()]
        return LeaveBalanceListResponse(items=items, total=len(items))
