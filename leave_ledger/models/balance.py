# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from leave_ledger.models.base import now_utc


class LeaveBalance(SQLModel, table=True):
    """Per-employee, per-leave-type entitlement and consumption counters.

    Rows are mutated only through the balance ledger; ``version`` is bumped on
    every write and checked on update so concurrent writers cannot interleave.
    """

    __tablename__ = "leave_balance"
    __table_args__ = (
        sa.CheckConstraint("total_days >= 0", name="ck_leave_balance_total_non_negative"),
        sa.CheckConstraint("used_days >= 0", name="ck_leave_balance_used_non_negative"),
        sa.CheckConstraint("pending_days >= 0", name="ck_leave_balance_pending_non_negative"),
        sa.CheckConstraint("carry_forward_days >= 0", name="ck_leave_balance_carry_non_negative"),
    )

    employee_id: uuid.UUID = Field(primary_key=True, sa_type=sa.Uuid, index=True)
    leave_type: str = Field(primary_key=True, max_length=50)
    total_days: Decimal = Field(default=Decimal(0), sa_type=sa.Numeric(6, 2))
    used_days: Decimal = Field(default=Decimal(0), sa_type=sa.Numeric(6, 2))
    pending_days: Decimal = Field(default=Decimal(0), sa_type=sa.Numeric(6, 2))
    carry_forward_days: Decimal = Field(default=Decimal(0), sa_type=sa.Numeric(6, 2))
    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
    updated_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )


class EmployeeLedgerLock(SQLModel, table=True):
    """One row per employee, written first in every ledger transaction.

    Writing the row takes a database lock that is held until commit, so
    overlap checks and balance writes of one employee are serialized across
    every process sharing the database.
    """

    __tablename__ = "employee_ledger_lock"

    employee_id: uuid.UUID = Field(primary_key=True, sa_type=sa.Uuid)
    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
    updated_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )
