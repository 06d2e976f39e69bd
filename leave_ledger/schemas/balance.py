# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from leave_ledger.models.enums import LeaveType


class LeaveBalanceResponse(BaseModel):
    """Balance for a single (employee, leave type) key."""

    employee_id: uuid.UUID
    leave_type: LeaveType
    total_days: Decimal
    used_days: Decimal
    pending_days: Decimal
    carry_forward_days: Decimal
    available_days: Decimal
    updated_at: datetime | None


class LeaveBalanceListResponse(BaseModel):
    """All leave balances for an employee."""

    items: list[LeaveBalanceResponse]
    total: int
