# ruff: noqa: TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter

from leave_ledger.api.deps import AuthDep, RequestServiceDep, ReviewerDep
from leave_ledger.db import SessionDep
from leave_ledger.schemas.balance import LeaveBalanceListResponse

my_balance_router = APIRouter(prefix="/leave-balances", tags=["balances"])
employee_balance_router = APIRouter(prefix="/employees/{employee_id}/leave-balances", tags=["balances"])


@my_balance_router.get("/me", response_model=LeaveBalanceListResponse)
async def get_my_balances(
    session: SessionDep,
    auth: AuthDep,
    service: RequestServiceDep,
) -> LeaveBalanceListResponse:
    """Get the calling employee's leave balances."""
    return await service.ledger.list_balances(session, auth.user_id)


@employee_balance_router.get("", response_model=LeaveBalanceListResponse)
async def get_employee_balances(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: ReviewerDep,
    service: RequestServiceDep,
) -> LeaveBalanceListResponse:
    """Get all leave balances for an employee (reviewers only)."""
    return await service.ledger.list_balances(session, employee_id)
