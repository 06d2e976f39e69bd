# ruff: noqa: TC003
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from leave_ledger.models.enums import LeaveType


class EmployeeInfo(BaseModel):
    """Employee metadata from the Employee Directory."""

    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    is_active: bool = True
    manager_id: uuid.UUID | None = None  # direct manager, used for team views
    department: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class BalanceSeed(BaseModel):
    """Initial entitlement for a (employee, leave type) key, resolved externally."""

    leave_type: LeaveType
    total_days: Decimal = Field(ge=0)
    used_days: Decimal = Field(default=Decimal(0), ge=0)
    carry_forward_days: Decimal = Field(default=Decimal(0), ge=0)


@runtime_checkable
class EmployeeDirectory(Protocol):
    """Interface for the Employee Directory."""

    async def get_employee(self, employee_id: uuid.UUID) -> EmployeeInfo | None:
        """Fetch employee metadata. Returns None if not found."""
        ...

    async def list_direct_reports(self, manager_id: uuid.UUID) -> list[EmployeeInfo]:
        """List active employees reporting to the given manager."""
        ...

    async def get_balance_seed(self, employee_id: uuid.UUID, leave_type: LeaveType) -> BalanceSeed | None:
        """Return the seed entitlement for a key, or None if the employee has none."""
        ...


class InMemoryEmployeeDirectory:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._employees: dict[uuid.UUID, EmployeeInfo] = {}
        self._seeds: dict[tuple[uuid.UUID, LeaveType], BalanceSeed] = {}

    def seed(self, employee: EmployeeInfo, balances: list[BalanceSeed] | None = None) -> None:
        """Seed an employee and their entitlements for testing."""
        self._employees[employee.id] = employee
        for balance in balances or []:
            self._seeds[(employee.id, balance.leave_type)] = balance

    async def get_employee(self, employee_id: uuid.UUID) -> EmployeeInfo | None:
        """Fetch employee metadata. Returns None if not found."""
        return self._employees.get(employee_id)

    async def list_direct_reports(self, manager_id: uuid.UUID) -> list[EmployeeInfo]:
        """List active employees reporting to the given manager."""
        return [e for e in self._employees.values() if e.manager_id == manager_id and e.is_active]

    async def get_balance_seed(self, employee_id: uuid.UUID, leave_type: LeaveType) -> BalanceSeed | None:
        """Return the seed entitlement for a key, or None if the employee has none."""
        return self._seeds.get((employee_id, leave_type))


_employee_directory: EmployeeDirectory = InMemoryEmployeeDirectory()


def get_employee_directory() -> EmployeeDirectory:
    """Return the process-wide Employee Directory."""
    return _employee_directory


def set_employee_directory(directory: EmployeeDirectory) -> None:
    """Override the directory (for testing or production wiring)."""
    global _employee_directory
    _employee_directory = directory
