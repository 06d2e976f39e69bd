from sqlmodel import SQLModel

from leave_ledger.models.audit import AuditLog
from leave_ledger.models.balance import EmployeeLedgerLock, LeaveBalance
from leave_ledger.models.base import TimestampMixin, UUIDBase
from leave_ledger.models.enums import (
    AuditAction,
    AuditEntityType,
    LeaveRequestStatus,
    LeaveType,
    LedgerOperation,
)
from leave_ledger.models.request import LeaveRequest

__all__ = [
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "EmployeeLedgerLock",
    "LeaveBalance",
    "LeaveRequest",
    "LeaveRequestStatus",
    "LeaveType",
    "LedgerOperation",
    "SQLModel",
    "TimestampMixin",
    "UUIDBase",
]
