# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Self

from pydantic import BaseModel, Field, model_validator

from leave_ledger.models.enums import LeaveRequestStatus, LeaveType

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class SubmitLeaveRequestPayload(BaseModel):
    """Request body for submitting a new leave request."""

    leave_type: LeaveType
    start_date: date
    end_date: date
    total_days: Decimal = Field(gt=0, max_digits=5, decimal_places=2)
    reason: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.end_date < self.start_date:
            msg = "end_date must not be before start_date"
            raise ValueError(msg)
        return self


class ReviewPayload(BaseModel):
    """Request body for approve/reject actions."""

    comments: str | None = Field(default=None, max_length=1000)


SortField = Literal["created_at", "start_date", "total_days", "status"]
SortOrder = Literal["asc", "desc"]


class LeaveRequestFilters(BaseModel):
    """Filters, ordering and pagination for request listings."""

    employee_id: uuid.UUID | None = None
    leave_type: LeaveType | None = None
    status: LeaveRequestStatus | None = None
    start_date_from: date | None = None
    start_date_to: date | None = None
    sort_by: SortField = "created_at"
    sort_order: SortOrder = "desc"
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1, le=100)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LeaveRequestResponse(BaseModel):
    """Response schema for a single leave request."""

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    total_days: Decimal
    reason: str | None
    status: LeaveRequestStatus
    reviewer_id: uuid.UUID | None
    reviewed_at: datetime | None
    reviewer_comments: str | None
    created_at: datetime
    updated_at: datetime


class LeaveRequestListResponse(BaseModel):
    """Paginated list of leave requests."""

    items: list[LeaveRequestResponse]
    total: int


class UpcomingLeave(BaseModel):
    """An approved leave starting soon, as shown in the team summary."""

    request_id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: str
    leave_type: LeaveType
    start_date: date
    end_date: date
    total_days: Decimal


class OnLeaveToday(BaseModel):
    """A direct report whose approved leave covers today."""

    request_id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: str
    leave_type: LeaveType
    end_date: date


class TeamLeaveSummary(BaseModel):
    """Leave overview of a manager's direct reports."""

    pending_requests: int
    upcoming_leaves: list[UpcomingLeave]
    on_leave_today: list[OnLeaveToday]
