# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from leave_ledger.api.deps import AuthDep, RequestServiceDep, ReviewerDep, is_reviewer
from leave_ledger.db import SessionDep
from leave_ledger.exceptions import ForbiddenError
from leave_ledger.models.enums import LeaveRequestStatus, LeaveType
from leave_ledger.schemas.audit import AuditTrailResponse
from leave_ledger.schemas.request import (
    LeaveRequestFilters,
    LeaveRequestListResponse,
    LeaveRequestResponse,
    ReviewPayload,
    SortField,
    SortOrder,
    SubmitLeaveRequestPayload,
    TeamLeaveSummary,
)

requests_router = APIRouter(prefix="/leave-requests", tags=["leave-requests"])


async def get_request_filters(
    employee_id: uuid.UUID | None = Query(default=None),
    leave_type: LeaveType | None = Query(default=None),
    status_filter: LeaveRequestStatus | None = Query(default=None, alias="status"),
    start_date_from: date | None = Query(default=None),
    start_date_to: date | None = Query(default=None),
    sort_by: SortField = Query(default="created_at"),
    sort_order: SortOrder = Query(default="desc"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> LeaveRequestFilters:
    """Collect listing filters from the query string."""
    return LeaveRequestFilters(
        employee_id=employee_id,
        leave_type=leave_type,
        status=status_filter,
        start_date_from=start_date_from,
        start_date_to=start_date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=offset,
        limit=limit,
    )


FiltersDep = Annotated[LeaveRequestFilters, Depends(get_request_filters)]


@requests_router.post("", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_leave_request(
    payload: SubmitLeaveRequestPayload,
    session: SessionDep,
    auth: AuthDep,
    service: RequestServiceDep,
) -> LeaveRequestResponse:
    """Submit a new leave request for the calling employee."""
    return await service.submit(
        session,
        auth.user_id,
        payload.leave_type,
        payload.start_date,
        payload.end_date,
        payload.total_days,
        payload.reason,
    )


@requests_router.get("", response_model=LeaveRequestListResponse)
async def list_leave_requests(
    session: SessionDep,
    auth: ReviewerDep,
    service: RequestServiceDep,
    filters: FiltersDep,
) -> LeaveRequestListResponse:
    """List all leave requests (reviewers only)."""
    return await service.list_requests(session, filters)


@requests_router.get("/me", response_model=LeaveRequestListResponse)
async def list_my_leave_requests(
    session: SessionDep,
    auth: AuthDep,
    service: RequestServiceDep,
    filters: FiltersDep,
) -> LeaveRequestListResponse:
    """List the calling employee's own leave requests."""
    return await service.list_requests(session, filters.model_copy(update={"employee_id": auth.user_id}))


@requests_router.get("/team", response_model=LeaveRequestListResponse)
async def list_team_leave_requests(
    session: SessionDep,
    auth: ReviewerDep,
    service: RequestServiceDep,
    filters: FiltersDep,
) -> LeaveRequestListResponse:
    """List leave requests of the caller's direct reports (reviewers only)."""
    return await service.list_team_requests(session, auth.user_id, filters)


@requests_router.get("/team/summary", response_model=TeamLeaveSummary)
async def get_team_leave_summary(
    session: SessionDep,
    auth: ReviewerDep,
    service: RequestServiceDep,
) -> TeamLeaveSummary:
    """Summarize pending and upcoming leave of the caller's direct reports (reviewers only)."""
    return await service.get_team_summary(session, auth.user_id)


@requests_router.get("/{request_id}", response_model=LeaveRequestResponse)
async def get_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    service: RequestServiceDep,
) -> LeaveRequestResponse:
    """Get a single leave request (its owner or a reviewer)."""
    response = await service.get_request(session, request_id)
    if response.employee_id != auth.user_id and not is_reviewer(auth):
        raise ForbiddenError("You can only view your own leave requests")
    return response


@requests_router.get("/{request_id}/audit", response_model=AuditTrailResponse)
async def get_leave_request_audit(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: ReviewerDep,
    service: RequestServiceDep,
) -> AuditTrailResponse:
    """Get the audit trail of a leave request (reviewers only)."""
    return await service.get_audit_trail(session, request_id)


@requests_router.post("/{request_id}/approve", response_model=LeaveRequestResponse)
async def approve_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: ReviewerDep,
    service: RequestServiceDep,
    payload: ReviewPayload | None = None,
) -> LeaveRequestResponse:
    """Approve a pending leave request (reviewers only)."""
    return await service.approve(session, request_id, auth.user_id, payload.comments if payload else None)


@requests_router.post("/{request_id}/reject", response_model=LeaveRequestResponse)
async def reject_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: ReviewerDep,
    service: RequestServiceDep,
    payload: ReviewPayload | None = None,
) -> LeaveRequestResponse:
    """Reject a pending leave request (reviewers only)."""
    return await service.reject(session, request_id, auth.user_id, payload.comments if payload else None)


@requests_router.post("/{request_id}/cancel", response_model=LeaveRequestResponse)
async def cancel_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    service: RequestServiceDep,
) -> LeaveRequestResponse:
    """Cancel one of the caller's own pending leave requests."""
    return await service.cancel(session, request_id, auth.user_id)
