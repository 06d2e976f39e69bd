from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlmodel import col

from leave_ledger.config import get_settings
from leave_ledger.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    OverlapError,
    ValidationError,
)
from leave_ledger.models.enums import AuditEntityType, LeaveRequestStatus, LeaveType
from leave_ledger.models.request import LeaveRequest
from leave_ledger.schemas.audit import AuditTrailResponse
from leave_ledger.schemas.request import (
    LeaveRequestFilters,
    LeaveRequestListResponse,
    LeaveRequestResponse,
    OnLeaveToday,
    TeamLeaveSummary,
    UpcomingLeave,
)
from leave_ledger.services.audit import list_audit_trail, model_to_audit_dict, write_audit_log
from leave_ledger.services.clock import SystemClock
from leave_ledger.services.employee import get_employee_directory
from leave_ledger.services.ledger import BalanceLedger
from leave_ledger.services.lifecycle import creation_transition, resolve_transition
from leave_ledger.services.notifier import LoggingNotifier, TransitionEvent
from leave_ledger.services.overlap import ACTIVE_STATUSES, find_overlapping_request

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator
    from datetime import date

    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.services.clock import Clock
    from leave_ledger.services.employee import EmployeeDirectory
    from leave_ledger.services.lifecycle import Transition
    from leave_ledger.services.notifier import Notifier

logger = logging.getLogger(__name__)

_MAX_TOTAL_DAYS = Decimal("999.99")
_DAYS_QUANTUM = Decimal("0.01")
_TEAM_SUMMARY_UPCOMING_LIMIT = 10

_SORT_COLUMNS = {
    "created_at": LeaveRequest.created_at,
    "start_date": LeaveRequest.start_date,
    "total_days": LeaveRequest.total_days,
    "status": LeaveRequest.status,
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_request_response(request: LeaveRequest) -> LeaveRequestResponse:
    """Map a request model to its response schema."""
    return LeaveRequestResponse(
        id=request.id,
        employee_id=request.employee_id,
        leave_type=LeaveType(request.leave_type),
        start_date=request.start_date,
        end_date=request.end_date,
        total_days=Decimal(request.total_days),
        reason=request.reason,
        status=LeaveRequestStatus(request.status),
        reviewer_id=request.reviewer_id,
        reviewed_at=request.reviewed_at,
        reviewer_comments=request.reviewer_comments,
        created_at=request.created_at,
        updated_at=request.updated_at,
    )


def _coerce_leave_type(leave_type: LeaveType | str) -> LeaveType:
    try:
        return LeaveType(leave_type)
    except ValueError:
        raise ValidationError(f"Unknown leave type: {leave_type}") from None


def _coerce_days(total_days: Decimal | int | float | str) -> Decimal:
    """Normalize a day count to a Decimal with at most two places."""
    try:
        days = Decimal(str(total_days))
    except InvalidOperation:
        raise ValidationError(f"total_days is not a number: {total_days!r}") from None
    if not days.is_finite() or days <= 0:
        raise ValidationError("total_days must be greater than zero")
    if days > _MAX_TOTAL_DAYS:
        raise ValidationError(f"total_days must not exceed {_MAX_TOTAL_DAYS}")
    if days != days.quantize(_DAYS_QUANTUM):
        raise ValidationError("total_days supports at most two decimal places")
    return days


def _validate_window(start_date: date, end_date: date, today: date) -> None:
    if start_date > end_date:
        raise ValidationError("Start date must be on or before end date")
    if start_date < today:
        raise ValidationError("Cannot request leave for past dates")


@asynccontextmanager
async def _atomic(session: AsyncSession) -> AsyncIterator[None]:
    """Commit the session on success, roll it back on any failure.

    Storage-level lock and serialization failures are surfaced as ConflictError.
    """
    try:
        yield
        await session.commit()
    except OperationalError as exc:
        await session.rollback()
        logger.warning("Storage rejected leave ledger write: %s", exc.orig)
        raise ConflictError("Storage reported contention on the leave balance; retry the operation") from exc
    except Exception:
        await session.rollback()
        raise


async def _get_request_or_404(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> LeaveRequest:
    """Fetch a request by ID. Raises NotFoundError if missing."""
    query = select(LeaveRequest).where(col(LeaveRequest.id) == request_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError(f"Leave request {request_id} not found")
    return request


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class RequestService:
    """Submit, approve, reject and cancel leave requests against the balance ledger.

    Every transition holds the balance lock for its (employee, leave type)
    key, writes the request and the paired ledger adjustment, and commits
    before the lock is released. Audit entries and notifications happen after
    the commit and never undo it.
    """

    def __init__(
        self,
        ledger: BalanceLedger,
        directory: EmployeeDirectory,
        clock: Clock,
        notifier: Notifier,
    ) -> None:
        self._ledger = ledger
        self._directory = directory
        self._clock = clock
        self._notifier = notifier

    @property
    def ledger(self) -> BalanceLedger:
        return self._ledger

    # -- write path ---------------------------------------------------------

    async def submit(
        self,
        session: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType | str,
        start_date: date,
        end_date: date,
        total_days: Decimal | int | float | str,
        reason: str | None = None,
    ) -> LeaveRequestResponse:
        """Create a PENDING request and reserve its days.

        Flow:
        1. Validate type, amount and date window
        2. Resolve the employee through the directory
        3. Take the calendar and balance locks, then the employee row in the database
        4. Reject overlaps with the employee's active requests
        5. Reserve days on the balance
        6. Insert the request
        7. Commit, then audit and notify
        """
        leave_type = _coerce_leave_type(leave_type)
        days = _coerce_days(total_days)
        _validate_window(start_date, end_date, self._clock.today())

        employee = await self._directory.get_employee(employee_id)
        if employee is None or not employee.is_active:
            raise NotFoundError(f"Employee {employee_id} not found")

        transition = creation_transition()
        async with self._ledger.calendar_lock(employee_id), self._ledger.lock(employee_id, leave_type):
            async with _atomic(session):
                await self._ledger.lock_employee(session, employee_id)
                conflict = find_overlapping_request(
                    await self._list_active_requests(session, employee_id, start_date),
                    start_date,
                    end_date,
                )
                if conflict is not None:
                    raise OverlapError(
                        f"Overlaps leave request {conflict.id} "
                        f"({conflict.start_date.isoformat()} to {conflict.end_date.isoformat()})"
                    )

                await self._ledger.apply(session, transition.operation, employee_id, leave_type, days)

                now = self._clock.now()
                leave_request = LeaveRequest(
                    employee_id=employee_id,
                    leave_type=leave_type.value,
                    start_date=start_date,
                    end_date=end_date,
                    total_days=days,
                    reason=reason,
                    status=transition.target.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(leave_request)
                await session.flush()
                after = model_to_audit_dict(leave_request)
                response = _build_request_response(leave_request)

        logger.info(
            "Leave request %s submitted: employee=%s type=%s days=%s",
            response.id,
            employee_id,
            leave_type.value,
            days,
        )
        await self._after_transition(session, response, transition, employee_id, None, after)
        return response

    async def approve(
        self,
        session: AsyncSession,
        request_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        comments: str | None = None,
    ) -> LeaveRequestResponse:
        """Approve a PENDING request: its reserved days become used days."""
        return await self._transition(session, request_id, reviewer_id, LeaveRequestStatus.APPROVED, comments)

    async def reject(
        self,
        session: AsyncSession,
        request_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        comments: str | None = None,
    ) -> LeaveRequestResponse:
        """Reject a PENDING request and release its reserved days."""
        return await self._transition(session, request_id, reviewer_id, LeaveRequestStatus.REJECTED, comments)

    async def cancel(
        self,
        session: AsyncSession,
        request_id: uuid.UUID,
        requester_id: uuid.UUID,
    ) -> LeaveRequestResponse:
        """Cancel an own PENDING request and release its reserved days."""
        return await self._transition(session, request_id, requester_id, LeaveRequestStatus.CANCELLED)

    async def _transition(
        self,
        session: AsyncSession,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        target: LeaveRequestStatus,
        comments: str | None = None,
    ) -> LeaveRequestResponse:
        """Shared logic for approve, reject and cancel.

        1. Resolve the balance key without locking.
        2. Take the balance lock and the employee row, then reload the request FOR UPDATE.
        3. Check ownership for owner-driven transitions.
        4. Resolve the transition; an already-reached target is a no-op.
        5. Apply the ledger operation and update the request.
        6. Commit, then audit and notify.
        """
        key_result = await session.execute(
            select(LeaveRequest.employee_id, LeaveRequest.leave_type).where(col(LeaveRequest.id) == request_id)
        )
        key = key_result.one_or_none()
        if key is None:
            raise NotFoundError(f"Leave request {request_id} not found")
        employee_id, leave_type = key

        transition: Transition | None = None
        async with self._ledger.lock(employee_id, leave_type):
            async with _atomic(session):
                await self._ledger.lock_employee(session, employee_id)
                leave_request = await _get_request_or_404(session, request_id, for_update=True)

                if target is LeaveRequestStatus.CANCELLED and leave_request.employee_id != actor_id:
                    raise ForbiddenError("You can only cancel your own leave requests")

                previous_status = LeaveRequestStatus(leave_request.status)
                transition = resolve_transition(previous_status, target)
                if transition is not None:
                    before = model_to_audit_dict(leave_request)
                    await self._ledger.apply(
                        session,
                        transition.operation,
                        leave_request.employee_id,
                        leave_request.leave_type,
                        Decimal(leave_request.total_days),
                    )

                    now = self._clock.now()
                    leave_request.status = transition.target.value
                    leave_request.updated_at = now
                    if transition.stamps_reviewer:
                        leave_request.reviewer_id = actor_id
                        leave_request.reviewed_at = now
                        leave_request.reviewer_comments = comments
                    await session.flush()
                    after = model_to_audit_dict(leave_request)
                response = _build_request_response(leave_request)

        if transition is None:
            logger.info("Leave request %s already %s; nothing to do", request_id, target.value)
            return response

        logger.info(
            "Leave request %s %s -> %s by %s",
            request_id,
            previous_status.value,
            transition.target.value,
            actor_id,
        )
        await self._after_transition(session, response, transition, actor_id, before, after)
        return response

    async def _after_transition(
        self,
        session: AsyncSession,
        response: LeaveRequestResponse,
        transition: Transition,
        actor_id: uuid.UUID,
        before: dict[str, Any] | None,
        after: dict[str, Any],
    ) -> None:
        """Write the audit entry and notify. Failures are logged, never raised."""
        try:
            await write_audit_log(
                session,
                actor_id=actor_id,
                entity_type=AuditEntityType.LEAVE_REQUEST,
                entity_id=response.id,
                action=transition.audit_action,
                before_json=before,
                after_json=after,
            )
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Failed to write audit entry for leave request %s", response.id)

        event = TransitionEvent(
            request_id=response.id,
            employee_id=response.employee_id,
            actor_id=actor_id,
            leave_type=response.leave_type,
            previous_status=transition.source,
            status=transition.target,
            occurred_at=response.updated_at,
        )
        try:
            await self._notifier.notify(event)
        except Exception:
            logger.exception("Notifier failed for leave request %s", response.id)

    async def _list_active_requests(
        self,
        session: AsyncSession,
        employee_id: uuid.UUID,
        not_ending_before: date,
    ) -> list[LeaveRequest]:
        """Active requests of the employee that end on or after the given date."""
        result = await session.execute(
            select(LeaveRequest)
            .where(
                col(LeaveRequest.employee_id) == employee_id,
                col(LeaveRequest.status).in_(ACTIVE_STATUSES),
                col(LeaveRequest.end_date) >= not_ending_before,
            )
            .order_by(col(LeaveRequest.start_date))
        )
        return list(result.scalars().all())

    # -- read path ----------------------------------------------------------

    async def get_request(self, session: AsyncSession, request_id: uuid.UUID) -> LeaveRequestResponse:
        """Get a single request by ID."""
        return _build_request_response(await _get_request_or_404(session, request_id))

    async def get_audit_trail(self, session: AsyncSession, request_id: uuid.UUID) -> AuditTrailResponse:
        """Return the recorded transitions of a request, oldest first."""
        await _get_request_or_404(session, request_id)
        return await list_audit_trail(session, AuditEntityType.LEAVE_REQUEST, request_id)

    async def list_requests(
        self,
        session: AsyncSession,
        filters: LeaveRequestFilters,
        employee_ids: list[uuid.UUID] | None = None,
    ) -> LeaveRequestListResponse:
        """List requests matching ``filters``, optionally restricted to a set of employees."""
        base_filters = []
        if employee_ids is not None:
            if not employee_ids:
                return LeaveRequestListResponse(items=[], total=0)
            base_filters.append(col(LeaveRequest.employee_id).in_(employee_ids))
        if filters.employee_id is not None:
            base_filters.append(col(LeaveRequest.employee_id) == filters.employee_id)
        if filters.leave_type is not None:
            base_filters.append(col(LeaveRequest.leave_type) == filters.leave_type.value)
        if filters.status is not None:
            base_filters.append(col(LeaveRequest.status) == filters.status.value)
        if filters.start_date_from is not None:
            base_filters.append(col(LeaveRequest.start_date) >= filters.start_date_from)
        if filters.start_date_to is not None:
            base_filters.append(col(LeaveRequest.start_date) <= filters.start_date_to)

        count_result = await session.execute(select(func.count()).select_from(LeaveRequest).where(*base_filters))
        total = count_result.scalar_one()

        sort_column = col(_SORT_COLUMNS[filters.sort_by])
        ordering = sort_column.asc() if filters.sort_order == "asc" else sort_column.desc()
        result = await session.execute(
            select(LeaveRequest)
            .where(*base_filters)
            .order_by(ordering, col(LeaveRequest.id))
            .offset(filters.offset)
            .limit(filters.limit)
        )
        return LeaveRequestListResponse(
            items=[_build_request_response(r) for r in result.scalars().all()],
            total=total,
        )

    async def list_team_requests(
        self,
        session: AsyncSession,
        manager_id: uuid.UUID,
        filters: LeaveRequestFilters,
    ) -> LeaveRequestListResponse:
        """List requests of the manager's direct reports."""
        reports = await self._directory.list_direct_reports(manager_id)
        return await self.list_requests(session, filters, employee_ids=[r.id for r in reports])

    async def get_team_summary(self, session: AsyncSession, manager_id: uuid.UUID) -> TeamLeaveSummary:
        """Pending count, upcoming approved leave and who is off today for a manager's reports."""
        reports = {r.id: r for r in await self._directory.list_direct_reports(manager_id)}
        if not reports:
            return TeamLeaveSummary(pending_requests=0, upcoming_leaves=[], on_leave_today=[])

        report_ids = list(reports)
        today = self._clock.today()
        window_end = today + timedelta(days=get_settings().upcoming_leave_window_days)
        approved = LeaveRequestStatus.APPROVED.value

        pending_result = await session.execute(
            select(func.count())
            .select_from(LeaveRequest)
            .where(
                col(LeaveRequest.employee_id).in_(report_ids),
                col(LeaveRequest.status) == LeaveRequestStatus.PENDING.value,
            )
        )

        upcoming_result = await session.execute(
            select(LeaveRequest)
            .where(
                col(LeaveRequest.employee_id).in_(report_ids),
                col(LeaveRequest.status) == approved,
                col(LeaveRequest.start_date) >= today,
                col(LeaveRequest.start_date) <= window_end,
            )
            .order_by(col(LeaveRequest.start_date))
            .limit(_TEAM_SUMMARY_UPCOMING_LIMIT)
        )

        today_result = await session.execute(
            select(LeaveRequest)
            .where(
                col(LeaveRequest.employee_id).in_(report_ids),
                col(LeaveRequest.status) == approved,
                col(LeaveRequest.start_date) <= today,
                col(LeaveRequest.end_date) >= today,
            )
            .order_by(col(LeaveRequest.end_date))
        )

        return TeamLeaveSummary(
            pending_requests=pending_result.scalar_one(),
            upcoming_leaves=[
                UpcomingLeave(
                    request_id=r.id,
                    employee_id=r.employee_id,
                    employee_name=reports[r.employee_id].full_name,
                    leave_type=LeaveType(r.leave_type),
                    start_date=r.start_date,
                    end_date=r.end_date,
                    total_days=Decimal(r.total_days),
                )
                for r in upcoming_result.scalars().all()
            ],
            on_leave_today=[
                OnLeaveToday(
                    request_id=r.id,
                    employee_id=r.employee_id,
                    employee_name=reports[r.employee_id].full_name,
                    leave_type=LeaveType(r.leave_type),
                    end_date=r.end_date,
                )
                for r in today_result.scalars().all()
            ],
        )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

_request_service: RequestService | None = None


def build_request_service(
    directory: EmployeeDirectory | None = None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
) -> RequestService:
    """Assemble a RequestService from settings and the given collaborators."""
    directory = directory or get_employee_directory()
    ledger = BalanceLedger(directory, lock_timeout_seconds=get_settings().lock_timeout_seconds)
    return RequestService(
        ledger=ledger,
        directory=directory,
        clock=clock or SystemClock(),
        notifier=notifier or LoggingNotifier(),
    )


def get_request_service() -> RequestService:
    """FastAPI dependency for the process-wide RequestService."""
    global _request_service
    if _request_service is None:
        _request_service = build_request_service()
    return _request_service


def set_request_service(service: RequestService | None) -> None:
    """Override the service (for testing or production wiring). None resets it."""
    global _request_service
    _request_service = service
