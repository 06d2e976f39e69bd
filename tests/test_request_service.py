"""Service-level tests for the request workflow: submit, approve, reject, cancel,
overlap detection, balance invariants, idempotent retries, concurrency and audit.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import col

from leave_ledger.exceptions import (
    ConflictError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    OverlapError,
    ValidationError,
)
from leave_ledger.models import SQLModel
from leave_ledger.models.audit import AuditLog
from leave_ledger.models.enums import LeaveRequestStatus, LeaveType
from leave_ledger.models.request import LeaveRequest
from leave_ledger.schemas.request import LeaveRequestFilters
from leave_ledger.services import request as request_module
from leave_ledger.services.ledger import BalanceLedger
from leave_ledger.services.request import RequestService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from leave_ledger.schemas.balance import LeaveBalanceResponse
    from leave_ledger.services.clock import FrozenClock
    from leave_ledger.services.employee import InMemoryEmployeeDirectory
    from leave_ledger.services.notifier import RecordingNotifier, TransitionEvent

MANAGER_ID = uuid.UUID("10000000-0000-0000-0000-000000000001")
EMPLOYEE_ID = uuid.UUID("10000000-0000-0000-0000-000000000002")
OTHER_EMPLOYEE_ID = uuid.UUID("10000000-0000-0000-0000-000000000003")
INACTIVE_EMPLOYEE_ID = uuid.UUID("10000000-0000-0000-0000-000000000004")
REVIEWER_ID = uuid.uuid4()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _balance(
    service: RequestService,
    session: AsyncSession,
    employee_id: uuid.UUID = EMPLOYEE_ID,
    leave_type: LeaveType = LeaveType.ANNUAL,
) -> LeaveBalanceResponse:
    return await service.ledger.get_balance(session, employee_id, leave_type)


async def _stored_request(session: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
    result = await session.execute(
        select(LeaveRequest).where(col(LeaveRequest.id) == request_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _audit_actions(session: AsyncSession, request_id: uuid.UUID) -> list[str]:
    result = await session.execute(
        select(AuditLog.action).where(col(AuditLog.entity_id) == request_id).order_by(col(AuditLog.created_at))
    )
    return list(result.scalars().all())


async def _submit(
    service: RequestService,
    session: AsyncSession,
    start: date = date(2025, 3, 3),
    end: date = date(2025, 3, 7),
    days: str | int = 5,
    leave_type: LeaveType = LeaveType.ANNUAL,
    employee_id: uuid.UUID = EMPLOYEE_ID,
) -> uuid.UUID:
    response = await service.submit(session, employee_id, leave_type, start, end, Decimal(days))
    return response.id


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------


async def test_submit_creates_pending_request_and_reserves(
    db_session: AsyncSession, service: RequestService, notifier: RecordingNotifier
) -> None:
    response = await service.submit(
        db_session, EMPLOYEE_ID, LeaveType.ANNUAL, date(2025, 3, 3), date(2025, 3, 7), Decimal(5), "Trip"
    )

    assert response.status is LeaveRequestStatus.PENDING
    assert response.total_days == Decimal(5)
    assert response.reason == "Trip"
    assert response.reviewer_id is None

    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal(5)
    assert balance.used_days == Decimal(5)
    assert balance.available_days == Decimal(10)

    assert await _audit_actions(db_session, response.id) == ["SUBMIT"]
    assert len(notifier.events) == 1
    assert notifier.events[0].previous_status is None
    assert notifier.events[0].status is LeaveRequestStatus.PENDING


async def test_submit_single_day_and_fractional_days(db_session: AsyncSession, service: RequestService) -> None:
    await _submit(service, db_session, date(2025, 1, 1), date(2025, 1, 1), days="0.5")
    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal("0.5")


async def test_submit_exactly_available_succeeds(db_session: AsyncSession, service: RequestService) -> None:
    await _submit(service, db_session, date(2025, 3, 3), date(2025, 3, 21), days=15)
    balance = await _balance(service, db_session)
    assert balance.available_days == Decimal(0)


async def test_submit_insufficient_balance_leaves_no_trace(
    db_session: AsyncSession, service: RequestService, notifier: RecordingNotifier
) -> None:
    with pytest.raises(InsufficientBalanceError):
        await _submit(service, db_session, date(2025, 3, 3), date(2025, 3, 24), days=16)

    count = await db_session.execute(select(LeaveRequest))
    assert count.scalars().all() == []
    assert notifier.events == []


async def test_submit_past_start_date_rejected(db_session: AsyncSession, service: RequestService) -> None:
    with pytest.raises(ValidationError, match="past dates"):
        await _submit(service, db_session, date(2024, 12, 31), date(2025, 1, 2), days=2)


async def test_submit_end_before_start_rejected(db_session: AsyncSession, service: RequestService) -> None:
    with pytest.raises(ValidationError):
        await _submit(service, db_session, date(2025, 3, 7), date(2025, 3, 3), days=2)


@pytest.mark.parametrize("days", ["0", "-1", "1000", "1.005", "NaN"])
async def test_submit_invalid_amount_rejected(
    db_session: AsyncSession, service: RequestService, days: str
) -> None:
    with pytest.raises(ValidationError):
        await service.submit(db_session, EMPLOYEE_ID, LeaveType.ANNUAL, date(2025, 3, 3), date(2025, 3, 7), days)


async def test_submit_unknown_leave_type_rejected(db_session: AsyncSession, service: RequestService) -> None:
    with pytest.raises(ValidationError, match="Unknown leave type"):
        await service.submit(db_session, EMPLOYEE_ID, "SABBATICAL", date(2025, 3, 3), date(2025, 3, 7), 5)


async def test_submit_unknown_or_inactive_employee(db_session: AsyncSession, service: RequestService) -> None:
    with pytest.raises(NotFoundError):
        await _submit(service, db_session, employee_id=uuid.uuid4())
    with pytest.raises(NotFoundError):
        await _submit(service, db_session, employee_id=INACTIVE_EMPLOYEE_ID)


async def test_submit_without_entitlement_raises_not_found(
    db_session: AsyncSession, service: RequestService
) -> None:
    with pytest.raises(NotFoundError):
        await _submit(service, db_session, leave_type=LeaveType.MATERNITY)


# ---------------------------------------------------------------------------
# Overlap
# ---------------------------------------------------------------------------


async def test_overlap_with_pending_request_rejected(db_session: AsyncSession, service: RequestService) -> None:
    await _submit(service, db_session, date(2025, 3, 3), date(2025, 3, 7))

    with pytest.raises(OverlapError):
        await _submit(service, db_session, date(2025, 3, 7), date(2025, 3, 10), days=2)

    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal(5)


async def test_overlap_checked_across_leave_types(db_session: AsyncSession, service: RequestService) -> None:
    await _submit(service, db_session, date(2025, 3, 3), date(2025, 3, 7))
    with pytest.raises(OverlapError):
        await _submit(service, db_session, date(2025, 3, 5), date(2025, 3, 5), days=1, leave_type=LeaveType.SICK)


async def test_overlap_with_approved_request_rejected(db_session: AsyncSession, service: RequestService) -> None:
    request_id = await _submit(service, db_session)
    await service.approve(db_session, request_id, REVIEWER_ID)
    with pytest.raises(OverlapError):
        await _submit(service, db_session, date(2025, 3, 1), date(2025, 3, 3), days=1)


@pytest.mark.parametrize("action", ["reject", "cancel"])
async def test_closed_request_frees_its_range(
    db_session: AsyncSession, service: RequestService, action: str
) -> None:
    request_id = await _submit(service, db_session)
    if action == "reject":
        await service.reject(db_session, request_id, REVIEWER_ID)
    else:
        await service.cancel(db_session, request_id, EMPLOYEE_ID)

    again = await _submit(service, db_session)
    assert again != request_id


async def test_adjacent_ranges_do_not_overlap(db_session: AsyncSession, service: RequestService) -> None:
    await _submit(service, db_session, date(2025, 3, 3), date(2025, 3, 7))
    await _submit(service, db_session, date(2025, 3, 8), date(2025, 3, 9), days=2)


async def test_other_employee_does_not_overlap(db_session: AsyncSession, service: RequestService) -> None:
    await _submit(service, db_session)
    await _submit(service, db_session, employee_id=OTHER_EMPLOYEE_ID)


# ---------------------------------------------------------------------------
# Approve / reject / cancel
# ---------------------------------------------------------------------------


async def test_approve_commits_pending_days(
    db_session: AsyncSession, service: RequestService, clock: FrozenClock, notifier: RecordingNotifier
) -> None:
    request_id = await _submit(service, db_session)
    response = await service.approve(db_session, request_id, REVIEWER_ID, "Enjoy")

    assert response.status is LeaveRequestStatus.APPROVED
    assert response.reviewer_id == REVIEWER_ID
    assert response.reviewer_comments == "Enjoy"
    assert response.reviewed_at == clock.now()

    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal(0)
    assert balance.used_days == Decimal(10)
    assert balance.available_days == Decimal(10)

    assert await _audit_actions(db_session, request_id) == ["SUBMIT", "APPROVE"]
    event: TransitionEvent = notifier.events[-1]
    assert event.previous_status is LeaveRequestStatus.PENDING
    assert event.status is LeaveRequestStatus.APPROVED
    assert event.actor_id == REVIEWER_ID


async def test_reject_releases_pending_days(db_session: AsyncSession, service: RequestService) -> None:
    request_id = await _submit(service, db_session)
    response = await service.reject(db_session, request_id, REVIEWER_ID, "Busy week")

    assert response.status is LeaveRequestStatus.REJECTED
    assert response.reviewer_comments == "Busy week"
    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal(0)
    assert balance.used_days == Decimal(5)
    assert balance.available_days == Decimal(15)


async def test_cancel_releases_pending_days(db_session: AsyncSession, service: RequestService) -> None:
    request_id = await _submit(service, db_session)
    response = await service.cancel(db_session, request_id, EMPLOYEE_ID)

    assert response.status is LeaveRequestStatus.CANCELLED
    assert response.reviewer_id is None
    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal(0)
    assert balance.available_days == Decimal(15)
    assert await _audit_actions(db_session, request_id) == ["SUBMIT", "CANCEL"]


async def test_cancel_by_other_employee_forbidden(db_session: AsyncSession, service: RequestService) -> None:
    request_id = await _submit(service, db_session)
    with pytest.raises(ForbiddenError):
        await service.cancel(db_session, request_id, OTHER_EMPLOYEE_ID)

    stored = await _stored_request(db_session, request_id)
    assert stored.status == LeaveRequestStatus.PENDING


async def test_unknown_request_raises_not_found(db_session: AsyncSession, service: RequestService) -> None:
    with pytest.raises(NotFoundError):
        await service.approve(db_session, uuid.uuid4(), REVIEWER_ID)
    with pytest.raises(NotFoundError):
        await service.cancel(db_session, uuid.uuid4(), EMPLOYEE_ID)
    with pytest.raises(NotFoundError):
        await service.get_request(db_session, uuid.uuid4())


# ---------------------------------------------------------------------------
# Idempotency and illegal transitions
# ---------------------------------------------------------------------------


async def test_approve_twice_is_noop(
    db_session: AsyncSession, service: RequestService, notifier: RecordingNotifier
) -> None:
    request_id = await _submit(service, db_session)
    await service.approve(db_session, request_id, REVIEWER_ID, "First")
    second = await service.approve(db_session, request_id, uuid.uuid4(), "Second")

    assert second.status is LeaveRequestStatus.APPROVED
    assert second.reviewer_id == REVIEWER_ID
    assert second.reviewer_comments == "First"
    balance = await _balance(service, db_session)
    assert balance.used_days == Decimal(10)
    assert balance.pending_days == Decimal(0)
    assert await _audit_actions(db_session, request_id) == ["SUBMIT", "APPROVE"]
    assert len(notifier.events) == 2


async def test_reject_and_cancel_twice_are_noops(db_session: AsyncSession, service: RequestService) -> None:
    rejected = await _submit(service, db_session)
    await service.reject(db_session, rejected, REVIEWER_ID)
    await service.reject(db_session, rejected, REVIEWER_ID)

    cancelled = await _submit(service, db_session, date(2025, 4, 7), date(2025, 4, 11))
    await service.cancel(db_session, cancelled, EMPLOYEE_ID)
    await service.cancel(db_session, cancelled, EMPLOYEE_ID)

    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal(0)
    assert balance.available_days == Decimal(15)


@pytest.mark.parametrize(
    ("first", "second"),
    [
        ("approve", "reject"),
        ("approve", "cancel"),
        ("reject", "approve"),
        ("reject", "cancel"),
        ("cancel", "approve"),
        ("cancel", "reject"),
    ],
)
async def test_terminal_state_cannot_change(
    db_session: AsyncSession, service: RequestService, first: str, second: str
) -> None:
    request_id = await _submit(service, db_session)

    async def _do(action: str) -> None:
        if action == "approve":
            await service.approve(db_session, request_id, REVIEWER_ID)
        elif action == "reject":
            await service.reject(db_session, request_id, REVIEWER_ID)
        else:
            await service.cancel(db_session, request_id, EMPLOYEE_ID)

    await _do(first)
    balance_before = await _balance(service, db_session)

    with pytest.raises(InvalidStateError):
        await _do(second)

    balance_after = await _balance(service, db_session)
    assert balance_after.used_days == balance_before.used_days
    assert balance_after.pending_days == balance_before.pending_days


# ---------------------------------------------------------------------------
# Balance invariant across mixed operations
# ---------------------------------------------------------------------------


async def test_pending_equals_sum_of_pending_requests(db_session: AsyncSession, service: RequestService) -> None:
    a = await _submit(service, db_session, date(2025, 2, 3), date(2025, 2, 4), days=2)
    b = await _submit(service, db_session, date(2025, 2, 10), date(2025, 2, 12), days=3)
    c = await _submit(service, db_session, date(2025, 2, 17), date(2025, 2, 20), days=4)
    await _submit(service, db_session, date(2025, 2, 24), date(2025, 2, 24), days=1)

    await service.approve(db_session, a, REVIEWER_ID)
    await service.reject(db_session, b, REVIEWER_ID)
    await service.cancel(db_session, c, EMPLOYEE_ID)

    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal(1)
    assert balance.used_days == Decimal(7)
    assert balance.used_days + balance.pending_days <= balance.total_days + balance.carry_forward_days


async def test_carry_forward_counts_towards_available(db_session: AsyncSession, service: RequestService) -> None:
    await _submit(service, db_session, date(2025, 3, 3), date(2025, 3, 5), days=3, leave_type=LeaveType.PERSONAL)
    balance = await _balance(service, db_session, leave_type=LeaveType.PERSONAL)
    assert balance.available_days == Decimal(0)

    with pytest.raises(InsufficientBalanceError):
        await _submit(service, db_session, date(2025, 3, 10), date(2025, 3, 10), days=1, leave_type=LeaveType.PERSONAL)


# ---------------------------------------------------------------------------
# Audit and notifier failures never undo a committed transition
# ---------------------------------------------------------------------------


async def test_audit_failure_does_not_roll_back(
    db_session: AsyncSession, service: RequestService, monkeypatch: pytest.MonkeyPatch
) -> None:
    request_id = await _submit(service, db_session)

    async def _broken_audit(*args: object, **kwargs: object) -> None:
        raise SQLAlchemyError("audit store down")

    monkeypatch.setattr(request_module, "write_audit_log", _broken_audit)
    response = await service.approve(db_session, request_id, REVIEWER_ID)

    assert response.status is LeaveRequestStatus.APPROVED
    stored = await _stored_request(db_session, request_id)
    assert stored.status == LeaveRequestStatus.APPROVED
    balance = await _balance(service, db_session)
    assert balance.used_days == Decimal(10)


async def test_notifier_failure_does_not_roll_back(
    db_session: AsyncSession, service: RequestService, notifier: RecordingNotifier, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def _broken_notify(event: TransitionEvent) -> None:
        raise RuntimeError("mail server down")

    monkeypatch.setattr(notifier, "notify", _broken_notify)
    response = await service.submit(db_session, EMPLOYEE_ID, LeaveType.ANNUAL, date(2025, 3, 3), date(2025, 3, 7), 5)

    stored = await _stored_request(db_session, response.id)
    assert stored.status == LeaveRequestStatus.PENDING
    assert await _audit_actions(db_session, response.id) == ["SUBMIT"]


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.fixture
async def file_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite so concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


async def test_concurrent_submits_cannot_overdraw(
    file_engine: AsyncEngine, service: RequestService
) -> None:
    async def _attempt(start: date, end: date, days: int) -> object:
        async with AsyncSession(file_engine, expire_on_commit=False) as session:
            try:
                return await service.submit(session, EMPLOYEE_ID, LeaveType.ANNUAL, start, end, days)
            except InsufficientBalanceError as exc:
                return exc

    results = await asyncio.gather(
        _attempt(date(2025, 3, 3), date(2025, 3, 14), 10),
        _attempt(date(2025, 4, 7), date(2025, 4, 14), 6),
    )

    failures = [r for r in results if isinstance(r, InsufficientBalanceError)]
    assert len(failures) == 1

    async with AsyncSession(file_engine) as session:
        balance = await _balance(service, session)
    assert balance.used_days + balance.pending_days <= balance.total_days + balance.carry_forward_days
    assert balance.pending_days in (Decimal(10), Decimal(6))


async def test_concurrent_overlapping_submits_admit_one(
    file_engine: AsyncEngine, service: RequestService
) -> None:
    async def _attempt(leave_type: LeaveType) -> object:
        async with AsyncSession(file_engine, expire_on_commit=False) as session:
            try:
                return await service.submit(
                    session, EMPLOYEE_ID, leave_type, date(2025, 3, 3), date(2025, 3, 4), 2
                )
            except OverlapError as exc:
                return exc

    results = await asyncio.gather(_attempt(LeaveType.ANNUAL), _attempt(LeaveType.SICK))
    assert sum(isinstance(r, OverlapError) for r in results) == 1


async def test_concurrent_approvals_apply_once(file_engine: AsyncEngine, service: RequestService) -> None:
    async with AsyncSession(file_engine, expire_on_commit=False) as session:
        request_id = await _submit(service, session)

    async def _approve() -> object:
        async with AsyncSession(file_engine, expire_on_commit=False) as session:
            return await service.approve(session, request_id, REVIEWER_ID)

    await asyncio.gather(_approve(), _approve(), _approve())

    async with AsyncSession(file_engine) as session:
        balance = await _balance(service, session)
        actions = await _audit_actions(session, request_id)
    assert balance.used_days == Decimal(10)
    assert balance.pending_days == Decimal(0)
    assert actions == ["SUBMIT", "APPROVE"]


async def test_lock_timeout_surfaces_conflict(
    db_session: AsyncSession, directory: InMemoryEmployeeDirectory, clock: FrozenClock, notifier: RecordingNotifier
) -> None:
    svc = RequestService(
        ledger=BalanceLedger(directory, lock_timeout_seconds=0.05),
        directory=directory,
        clock=clock,
        notifier=notifier,
    )
    async with svc.ledger.lock(EMPLOYEE_ID, LeaveType.ANNUAL):
        with pytest.raises(ConflictError):
            await _submit(svc, db_session)

    await _submit(svc, db_session)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def test_list_requests_filters_and_sorts(db_session: AsyncSession, service: RequestService) -> None:
    a = await _submit(service, db_session, date(2025, 3, 3), date(2025, 3, 4), days=2)
    await _submit(service, db_session, date(2025, 2, 3), date(2025, 2, 3), days=1, leave_type=LeaveType.SICK)
    await _submit(service, db_session, date(2025, 4, 1), date(2025, 4, 3), days=3, employee_id=OTHER_EMPLOYEE_ID)
    await service.approve(db_session, a, REVIEWER_ID)

    everything = await service.list_requests(
        db_session, LeaveRequestFilters(sort_by="start_date", sort_order="asc")
    )
    assert everything.total == 3
    assert [r.start_date for r in everything.items] == [date(2025, 2, 3), date(2025, 3, 3), date(2025, 4, 1)]

    mine = await service.list_requests(db_session, LeaveRequestFilters(employee_id=EMPLOYEE_ID))
    assert mine.total == 2

    approved = await service.list_requests(db_session, LeaveRequestFilters(status=LeaveRequestStatus.APPROVED))
    assert [r.id for r in approved.items] == [a]

    sick = await service.list_requests(db_session, LeaveRequestFilters(leave_type=LeaveType.SICK))
    assert sick.total == 1

    window = await service.list_requests(
        db_session, LeaveRequestFilters(start_date_from=date(2025, 3, 1), start_date_to=date(2025, 3, 31))
    )
    assert [r.id for r in window.items] == [a]

    page = await service.list_requests(
        db_session, LeaveRequestFilters(sort_by="total_days", sort_order="desc", offset=1, limit=1)
    )
    assert page.total == 3
    assert [r.total_days for r in page.items] == [Decimal(2)]


async def test_team_requests_limited_to_direct_reports(db_session: AsyncSession, service: RequestService) -> None:
    await _submit(service, db_session)
    await _submit(service, db_session, employee_id=OTHER_EMPLOYEE_ID)
    await _submit(service, db_session, employee_id=MANAGER_ID)

    team = await service.list_team_requests(db_session, MANAGER_ID, LeaveRequestFilters())
    assert team.total == 2
    assert {r.employee_id for r in team.items} == {EMPLOYEE_ID, OTHER_EMPLOYEE_ID}

    nobody = await service.list_team_requests(db_session, EMPLOYEE_ID, LeaveRequestFilters())
    assert nobody.total == 0


async def test_team_summary(
    db_session: AsyncSession, service: RequestService, clock: FrozenClock
) -> None:
    today_leave = await _submit(service, db_session, date(2025, 1, 1), date(2025, 1, 2), days=2)
    upcoming = await _submit(service, db_session, date(2025, 1, 15), date(2025, 1, 17), days=3)
    await _submit(service, db_session, date(2025, 6, 2), date(2025, 6, 3), days=2)
    await _submit(service, db_session, employee_id=OTHER_EMPLOYEE_ID)
    await service.approve(db_session, today_leave, REVIEWER_ID)
    await service.approve(db_session, upcoming, REVIEWER_ID)

    summary = await service.get_team_summary(db_session, MANAGER_ID)
    assert summary.pending_requests == 2
    assert [u.request_id for u in summary.upcoming_leaves] == [today_leave, upcoming]
    assert summary.upcoming_leaves[0].employee_name == "Alice Johnson"
    assert [o.request_id for o in summary.on_leave_today] == [today_leave]

    empty = await service.get_team_summary(db_session, OTHER_EMPLOYEE_ID)
    assert empty.pending_requests == 0
    assert empty.upcoming_leaves == []
    assert empty.on_leave_today == []


async def test_audit_crash_of_any_kind_does_not_surface(
    db_session: AsyncSession, service: RequestService, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def _crashing_audit(*args: object, **kwargs: object) -> None:
        raise RuntimeError("serializer bug")

    monkeypatch.setattr(request_module, "write_audit_log", _crashing_audit)
    response = await service.submit(db_session, EMPLOYEE_ID, LeaveType.ANNUAL, date(2025, 3, 3), date(2025, 3, 7), 5)

    stored = await _stored_request(db_session, response.id)
    assert stored.status == LeaveRequestStatus.PENDING
    assert await _audit_actions(db_session, response.id) == []
    balance = await _balance(service, db_session)
    assert balance.pending_days == Decimal(5)


# ---------------------------------------------------------------------------
# Separate workers sharing one database
# ---------------------------------------------------------------------------


def _worker(directory: InMemoryEmployeeDirectory, clock: FrozenClock, notifier: RecordingNotifier) -> RequestService:
    """A service with its own in-process locks, as another worker process would have."""
    return RequestService(
        ledger=BalanceLedger(directory, lock_timeout_seconds=1.0),
        directory=directory,
        clock=clock,
        notifier=notifier,
    )


async def test_workers_cannot_book_overlapping_leave(
    file_engine: AsyncEngine,
    directory: InMemoryEmployeeDirectory,
    clock: FrozenClock,
    notifier: RecordingNotifier,
) -> None:
    workers = [_worker(directory, clock, notifier), _worker(directory, clock, notifier)]

    async def _attempt(worker: RequestService, leave_type: LeaveType) -> object:
        async with AsyncSession(file_engine, expire_on_commit=False) as session:
            try:
                return await worker.submit(session, EMPLOYEE_ID, leave_type, date(2025, 3, 3), date(2025, 3, 4), 2)
            except OverlapError as exc:
                return exc

    results = await asyncio.gather(
        _attempt(workers[0], LeaveType.ANNUAL),
        _attempt(workers[1], LeaveType.SICK),
    )
    assert sum(isinstance(r, OverlapError) for r in results) == 1

    async with AsyncSession(file_engine) as session:
        rows = await session.execute(
            select(LeaveRequest).where(col(LeaveRequest.status) == LeaveRequestStatus.PENDING.value)
        )
        assert len(rows.scalars().all()) == 1


async def test_workers_cannot_overdraw(
    file_engine: AsyncEngine,
    directory: InMemoryEmployeeDirectory,
    clock: FrozenClock,
    notifier: RecordingNotifier,
) -> None:
    workers = [_worker(directory, clock, notifier), _worker(directory, clock, notifier)]

    async def _attempt(worker: RequestService, start: date, end: date, days: int) -> object:
        async with AsyncSession(file_engine, expire_on_commit=False) as session:
            try:
                return await worker.submit(session, EMPLOYEE_ID, LeaveType.ANNUAL, start, end, days)
            except InsufficientBalanceError as exc:
                return exc

    results = await asyncio.gather(
        _attempt(workers[0], date(2025, 3, 3), date(2025, 3, 14), 10),
        _attempt(workers[1], date(2025, 4, 7), date(2025, 4, 14), 6),
    )
    assert sum(isinstance(r, InsufficientBalanceError) for r in results) == 1

    async with AsyncSession(file_engine) as session:
        balance = await _balance(workers[0], session)
    assert balance.used_days + balance.pending_days <= balance.total_days + balance.carry_forward_days


async def test_workers_approving_same_request_apply_once(
    file_engine: AsyncEngine,
    directory: InMemoryEmployeeDirectory,
    clock: FrozenClock,
    notifier: RecordingNotifier,
) -> None:
    workers = [_worker(directory, clock, notifier) for _ in range(3)]
    async with AsyncSession(file_engine, expire_on_commit=False) as session:
        request_id = await _submit(workers[0], session)

    async def _approve(worker: RequestService) -> object:
        async with AsyncSession(file_engine, expire_on_commit=False) as session:
            return await worker.approve(session, request_id, REVIEWER_ID)

    await asyncio.gather(*(_approve(w) for w in workers))

    async with AsyncSession(file_engine) as session:
        balance = await _balance(workers[0], session)
        actions = await _audit_actions(session, request_id)
    assert balance.used_days == Decimal(10)
    assert balance.pending_days == Decimal(0)
    assert actions == ["SUBMIT", "APPROVE"]
