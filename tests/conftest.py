from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

# Point settings at SQLite before the app is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from leave_ledger.db import get_session
from leave_ledger.main import app
from leave_ledger.models import SQLModel
from leave_ledger.models.enums import LeaveType
from leave_ledger.services.clock import FrozenClock
from leave_ledger.services.employee import (
    BalanceSeed,
    EmployeeInfo,
    InMemoryEmployeeDirectory,
    get_employee_directory,
    set_employee_directory,
)
from leave_ledger.services.ledger import BalanceLedger
from leave_ledger.services.notifier import RecordingNotifier
from leave_ledger.services.request import RequestService, set_request_service

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine

MANAGER_ID = uuid.UUID("10000000-0000-0000-0000-000000000001")
EMPLOYEE_ID = uuid.UUID("10000000-0000-0000-0000-000000000002")
OTHER_EMPLOYEE_ID = uuid.UUID("10000000-0000-0000-0000-000000000003")
INACTIVE_EMPLOYEE_ID = uuid.UUID("10000000-0000-0000-0000-000000000004")

# 2025-01-01 is a Wednesday.
TODAY = datetime(2025, 1, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """Fresh in-memory SQLite database per test."""
    _engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    await _engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Yield a session bound to the per-test database.

    The service commits its own transactions, so isolation comes from the
    throwaway engine rather than an outer rollback.
    """
    session = AsyncSession(engine, expire_on_commit=False)
    yield session
    await session.close()


@pytest.fixture
def directory() -> Iterator[InMemoryEmployeeDirectory]:
    """Directory with a manager, two reports and an inactive employee."""
    directory = InMemoryEmployeeDirectory()
    directory.seed(
        EmployeeInfo(id=MANAGER_ID, first_name="Morgan", last_name="Lee", email="morgan@example.com"),
        [BalanceSeed(leave_type=LeaveType.ANNUAL, total_days=Decimal(20))],
    )
    directory.seed(
        EmployeeInfo(
            id=EMPLOYEE_ID,
            first_name="Alice",
            last_name="Johnson",
            email="alice@example.com",
            manager_id=MANAGER_ID,
        ),
        [
            BalanceSeed(leave_type=LeaveType.ANNUAL, total_days=Decimal(20), used_days=Decimal(5)),
            BalanceSeed(leave_type=LeaveType.SICK, total_days=Decimal(10)),
            BalanceSeed(leave_type=LeaveType.PERSONAL, total_days=Decimal(2), carry_forward_days=Decimal(1)),
        ],
    )
    directory.seed(
        EmployeeInfo(
            id=OTHER_EMPLOYEE_ID,
            first_name="Bob",
            last_name="Smith",
            email="bob@example.com",
            manager_id=MANAGER_ID,
        ),
        [BalanceSeed(leave_type=LeaveType.ANNUAL, total_days=Decimal(15))],
    )
    directory.seed(
        EmployeeInfo(
            id=INACTIVE_EMPLOYEE_ID,
            first_name="Former",
            last_name="Employee",
            email="former@example.com",
            is_active=False,
            manager_id=MANAGER_ID,
        ),
        [BalanceSeed(leave_type=LeaveType.ANNUAL, total_days=Decimal(20))],
    )
    previous = get_employee_directory()
    set_employee_directory(directory)
    yield directory
    set_employee_directory(previous)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(TODAY)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(
    directory: InMemoryEmployeeDirectory,
    clock: FrozenClock,
    notifier: RecordingNotifier,
) -> Iterator[RequestService]:
    """RequestService wired to test collaborators and installed for the API."""
    svc = RequestService(
        ledger=BalanceLedger(directory, lock_timeout_seconds=1.0),
        directory=directory,
        clock=clock,
        notifier=notifier,
    )
    set_request_service(svc)
    yield svc
    set_request_service(None)


@pytest.fixture
async def async_client(db_session: AsyncSession, service: RequestService) -> AsyncIterator[AsyncClient]:
    """Async HTTP client with the database session dependency overridden."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_session] = _override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
