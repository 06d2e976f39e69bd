"""Seed script for development data.

The API seeds :data:`DEMO_EMPLOYEES` into the in-memory directory on startup
when ``SEED_DEMO_DIRECTORY`` is enabled. This script then drives the running
API to create a realistic mix of requests.

Run with:  python -m leave_ledger.seed
"""

from __future__ import annotations

import asyncio
import sys
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import httpx

from leave_ledger.models.enums import LeaveType
from leave_ledger.services.employee import BalanceSeed, EmployeeInfo, InMemoryEmployeeDirectory

BASE_URL = "http://localhost:8000"

# Well-known UUIDs
MANAGER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
ALICE_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
BOB_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")
CAROL_ID = uuid.UUID("00000000-0000-0000-0000-000000000004")

_STANDARD_BALANCES = [
    BalanceSeed(leave_type=LeaveType.ANNUAL, total_days=Decimal(20), carry_forward_days=Decimal(3)),
    BalanceSeed(leave_type=LeaveType.SICK, total_days=Decimal(10)),
    BalanceSeed(leave_type=LeaveType.PERSONAL, total_days=Decimal(3)),
]

DEMO_EMPLOYEES: list[tuple[EmployeeInfo, list[BalanceSeed]]] = [
    (
        EmployeeInfo(
            id=MANAGER_ID,
            first_name="Morgan",
            last_name="Lee",
            email="morgan.lee@example.com",
            department="Engineering",
        ),
        _STANDARD_BALANCES,
    ),
    (
        EmployeeInfo(
            id=ALICE_ID,
            first_name="Alice",
            last_name="Johnson",
            email="alice.johnson@example.com",
            manager_id=MANAGER_ID,
            department="Engineering",
        ),
        _STANDARD_BALANCES,
    ),
    (
        EmployeeInfo(
            id=BOB_ID,
            first_name="Bob",
            last_name="Smith",
            email="bob.smith@example.com",
            manager_id=MANAGER_ID,
            department="Engineering",
        ),
        [
            BalanceSeed(leave_type=LeaveType.ANNUAL, total_days=Decimal(15), used_days=Decimal(5)),
            BalanceSeed(leave_type=LeaveType.SICK, total_days=Decimal(10)),
        ],
    ),
    (
        EmployeeInfo(
            id=CAROL_ID,
            first_name="Carol",
            last_name="Williams",
            email="carol.williams@example.com",
            manager_id=MANAGER_ID,
            department="Support",
        ),
        [BalanceSeed(leave_type=LeaveType.ANNUAL, total_days=Decimal(25))],
    ),
]


def seed_demo_directory(directory: InMemoryEmployeeDirectory) -> None:
    """Load the demo employees and their entitlements into a directory."""
    for employee, balances in DEMO_EMPLOYEES:
        directory.seed(employee, balances)


def _headers(user_id: uuid.UUID, role: str = "employee") -> dict[str, str]:
    return {"Content-Type": "application/json", "X-User-Id": str(user_id), "X-Role": role}


def _next_weekday(start: date, days_ahead: int) -> date:
    """Return the weekday at least ``days_ahead`` days after ``start``."""
    candidate = start + timedelta(days=days_ahead)
    while candidate.weekday() >= 5:
        candidate += timedelta(days=1)
    return candidate


async def _submit(
    client: httpx.AsyncClient,
    employee_id: uuid.UUID,
    leave_type: LeaveType,
    start: date,
    days: int,
    reason: str,
) -> dict[str, Any] | None:
    end = start + timedelta(days=days - 1)
    resp = await client.post(
        "/leave-requests",
        json={
            "leave_type": leave_type.value,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "total_days": str(days),
            "reason": reason,
        },
        headers=_headers(employee_id),
    )
    if resp.status_code >= 400:
        print(f"  SKIP {reason}: {resp.status_code} {resp.text}")
        return None
    data: dict[str, Any] = resp.json()
    print(f"  Submitted {reason} ({data['id']})")
    return data


async def seed_requests(client: httpx.AsyncClient) -> None:
    """Create pending, approved, rejected and cancelled requests."""
    today = date.today()
    reviewer = _headers(MANAGER_ID, role="manager")

    alice_trip = await _submit(client, ALICE_ID, LeaveType.ANNUAL, _next_weekday(today, 14), 5, "Alice summer trip")
    if alice_trip is not None:
        await client.post(
            f"/leave-requests/{alice_trip['id']}/approve",
            json={"comments": "Enjoy"},
            headers=reviewer,
        )
        print("  Approved Alice summer trip")

    await _submit(client, ALICE_ID, LeaveType.PERSONAL, _next_weekday(today, 40), 1, "Alice moving day")

    bob_long = await _submit(client, BOB_ID, LeaveType.ANNUAL, _next_weekday(today, 21), 8, "Bob long break")
    if bob_long is not None:
        await client.post(
            f"/leave-requests/{bob_long['id']}/reject",
            json={"comments": "Release week, please pick other dates"},
            headers=reviewer,
        )
        print("  Rejected Bob long break")

    carol_day = await _submit(client, CAROL_ID, LeaveType.ANNUAL, _next_weekday(today, 7), 1, "Carol errand")
    if carol_day is not None:
        await client.post(f"/leave-requests/{carol_day['id']}/cancel", headers=_headers(CAROL_ID))
        print("  Cancelled Carol errand")


async def main() -> None:
    """Run the seed sequence against the running API."""
    async with httpx.AsyncClient(base_url=BASE_URL, timeout=10.0) as client:
        try:
            resp = await client.get("/health")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            print(f"API not reachable at {BASE_URL}: {exc}")
            sys.exit(1)

        print("Seeding leave requests...")
        await seed_requests(client)
        print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
