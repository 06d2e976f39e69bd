from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeVar

from leave_ledger.models.enums import LeaveRequestStatus

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

ACTIVE_STATUSES = frozenset({LeaveRequestStatus.PENDING.value, LeaveRequestStatus.APPROVED.value})


class DatedRequest(Protocol):
    """Anything carrying an inclusive date range and a lifecycle status."""

    @property
    def start_date(self) -> date: ...

    @property
    def end_date(self) -> date: ...

    @property
    def status(self) -> str: ...


RequestT = TypeVar("RequestT", bound=DatedRequest)


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """Return True when two inclusive date ranges share at least one calendar day."""
    return start_a <= end_b and end_a >= start_b


def find_overlapping_request(
    existing: Iterable[RequestT],
    start_date: date,
    end_date: date,
) -> RequestT | None:
    """Return the first active request whose range touches [start_date, end_date].

    Ranges are inclusive on both ends, so a request ending on the day another
    starts is a conflict. Rejected and cancelled requests are ignored.
    """
    for request in existing:
        if request.status not in ACTIVE_STATUSES:
            continue
        if ranges_overlap(request.start_date, request.end_date, start_date, end_date):
            return request
    return None
