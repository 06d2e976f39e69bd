"""Legal leave request transitions and the ledger operation each one applies.

    (create) --reserve--> PENDING --commit---> APPROVED
                                  --release--> REJECTED
                                  --release--> CANCELLED

Terminal states never change again. Asking for the state a terminal request
already holds resolves to ``None`` so callers can treat retries as no-ops.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from leave_ledger.exceptions import InvalidStateError
from leave_ledger.models.enums import AuditAction, LeaveRequestStatus, LedgerOperation


class TransitionActor(enum.StrEnum):
    """Who is allowed to drive a transition."""

    OWNER = "OWNER"
    REVIEWER = "REVIEWER"


@dataclass(frozen=True)
class Transition:
    """A single edge of the request state machine."""

    source: LeaveRequestStatus | None
    target: LeaveRequestStatus
    operation: LedgerOperation
    actor: TransitionActor
    audit_action: AuditAction

    @property
    def stamps_reviewer(self) -> bool:
        return self.actor is TransitionActor.REVIEWER


TERMINAL_STATUSES = frozenset(
    {
        LeaveRequestStatus.APPROVED,
        LeaveRequestStatus.REJECTED,
        LeaveRequestStatus.CANCELLED,
    }
)

_TRANSITIONS: dict[tuple[LeaveRequestStatus | None, LeaveRequestStatus], Transition] = {
    (t.source, t.target): t
    for t in (
        Transition(
            None, LeaveRequestStatus.PENDING, LedgerOperation.RESERVE, TransitionActor.OWNER, AuditAction.SUBMIT
        ),
        Transition(
            LeaveRequestStatus.PENDING,
            LeaveRequestStatus.APPROVED,
            LedgerOperation.COMMIT,
            TransitionActor.REVIEWER,
            AuditAction.APPROVE,
        ),
        Transition(
            LeaveRequestStatus.PENDING,
            LeaveRequestStatus.REJECTED,
            LedgerOperation.RELEASE,
            TransitionActor.REVIEWER,
            AuditAction.REJECT,
        ),
        Transition(
            LeaveRequestStatus.PENDING,
            LeaveRequestStatus.CANCELLED,
            LedgerOperation.RELEASE,
            TransitionActor.OWNER,
            AuditAction.CANCEL,
        ),
    )
}


def is_terminal(status: LeaveRequestStatus | str) -> bool:
    return LeaveRequestStatus(status) in TERMINAL_STATUSES


def creation_transition() -> Transition:
    """Return the edge that brings a new request into existence."""
    return _TRANSITIONS[(None, LeaveRequestStatus.PENDING)]


def resolve_transition(current: LeaveRequestStatus | str, target: LeaveRequestStatus) -> Transition | None:
    """Look up the edge from ``current`` to ``target``.

    Returns None when the request already sits in ``target`` as a terminal
    state. Raises InvalidStateError for every other move not in the table.
    """
    current_status = LeaveRequestStatus(current)
    if current_status == target and is_terminal(target):
        return None

    transition = _TRANSITIONS.get((current_status, target))
    if transition is None:
        raise InvalidStateError(
            f"Cannot move leave request from {current_status.value} to {target.value}",
        )
    return transition
