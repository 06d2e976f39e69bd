# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from leave_ledger.models.enums import LeaveRequestStatus, LeaveType

logger = logging.getLogger(__name__)


class TransitionEvent(BaseModel):
    """A committed leave request transition, as handed to notifiers."""

    request_id: uuid.UUID
    employee_id: uuid.UUID
    actor_id: uuid.UUID
    leave_type: LeaveType
    previous_status: LeaveRequestStatus | None
    status: LeaveRequestStatus
    occurred_at: datetime


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget sink for transition events (email, chat, webhooks)."""

    async def notify(self, event: TransitionEvent) -> None: ...


class LoggingNotifier:
    """Default notifier that only writes the event to the application log."""

    async def notify(self, event: TransitionEvent) -> None:
        logger.info(
            "Leave request %s for employee %s: %s -> %s by %s",
            event.request_id,
            event.employee_id,
            event.previous_status.value if event.previous_status else "NEW",
            event.status.value,
            event.actor_id,
        )


class RecordingNotifier:
    """Notifier that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[TransitionEvent] = []

    async def notify(self, event: TransitionEvent) -> None:
        self.events.append(event)
