# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from leave_ledger.models.enums import AuditAction


class AuditEntryResponse(BaseModel):
    """One recorded transition of a leave request."""

    id: uuid.UUID
    actor_id: uuid.UUID
    action: AuditAction
    before_json: dict[str, Any] | None
    after_json: dict[str, Any] | None
    created_at: datetime


class AuditTrailResponse(BaseModel):
    """Chronological audit trail of a single leave request."""

    entity_id: uuid.UUID
    items: list[AuditEntryResponse]
