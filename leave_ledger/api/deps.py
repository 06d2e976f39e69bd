# ruff: noqa: B008, TC003
from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, Header

from leave_ledger.config import get_settings
from leave_ledger.exceptions import ForbiddenError
from leave_ledger.schemas.auth import AuthContext
from leave_ledger.services.request import RequestService, get_request_service


async def get_auth_context(
    x_user_id: uuid.UUID = Header(),
    x_role: str = Header(default="employee"),
) -> AuthContext:
    """Extract dev auth context from request headers."""
    return AuthContext(user_id=x_user_id, role=x_role)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


def is_reviewer(auth: AuthContext) -> bool:
    """True when the caller's role may review and read other employees' leave."""
    return auth.role in get_settings().reviewer_roles


async def require_reviewer(
    auth: AuthDep,
) -> AuthContext:
    """Require a role allowed to approve and reject leave."""
    if not is_reviewer(auth):
        raise ForbiddenError("Reviewer access required")
    return auth


ReviewerDep = Annotated[AuthContext, Depends(require_reviewer)]

RequestServiceDep = Annotated[RequestService, Depends(get_request_service)]
