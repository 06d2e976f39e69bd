from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware

if TYPE_CHECKING:
    from fastapi import FastAPI

    from leave_ledger.config import Settings


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure CORS for browser clients.

    The dev auth headers must be allowed in, and ``Retry-After`` must be
    readable by clients that back off on balance contention.
    """
    app.add_middleware(
        CORSMiddleware,  # ty: ignore[invalid-argument-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-User-Id", "X-Role"],
        expose_headers=["Retry-After"],
    )
