from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

CONFLICT_RETRY_AFTER_SECONDS = 1


class ErrorResponse(BaseModel):
    """Standard error response schema."""

    error: str
    detail: str | None = None
    status_code: int
    retryable: bool = False


class AppError(Exception):
    """Base application exception."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed dates or amounts."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class OverlapError(AppError):
    """The requested range collides with an active request of the same employee."""

    status_code = status.HTTP_409_CONFLICT


class InsufficientBalanceError(AppError):
    """Not enough available days to reserve."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(AppError):
    """Illegal lifecycle transition."""

    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class DirectoryDataError(AppError):
    """The Employee Directory returned an entitlement the ledger cannot store."""

    status_code = status.HTTP_502_BAD_GATEWAY


class ConflictError(AppError):
    """Concurrent modification or lock contention. Safe to retry."""

    status_code = status.HTTP_409_CONFLICT
    retryable = True


async def _app_exception_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = {"Retry-After": str(CONFLICT_RETRY_AFTER_SECONDS)} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            detail=exc.message,
            status_code=exc.status_code,
            retryable=exc.retryable,
        ).model_dump(),
        headers=headers,
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error="ValidationError",
            detail=str(exc.errors()),
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        ).model_dump(),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the application."""
    app.add_exception_handler(AppError, _app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)  # type: ignore[arg-type]
