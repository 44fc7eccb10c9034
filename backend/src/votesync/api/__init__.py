"""HTTP layer for votesync.

Routes raise ``SyncError`` subclasses from the pipeline unchanged; the
handlers registered here turn them into JSON error bodies with a stable
``error_code``. Request problems the pipeline never sees use ``APIError``.
"""

from typing import Any, Generic, TypeVar

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..db import Database
from ..logging import get_logger
from ..sync.errors import (
    FetchError,
    ItemError,
    RunFinalizedError,
    RunNotFoundError,
    StaleRunError,
    SyncError,
    TaskNotFoundError,
    TaskStateError,
    UnfinishedRunError,
    UnknownSourceError,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Checked in order, so subclasses come before their bases
SYNC_ERROR_RESPONSES: list[tuple[type[SyncError], int, str]] = [
    (StaleRunError, 409, "STALE_RUN"),
    (UnfinishedRunError, 409, "RUN_IN_PROGRESS"),
    (RunFinalizedError, 409, "RUN_FINALIZED"),
    (TaskStateError, 409, "INVALID_TASK_STATE"),
    (RunNotFoundError, 404, "NOT_FOUND"),
    (TaskNotFoundError, 404, "NOT_FOUND"),
    (UnknownSourceError, 404, "NOT_FOUND"),
    (ItemError, 422, "VALIDATION_ERROR"),
    (FetchError, 502, "FETCH_FAILED"),
]


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a list endpoint."""

    results: list[T]
    total: int
    limit: int
    offset: int


class ErrorDetail(BaseModel):
    code: str
    message: str
    field: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    error_code: str
    details: list[ErrorDetail] | None = None


class APIError(HTTPException):
    """Request rejected before it reaches the sync pipeline."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: list[ErrorDetail] | None = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class ValidationError(APIError):
    def __init__(self, message: str, details: list[ErrorDetail] | None = None):
        super().__init__(422, "VALIDATION_ERROR", message, details)


class AuthenticationError(APIError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(401, "AUTHENTICATION_REQUIRED", message)


def get_db(request: Request) -> Database:
    """The store handle opened by the application lifespan."""
    return request.app.state.db


def sync_error_status(exc: SyncError) -> tuple[int, str]:
    """HTTP status and error code for a pipeline error."""
    for error_type, status_code, error_code in SYNC_ERROR_RESPONSES:
        if isinstance(exc, error_type):
            return status_code, error_code
    return 500, "SYNC_ERROR"


def _error_response(status_code: int, error_code: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, error_code=error_code, details=details).model_dump(),
        headers={"X-Error-Code": error_code},
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return _error_response(exc.status_code, exc.error_code, exc.message, exc.details)


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    status_code, error_code = sync_error_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error_response(status_code, error_code, str(exc))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


def register_exception_handlers(app: Any) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(SyncError, sync_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
