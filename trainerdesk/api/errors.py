"""
Mapping from accounting errors to HTTP responses.

Routes let domain errors propagate; the handler registered in main turns
them into status codes here, so every endpoint answers the same way.
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from ..core.billing.errors import (
    AccountingError,
    AccountNotFoundError,
    ClassEventNotFoundError,
    ConcurrentModificationError,
    InvalidPlanConfiguration,
    NotificationFailure,
    PersistenceFailure,
    PlanNotFoundError,
    ScheduleConflictError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses come before their parents
_STATUS_BY_ERROR: tuple[tuple[type[AccountingError], int], ...] = (
    (AccountNotFoundError, status.HTTP_404_NOT_FOUND),
    (PlanNotFoundError, status.HTTP_404_NOT_FOUND),
    (ClassEventNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidPlanConfiguration, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ScheduleConflictError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
    (NotificationFailure, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: AccountingError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def accounting_error_handler(request: Request, exc: AccountingError) -> JSONResponse:
    status_code = status_for(exc)
    content: dict = {"detail": str(exc)}
    if isinstance(exc, ScheduleConflictError):
        content["conflicting_student_id"] = exc.conflicting_student_id

    log = logger.error if status_code >= 500 else logger.info
    log(
        "Accounting error",
        extra={
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "status": status_code,
            "error": str(exc),
        }
    )
    return JSONResponse(status_code=status_code, content=content)
