from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class PMException(Exception):
    """
    Base exception for the PM sync core.

    Carries everything the HTTP layer needs to render an error body:
    - message: short user-visible `error` string
    - detail: optional upstream/extra detail surfaced as `detail`
    - details: structured extras surfaced as `details`
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "PM_ERROR",
        status_code: int = 400,
        detail: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.detail is not None:
            body["detail"] = self.detail
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class InvalidInputError(PMException):
    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"field": field} if field else {}
        details.update(kwargs)
        super().__init__(message, code="INVALID_INPUT", status_code=400, details=details)


class NotFoundError(PMException):
    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=dict(kwargs))


class MismatchError(PMException):
    def __init__(self, message: str, *, expected: Any = None, received: Any = None):
        details: Dict[str, Any] = {}
        if expected is not None:
            details["expected"] = expected
        if received is not None:
            details["received"] = received
        super().__init__(message, code="MISMATCH", status_code=400, details=details)


class MisconfiguredError(PMException):
    def __init__(self, message: str, config_key: Optional[str] = None, *, status_code: int = 500):
        details: Dict[str, Any] = {"config_key": config_key} if config_key else {}
        super().__init__(
            message, code="MISCONFIGURED", status_code=status_code, details=details
        )


class UpstreamError(PMException):
    def __init__(self, message: str, *, detail: Any = None, upstream_status: Optional[int] = None):
        details: Dict[str, Any] = {}
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        super().__init__(
            message, code="UPSTREAM_ERROR", status_code=502, detail=detail, details=details
        )


class UpstreamTimeoutError(PMException):
    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message, code="UPSTREAM_TIMEOUT", status_code=502, details=dict(kwargs)
        )


class UpstreamUnavailableError(PMException):
    def __init__(self, message: str, *, detail: Any = None, **kwargs: Any):
        super().__init__(
            message,
            code="UPSTREAM_UNAVAILABLE",
            status_code=502,
            detail=detail,
            details=dict(kwargs),
        )


class InternalError(PMException):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, code="INTERNAL_ERROR", status_code=500)


class OperationCancelledError(PMException):
    def __init__(self, message: str = "Request cancelled by client"):
        # 499: nginx convention for "client closed request"
        super().__init__(message, code="CANCELLED", status_code=499)


async def _pm_exception_handler(_request: Request, exc: PMException) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    err = InternalError()
    return JSONResponse(err.to_dict(), status_code=err.status_code)


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    err = InvalidInputError(first.get("msg") or "Invalid request", field=field or None)
    return JSONResponse(err.to_dict(), status_code=err.status_code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PMException, _pm_exception_handler)
    app.add_exception_handler(SQLAlchemyError, _database_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
