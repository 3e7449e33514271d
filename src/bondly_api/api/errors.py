"""Exception handlers: the single error-kind to HTTP status table."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bondly_api.api.responses import fail
from bondly_api.errors import BondlyError, ErrorKind, InvariantViolation, ValidationFailure

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.TRANSPORT: 500,
    ErrorKind.INVARIANT: 500,
}


def status_for(error: BondlyError) -> int:
    return STATUS_BY_KIND[error.kind]


async def handle_bondly_error(request: Request, exc: BondlyError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = None
    details = exc.details()
    if details and "retry_after" in details:
        headers = {"Retry-After": str(details["retry_after"])}
    return JSONResponse(
        status_code=status,
        content=fail(exc.code, exc.message, details),
        headers=headers,
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=fail(ValidationFailure.code, ValidationFailure.default_message, {"errors": errors}),
    )


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=fail(exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=fail(InvariantViolation.code, InvariantViolation.default_message),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BondlyError, handle_bondly_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unexpected)
