"""Global exception handlers: map SDK errors to JSON error responses.

Every error body has the same shape::

    {"success": false, "kind": "<machine-readable>", "message": "<human>"}

plus ``errors`` (itemized field errors) for validation failures.  Internal
detail is logged server-side and never sent to the client.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from survey_intake.errors import (
    FieldError,
    IntakeError,
    InternalError,
    RateLimitedError,
    ValidationError,
)
from survey_intake.rate_limit import rate_limit_headers

logger = logging.getLogger(__name__)


async def intake_error_handler(request: Request, exc: IntakeError) -> JSONResponse:
    """Answer with the error's own status code and body."""
    if exc.status_code >= 500:
        logger.error("%s at %s", exc.kind, request.url.path)
    else:
        logger.warning("%s [%d] at %s", exc.kind, exc.status_code, request.url.path)
    headers = rate_limit_headers(exc.result) if isinstance(exc, RateLimitedError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    """Malformed path/query/body parameters become a 400 with itemized errors."""
    errors = [
        FieldError(".".join(str(p) for p in err.get("loc", ())) or "request", err.get("msg", ""))
        for err in exc.errors()
    ]
    logger.info("Request validation failed at %s: %d errors", request.url.path, len(errors))
    body = ValidationError(errors).to_dict()
    return JSONResponse(status_code=400, content=body)


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log the traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url.path)
    return JSONResponse(status_code=500, content=InternalError().to_dict())
