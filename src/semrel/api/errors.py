"""
Error responses for the HTTP API.

Core SRError subclasses are mapped to status codes and rendered in one
envelope:
{
    "error": {
        "code": "ERROR_CODE",
        "message": "Human-readable message",
        "detail": "Optional additional context"
    }
}
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    BuildIOError,
    CapacityExceededError,
    ConfigurationError,
    NormalizationError,
    NotBuiltError,
    NotFittedError,
    NotFoundError,
    SRError,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[SRError], int] = {
    NotFoundError: 404,
    NotBuiltError: 503,
    NotFittedError: 503,
    ConfigurationError: 400,
    NormalizationError: 500,
    CapacityExceededError: 413,
    BuildIOError: 500,
}


def status_for(exc: SRError) -> int:
    """HTTP status for an error, using the closest mapped base class."""
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


def error_content(exc: SRError) -> dict:
    content = {"error": {"code": exc.code, "message": exc.message}}
    if exc.detail:
        content["error"]["detail"] = exc.detail
    return content


async def sr_error_handler(request: Request, exc: SRError) -> JSONResponse:
    """
    FastAPI exception handler for SRError.

    Converts core errors to consistent JSON responses.
    """
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=error_content(exc))
