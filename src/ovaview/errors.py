"""Error taxonomy and the handler that renders it as ``{"error": ...}``."""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)


class OvaviewError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(OvaviewError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(OvaviewError):
    status_code = 401
    default_message = "Invalid email or password"


class AuthorizationError(OvaviewError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(OvaviewError):
    status_code = 404
    default_message = "Not found"


class InternalError(OvaviewError):
    status_code = 500


async def ovaview_error_handler(request: Request, exc: OvaviewError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("internal error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info("rejected malformed body on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": ValidationError.default_message})
