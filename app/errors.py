import logging
from typing import List, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base error; carries the HTTP status surfaced to callers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(AppError):
    """Job, table or record does not exist or is not owned by the caller."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Validation error", violations: Optional[List[str]] = None):
        super().__init__(message)
        self.violations = violations or []


class ModelError(AppError):
    """The generative model call failed or returned unparseable output."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class ModelUnavailableError(ModelError):
    """The model could not be reached at all (network, auth)."""


class RecordStoreError(AppError):
    pass


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        detail = "Internal server error"
    else:
        detail = exc.message

    content = {"detail": detail}
    if isinstance(exc, ValidationError) and exc.violations:
        content["violations"] = exc.violations

    return JSONResponse(status_code=exc.status_code, content=content)
