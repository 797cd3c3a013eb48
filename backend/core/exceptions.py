"""Application exceptions and their HTTP rendering.

Every error raised on purpose by the sync engine derives from AppException and
carries a user-facing message, an optional technical detail and a suggested
action. Routers re-raise these unchanged and wrap anything else.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base class for application errors rendered as JSON responses."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        detail: str | None = None,
        suggested_action: str | None = None,
    ):
        self.message = message or self.default_message
        self.detail = detail
        self.suggested_action = suggested_action
        super().__init__(self.message if not detail else f"{self.message}: {detail}")

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
            "suggested_action": self.suggested_action,
        }


class SkillNotFoundException(AppException):
    status_code = 404
    code = "SKILL_NOT_FOUND"
    default_message = "Skill not found"


class ValidationException(AppException):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class SyncPreconditionException(AppException):
    """An operation was requested in a state that does not allow it.

    Raised before any network call is attempted.
    """

    status_code = 412
    code = "PRECONDITION_FAILED"
    default_message = "Operation not possible in the current state"


class RemoteServiceException(AppException):
    """The remote skill service failed or could not be reached."""

    status_code = 502
    code = "REMOTE_SERVICE_ERROR"
    default_message = "Remote skill service request failed"


class LocalStorageException(AppException):
    """Reading or writing a local skill copy failed."""

    status_code = 500
    code = "LOCAL_STORAGE_ERROR"
    default_message = "Local skill storage error"


class OperationInProgressException(AppException):
    status_code = 409
    code = "OPERATION_IN_PROGRESS"
    default_message = "Another operation is already running for this skill"


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render an AppException as a JSON error body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
