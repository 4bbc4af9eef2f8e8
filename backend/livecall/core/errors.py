# livecall/core/errors.py
"""
Domain error taxonomy for the call core.

Services raise these; the API layer renders them as structured 4xx
responses: {"success": false, "detail": {"code": ..., "message": ...}}.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CallCoreError(Exception):
    """Base class. `code` is machine-stable, `message` is for humans."""
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(CallCoreError):
    status_code = 404
    code = "NOT_FOUND"


class Forbidden(CallCoreError):
    status_code = 403
    code = "FORBIDDEN"


class InvalidState(CallCoreError):
    code = "INVALID_STATE"


class InsufficientBalance(CallCoreError):
    code = "INSUFFICIENT_BALANCE"


class ValidationError(CallCoreError):
    code = "VALIDATION_ERROR"


class Unavailable(CallCoreError):
    code = "HOST_UNAVAILABLE"


async def _handle_call_core_error(request: Request, exc: CallCoreError):
    logger.info("[errors] %s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.to_detail()},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the CallCoreError handler to the application."""
    app.add_exception_handler(CallCoreError, _handle_call_core_error)
