"""Error taxonomy and the HTTP handlers that render it.

Service code raises subclasses of `AppError`; routers let them propagate and
the handlers registered in `create_app` turn them into the response envelope
`{success, message, data?, details?}`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger("expense_manager.errors")


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[List[str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        self.data = data
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation error"


class ConstraintConflict(AppError):
    """A day-bound or month-bound uniqueness rule was violated."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Expense conflicts with an existing record"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class NotAuthorized(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized to access this expense"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Expense not found"


class AlreadyExists(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class InternalFailure(AppError):
    """Persistence or transaction failure; the cause is never sent to clients."""


def envelope(
    success: bool,
    message: Optional[str] = None,
    data: Any = None,
    details: Optional[List[str]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if details:
        body["details"] = details
    return body


def _is_development(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.is_development)


def format_validation_errors(errors: List[Dict[str, Any]]) -> List[str]:
    """Flatten pydantic error dicts into `field: message` strings."""
    messages = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        msg = str(err.get("msg", "invalid value"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        messages.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return messages


def app_error_handler(request: Request, exc: AppError):  # type: ignore
    if isinstance(exc, InternalFailure):
        logger.error("internal failure: %s", exc.message, exc_info=exc.__cause__)
        body = envelope(False, "Internal server error")
        if _is_development(request) and exc.__cause__ is not None:
            body["error"] = str(exc.__cause__)
        return JSONResponse(status_code=exc.status_code, content=body)
    if exc.status_code >= 500:
        logger.error("application error: %s", exc.message)
    elif isinstance(exc, ConstraintConflict):
        logger.warning("constraint conflict: %s", exc.message)
    else:
        logger.info("request rejected: %s", exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(False, exc.message, exc.data, exc.details),
    )


def http_error_handler(request: Request, exc):  # type: ignore
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        body = envelope(False, "Endpoint not found")
        body["path"] = request.url.path
    else:
        body = envelope(False, str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None)
    )


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=envelope(
            False, "Validation error", details=format_validation_errors(exc.errors())
        ),
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception")
    body = envelope(False, "Internal server error")
    if _is_development(request):
        body["error"] = str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
