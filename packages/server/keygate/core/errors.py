"""
Error taxonomy and the JSON error envelope.

Services raise ``AuthError`` with an internal ``ErrorKind``. Routes either let it
propagate (default mapping below) or collapse it into a uniform ``APIError``
wherever the distinction would reveal whether an account exists.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from keygate_shared.schemas.common import APIResponse, ErrorBody, ErrorCode

log = structlog.get_logger()


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    NO_CREDENTIAL = "no_credential"
    NO_CHALLENGE = "no_challenge"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    INCOMPLETE_ASSERTION = "incomplete_assertion"
    DELIVERY_FAILED = "delivery_failed"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class AuthError(Exception):
    """Internal failure of a credential or identity operation."""

    def __init__(self, kind: ErrorKind, detail: str = ""):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail


class APIError(Exception):
    """Outward-facing failure rendered as the standard error envelope."""

    def __init__(self, status_code: int, code: ErrorCode, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


# Kinds that must all look the same to a caller of the login endpoint.
LOGIN_FAILURES = frozenset(
    {ErrorKind.NOT_FOUND, ErrorKind.NO_CREDENTIAL, ErrorKind.MISMATCH}
)

# Kinds that must all look the same to a caller of the reset endpoints.
RESET_FAILURES = frozenset(
    {ErrorKind.NOT_FOUND, ErrorKind.NO_CHALLENGE, ErrorKind.EXPIRED, ErrorKind.MISMATCH}
)

INVALID_CREDENTIALS_MESSAGE = "Email or password is wrong"
INVALID_CODE_MESSAGE = "Invalid or expired code"
SERVER_ERROR_MESSAGE = "Something went wrong. Please try again."

_DEFAULT_MAPPING: dict[ErrorKind, tuple[int, ErrorCode, str]] = {
    ErrorKind.DUPLICATE: (409, ErrorCode.USER_EXISTS, "A user with this email already exists"),
    ErrorKind.DELIVERY_FAILED: (
        500,
        ErrorCode.EMAIL_SEND_FAILED,
        "Failed to send email. Please try again.",
    ),
    ErrorKind.STORAGE_UNAVAILABLE: (
        503,
        ErrorCode.SERVICE_UNAVAILABLE,
        "Service temporarily unavailable. Please try again.",
    ),
    ErrorKind.INCOMPLETE_ASSERTION: (
        400,
        ErrorCode.OAUTH_FAILED,
        "OAuth authentication failed",
    ),
}


def invalid_credentials() -> APIError:
    return APIError(401, ErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)


def invalid_code() -> APIError:
    return APIError(400, ErrorCode.INVALID_OR_EXPIRED_CODE, INVALID_CODE_MESSAGE)


def to_api_error(exc: AuthError) -> APIError:
    """Default outward mapping for a service failure nobody collapsed."""
    mapped = _DEFAULT_MAPPING.get(exc.kind)
    if mapped is None:
        # Any other kind reaching the edge is treated as a generic failure.
        return APIError(500, ErrorCode.SERVER_ERROR, SERVER_ERROR_MESSAGE)
    status, code, message = mapped
    return APIError(status, code, message)


def error_response(
    status_code: int,
    code: ErrorCode,
    message: str,
    details: Optional[list[dict]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    body = APIResponse(
        success=False,
        message=message,
        error=ErrorBody(code=code, status=status_code, details=details or None),
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


_HTTP_STATUS_CODES = {
    401: ErrorCode.ACCESS_DENIED,
    403: ErrorCode.INSUFFICIENT_PRIVILEGES,
    404: ErrorCode.NOT_FOUND,
    429: ErrorCode.RATE_LIMITED,
}


async def _api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return error_response(exc.status_code, exc.code, exc.message)


async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    api_error = to_api_error(exc)
    log.warning(
        "request.auth_error",
        path=request.url.path,
        kind=exc.kind.value,
        status=api_error.status_code,
    )
    return error_response(api_error.status_code, api_error.code, api_error.message)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return error_response(
        400, ErrorCode.VALIDATION_ERROR, "Please check your input", details=details
    )


async def _http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.SERVER_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, code, message, headers=getattr(exc, "headers", None))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error("request.unhandled_error", path=request.url.path, error=type(exc).__name__)
    return error_response(500, ErrorCode.SERVER_ERROR, SERVER_ERROR_MESSAGE)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, _api_error_handler)
    app.add_exception_handler(AuthError, _auth_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
