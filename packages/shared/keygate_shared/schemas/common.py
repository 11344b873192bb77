from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class OriginKind(str, Enum):
    LOCAL = "local"
    GOOGLE = "google"


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    USER_EXISTS = "USER_EXISTS"
    INVALID_OR_EXPIRED_CODE = "INVALID_OR_EXPIRED_CODE"
    EMAIL_SEND_FAILED = "EMAIL_SEND_FAILED"
    OAUTH_FAILED = "OAUTH_FAILED"
    ACCESS_DENIED = "ACCESS_DENIED"
    INSUFFICIENT_PRIVILEGES = "INSUFFICIENT_PRIVILEGES"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    SERVER_ERROR = "SERVER_ERROR"


class ErrorBody(BaseModel):
    code: ErrorCode
    status: int
    details: Optional[list[dict]] = None


class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
