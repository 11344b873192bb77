"""Request schemas for the authentication endpoints."""

from __future__ import annotations

from typing import Annotated

from pydantic import AfterValidator, BaseModel, EmailStr, Field

OTP_PATTERN = r"^[0-9]{6}$"

PASSWORD_MIN_LENGTH = 6
# bcrypt only considers the first 72 bytes and rejects longer input.
PASSWORD_MAX_BYTES = 72


def check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must not exceed {PASSWORD_MAX_BYTES} bytes")
    return value


NewPassword = Annotated[
    str, Field(min_length=PASSWORD_MIN_LENGTH), AfterValidator(check_password_bytes)
]


class SignupRequest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: NewPassword


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(pattern=OTP_PATTERN)


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str = Field(pattern=OTP_PATTERN)
    newPassword: NewPassword


class GoogleTokenRequest(BaseModel):
    """ID token obtained by the frontend through Google Identity Services."""
    googleToken: str = Field(min_length=1)
