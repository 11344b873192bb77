"""
Typed account values produced at the storage boundary.

Rows coming out of the database are validated into ``AccountRecord`` before any
service looks at them; a row carrying a half-written reset challenge fails
validation instead of leaking into the OTP state machine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from keygate_shared.schemas.common import OriginKind


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ResetChallenge(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    issued_at: datetime
    expires_at: datetime

    @field_validator("issued_at", "expires_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class AccountRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    password_hash: Optional[str] = None
    google_id: Optional[str] = None
    provider: OriginKind = OriginKind.LOCAL
    email_verified: bool = False
    profile_picture: Optional[str] = None
    reset_challenge: Optional[ResetChallenge] = None
    password_updated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("password_updated_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @model_validator(mode="before")
    @classmethod
    def _collect_challenge(cls, data: Any) -> Any:
        """Fold the three reset columns of a row into one optional challenge."""
        if not isinstance(data, dict):
            data = {
                name: getattr(data, name)
                for name in (
                    "id", "email", "name", "password_hash", "google_id", "provider",
                    "email_verified", "profile_picture", "reset_otp", "otp_created_at",
                    "otp_expires_at", "password_updated_at", "created_at", "updated_at",
                )
            }
        else:
            data = dict(data)

        parts = (
            data.pop("reset_otp", None),
            data.pop("otp_created_at", None),
            data.pop("otp_expires_at", None),
        )
        if "reset_challenge" in data:
            return data
        present = [part is not None for part in parts]
        if all(present):
            code, issued_at, expires_at = parts
            data["reset_challenge"] = {
                "code": code,
                "issued_at": issued_at,
                "expires_at": expires_at,
            }
        elif any(present):
            raise ValueError("partial reset challenge on account row")
        return data

    @property
    def has_credential(self) -> bool:
        return self.password_hash is not None


class ExternalAssertion(BaseModel):
    """Identity asserted by an external provider (currently Google)."""

    provider_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
