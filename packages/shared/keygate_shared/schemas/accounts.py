"""Account response schemas. Secrets and reset state are never exposed."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .common import OriginKind


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    provider: OriginKind
    profilePicture: str = ""
    emailVerified: bool = False
    createdAt: datetime
    updatedAt: datetime
    passwordUpdatedAt: Optional[datetime] = None


class AuthData(BaseModel):
    """Payload returned by signup, login, password reset and Google sign-in."""
    user: AccountResponse
    token: str
