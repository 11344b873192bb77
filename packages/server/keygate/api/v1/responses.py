"""Success envelope and account serialization shared by the auth routes."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

from keygate.core.config import get_settings
from keygate.core.security import create_jwt
from keygate.domain import AccountRecord
from keygate_shared.schemas.accounts import AccountResponse, AuthData


def ok(message: str, data: Optional[Any] = None) -> dict:
    body: dict = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body


def account_response(account: AccountRecord) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        name=account.name,
        email=account.email,
        provider=account.provider,
        profilePicture=account.profile_picture or "",
        emailVerified=account.email_verified,
        createdAt=account.created_at,
        updatedAt=account.updated_at,
        passwordUpdatedAt=account.password_updated_at,
    )


def auth_data(account: AccountRecord, *, oauth: bool = False) -> dict:
    """Account plus a freshly signed access token."""
    settings = get_settings()
    minutes = settings.oauth_jwt_expire_minutes if oauth else settings.jwt_expire_minutes
    token, _jti = create_jwt(account, expires_delta=timedelta(minutes=minutes))
    return AuthData(user=account_response(account), token=token).model_dump(mode="json")
