"""
Authentication and authorization dependencies.

- Bearer JWT authentication with Redis revocation list
- Admin authorization through the configured admin policy
"""

from __future__ import annotations

from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from keygate.api.deps import get_admin_policy, get_store, get_token_denylist
from keygate.core.security import TokenDenylist, decode_jwt
from keygate.domain import AccountRecord
from keygate.services import sessions
from keygate.services.policy import AdminPolicy
from keygate.services.store import AccountStore

log = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


class AuthenticatedAccount:
    """Container for an authenticated account + the claims it presented."""

    def __init__(self, account: AccountRecord, claims: dict):
        self.account = account
        self.claims = claims
        self.account_id = account.id
        self.jti = claims.get("jti")


async def get_authenticated_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: AccountStore = Depends(get_store),
    denylist: TokenDenylist = Depends(get_token_denylist),
) -> AuthenticatedAccount:
    """Main authentication dependency: ``Authorization: Bearer <jwt>``."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Access denied")

    try:
        claims = decode_jwt(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if await denylist.is_revoked(claims["jti"]):
        raise HTTPException(status_code=401, detail="Token has been revoked")

    try:
        account_id = int(claims["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    account = await sessions.deserialize(store, account_id)
    if account is None:
        raise HTTPException(status_code=401, detail="Access denied")
    return AuthenticatedAccount(account=account, claims=claims)


async def require_admin(
    auth: AuthenticatedAccount = Depends(get_authenticated_account),
    policy: AdminPolicy = Depends(get_admin_policy),
) -> AuthenticatedAccount:
    """Requires an account listed in the admin policy."""
    if not policy.is_admin(auth.account.email):
        log.warning("auth.admin_denied", account_id=auth.account_id)
        raise HTTPException(
            status_code=403,
            detail="Admin access required. This endpoint is restricted to administrators only.",
        )
    return auth
