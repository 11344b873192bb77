"""
Credential and token primitives.

- bcrypt password hashing
- signed JWT access tokens
- Redis-backed denylist for revoked tokens (logout)
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import redis.asyncio as redis

from keygate.core.config import get_settings
from keygate.domain import AccountRecord
from keygate.services import sessions
from keygate_shared.schemas.auth import PASSWORD_MAX_BYTES

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

class PasswordTooLongError(ValueError):
    """Password exceeds what bcrypt can hash."""


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password using bcrypt. Raises PasswordTooLongError past 72 bytes."""
    if len(password.encode()) > PASSWORD_MAX_BYTES:
        raise PasswordTooLongError(f"Password must not exceed {PASSWORD_MAX_BYTES} bytes")
    cost = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=cost)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash. Constant time in bcrypt."""
    if len(password.encode()) > PASSWORD_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Malformed hash in storage: treat as a non-match.
        return False


def codes_match(submitted: str, stored: str) -> bool:
    return secrets.compare_digest(submitted.encode(), stored.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    account: AccountRecord,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT for an account. Returns (token, jti)."""
    settings = get_settings()
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(sessions.serialize(account)),
        "email": account.email,
        "provider": account.provider.value,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    settings = get_settings()
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp", "jti"]},
    )


def seconds_until_expiry(payload: dict) -> int:
    exp = int(payload.get("exp", 0))
    return max(exp - int(datetime.now(timezone.utc).timestamp()), 1)


# ---------------------------------------------------------------------------
# JWT Revocation (Redis)
# ---------------------------------------------------------------------------

class TokenDenylist:
    """Revoked token ids, kept until the token would have expired anyway."""

    prefix = "jwt:revoked:"

    def __init__(self, client: redis.Redis):
        self._redis = client

    async def revoke(self, jti: str, ttl_seconds: int = 3600) -> None:
        await self._redis.setex(f"{self.prefix}{jti}", ttl_seconds, "1")

    async def is_revoked(self, jti: str) -> bool:
        return await self._redis.exists(f"{self.prefix}{jti}") > 0
