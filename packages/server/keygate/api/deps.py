"""FastAPI providers that assemble the services for one request."""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from keygate.core.config import Settings, get_settings
from keygate.core.database import get_session
from keygate.core.redis import get_redis
from keygate.core.security import TokenDenylist
from keygate.services.credentials import CredentialService
from keygate.services.google import GoogleIdentityClient
from keygate.services.identity import IdentityResolver
from keygate.services.notifications import NotificationDispatcher, build_dispatcher
from keygate.services.policy import AdminPolicy
from keygate.services.rate_limit import FixedWindowRateLimiter
from keygate.services.store import AccountStore

log = structlog.get_logger()


def get_store(session: AsyncSession = Depends(get_session)) -> AccountStore:
    return AccountStore(session)


def get_dispatcher(settings: Settings = Depends(get_settings)) -> NotificationDispatcher:
    return build_dispatcher(settings)


def get_credential_service(
    store: AccountStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
) -> CredentialService:
    return CredentialService(store, dispatcher, settings)


def get_identity_resolver(store: AccountStore = Depends(get_store)) -> IdentityResolver:
    return IdentityResolver(store)


def get_google_client(settings: Settings = Depends(get_settings)) -> GoogleIdentityClient:
    return GoogleIdentityClient(settings)


def get_admin_policy(settings: Settings = Depends(get_settings)) -> AdminPolicy:
    return AdminPolicy.from_settings(settings)


async def get_token_denylist() -> TokenDenylist:
    return TokenDenylist(await get_redis())


async def get_rate_limiter(
    settings: Settings = Depends(get_settings),
) -> Optional[FixedWindowRateLimiter]:
    if not settings.rate_limit_enabled:
        return None
    return FixedWindowRateLimiter(
        await get_redis(),
        limit=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


async def rate_limited(
    request: Request,
    limiter: Optional[FixedWindowRateLimiter] = Depends(get_rate_limiter),
) -> None:
    """Route dependency: one hit per client address and path."""
    if limiter is None:
        return
    client = request.client.host if request.client else "unknown"
    if not await limiter.hit(f"{request.url.path}:{client}"):
        log.warning("ratelimit.exceeded", path=request.url.path, client=client)
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(limiter.retry_after())},
        )
