"""
Shared fixtures: in-memory SQLite store, controllable clock, recording
dispatcher, and an app wired to them through dependency overrides.
"""

from __future__ import annotations

import os

os.environ.setdefault("KG_ENVIRONMENT", "test")
os.environ.setdefault("KG_SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("KG_BCRYPT_ROUNDS", "4")
os.environ.setdefault("KG_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("KG_ADMIN_EMAILS", "admin@example.com")
os.environ.setdefault("KG_LOG_FORMAT", "text")

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi import Depends  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from keygate.api.deps import (  # noqa: E402
    get_credential_service,
    get_dispatcher,
    get_identity_resolver,
    get_rate_limiter,
    get_store,
    get_token_denylist,
)
from keygate.core.config import Settings, get_settings  # noqa: E402
from keygate.core.database import get_session, init_db  # noqa: E402
from keygate.core.errors import AuthError, ErrorKind  # noqa: E402
from keygate.main import create_app  # noqa: E402
from keygate.services.credentials import CredentialService  # noqa: E402
from keygate.services.identity import IdentityResolver  # noqa: E402
from keygate.services.store import AccountStore  # noqa: E402

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher:
    """Captures reset codes instead of emailing them."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def send_reset_code(self, email: str, name: str, code: str) -> None:
        if self.fail:
            raise AuthError(ErrorKind.DELIVERY_FAILED, "smtp down")
        self.sent.append((email, name, code))

    def last_code(self, email: Optional[str] = None) -> str:
        for sent_to, _name, code in reversed(self.sent):
            if email is None or sent_to == email:
                return code
        raise AssertionError("no code sent")


class MemoryDenylist:
    def __init__(self):
        self.revoked: dict[str, int] = {}

    async def revoke(self, jti: str, ttl_seconds: int = 3600) -> None:
        self.revoked[jti] = ttl_seconds

    async def is_revoked(self, jti: str) -> bool:
        return jti in self.revoked


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def store(session) -> AccountStore:
    return AccountStore(session)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def credentials(store, dispatcher, settings, clock) -> CredentialService:
    return CredentialService(store, dispatcher, settings, clock=clock)


@pytest.fixture
def resolver(store, clock) -> IdentityResolver:
    return IdentityResolver(store, clock=clock)


@pytest.fixture
def denylist() -> MemoryDenylist:
    return MemoryDenylist()


def wire_app(app, session_factory, dispatcher, denylist, clock, settings):
    """Point the app's providers at the test collaborators."""

    async def _session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    def _credentials(store: AccountStore = Depends(get_store)) -> CredentialService:
        return CredentialService(store, dispatcher, settings, clock=clock)

    def _resolver(store: AccountStore = Depends(get_store)) -> IdentityResolver:
        return IdentityResolver(store, clock=clock)

    async def _no_limit():
        return None

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_credential_service] = _credentials
    app.dependency_overrides[get_identity_resolver] = _resolver
    app.dependency_overrides[get_token_denylist] = lambda: denylist
    app.dependency_overrides[get_rate_limiter] = _no_limit
    app.dependency_overrides[get_settings] = lambda: settings
    return app


@pytest.fixture
def build_app(session_factory, dispatcher, denylist, clock):
    """Factory for apps with non-default settings."""

    def _build(settings: Settings):
        return wire_app(create_app(settings), session_factory, dispatcher, denylist, clock, settings)

    return _build


@pytest.fixture
def app(build_app, settings):
    return build_app(settings)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
