"""
Google sign-in tests.

Client tests use a locally generated RSA key and httpx.MockTransport; route tests
swap in a client whose network calls return canned claims.
"""

from __future__ import annotations

import time
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient

from keygate.api.deps import get_google_client
from keygate.services.google import (
    GOOGLE_TOKEN_ENDPOINT,
    GoogleAuthError,
    GoogleIdentityClient,
)

CLIENT_ID = "client-123.apps.googleusercontent.com"


@pytest.fixture
def google_settings(settings):
    return settings.model_copy(
        update={
            "google_client_id": CLIENT_ID,
            "google_client_secret": "client-secret",
            "frontend_url": "https://app.example.com",
        }
    )


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


class StaticJwks:
    def __init__(self, public_key):
        self.public_key = public_key

    def get_signing_key_from_jwt(self, token):
        return SimpleNamespace(key=self.public_key)


def _id_token(private_key, **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": "https://accounts.google.com",
        "aud": CLIENT_ID,
        "sub": "g-123",
        "email": "ann@example.com",
        "name": "Ann Google",
        "picture": "https://img.example.com/ann.png",
        "email_verified": True,
        "iat": now,
        "exp": now + 3600,
    }
    claims.update(overrides)
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": "k1"})


# ---------------------------------------------------------------------------
# GoogleIdentityClient
# ---------------------------------------------------------------------------

class TestState:
    def test_round_trip(self, google_settings):
        client = GoogleIdentityClient(google_settings)
        assert client.check_state(client.issue_state())

    def test_rejects_foreign_state(self, google_settings):
        client = GoogleIdentityClient(google_settings)
        forged = jwt.encode({"aud": "someone-else"}, "other-key", algorithm="HS256")
        assert not client.check_state(forged)
        assert not client.check_state("garbage")

    def test_authorization_url(self, google_settings):
        client = GoogleIdentityClient(google_settings)
        url = urlparse(client.authorization_url("state-1"))
        params = parse_qs(url.query)
        assert url.netloc == "accounts.google.com"
        assert params["client_id"] == [CLIENT_ID]
        assert params["state"] == ["state-1"]
        assert params["scope"] == ["openid email profile"]


class TestExchangeCode:
    async def test_returns_id_token(self, google_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id_token": "the-id-token"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = GoogleIdentityClient(google_settings, http=http)
            assert await client.exchange_code("auth-code") == "the-id-token"

        assert seen["url"] == GOOGLE_TOKEN_ENDPOINT
        assert seen["body"]["code"] == ["auth-code"]
        assert seen["body"]["client_secret"] == ["client-secret"]

    @pytest.mark.parametrize(
        "response",
        [httpx.Response(400, json={"error": "invalid_grant"}), httpx.Response(200, json={})],
    )
    async def test_failure(self, google_settings, response):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: response)) as http:
            client = GoogleIdentityClient(google_settings, http=http)
            with pytest.raises(GoogleAuthError):
                await client.exchange_code("auth-code")

    async def test_network_error(self, google_settings):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = GoogleIdentityClient(google_settings, http=http)
            with pytest.raises(GoogleAuthError):
                await client.exchange_code("auth-code")


class TestVerifyIdToken:
    def _client(self, settings, key):
        return GoogleIdentityClient(settings, jwks=StaticJwks(key.public_key()))

    async def test_valid_token(self, google_settings, rsa_key):
        client = self._client(google_settings, rsa_key)
        claims = await client.verify_id_token(_id_token(rsa_key))
        assertion = client.assertion_from_claims(claims)
        assert assertion.provider_id == "g-123"
        assert assertion.email == "ann@example.com"
        assert assertion.avatar_url == "https://img.example.com/ann.png"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"aud": "someone-else"},
            {"iss": "https://evil.example.com"},
            {"exp": int(time.time()) - 3600},
        ],
    )
    async def test_rejected_claims(self, google_settings, rsa_key, overrides):
        client = self._client(google_settings, rsa_key)
        with pytest.raises(GoogleAuthError):
            await client.verify_id_token(_id_token(rsa_key, **overrides))

    @pytest.mark.parametrize("verified", [False, "true", None])
    def test_unverified_email_refused(self, verified):
        claims = {"sub": "g-123", "email": "ann@example.com"}
        if verified is not None:
            claims["email_verified"] = verified
        with pytest.raises(GoogleAuthError):
            GoogleIdentityClient.assertion_from_claims(claims)

    async def test_wrong_signing_key(self, google_settings, rsa_key):
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        client = self._client(google_settings, rsa_key)
        with pytest.raises(GoogleAuthError):
            await client.verify_id_token(_id_token(other))

    async def test_symmetric_token_rejected(self, google_settings, rsa_key):
        client = self._client(google_settings, rsa_key)
        token = jwt.encode({"sub": "g-123", "aud": CLIENT_ID}, "shared", algorithm="HS256")
        with pytest.raises(GoogleAuthError):
            await client.verify_id_token(token)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

class CannedGoogleClient(GoogleIdentityClient):
    """Real state handling; exchange and verification return fixed claims."""

    def __init__(self, settings, claims=None):
        super().__init__(settings)
        self.claims = claims
        self.exchanged: list[str] = []

    async def exchange_code(self, code: str) -> str:
        self.exchanged.append(code)
        return "id-token"

    async def verify_id_token(self, id_token: str) -> dict:
        if self.claims is None:
            raise GoogleAuthError("invalid google id_token")
        return self.claims


CLAIMS = {
    "sub": "g-123",
    "email": "ann@example.com",
    "email_verified": True,
    "name": "Ann Google",
}


@pytest.fixture
async def registered_account(credentials, session):
    """A password account that Google sign-in should link to."""
    account = await credentials.register("Ann", "ann@example.com", "secret1")
    await session.commit()
    return account


@pytest.fixture
def google(google_settings):
    return CannedGoogleClient(google_settings, claims=dict(CLAIMS))


@pytest.fixture
async def google_client(build_app, google_settings, google):
    app = build_app(google_settings)
    app.dependency_overrides[get_google_client] = lambda: google
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestGoogleRoutes:
    async def test_login_redirects_with_state_cookie(self, google_client):
        resp = await google_client.get("/api/auth/google")
        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert location.netloc == "accounts.google.com"
        state = parse_qs(location.query)["state"][0]
        assert f"kg_oauth_state={state}" in resp.headers["set-cookie"]

    async def test_callback_success(self, google_client, google, store):
        state = google.issue_state()
        resp = await google_client.get(
            "/api/auth/google/callback",
            params={"code": "auth-code", "state": state},
            headers={"Cookie": f"kg_oauth_state={state}"},
        )
        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert location.path == "/oauth/callback"
        assert parse_qs(location.query)["token"][0]
        assert google.exchanged == ["auth-code"]

        account = await store.get_by_google_id("g-123")
        assert account.email == "ann@example.com"

    async def test_callback_state_mismatch(self, google_client, google):
        resp = await google_client.get(
            "/api/auth/google/callback",
            params={"code": "auth-code", "state": google.issue_state()},
            headers={"Cookie": f"kg_oauth_state={google.issue_state()}"},
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://app.example.com/login?error=oauth_failed"
        assert google.exchanged == []

    async def test_callback_missing_code(self, google_client):
        resp = await google_client.get("/api/auth/google/callback")
        assert resp.headers["location"].endswith("/login?error=oauth_failed")

    async def test_callback_identity_conflict(self, google_client, google, resolver, session):
        await resolver.resolve(
            google.assertion_from_claims(dict(CLAIMS, sub="g-original"))
        )
        await session.commit()

        state = google.issue_state()
        resp = await google_client.get(
            "/api/auth/google/callback",
            params={"code": "auth-code", "state": state},
            headers={"Cookie": f"kg_oauth_state={state}"},
        )
        assert resp.headers["location"].endswith("/login?error=oauth_callback_failed")

    async def test_success_endpoint(self, google_client, registered_account):
        resp = await google_client.post("/api/auth/google/success", json={"googleToken": "t"})
        assert resp.status_code == 200
        user = resp.json()["data"]["user"]
        assert user["id"] == registered_account.id
        assert user["provider"] == "google"
        assert user["emailVerified"] is True

    async def test_success_endpoint_bad_token(self, google_client, google):
        google.claims = None
        resp = await google_client.post("/api/auth/google/success", json={"googleToken": "t"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "OAUTH_FAILED"

    async def test_success_endpoint_incomplete_claims(self, google_client, google):
        google.claims = {"sub": "g-123"}
        resp = await google_client.post("/api/auth/google/success", json={"googleToken": "t"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "OAUTH_FAILED"


class TestUnverifiedGoogleEmail:
    """A Google identity whose email Google has not verified never claims an account."""

    UNVERIFIED = {"sub": "attacker-g", "email": "ann@example.com", "email_verified": False}

    async def test_success_endpoint_does_not_link(
        self, google_client, google, registered_account, store
    ):
        google.claims = dict(self.UNVERIFIED)
        resp = await google_client.post("/api/auth/google/success", json={"googleToken": "t"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "OAUTH_FAILED"

        account = await store.get_by_id(registered_account.id)
        assert account.google_id is None
        assert account.provider.value == "local"
        assert account.email_verified is False
        assert await store.get_by_google_id("attacker-g") is None

    async def test_callback_does_not_link(
        self, google_client, google, registered_account, store
    ):
        google.claims = dict(self.UNVERIFIED)
        state = google.issue_state()
        resp = await google_client.get(
            "/api/auth/google/callback",
            params={"code": "auth-code", "state": state},
            headers={"Cookie": f"kg_oauth_state={state}"},
        )
        assert resp.headers["location"].endswith("/login?error=oauth_failed")

        account = await store.get_by_id(registered_account.id)
        assert account.google_id is None
