"""
Google OAuth / OpenID Connect client.

Handles the authorization redirect, the authorization-code exchange and
ID-token verification against Google's published signing keys. The verified
claims are turned into an ``ExternalAssertion`` for the identity resolver.
"""

from __future__ import annotations

import asyncio
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import jwt
import structlog
from jwt import PyJWKClient

from keygate.core.config import Settings
from keygate.domain import ExternalAssertion

log = structlog.get_logger()

GOOGLE_AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_JWKS_URI = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")

STATE_TTL = timedelta(minutes=10)
STATE_AUDIENCE = "keygate:google-oauth-state"


class GoogleAuthError(Exception):
    """The provider round-trip failed or returned something unusable."""


class GoogleIdentityClient:
    def __init__(
        self,
        settings: Settings,
        http: Optional[httpx.AsyncClient] = None,
        jwks: Optional[PyJWKClient] = None,
    ):
        self.settings = settings
        self._http = http
        self._jwks = jwks

    # ------------------------------------------------------------------
    # Authorization redirect
    # ------------------------------------------------------------------

    def issue_state(self) -> str:
        """Short-lived signed state value; also set as a cookie by the route."""
        now = datetime.now(timezone.utc)
        payload = {
            "nonce": secrets.token_urlsafe(16),
            "aud": STATE_AUDIENCE,
            "iat": now,
            "exp": now + STATE_TTL,
        }
        return jwt.encode(payload, self.settings.secret_key, algorithm="HS256")

    def check_state(self, state: str) -> bool:
        try:
            jwt.decode(
                state,
                self.settings.secret_key,
                algorithms=["HS256"],
                audience=STATE_AUDIENCE,
            )
        except jwt.PyJWTError:
            return False
        return True

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_callback_url,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTH_ENDPOINT}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for the ID token."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
            "redirect_uri": self.settings.google_callback_url,
        }
        own = self._http is None
        client = self._http or httpx.AsyncClient(timeout=15)
        try:
            resp = await client.post(
                GOOGLE_TOKEN_ENDPOINT, data=data, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise GoogleAuthError(f"token exchange failed: {type(exc).__name__}") from exc
        finally:
            if own:
                await client.aclose()

        if resp.status_code != 200:
            log.warning("google.exchange_failed", status=resp.status_code)
            raise GoogleAuthError(f"token exchange failed: {resp.status_code}")
        id_token = resp.json().get("id_token")
        if not id_token:
            raise GoogleAuthError("no id_token in token response")
        return id_token

    # ------------------------------------------------------------------
    # ID token verification
    # ------------------------------------------------------------------

    def _jwks_client(self) -> PyJWKClient:
        if self._jwks is None:
            self._jwks = PyJWKClient(GOOGLE_JWKS_URI)
        return self._jwks

    def _decode(self, id_token: str) -> dict[str, Any]:
        header = jwt.get_unverified_header(id_token)
        if header.get("alg") != "RS256":
            raise GoogleAuthError(f"unexpected alg: {header.get('alg')}")
        key = self._jwks_client().get_signing_key_from_jwt(id_token).key
        return jwt.decode(
            id_token,
            key=key,
            algorithms=["RS256"],
            audience=self.settings.google_client_id,
            options={"require": ["exp", "aud", "iss", "sub"]},
            leeway=120,
        )

    async def verify_id_token(self, id_token: str) -> dict[str, Any]:
        try:
            # Key retrieval is blocking I/O inside PyJWKClient.
            claims = await asyncio.to_thread(self._decode, id_token)
        except jwt.PyJWTError as exc:
            log.warning("google.id_token_invalid", error=type(exc).__name__)
            raise GoogleAuthError("invalid google id_token") from exc

        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise GoogleAuthError("id_token not issued by Google")
        return claims

    @staticmethod
    def assertion_from_claims(claims: dict[str, Any]) -> ExternalAssertion:
        """Claims to assertion. An email Google has not verified is refused."""
        if claims.get("email") and claims.get("email_verified") is not True:
            raise GoogleAuthError("google account email is not verified")
        return ExternalAssertion(
            provider_id=claims.get("sub"),
            email=claims.get("email"),
            name=claims.get("name"),
            avatar_url=claims.get("picture"),
        )
