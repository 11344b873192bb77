"""
Google sign-in endpoints. Registered only when Google OAuth is configured.

- GET  /google            redirect to Google's consent screen
- GET  /google/callback   code exchange, identity resolution, redirect to the frontend
- POST /google/success    ID token from the frontend, JSON response
"""

from __future__ import annotations

import json
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from keygate.api.deps import get_google_client, get_identity_resolver, rate_limited
from keygate.api.v1.responses import auth_data, ok
from keygate.core.config import Settings, get_settings
from keygate.core.errors import APIError, AuthError, ErrorKind
from keygate.services.google import GoogleAuthError, GoogleIdentityClient
from keygate.services.identity import IdentityResolver
from keygate_shared.schemas.auth import GoogleTokenRequest
from keygate_shared.schemas.common import ErrorCode

log = structlog.get_logger()
router = APIRouter()

STATE_COOKIE = "kg_oauth_state"


def _failure_redirect(settings: Settings, reason: str) -> RedirectResponse:
    resp = RedirectResponse(f"{settings.frontend_url}/login?error={reason}", status_code=302)
    resp.delete_cookie(STATE_COOKIE, path="/")
    return resp


@router.get("/google")
async def google_login(
    settings: Settings = Depends(get_settings),
    google: GoogleIdentityClient = Depends(get_google_client),
):
    """Start the authorization-code flow."""
    state = google.issue_state()
    resp = RedirectResponse(google.authorization_url(state), status_code=302)
    resp.set_cookie(
        STATE_COOKIE,
        state,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=600,
        path="/",
    )
    return resp


@router.get("/google/callback")
async def google_callback(
    request: Request,
    code: str = "",
    state: str = "",
    settings: Settings = Depends(get_settings),
    google: GoogleIdentityClient = Depends(get_google_client),
    resolver: IdentityResolver = Depends(get_identity_resolver),
):
    if not code or not state:
        return _failure_redirect(settings, "oauth_failed")
    if request.cookies.get(STATE_COOKIE) != state or not google.check_state(state):
        log.warning("google.state_mismatch")
        return _failure_redirect(settings, "oauth_failed")

    try:
        id_token = await google.exchange_code(code)
        claims = await google.verify_id_token(id_token)
        account = await resolver.resolve(google.assertion_from_claims(claims))
    except GoogleAuthError as exc:
        log.warning("google.callback_failed", error=str(exc))
        return _failure_redirect(settings, "oauth_failed")
    except AuthError as exc:
        if exc.kind is ErrorKind.STORAGE_UNAVAILABLE:
            raise
        log.warning("google.callback_rejected", kind=exc.kind.value)
        return _failure_redirect(settings, "oauth_callback_failed")

    data = auth_data(account, oauth=True)
    query = urlencode({"token": data["token"], "user": json.dumps(data["user"])})
    log.info("google.login_success", account_id=account.id)
    resp = RedirectResponse(f"{settings.frontend_url}/oauth/callback?{query}", status_code=302)
    resp.delete_cookie(STATE_COOKIE, path="/")
    return resp


@router.post("/google/success", dependencies=[Depends(rate_limited)])
async def google_success(
    body: GoogleTokenRequest,
    google: GoogleIdentityClient = Depends(get_google_client),
    resolver: IdentityResolver = Depends(get_identity_resolver),
):
    """Sign in with an ID token obtained by the frontend."""
    try:
        claims = await google.verify_id_token(body.googleToken)
        assertion = google.assertion_from_claims(claims)
    except GoogleAuthError as exc:
        raise APIError(401, ErrorCode.OAUTH_FAILED, "Invalid Google token") from exc

    account = await resolver.resolve(assertion)
    log.info("google.login_success", account_id=account.id)
    return ok("OAuth authentication successful", auth_data(account, oauth=True))
