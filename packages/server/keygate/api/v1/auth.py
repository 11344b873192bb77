"""
Authentication endpoints.

- Email/password registration & login
- Password reset with an emailed one-time code
- Profile, admin account listing, logout

Failures that could reveal whether an email has an account are collapsed into
one outward message per endpoint.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Query

from keygate.api.deps import (
    get_credential_service,
    get_store,
    get_token_denylist,
    rate_limited,
)
from keygate.api.v1.responses import account_response, auth_data, ok
from keygate.core.auth import AuthenticatedAccount, get_authenticated_account, require_admin
from keygate.core.errors import (
    LOGIN_FAILURES,
    RESET_FAILURES,
    AuthError,
    invalid_code,
    invalid_credentials,
)
from keygate.core.security import TokenDenylist, seconds_until_expiry
from keygate.services.credentials import CredentialService
from keygate.services.store import AccountStore
from keygate_shared.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    VerifyOtpRequest,
)

log = structlog.get_logger()
router = APIRouter()

RESET_REQUESTED_MESSAGE = (
    "If an account with this email exists, you will receive a password reset OTP shortly."
)


# ---------------------------------------------------------------------------
# Registration & login
# ---------------------------------------------------------------------------

@router.post("/signup", status_code=201, dependencies=[Depends(rate_limited)])
async def signup(
    body: SignupRequest,
    credentials: CredentialService = Depends(get_credential_service),
):
    """Register a new local account with email/password."""
    account = await credentials.register(body.name, body.email, body.password)
    return ok("Account created successfully!", auth_data(account))


@router.post("/login", dependencies=[Depends(rate_limited)])
async def login(
    body: LoginRequest,
    credentials: CredentialService = Depends(get_credential_service),
):
    """Authenticate with email/password and receive a bearer token."""
    try:
        account = await credentials.verify_credential(body.email, body.password)
    except AuthError as exc:
        if exc.kind in LOGIN_FAILURES:
            log.warning("auth.login_failure", reason=exc.kind.value)
            raise invalid_credentials() from exc
        raise

    log.info("auth.login_success", account_id=account.id)
    return ok("Login successful!", auth_data(account))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

@router.post("/forgot-password", dependencies=[Depends(rate_limited)])
async def forgot_password(
    body: ForgotPasswordRequest,
    credentials: CredentialService = Depends(get_credential_service),
):
    """Send a reset code. The answer does not depend on whether the email is known."""
    await credentials.issue_reset_challenge(body.email)
    return ok(RESET_REQUESTED_MESSAGE)


@router.post("/verify-otp", dependencies=[Depends(rate_limited)])
async def verify_otp(
    body: VerifyOtpRequest,
    credentials: CredentialService = Depends(get_credential_service),
):
    """Check a reset code without consuming it."""
    try:
        await credentials.verify_reset_challenge(body.email, body.otp)
    except AuthError as exc:
        if exc.kind in RESET_FAILURES:
            raise invalid_code() from exc
        raise
    return ok("OTP verified successfully")


@router.post("/reset-password", dependencies=[Depends(rate_limited)])
async def reset_password(
    body: ResetPasswordRequest,
    credentials: CredentialService = Depends(get_credential_service),
):
    """Set a new password using a valid reset code."""
    try:
        account = await credentials.complete_reset(body.email, body.otp, body.newPassword)
    except AuthError as exc:
        if exc.kind in RESET_FAILURES:
            log.warning("reset.rejected", reason=exc.kind.value)
            raise invalid_code() from exc
        raise
    return ok(
        "Password has been reset successfully! You can now login with your new password.",
        auth_data(account),
    )


# ---------------------------------------------------------------------------
# Session & profile
# ---------------------------------------------------------------------------

@router.post("/logout")
async def logout(
    auth: AuthenticatedAccount = Depends(get_authenticated_account),
    denylist: TokenDenylist = Depends(get_token_denylist),
):
    """Revoke the presented token."""
    await denylist.revoke(auth.jti, ttl_seconds=seconds_until_expiry(auth.claims))
    log.info("auth.logout", account_id=auth.account_id)
    return ok("Logout successful!")


@router.get("/profile")
async def profile(auth: AuthenticatedAccount = Depends(get_authenticated_account)):
    return ok(
        "Profile retrieved successfully",
        {"user": account_response(auth.account).model_dump(mode="json")},
    )


@router.get("/users")
async def list_users(
    _admin: AuthenticatedAccount = Depends(require_admin),
    store: AccountStore = Depends(get_store),
):
    """All accounts, newest first. Admin only."""
    accounts = await store.list_accounts()
    return ok(
        "Users retrieved successfully",
        [account_response(a).model_dump(mode="json") for a in accounts],
    )


@router.get("/check-email", dependencies=[Depends(rate_limited)])
async def check_email(
    email: str = Query(min_length=3),
    store: AccountStore = Depends(get_store),
):
    exists = await store.get_by_email(email) is not None
    return ok("Email check completed", {"exists": exists})


@router.get("/health")
async def auth_health():
    return ok(
        "Auth service is healthy",
        {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "auth",
            "status": "operational",
        },
    )
