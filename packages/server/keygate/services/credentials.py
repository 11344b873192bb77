"""
Credential & OTP lifecycle.

Owns password credentials and the password-reset state machine:

    (no challenge) --issue--> (challenge) --complete--> (no challenge, new credential)
                                   |  ^
                                   +--+ issue again (overwrites, never stacks)

A challenge is valid for ``otp_ttl_minutes`` after issuance. Verification is
read-only; only ``complete_reset`` or a failed delivery consumes a challenge.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from keygate.core.config import Settings
from keygate.core.errors import AuthError, ErrorKind
from keygate.core.security import codes_match, hash_password, verify_password
from keygate.domain import AccountRecord
from keygate.services.notifications import NotificationDispatcher
from keygate.services.store import AccountStore
from keygate_shared.schemas.common import OriginKind

log = structlog.get_logger()

Clock = Callable[[], datetime]

OTP_MIN = 100_000
OTP_SPAN = 900_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_otp() -> str:
    """Six-digit code drawn uniformly from 100000-999999."""
    return str(OTP_MIN + secrets.randbelow(OTP_SPAN))


class CredentialService:
    def __init__(
        self,
        store: AccountStore,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings
        self.clock = clock

    @property
    def otp_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.otp_ttl_minutes)

    # ------------------------------------------------------------------
    # Registration & password login
    # ------------------------------------------------------------------

    async def register(self, name: str, email: str, password: str) -> AccountRecord:
        if await self.store.get_by_email(email) is not None:
            raise AuthError(ErrorKind.DUPLICATE, "email already registered")
        account = await self.store.create(
            email=email,
            name=name,
            provider=OriginKind.LOCAL,
            password_hash=hash_password(password, self.settings.bcrypt_rounds),
            email_verified=False,
        )
        log.info("account.registered", account_id=account.id, email=email)
        return account

    async def verify_credential(self, email: str, password: str) -> AccountRecord:
        """Check a password. The three failure kinds are for internal branching only."""
        account = await self.store.get_by_email(email)
        if account is None:
            raise AuthError(ErrorKind.NOT_FOUND)
        if not account.has_credential:
            raise AuthError(ErrorKind.NO_CREDENTIAL)
        if not verify_password(password, account.password_hash):
            raise AuthError(ErrorKind.MISMATCH)
        return account

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def issue_reset_challenge(self, email: str) -> None:
        """Issue a fresh code and send it. Silent when the email is unknown."""
        account = await self.store.get_by_email(email)
        if account is None:
            log.info("reset.requested_unknown_email")
            return

        previous = account.reset_challenge
        code = generate_otp()
        while previous is not None and code == previous.code:
            code = generate_otp()
        issued_at = self.clock()
        stored = await self.store.set_reset_challenge(
            email, code, issued_at, issued_at + self.otp_ttl
        )
        if not stored:
            # Account vanished between lookup and update; nothing to send.
            return
        # Never send a code that is not stored yet.
        await self.store.commit()

        try:
            await self.dispatcher.send_reset_code(email, account.name, code)
        except AuthError:
            # Committed here: the request session rolls back on the re-raise.
            await self.store.clear_reset_challenge(email, self.clock(), code=code)
            await self.store.commit()
            raise
        log.info("reset.challenge_issued", account_id=account.id)

    async def verify_reset_challenge(self, email: str, code: str) -> AccountRecord:
        account = await self.store.get_by_email(email)
        if account is None:
            raise AuthError(ErrorKind.NOT_FOUND)
        challenge = account.reset_challenge
        if challenge is None:
            raise AuthError(ErrorKind.NO_CHALLENGE)
        if challenge.is_expired(self.clock()):
            raise AuthError(ErrorKind.EXPIRED)
        if not codes_match(code, challenge.code):
            raise AuthError(ErrorKind.MISMATCH)
        return account

    async def complete_reset(self, email: str, code: str, new_password: str) -> AccountRecord:
        await self.verify_reset_challenge(email, code)

        password_hash = hash_password(new_password, self.settings.bcrypt_rounds)
        if not await self.store.complete_reset(email, code, password_hash, self.clock()):
            # Lost a race with another reset or reissue: report what is there now.
            await self.verify_reset_challenge(email, code)
            raise AuthError(ErrorKind.MISMATCH)

        account = await self.store.get_by_email(email)
        if account is None:
            raise AuthError(ErrorKind.NOT_FOUND)
        log.info("reset.completed", account_id=account.id)
        return account
