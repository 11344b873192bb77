"""
Account persistence.

``AccountStore`` is constructed per request around one ``AsyncSession``. Every
state transition is a single UPDATE keyed by a unique column, so concurrent
requests for the same account serialize in the database rather than in
application memory. Conditional updates return whether they matched, letting
callers detect a lost race.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from keygate.core.errors import AuthError, ErrorKind
from keygate.domain import AccountRecord
from keygate.models.account import Account
from keygate_shared.schemas.common import OriginKind

log = structlog.get_logger()


class AccountStore:
    def __init__(self, session: AsyncSession):
        self._session = session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _one(self, *criteria) -> Optional[AccountRecord]:
        stmt = select(Account).where(*criteria).execution_options(populate_existing=True)
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise self._unavailable(exc) from exc
        row = result.scalar_one_or_none()
        return AccountRecord.model_validate(row) if row is not None else None

    async def get_by_id(self, account_id: int) -> Optional[AccountRecord]:
        return await self._one(Account.id == account_id)

    async def get_by_email(self, email: str) -> Optional[AccountRecord]:
        return await self._one(Account.email == email)

    async def get_by_google_id(self, google_id: str) -> Optional[AccountRecord]:
        return await self._one(Account.google_id == google_id)

    async def list_accounts(self) -> list[AccountRecord]:
        stmt = select(Account).order_by(Account.created_at.desc(), Account.id.desc())
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise self._unavailable(exc) from exc
        return [AccountRecord.model_validate(row) for row in result.scalars().all()]

    async def count(self) -> int:
        try:
            result = await self._session.execute(select(func.count()).select_from(Account))
        except SQLAlchemyError as exc:
            raise self._unavailable(exc) from exc
        return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        *,
        email: str,
        name: str,
        provider: OriginKind,
        password_hash: Optional[str] = None,
        google_id: Optional[str] = None,
        profile_picture: Optional[str] = None,
        email_verified: bool = False,
    ) -> AccountRecord:
        """Insert a new account. A unique-key collision raises DUPLICATE."""
        row = Account(
            email=email,
            name=name,
            provider=provider.value,
            password_hash=password_hash,
            google_id=google_id,
            profile_picture=profile_picture,
            email_verified=email_verified,
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            await self._session.rollback()
            log.info("account.create_conflict", email=email, provider=provider.value)
            raise AuthError(ErrorKind.DUPLICATE, "account already exists") from exc
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise self._unavailable(exc) from exc
        await self._session.refresh(row)
        return AccountRecord.model_validate(row)

    # ------------------------------------------------------------------
    # Password reset challenge
    # ------------------------------------------------------------------

    async def set_reset_challenge(
        self, email: str, code: str, issued_at: datetime, expires_at: datetime
    ) -> bool:
        """Overwrite any existing challenge. Returns False when no account matched."""
        return await self._update(
            (Account.email == email,),
            reset_otp=code,
            otp_created_at=issued_at,
            otp_expires_at=expires_at,
            updated_at=issued_at,
        )

    async def clear_reset_challenge(
        self, email: str, now: datetime, *, code: Optional[str] = None
    ) -> bool:
        """Clear the challenge; with ``code`` only if that exact code is still stored."""
        criteria = [Account.email == email]
        if code is not None:
            criteria.append(Account.reset_otp == code)
        return await self._update(
            tuple(criteria),
            reset_otp=None,
            otp_created_at=None,
            otp_expires_at=None,
            updated_at=now,
        )

    async def complete_reset(
        self, email: str, code: str, password_hash: str, now: datetime
    ) -> bool:
        """Swap in a new credential and drop the challenge in one statement.

        Matches only while the given code is still stored and unexpired.
        """
        return await self._update(
            (
                Account.email == email,
                Account.reset_otp == code,
                Account.otp_expires_at >= now,
            ),
            password_hash=password_hash,
            password_updated_at=now,
            reset_otp=None,
            otp_created_at=None,
            otp_expires_at=None,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # External identity
    # ------------------------------------------------------------------

    async def refresh_external_identity(
        self,
        account_id: int,
        *,
        name: str,
        profile_picture: Optional[str],
        now: datetime,
    ) -> bool:
        return await self._update(
            (Account.id == account_id,),
            name=name,
            profile_picture=profile_picture,
            email_verified=True,
            updated_at=now,
        )

    async def link_external_identity(
        self,
        account_id: int,
        *,
        google_id: str,
        profile_picture: Optional[str],
        now: datetime,
    ) -> bool:
        """Attach an external id to an account that has none yet."""
        values = {
            "google_id": google_id,
            "provider": OriginKind.GOOGLE.value,
            "email_verified": True,
            "updated_at": now,
        }
        if profile_picture is not None:
            values["profile_picture"] = func.coalesce(Account.profile_picture, profile_picture)
        try:
            return await self._update(
                (Account.id == account_id, Account.google_id.is_(None)), **values
            )
        except IntegrityError as exc:
            await self._session.rollback()
            raise AuthError(ErrorKind.DUPLICATE, "external identity already linked") from exc

    async def commit(self) -> None:
        """Make the changes so far durable ahead of the request-level commit."""
        try:
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise self._unavailable(exc) from exc

    # ------------------------------------------------------------------

    async def _update(self, criteria: tuple, **values) -> bool:
        stmt = (
            update(Account)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise self._unavailable(exc) from exc
        return result.rowcount > 0

    @staticmethod
    def _unavailable(exc: SQLAlchemyError) -> AuthError:
        log.error("account.storage_error", error=type(exc).__name__)
        return AuthError(ErrorKind.STORAGE_UNAVAILABLE, "account storage unavailable")
