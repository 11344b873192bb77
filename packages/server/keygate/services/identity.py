"""
Reconciles an external identity assertion with local accounts.

Resolution order, first match wins:
  1. account already linked to the external id -> refresh profile fields
  2. account with the asserted email -> link it (credential kept)
  3. otherwise -> create a federated account without a credential
"""

from __future__ import annotations

import structlog

from keygate.core.errors import AuthError, ErrorKind
from keygate.domain import AccountRecord, ExternalAssertion
from keygate.services.credentials import Clock, utcnow
from keygate.services.store import AccountStore
from keygate_shared.schemas.common import OriginKind

log = structlog.get_logger()


class IdentityResolver:
    def __init__(self, store: AccountStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    async def resolve(self, assertion: ExternalAssertion) -> AccountRecord:
        if not assertion.provider_id or not assertion.email:
            raise AuthError(
                ErrorKind.INCOMPLETE_ASSERTION, "assertion lacks email or external id"
            )

        account = await self._resolve_once(assertion)
        if account is None:
            # A concurrent resolution changed the rows we looked at; the second
            # pass sees their result through step 1 or 2.
            log.info("identity.resolve_retry", email=assertion.email)
            account = await self._resolve_once(assertion)
        if account is None:
            raise AuthError(ErrorKind.DUPLICATE, "identity changed during resolution")
        return account

    async def _resolve_once(self, assertion: ExternalAssertion) -> AccountRecord | None:
        provider_id = assertion.provider_id
        email = assertion.email
        name = assertion.name or email
        now = self.clock()

        account = await self.store.get_by_google_id(provider_id)
        if account is not None:
            await self.store.refresh_external_identity(
                account.id, name=name, profile_picture=assertion.avatar_url, now=now
            )
            log.info("identity.reauthenticated", account_id=account.id)
            return await self.store.get_by_id(account.id)

        account = await self.store.get_by_email(email)
        if account is not None:
            if account.google_id is not None and account.google_id != provider_id:
                log.warning("identity.email_linked_elsewhere", account_id=account.id)
                raise AuthError(
                    ErrorKind.DUPLICATE, "email already linked to another external identity"
                )
            linked = await self.store.link_external_identity(
                account.id,
                google_id=provider_id,
                profile_picture=assertion.avatar_url,
                now=now,
            )
            if not linked:
                return None
            log.info("identity.linked", account_id=account.id, email=email)
            return await self.store.get_by_id(account.id)

        try:
            account = await self.store.create(
                email=email,
                name=name,
                provider=OriginKind.GOOGLE,
                google_id=provider_id,
                profile_picture=assertion.avatar_url,
                email_verified=True,
            )
        except AuthError as exc:
            if exc.kind is ErrorKind.DUPLICATE:
                return None
            raise
        log.info("identity.created", account_id=account.id, email=email)
        return account
