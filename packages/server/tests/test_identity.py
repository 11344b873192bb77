"""Tests for reconciling Google identities with local accounts."""

import pytest
from sqlalchemy import update

from keygate.core.errors import AuthError, ErrorKind
from keygate.core.security import verify_password
from keygate.domain import ExternalAssertion
from keygate.models.account import Account
from keygate_shared.schemas.common import OriginKind


def _assertion(**overrides) -> ExternalAssertion:
    values = {
        "provider_id": "g-123",
        "email": "ann@example.com",
        "name": "Ann Google",
        "avatar_url": "https://img.example.com/ann.png",
    }
    values.update(overrides)
    return ExternalAssertion(**values)


class TestIncompleteAssertion:
    @pytest.mark.parametrize("missing", ["provider_id", "email"])
    async def test_rejected_without_side_effects(self, resolver, store, missing):
        with pytest.raises(AuthError) as exc:
            await resolver.resolve(_assertion(**{missing: None}))
        assert exc.value.kind is ErrorKind.INCOMPLETE_ASSERTION
        assert await store.count() == 0


class TestCreate:
    async def test_new_federated_account(self, resolver):
        account = await resolver.resolve(_assertion())
        assert account.provider == OriginKind.GOOGLE
        assert account.google_id == "g-123"
        assert account.email_verified is True
        assert account.has_credential is False
        assert account.profile_picture == "https://img.example.com/ann.png"

    async def test_name_falls_back_to_email(self, resolver):
        account = await resolver.resolve(_assertion(name=None))
        assert account.name == "ann@example.com"

    async def test_idempotent(self, resolver, store):
        first = await resolver.resolve(_assertion())
        second = await resolver.resolve(_assertion())
        assert first.id == second.id
        assert await store.count() == 1


class TestReauthenticate:
    async def test_refreshes_profile(self, resolver, clock):
        first = await resolver.resolve(_assertion())
        clock.advance(days=1)
        again = await resolver.resolve(
            _assertion(name="Ann Renamed", avatar_url="https://img.example.com/new.png")
        )
        assert again.id == first.id
        assert again.name == "Ann Renamed"
        assert again.profile_picture == "https://img.example.com/new.png"
        assert again.updated_at == clock.now


class TestLink:
    async def test_links_registered_account_and_keeps_credential(self, credentials, resolver, store):
        registered = await credentials.register("Ann", "ann@example.com", "secret1")

        account = await resolver.resolve(_assertion())

        assert account.id == registered.id
        assert account.google_id == "g-123"
        assert account.provider == OriginKind.GOOGLE
        assert account.email_verified is True
        assert verify_password("secret1", account.password_hash)
        assert await store.count() == 1
        # Password login still works after linking.
        await credentials.verify_credential("ann@example.com", "secret1")

    async def test_existing_avatar_is_kept(self, credentials, resolver, session):
        registered = await credentials.register("Ann", "ann@example.com", "secret1")
        await session.execute(
            update(Account)
            .where(Account.id == registered.id)
            .values(profile_picture="https://img.example.com/own.png")
        )

        account = await resolver.resolve(_assertion())
        assert account.profile_picture == "https://img.example.com/own.png"

    async def test_email_linked_to_other_identity(self, resolver, store):
        await resolver.resolve(_assertion(provider_id="g-original"))
        with pytest.raises(AuthError) as exc:
            await resolver.resolve(_assertion(provider_id="g-intruder"))
        assert exc.value.kind is ErrorKind.DUPLICATE

        account = await store.get_by_email("ann@example.com")
        assert account.google_id == "g-original"

    async def test_concurrent_link_is_retried(self, credentials, resolver, store, monkeypatch):
        registered = await credentials.register("Ann", "ann@example.com", "secret1")
        real_link = store.link_external_identity

        async def link_after_competitor(account_id, **kwargs):
            # The competing request links first, so ours matches no row.
            await real_link(account_id, **kwargs)
            return await real_link(account_id, **kwargs)

        monkeypatch.setattr(store, "link_external_identity", link_after_competitor)

        account = await resolver.resolve(_assertion())
        assert account.id == registered.id
        assert account.google_id == "g-123"
        assert await store.count() == 1

    async def test_concurrent_create_is_retried(self, resolver, store, session, monkeypatch):
        real_create = store.create

        async def create_after_competitor(**kwargs):
            await real_create(**kwargs)
            await session.commit()
            return await real_create(**kwargs)

        monkeypatch.setattr(store, "create", create_after_competitor)

        account = await resolver.resolve(_assertion())
        assert account.google_id == "g-123"
        assert await store.count() == 1
