"""Session identity mapping: what goes into a token and how it comes back."""

from __future__ import annotations

from typing import Optional

from keygate.domain import AccountRecord
from keygate.services.store import AccountStore


def serialize(account: AccountRecord) -> int:
    return account.id


async def deserialize(store: AccountStore, account_id: int) -> Optional[AccountRecord]:
    return await store.get_by_id(account_id)
