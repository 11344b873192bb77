"""Administrator membership."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from keygate.core.config import Settings


@dataclass(frozen=True)
class AdminPolicy:
    emails: frozenset[str]

    @classmethod
    def from_emails(cls, emails: Iterable[str]) -> "AdminPolicy":
        return cls(frozenset(e.strip() for e in emails if e and e.strip()))

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdminPolicy":
        return cls.from_emails(settings.admin_emails)

    def is_admin(self, email: str) -> bool:
        return email in self.emails
