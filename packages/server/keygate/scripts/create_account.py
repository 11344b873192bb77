"""
Create a local email/password account, e.g. the first administrator.

    python -m keygate.scripts.create_account --email admin@example.com --password s3cret!
"""

import argparse
import asyncio
import sys

import structlog

from keygate.core.config import get_settings
from keygate.core.database import get_session_context
from keygate.core.errors import AuthError, ErrorKind
from keygate.core.logging import configure_logging
from keygate.domain import AccountRecord
from keygate.services.credentials import CredentialService
from keygate.services.notifications import LogDispatcher
from keygate.services.store import AccountStore
from keygate_shared.schemas.auth import PASSWORD_MIN_LENGTH

log = structlog.get_logger()


async def create_account(store: AccountStore, name: str, email: str, password: str) -> AccountRecord:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    service = CredentialService(store, LogDispatcher(), get_settings())
    return await service.register(name, email, password)


async def _main(name: str, email: str, password: str) -> int:
    async with get_session_context() as session:
        try:
            account = await create_account(AccountStore(session), name, email, password)
        except AuthError as exc:
            if exc.kind is ErrorKind.DUPLICATE:
                print(f"An account for {email} already exists.", file=sys.stderr)
                return 1
            raise
    print(f"Created account {account.id} for {account.email}.")
    return 0


def run() -> None:
    parser = argparse.ArgumentParser(description="Create a local Keygate account")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--name", default=None, help="Display name (defaults to the email)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, "text")
    try:
        code = asyncio.run(_main(args.name or args.email, args.email, args.password))
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    run()
