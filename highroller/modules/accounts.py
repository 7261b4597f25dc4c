# highroller/modules/accounts.py
"""Login and registration.

Logging in under an unknown name creates the account with the starting
balance. Secrets are stored as given; see DESIGN.md before exposing this
server beyond a trusted network.
"""
from __future__ import annotations
import asyncio
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from highroller.inc.errors import InvalidCredentials, OriginTaken
from highroller.inc.store import Account, AccountStore
from highroller.modules.rules import HouseRules

log = logging.getLogger("highroller.modules.accounts")

MAX_NAME_LENGTH = 24


async def _run_blocking(func, *args):
    return await asyncio.to_thread(func, *args)


@dataclass
class LoginResult:
    account: Account
    created: bool


def normalize_name(value) -> str:
    name = " ".join(str(value or "").split())
    if not name or len(name) > MAX_NAME_LENGTH:
        raise InvalidCredentials(f"name must be 1-{MAX_NAME_LENGTH} characters")
    return name


def _secret_matches(given: str, stored: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), stored.encode("utf-8"))


async def authenticate(
    store: AccountStore,
    rules: HouseRules,
    name,
    secret,
    origin: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> LoginResult:
    name = normalize_name(name)
    secret = str(secret or "")
    if not secret:
        raise InvalidCredentials("password required")

    account = await _run_blocking(store.get_account, name)
    if account is None:
        if rules.one_account_per_origin and origin:
            existing = await _run_blocking(store.find_account_by_origin, origin)
            if existing is not None:
                log.info("refused registration of %r from %s (already used by %r)", name, origin, existing.name)
                raise OriginTaken()
        now = clock()
        account = Account(
            name=name,
            secret=secret,
            chips=rules.starting_balance,
            origin=origin,
            created_at=now,
            last_active=now,
            last_bonus=now,
        )
        if await _run_blocking(store.create_account, account):
            log.info("registered new player %r", name)
            return LoginResult(account=account, created=True)
        # lost a registration race; fall through to the normal check
        account = await _run_blocking(store.get_account, name)
        if account is None:
            raise InvalidCredentials()

    if not _secret_matches(secret, account.secret):
        log.debug("wrong password for %r", name)
        raise InvalidCredentials()
    await _run_blocking(store.touch, name, clock())
    return LoginResult(account=account, created=False)
