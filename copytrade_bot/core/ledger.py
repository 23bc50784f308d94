"""Holdings ledger: the only path through which holdings are read or written.

The backing store just needs per-key atomic add/remove/has/list. Tokens are
normalised per chain here, so the store never sees two spellings of one address.
"""

from __future__ import annotations

import logging
from typing import Protocol

from copytrade_bot.core.errors import LedgerUnavailable
from copytrade_bot.core.models import Chain

logger = logging.getLogger(__name__)


class HoldingsStore(Protocol):
    async def add(self, chain: str, token: str, amount: str | None) -> None: ...

    async def remove(self, chain: str, token: str) -> None: ...

    async def has(self, chain: str, token: str) -> bool: ...

    async def all(self, chain: str) -> dict[str, str | None]: ...


class HoldingsLedger:
    def __init__(self, store: HoldingsStore) -> None:
        self._store = store

    async def add(self, chain: Chain, token: str, amount: str | int | None = None) -> None:
        token = chain.normalize(token)
        value = str(amount) if amount is not None else None
        try:
            await self._store.add(chain.value, token, value)
        except LedgerUnavailable:
            raise
        except Exception as exc:
            raise LedgerUnavailable(f"add {chain.value}:{token} failed: {exc}") from exc
        logger.info("[%s] Ledger: holding %s (amount=%s)", chain.display_name, token, value or "?")

    async def remove(self, chain: Chain, token: str) -> None:
        token = chain.normalize(token)
        try:
            await self._store.remove(chain.value, token)
        except LedgerUnavailable:
            raise
        except Exception as exc:
            raise LedgerUnavailable(f"remove {chain.value}:{token} failed: {exc}") from exc
        logger.info("[%s] Ledger: removed %s", chain.display_name, token)

    async def has(self, chain: Chain, token: str) -> bool:
        try:
            return await self._store.has(chain.value, chain.normalize(token))
        except LedgerUnavailable:
            raise
        except Exception as exc:
            raise LedgerUnavailable(f"has {chain.value}:{token} failed: {exc}") from exc

    async def all(self, chain: Chain) -> dict[str, str | None]:
        try:
            return await self._store.all(chain.value)
        except LedgerUnavailable:
            raise
        except Exception as exc:
            raise LedgerUnavailable(f"list {chain.value} failed: {exc}") from exc
