"""Keep the ledger in line with what the operator wallet actually holds.

Tokens sold or transferred out by hand would otherwise stay in the ledger and
block future copies of the same token.
"""

import asyncio
import logging

from copytrade_bot.chains.adapter import ChainAdapter
from copytrade_bot.core.errors import LedgerUnavailable
from copytrade_bot.core.ledger import HoldingsLedger
from copytrade_bot.core.models import Chain

logger = logging.getLogger(__name__)


class HoldingsReconciler:
    def __init__(
        self,
        ledger: HoldingsLedger,
        adapters: dict[Chain, ChainAdapter],
        operators: dict[Chain, str],
    ) -> None:
        self.ledger = ledger
        self.adapters = adapters
        self.operators = operators

    @property
    def chains(self) -> list[Chain]:
        return list(self.adapters)

    async def reconcile(self, chain: Chain) -> dict[str, str | None]:
        """Drop zero balances, refresh amounts. Returns the surviving holdings."""
        adapter = self.adapters[chain]
        operator = self.operators[chain]
        holdings = await self.ledger.all(chain)
        current: dict[str, str | None] = {}

        for token, stored in holdings.items():
            try:
                balance = await adapter.token_balance(operator, token)
            except Exception as exc:
                # Keep what we have; the next pass tries again
                logger.warning("[%s] Balance check failed for %s: %s", chain.display_name, token, exc)
                current[token] = stored
                continue

            if balance == 0:
                logger.info("[%s] %s balance is zero, removing from holdings", chain.display_name, token)
                await self.ledger.remove(chain, token)
                continue
            if str(balance) != stored:
                await self.ledger.add(chain, token, balance)
            current[token] = str(balance)

        return current

    async def reconcile_all(self) -> dict[Chain, dict[str, str | None]]:
        results: dict[Chain, dict[str, str | None]] = {}
        for chain in self.chains:
            try:
                results[chain] = await self.reconcile(chain)
            except LedgerUnavailable as exc:
                logger.error("[%s] Holdings reconcile skipped: %s", chain.display_name, exc)
        return results


async def reconcile_loop(reconciler: HoldingsReconciler, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            results = await reconciler.reconcile_all()
            logger.info(
                "Holdings reconciled: %s",
                ", ".join(f"{c.display_name}={len(h)}" for c, h in results.items()) or "none",
            )
        except Exception:
            logger.exception("Error in holdings reconcile loop")
