"""Pre-trade checks, run in order before every copy trade.

Each check returns a SkipReason or None. Lookups that fail (RPC errors) are
not swallowed here; the executor turns them into a terminal failure.
"""

import logging
from dataclasses import dataclass

from copytrade_bot.chains.adapter import ChainAdapter
from copytrade_bot.core.errors import InsufficientFunds, LedgerUnavailable
from copytrade_bot.core.ledger import HoldingsLedger
from copytrade_bot.core.models import Purchase, TradeConfig

logger = logging.getLogger(__name__)

ALREADY_HELD = "already_held"
ACCUMULATING = "accumulating"
INSUFFICIENT_FUNDS = "insufficient_funds"


@dataclass(frozen=True)
class SkipReason:
    code: str
    message: str
    required: int = 0
    available: int = 0


async def check_already_held(ledger: HoldingsLedger, purchase: Purchase) -> SkipReason | None:
    """Skip if we already hold the token. An unreadable ledger counts as 'not held'."""
    try:
        held = await ledger.has(purchase.chain, purchase.token)
    except LedgerUnavailable as exc:
        logger.warning(
            "[%s] Ledger check failed for %s, assuming not held: %s",
            purchase.chain.display_name, purchase.token, exc,
        )
        return None
    if held:
        return SkipReason(ALREADY_HELD, "Already holding this token")
    return None


async def check_accumulating(adapter: ChainAdapter, purchase: Purchase) -> SkipReason | None:
    """Only copy first entries: skip if the source wallet held the token before."""
    if await adapter.source_held_before(purchase):
        return SkipReason(ACCUMULATING, "Only copying initial entries")
    return None


def require_balance(available: int, trade_config: TradeConfig) -> None:
    required = trade_config.required_balance
    if available < required:
        raise InsufficientFunds(required, available)


async def check_native_balance(
    adapter: ChainAdapter, operator: str, trade_config: TradeConfig
) -> SkipReason | None:
    available = await adapter.native_balance(operator)
    try:
        require_balance(available, trade_config)
    except InsufficientFunds as exc:
        return SkipReason(INSUFFICIENT_FUNDS, str(exc), exc.required, exc.available)
    return None


async def run_all_checks(
    purchase: Purchase,
    ledger: HoldingsLedger,
    adapter: ChainAdapter,
    operator: str,
    trade_config: TradeConfig,
) -> SkipReason | None:
    """Run the checks in order. Returns the first skip, or None if all pass."""
    result = await check_already_held(ledger, purchase)
    if result is None:
        result = await check_accumulating(adapter, purchase)
    if result is None:
        result = await check_native_balance(adapter, operator, trade_config)
    return result
