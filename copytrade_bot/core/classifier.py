"""Activity classifier: turns a decoded transaction into Purchase / Sell / Ignore.

Pure functions: no I/O, no clock. The monitor dedupes on the event key before
calling in here, so the same transaction is never classified twice.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable

from copytrade_bot.core.models import (
    ChainEvent,
    Decision,
    Ignore,
    Purchase,
    Sell,
    WatchedWallet,
)

logger = logging.getLogger(__name__)


def classify_all(
    event: ChainEvent,
    watched_wallets: Iterable[WatchedWallet],
    skip_tokens: Collection[str],
    ledger_snapshot: Collection[str],
) -> list[Decision]:
    """Every decision for one event: all sells of held tokens, then at most one purchase."""
    sells: list[Decision] = []
    purchase: Purchase | None = None

    for wallet in watched_wallets:
        if wallet.address not in event.touched:
            continue
        activity = event.activity.get(wallet.address)
        if activity is None:
            continue

        for delta in activity.deltas:
            if delta.token in skip_tokens:
                continue
            if delta.decreased and delta.token in ledger_snapshot:
                sells.append(
                    Sell(
                        chain=event.chain,
                        token=delta.token,
                        source_wallet=wallet,
                        event_key=event.key,
                    )
                )

        if purchase is not None:
            continue

        increases = [
            d for d in activity.deltas if d.increased and d.token not in skip_tokens
        ]
        if not increases:
            continue
        if not activity.spent_anything:
            # Airdrop / disperse: tokens arrived but nothing left the wallet
            logger.debug(
                "[%s] %s received %s without spending, ignoring",
                event.chain.display_name,
                wallet.label,
                increases[0].token,
            )
            continue

        first = increases[0]
        if len(increases) > 1:
            logger.debug(
                "[%s] %d increases in %s, copying only %s",
                event.chain.display_name,
                len(increases),
                event.key,
                first.token,
            )
        purchase = Purchase(
            chain=event.chain,
            token=first.token,
            source_wallet=wallet,
            event_key=event.key,
            pre_amount=first.pre_amount,
            post_amount=first.post_amount,
            block=event.block,
        )

    if purchase is not None:
        return [*sells, purchase]
    return sells


def classify(
    event: ChainEvent,
    watched_wallets: Iterable[WatchedWallet],
    skip_tokens: Collection[str],
    ledger_snapshot: Collection[str],
) -> Decision:
    """Single decision: the purchase if any, else the first sell, else Ignore."""
    wallets = list(watched_wallets)
    if not any(w.address in event.touched for w in wallets):
        return Ignore("no watched wallet involved")

    decisions = classify_all(event, wallets, skip_tokens, ledger_snapshot)
    for decision in decisions:
        if isinstance(decision, Purchase):
            return decision
    if decisions:
        return decisions[0]
    return Ignore("no qualifying balance change")
