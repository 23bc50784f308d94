"""Solana adapter: logsSubscribe per wallet, getTransaction balance diffs.

Token deltas come from meta.pre/postTokenBalances filtered by owner, so they
are absolute balances: `pre_amount > 0` means the wallet already held the mint.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from decimal import Decimal

from copytrade_bot.chains.adapter import ChainAdapter
from copytrade_bot.chains.rpc import JsonRpcClient
from copytrade_bot.core.models import (
    Chain,
    ChainEvent,
    Purchase,
    RawNotification,
    TokenBalanceDelta,
    WalletActivity,
    WatchedWallet,
)

logger = logging.getLogger(__name__)

WSOL_MINT = "So11111111111111111111111111111111111111112"

_FETCH_ATTEMPTS = 3
_FETCH_DELAY = 0.5


def _account_keys(tx: dict) -> list[str]:
    message = (tx.get("transaction") or {}).get("message") or {}
    keys = [
        k if isinstance(k, str) else k.get("pubkey", "")
        for k in message.get("accountKeys") or []
    ]
    meta = tx.get("meta") or {}
    loaded = meta.get("loadedAddresses") or {}
    # jsonParsed already lists lookup-table keys; plain "json" encoding does not
    if len(keys) < len(meta.get("preBalances") or []):
        keys += list(loaded.get("writable") or []) + list(loaded.get("readonly") or [])
    return keys


def _token_totals(entries: list[dict]) -> dict[tuple[str, str], Decimal]:
    totals: dict[tuple[str, str], Decimal] = {}
    for entry in entries:
        owner = entry.get("owner")
        mint = entry.get("mint")
        if not owner or not mint:
            continue
        amount = Decimal((entry.get("uiTokenAmount") or {}).get("amount") or "0")
        totals[(owner, mint)] = totals.get((owner, mint), Decimal(0)) + amount
    return totals


def decode_transaction(
    tx: dict, signature: str, wallets: Sequence[WatchedWallet]
) -> ChainEvent | None:
    """Build a ChainEvent from a getTransaction result. None for failed txs."""
    meta = tx.get("meta")
    if not meta or meta.get("err") is not None:
        return None

    keys = _account_keys(tx)
    pre_tokens = meta.get("preTokenBalances") or []
    post_tokens = meta.get("postTokenBalances") or []
    pre_totals = _token_totals(pre_tokens)
    post_totals = _token_totals(post_tokens)

    touched = set(keys)
    touched.update(owner for owner, _ in pre_totals)
    touched.update(owner for owner, _ in post_totals)

    event = ChainEvent(key=signature, chain=Chain.SOLANA, touched=touched, block=tx.get("slot"))

    pre_balances = meta.get("preBalances") or []
    post_balances = meta.get("postBalances") or []
    fee = int(meta.get("fee") or 0)

    for wallet in wallets:
        if wallet.address not in touched:
            continue
        activity = WalletActivity()

        # Mint order follows postTokenBalances so "first increase wins" is stable
        seen: set[str] = set()
        for entry in [*post_tokens, *pre_tokens]:
            mint = entry.get("mint")
            if entry.get("owner") != wallet.address or not mint or mint in seen:
                continue
            seen.add(mint)
            pre = pre_totals.get((wallet.address, mint), Decimal(0))
            post = post_totals.get((wallet.address, mint), Decimal(0))
            if pre != post:
                activity.deltas.append(TokenBalanceDelta(mint, pre, post))

        if wallet.address in keys:
            idx = keys.index(wallet.address)
            if idx < len(pre_balances) and idx < len(post_balances):
                change = post_balances[idx] - pre_balances[idx]
                if idx == 0:
                    change += fee  # fee payer; the fee alone is not a purchase
                activity.native_spent = change < 0

        event.activity[wallet.address] = activity

    return event


class SolanaAdapter(ChainAdapter):
    chain = Chain.SOLANA

    def __init__(self, rpc: JsonRpcClient, ws_url: str, commitment: str = "confirmed") -> None:
        self.rpc = rpc
        self.ws_url = ws_url
        self.commitment = commitment

    async def subscribe(self, wallets: Sequence[WatchedWallet]) -> AsyncIterator[RawNotification]:
        # logsSubscribe accepts a single pubkey per "mentions" filter
        requests = [
            {
                "jsonrpc": "2.0",
                "id": i,
                "method": "logsSubscribe",
                "params": [{"mentions": [w.address]}, {"commitment": self.commitment}],
            }
            for i, w in enumerate(wallets, start=1)
        ]
        async for params in self._subscribe_ws(self.ws_url, requests):
            value = (params.get("result") or {}).get("value") or {}
            signature = value.get("signature")
            if not signature:
                continue
            yield RawNotification(chain=self.chain, key=signature, payload=value)

    async def fetch_event(
        self, raw: RawNotification, wallets: Sequence[WatchedWallet]
    ) -> ChainEvent | None:
        if raw.payload.get("err") is not None:
            logger.debug("[SOLANA] %s failed on-chain, skipping", raw.key[:16])
            return None

        tx = None
        for attempt in range(_FETCH_ATTEMPTS):
            tx = await self.rpc.call(
                "getTransaction",
                [
                    raw.key,
                    {
                        "encoding": "jsonParsed",
                        "maxSupportedTransactionVersion": 0,
                        "commitment": self.commitment,
                    },
                ],
            )
            if tx:
                break
            await asyncio.sleep(_FETCH_DELAY * (attempt + 1))
        if not tx:
            logger.warning("[SOLANA] Transaction %s not available, dropping", raw.key[:16])
            return None
        return decode_transaction(tx, raw.key, wallets)

    async def native_balance(self, address: str) -> int:
        result = await self.rpc.call("getBalance", [address, {"commitment": self.commitment}])
        return int((result or {}).get("value") or 0)

    async def token_balance(self, owner: str, token: str) -> int:
        result = await self.rpc.call(
            "getTokenAccountsByOwner",
            [owner, {"mint": token}, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        total = 0
        for account in (result or {}).get("value") or []:
            info = account["account"]["data"]["parsed"]["info"]
            total += int(info["tokenAmount"]["amount"])
        return total

    async def source_held_before(self, purchase: Purchase) -> bool:
        return purchase.pre_amount is not None and purchase.pre_amount > 0
