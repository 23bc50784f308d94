"""Base (EVM) adapter: Transfer log subscriptions and receipt decoding.

Each wallet gets two log filters (outgoing and incoming Transfer), so a swap
usually arrives twice; the monitor's dedupe cache absorbs the repeat.

Token deltas here are relative (pre=0, post=inflow-outflow) because receipts
carry transfers, not balances. Prior holdings of the source are checked with
balanceOf at the previous block instead.
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

# ERC-20 Transfer(address,address,uint256) event topic
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
BALANCE_OF_SELECTOR = "0x70a08231"

_FETCH_ATTEMPTS = 3
_FETCH_DELAY = 0.5


def pad_address(address: str) -> str:
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


def topic_to_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def _hex_to_int(value: str | None) -> int:
    if not value or value == "0x":
        return 0
    return int(value, 16)


def decode_receipt(
    receipt: dict, tx: dict | None, wallets: Sequence[WatchedWallet]
) -> ChainEvent | None:
    """Build a ChainEvent from a receipt (+ the tx for native value). None if reverted."""
    if _hex_to_int(receipt.get("status")) == 0:
        return None

    tx = tx or {}
    tx_hash = receipt.get("transactionHash") or tx.get("hash", "")
    sender = (tx.get("from") or receipt.get("from") or "").lower()
    touched = {sender} if sender else set()
    if receipt.get("to") or tx.get("to"):
        touched.add((receipt.get("to") or tx.get("to")).lower())

    # token -> (inflow, outflow) per watched wallet, in log order
    flows: dict[str, dict[str, list[int]]] = {w.address: {} for w in wallets}
    for log in receipt.get("logs") or []:
        topics = log.get("topics") or []
        # Three topics = ERC-20; ERC-721 puts the token id in a fourth
        if len(topics) != 3 or topics[0].lower() != TRANSFER_TOPIC:
            continue
        token = (log.get("address") or "").lower()
        src = topic_to_address(topics[1])
        dst = topic_to_address(topics[2])
        amount = _hex_to_int(log.get("data"))
        touched.update((src, dst))
        if dst in flows:
            flows[dst].setdefault(token, [0, 0])[0] += amount
        if src in flows:
            flows[src].setdefault(token, [0, 0])[1] += amount

    block = receipt.get("blockNumber")
    event = ChainEvent(
        key=tx_hash,
        chain=Chain.BASE,
        touched=touched,
        block=_hex_to_int(block) if block else None,
    )
    value = _hex_to_int(tx.get("value"))
    for wallet in wallets:
        if wallet.address not in touched:
            continue
        activity = WalletActivity(native_spent=sender == wallet.address and value > 0)
        for token, (inflow, outflow) in flows[wallet.address].items():
            net = inflow - outflow
            if net != 0:
                activity.deltas.append(TokenBalanceDelta(token, Decimal(0), Decimal(net)))
        event.activity[wallet.address] = activity
    return event


class BaseChainAdapter(ChainAdapter):
    chain = Chain.BASE

    def __init__(self, rpc: JsonRpcClient, ws_url: str) -> None:
        self.rpc = rpc
        self.ws_url = ws_url

    async def subscribe(self, wallets: Sequence[WatchedWallet]) -> AsyncIterator[RawNotification]:
        requests = []
        for wallet in wallets:
            padded = pad_address(wallet.address)
            for topics in ([TRANSFER_TOPIC, padded, None], [TRANSFER_TOPIC, None, padded]):
                requests.append({
                    "jsonrpc": "2.0",
                    "id": len(requests) + 1,
                    "method": "eth_subscribe",
                    "params": ["logs", {"topics": topics}],
                })
        async for params in self._subscribe_ws(self.ws_url, requests):
            log = params.get("result") or {}
            tx_hash = log.get("transactionHash")
            if not tx_hash:
                logger.debug("[BASE] Log without transaction hash ignored")
                continue
            if log.get("removed"):
                continue
            yield RawNotification(chain=self.chain, key=tx_hash.lower(), payload=log)

    async def fetch_event(
        self, raw: RawNotification, wallets: Sequence[WatchedWallet]
    ) -> ChainEvent | None:
        receipt = None
        for attempt in range(_FETCH_ATTEMPTS):
            receipt = await self.rpc.call("eth_getTransactionReceipt", [raw.key])
            if receipt:
                break
            await asyncio.sleep(_FETCH_DELAY * (attempt + 1))
        if not receipt:
            logger.warning("[BASE] Receipt for %s not available, dropping", raw.key[:12])
            return None
        tx = await self.rpc.call("eth_getTransactionByHash", [raw.key])
        return decode_receipt(receipt, tx, wallets)

    async def native_balance(self, address: str) -> int:
        return _hex_to_int(await self.rpc.call("eth_getBalance", [address, "latest"]))

    async def token_balance(self, owner: str, token: str, block: str = "latest") -> int:
        data = BALANCE_OF_SELECTOR + pad_address(owner)[2:]
        result = await self.rpc.call("eth_call", [{"to": token, "data": data}, block])
        return _hex_to_int(result)

    async def source_held_before(self, purchase: Purchase) -> bool:
        if not purchase.block:
            return False
        balance = await self.token_balance(
            purchase.source_wallet.address, purchase.token, hex(purchase.block - 1)
        )
        return balance > 0
