"""Chain adapter interface: everything chain-specific the monitor and executor need."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

import websockets

from copytrade_bot.core.errors import RpcError
from copytrade_bot.core.models import Chain, ChainEvent, Purchase, RawNotification, WatchedWallet

logger = logging.getLogger(__name__)


class ChainAdapter(ABC):
    chain: Chain

    @abstractmethod
    def subscribe(self, wallets: Sequence[WatchedWallet]) -> AsyncIterator[RawNotification]:
        """Yield raw activity notifications for the wallets until the transport drops."""

    @abstractmethod
    async def fetch_event(
        self, raw: RawNotification, wallets: Sequence[WatchedWallet]
    ) -> ChainEvent | None:
        """Fetch and decode the transaction behind a notification (None = nothing to do)."""

    @abstractmethod
    async def native_balance(self, address: str) -> int:
        """Spendable native balance in base units (lamports / wei)."""

    @abstractmethod
    async def token_balance(self, owner: str, token: str) -> int:
        """Token balance of `owner` in raw base units."""

    @abstractmethod
    async def source_held_before(self, purchase: Purchase) -> bool:
        """Did the source wallet already hold the token before this event?"""

    async def _subscribe_ws(self, url: str, requests: list[dict]) -> AsyncIterator[dict]:
        """Open a JSON-RPC pubsub socket, send `requests`, yield each notification's params."""
        async with websockets.connect(url, ping_interval=20, ping_timeout=20, max_size=None) as ws:
            for req in requests:
                await ws.send(json.dumps(req))
            pending = {req["id"] for req in requests}
            async for message in ws:
                try:
                    data = json.loads(message)
                except ValueError:
                    logger.debug("[%s] Non-JSON frame ignored", self.chain.display_name)
                    continue
                if "id" in data and data["id"] in pending:
                    if data.get("error"):
                        raise RpcError("subscribe", str(data["error"]))
                    pending.discard(data["id"])
                    if not pending:
                        logger.info(
                            "[%s] %d subscriptions active", self.chain.display_name, len(requests)
                        )
                    continue
                params = data.get("params")
                if isinstance(params, dict):
                    yield params
