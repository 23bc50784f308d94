"""Per-chain monitor: subscribe -> dedupe -> decode -> classify -> act.

Each notification is handled in its own task so one slow trade never blocks
the subscription. The dedupe mark happens before the first await, so a second
delivery of the same transaction is dropped even while the first is in flight.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Awaitable, Callable

from copytrade_bot.chains.adapter import ChainAdapter
from copytrade_bot.core.classifier import classify_all
from copytrade_bot.core.dedup import ProcessedEventCache
from copytrade_bot.core.errors import LedgerUnavailable
from copytrade_bot.core.executor import CopyTradeExecutor
from copytrade_bot.core.models import Purchase, RawNotification, Sell, WatchedWallet
from copytrade_bot.delivery import messages

logger = logging.getLogger(__name__)


class ChainMonitor:
    def __init__(
        self,
        adapter: ChainAdapter,
        executor: CopyTradeExecutor,
        wallets: Sequence[WatchedWallet],
        cache: ProcessedEventCache | None = None,
        reconnect_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.adapter = adapter
        self.executor = executor
        self.wallets = list(wallets)
        self.cache = cache or ProcessedEventCache()
        self.reconnect_delay = reconnect_delay
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def chain(self):
        return self.adapter.chain

    def subscribe(self) -> AsyncIterator[RawNotification]:
        return self.adapter.subscribe(self.wallets)

    async def on_event(self, raw: RawNotification) -> None:
        tag = self.chain.display_name
        if not self.cache.mark(raw.key):
            logger.debug("[%s] Duplicate notification for %s ignored", tag, raw.key[:16])
            return

        try:
            try:
                event = await self.adapter.fetch_event(raw, self.wallets)
            except Exception:
                # Another delivery of the same transaction gets a fresh try
                self.cache.discard(raw.key)
                raise
            if event is None:
                return

            ledger = self.executor.ledger
            try:
                snapshot = set(await ledger.all(self.chain))
            except LedgerUnavailable as exc:
                logger.warning("[%s] Ledger unavailable, sell alerts disabled for %s: %s", tag, raw.key[:16], exc)
                snapshot = set()

            decisions = classify_all(
                event, self.wallets, self.executor.trade_config.skip_tokens, snapshot
            )
            for decision in decisions:
                if isinstance(decision, Sell):
                    await self._alert_sell(decision)
                elif isinstance(decision, Purchase):
                    logger.info(
                        "[%s] %s bought %s (%s)",
                        tag, decision.source_wallet.label, decision.token, raw.key[:16],
                    )
                    await self.executor.execute(decision)
        except Exception:
            logger.exception("[%s] Error handling event %s", tag, raw.key)

    async def _alert_sell(self, sell: Sell) -> None:
        symbol = await self.executor.symbol(sell.token)
        logger.info("[%s] %s is selling %s", self.chain.display_name, sell.source_wallet.label, symbol)
        await self.executor.notifier.notify(
            messages.sell_alert(self.chain, symbol, sell.token, sell.source_wallet, sell.event_key)
        )

    async def reconnect(self) -> None:
        logger.warning(
            "[%s] Subscription lost, reconnecting in %.0fs",
            self.chain.display_name, self.reconnect_delay,
        )
        await self._sleep(self.reconnect_delay)

    def dispatch(self, raw: RawNotification) -> asyncio.Task:
        task = asyncio.create_task(self.on_event(raw))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(self) -> None:
        tag = self.chain.display_name
        self._running = True
        logger.info("[%s] Monitoring %d wallets", tag, len(self.wallets))
        while self._running:
            try:
                async for raw in self.subscribe():
                    self.dispatch(raw)
                    if not self._running:
                        break
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("[%s] Subscription error: %s", tag, exc)
            if not self._running:
                break
            await self.reconnect()

    async def stop(self) -> None:
        """Stop subscribing and abandon in-flight trades."""
        self._running = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("[%s] Monitor stopped (%d in-flight tasks cancelled)", self.chain.display_name, len(tasks))
