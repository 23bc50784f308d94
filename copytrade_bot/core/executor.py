"""Copy-trade executor: preconditions, the retrying swap pipeline, ledger + notify.

Flow: checks -> QUOTING -> BUILDING -> SIGNING -> SUBMITTING -> CONFIRMING
-> read back balance -> ledger.add -> success notification.
A transaction that was sent but not confirmed is settled before anything is
sent again: landed means success, provably dropped means retry, and anything
else ends the trade without a second broadcast.
Every terminal outcome sends exactly one notification.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from copytrade_bot.chains.adapter import ChainAdapter
from copytrade_bot.core import preconditions
from copytrade_bot.core.errors import LedgerUnavailable, NoRouteOrLiquidity, OnChainRevert
from copytrade_bot.core.ledger import HoldingsLedger
from copytrade_bot.core.models import (
    CopyTradeAttempt,
    ExecutionResult,
    Purchase,
    TradeConfig,
    short_address,
)
from copytrade_bot.core.state_machine import ExecutionState, Outcome, transition
from copytrade_bot.delivery import messages
from copytrade_bot.delivery.base import NotificationSink
from copytrade_bot.swaps.base import Quote, QuoteExecutor, SignedSwap, TxStatus
from copytrade_bot.tokens.metadata import TokenMetadata

logger = logging.getLogger(__name__)


class CopyTradeExecutor:
    def __init__(
        self,
        adapter: ChainAdapter,
        swaps: QuoteExecutor,
        ledger: HoldingsLedger,
        notifier: NotificationSink,
        trade_config: TradeConfig,
        metadata: TokenMetadata | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adapter = adapter
        self.swaps = swaps
        self.ledger = ledger
        self.notifier = notifier
        self.trade_config = trade_config
        self.metadata = metadata
        self._sleep = sleep
        self._clock = clock
        self.chain = swaps.chain

    async def symbol(self, token: str) -> str:
        if self.metadata is None:
            return short_address(token)
        try:
            return await self.metadata.symbol(self.chain, token)
        except Exception as exc:
            logger.warning("[%s] Symbol lookup failed for %s: %s", self.chain.display_name, token, exc)
            return short_address(token)

    async def execute(self, purchase: Purchase) -> ExecutionResult:
        attempt = CopyTradeAttempt(
            token=purchase.token,
            source_wallet=purchase.source_wallet,
            started_at=self._clock(),
        )
        tag = self.chain.display_name
        symbol = await self.symbol(purchase.token)
        wallet = purchase.source_wallet
        logger.info("[%s] Starting copy trade for %s - following %s", tag, symbol, wallet.label)

        try:
            skip = await preconditions.run_all_checks(
                purchase, self.ledger, self.adapter, self.swaps.taker_address, self.trade_config
            )
        except Exception as exc:
            logger.error("[%s] Pre-trade check failed for %s: %s", tag, symbol, exc)
            return await self._fail(attempt, symbol, f"Pre-trade check failed: {exc}", attempts=0)

        if skip is not None:
            logger.info("[%s] Skipping %s: %s", tag, symbol, skip.message)
            if skip.code == preconditions.ALREADY_HELD:
                text = messages.already_holding(self.chain, symbol, wallet)
            elif skip.code == preconditions.ACCUMULATING:
                text = messages.accumulating(self.chain, symbol, wallet)
            else:
                text = messages.insufficient_balance(
                    self.chain, symbol, wallet, skip.required, skip.available
                )
            await self.notifier.notify(text)
            return ExecutionResult(
                success=False,
                skipped_reason=skip.code,
                elapsed_seconds=self._clock() - attempt.started_at,
            )

        return await self._run(purchase, attempt, symbol)

    async def _run(self, purchase: Purchase, attempt: CopyTradeAttempt, symbol: str) -> ExecutionResult:
        tag = self.chain.display_name
        state = ExecutionState.QUOTING
        quote: Quote | None = None
        built = signed = None
        tx_id: str | None = None
        last_error: Exception | None = None
        attempts = 0

        while not state.terminal:
            if state is ExecutionState.QUOTING:
                attempts += 1
                logger.info("[%s] Attempt %d for %s", tag, attempts, symbol)
            try:
                if state is ExecutionState.QUOTING:
                    quote = await self.swaps.quote(
                        self.swaps.base_asset,
                        purchase.token,
                        self.trade_config.amount_in_base_units,
                        self.trade_config.slippage_bps,
                    )
                elif state is ExecutionState.BUILDING:
                    built = await self.swaps.build(quote)
                elif state is ExecutionState.SIGNING:
                    signed = await self.swaps.sign(built)
                elif state is ExecutionState.SUBMITTING:
                    tx_id = await self.swaps.submit(signed)
                    logger.info("[%s] Transaction sent: %s", tag, tx_id)
                elif state is ExecutionState.CONFIRMING:
                    await self.swaps.confirm(tx_id)
                outcome = Outcome.OK
            except NoRouteOrLiquidity as exc:
                outcome = Outcome.NO_ROUTE
                last_error = exc
                logger.info("[%s] No route at %s for %s: %s", tag, state.value, symbol, exc)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "[%s] Attempt %d failed at %s for %s: %s",
                    tag, attempts, state.value, symbol, exc,
                )
                if state is ExecutionState.CONFIRMING and not isinstance(exc, OnChainRevert):
                    outcome = await self._settle(signed, tx_id)
                else:
                    outcome = Outcome.FAILURE
                if outcome is Outcome.IN_DOUBT:
                    last_error = RuntimeError(
                        f"Transaction {tx_id} was sent but not confirmed; not resending. "
                        "Check it on-chain before buying manually."
                    )

            step = transition(state, outcome, attempt.try_count)
            attempt.try_count = step.try_count
            if step.no_route:
                await self.notifier.notify(messages.no_route(self.chain, symbol))
                return ExecutionResult(
                    success=False,
                    skipped_reason="no_route",
                    error=str(last_error),
                    attempts=attempts,
                    elapsed_seconds=self._clock() - attempt.started_at,
                )
            if step.delay_ms:
                logger.info("[%s] Waiting %dms before retry...", tag, step.delay_ms)
                await self._sleep(step.delay_ms / 1000)
            state = step.state

        if state is ExecutionState.FAILED:
            logger.error("[%s] Copy trade for %s failed after %d attempts", tag, symbol, attempts)
            return await self._fail(attempt, symbol, str(last_error), attempts)

        return await self._succeed(purchase, attempt, symbol, quote, tx_id, attempts)

    async def _settle(self, signed: SignedSwap, tx_id: str) -> Outcome:
        tag = self.chain.display_name
        try:
            status = await self.swaps.final_status(signed)
        except Exception as exc:
            logger.warning("[%s] Status check for %s failed: %s", tag, tx_id, exc)
            status = TxStatus.PENDING
        logger.info("[%s] Unconfirmed transaction %s is %s", tag, tx_id, status.value)
        if status is TxStatus.LANDED:
            return Outcome.OK
        if status is TxStatus.PENDING:
            return Outcome.IN_DOUBT
        return Outcome.FAILURE

    async def _succeed(
        self,
        purchase: Purchase,
        attempt: CopyTradeAttempt,
        symbol: str,
        quote: Quote | None,
        tx_id: str,
        attempts: int,
    ) -> ExecutionResult:
        tag = self.chain.display_name
        amount: int | None = None
        try:
            amount = await self.adapter.token_balance(self.swaps.taker_address, purchase.token)
        except Exception as exc:
            logger.warning("[%s] Balance read-back failed for %s: %s", tag, symbol, exc)
        # RPC nodes can lag behind the confirmation; a fresh buy never reads as empty
        if amount is None or amount <= 0:
            amount = quote.estimated_output if quote else None
            logger.info("[%s] Recording quoted amount %s for %s", tag, amount, symbol)

        # The holding must be recorded before anyone is told the trade happened
        flagged = False
        try:
            await self.ledger.add(self.chain, purchase.token, amount)
        except LedgerUnavailable as exc:
            flagged = True
            logger.error("[%s] Trade %s succeeded but ledger write failed: %s", tag, tx_id, exc)

        elapsed = self._clock() - attempt.started_at
        logger.info("[%s] Copy trade executed: %s in %.2fs (%s)", tag, symbol, elapsed, tx_id)
        await self.notifier.notify(
            messages.trade_executed(
                self.chain,
                symbol,
                purchase.token,
                purchase.source_wallet,
                self.trade_config.amount_in_base_units,
                tx_id,
                elapsed,
                received=str(amount) if amount is not None else None,
                ledger_flagged=flagged,
            )
        )
        return ExecutionResult(
            success=True,
            tx_id=tx_id,
            attempts=attempts,
            amount=str(amount) if amount is not None else None,
            elapsed_seconds=elapsed,
            ledger_flagged=flagged,
        )

    async def _fail(
        self, attempt: CopyTradeAttempt, symbol: str, error: str, attempts: int
    ) -> ExecutionResult:
        await self.notifier.notify(messages.trade_failed(self.chain, symbol, error))
        return ExecutionResult(
            success=False,
            error=error,
            attempts=attempts,
            elapsed_seconds=self._clock() - attempt.started_at,
        )
