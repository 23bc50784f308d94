import asyncio

from conftest import TOKEN, FakeAdapter, FakeSwaps, MemoryStore, RecordingNotifier, make_purchase

from copytrade_bot.core.errors import (
    ConfirmationTimeout,
    NoRouteOrLiquidity,
    OnChainRevert,
    RpcError,
    TransientExternalFailure,
)
from copytrade_bot.core.preconditions import ACCUMULATING, ALREADY_HELD, INSUFFICIENT_FUNDS
from copytrade_bot.swaps.base import TxStatus


class TestSuccessPath:
    def test_new_purchase_is_copied_recorded_and_reported(self, build_executor, store, notifier):
        swaps = FakeSwaps()
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert result.tx_id == "sig-1"
        assert result.attempts == 1
        assert swaps.calls == ["quote", "build", "sign", "submit", "confirm"]
        assert store.data == {("solana", TOKEN): "500"}
        assert len(notifier.sent) == 1
        assert "Copy Trade Executed" in notifier.sent[0]
        assert "Execution Time" in notifier.sent[0]
        assert "0.1 SOL" in notifier.sent[0]

    def test_ledger_is_written_before_success_is_reported(self, build_executor, store):
        seen = []
        notifier = RecordingNotifier(on_send=lambda text: seen.append(dict(store.data)))
        executor = build_executor(notifier_=notifier)

        asyncio.run(executor.execute(make_purchase()))

        assert seen == [{("solana", TOKEN): "500"}]

    def test_balance_read_failure_falls_back_to_quoted_amount(self, build_executor, store):
        adapter = FakeAdapter(balance=RpcError("getTokenAccountsByOwner", "timeout"))
        executor = build_executor(adapter=adapter, swaps=FakeSwaps(estimated_output=777))

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert result.amount == "777"
        assert store.data[("solana", TOKEN)] == "777"

    def test_empty_read_back_records_quoted_amount(self, build_executor, store, notifier):
        adapter = FakeAdapter(balance=0)
        executor = build_executor(adapter=adapter, swaps=FakeSwaps(estimated_output=777))

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.amount == "777"
        assert store.data == {("solana", TOKEN): "777"}
        assert "<b>Received:</b> 777" in notifier.sent[0]

    def test_ledger_write_failure_still_reports_success_with_flag(self, build_executor, notifier):
        executor = build_executor(store_=MemoryStore(fail={"add"}))

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert result.ledger_flagged
        assert len(notifier.sent) == 1
        assert "could not be recorded" in notifier.sent[0]

    def test_notification_failure_does_not_affect_result(self, build_executor, store):
        executor = build_executor(notifier_=RecordingNotifier(fail=True))

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert ("solana", TOKEN) in store.data


class TestPreconditions:
    def test_already_held_skips_without_swapping(self, build_executor, store, notifier):
        store.data[("solana", TOKEN)] = "1"
        swaps = FakeSwaps()
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.skipped_reason == ALREADY_HELD
        assert swaps.calls == []
        assert len(notifier.sent) == 1
        assert "Already holding" in notifier.sent[0]

    def test_accumulation_skips(self, build_executor, notifier):
        swaps = FakeSwaps()
        executor = build_executor(adapter=FakeAdapter(held_before=True), swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase(pre=50, post=150)))

        assert result.skipped_reason == ACCUMULATING
        assert swaps.calls == []
        assert "accumulating" in notifier.sent[0]
        assert "Only copying initial entries" in notifier.sent[0]

    def test_insufficient_balance_reports_required_and_available(self, build_executor, notifier):
        swaps = FakeSwaps()
        executor = build_executor(adapter=FakeAdapter(native=10_000_000), swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.skipped_reason == INSUFFICIENT_FUNDS
        assert swaps.calls == []
        assert len(notifier.sent) == 1
        assert "Required: 0.105 SOL" in notifier.sent[0]
        assert "Available: 0.01 SOL" in notifier.sent[0]

    def test_exact_required_balance_is_enough(self, build_executor):
        executor = build_executor(adapter=FakeAdapter(native=105_000_000))

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success

    def test_unreadable_ledger_counts_as_not_held(self, build_executor):
        executor = build_executor(store_=MemoryStore(fail={"has"}))

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success

    def test_lookup_failure_is_terminal_with_one_notification(self, build_executor, notifier):
        swaps = FakeSwaps()
        adapter = FakeAdapter(held_before=RpcError("eth_call", "boom"))
        executor = build_executor(adapter=adapter, swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert not result.success
        assert not result.skipped
        assert swaps.calls == []
        assert len(notifier.sent) == 1
        assert "Copy Trade Failed" in notifier.sent[0]


class TestRetries:
    def test_no_route_at_quote_is_terminal(self, build_executor, store, notifier, sleeps):
        swaps = FakeSwaps(failures={"quote": [NoRouteOrLiquidity("No route found")]})
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.skipped_reason == "no_route"
        assert swaps.calls == ["quote"]
        assert sleeps == []
        assert store.writes == []
        assert len(notifier.sent) == 1
        assert "No route found" in notifier.sent[0]

    def test_transient_failures_retry_with_backoff(self, build_executor, sleeps):
        swaps = FakeSwaps(
            failures={"quote": [TransientExternalFailure("503"), TransientExternalFailure("503")]}
        )
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert result.attempts == 3
        assert sleeps == [1.0, 2.0]

    def test_attempts_are_bounded(self, build_executor, store, notifier, sleeps):
        swaps = FakeSwaps(failures={"submit": [RuntimeError("rejected")] * 5})
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert not result.success
        assert result.attempts == 3
        assert swaps.calls.count("submit") == 3
        assert sleeps == [1.0, 2.0]
        assert store.writes == []
        assert len(notifier.sent) == 1
        assert "rejected" in notifier.sent[0]

    def test_revert_is_retried_from_a_fresh_quote(self, build_executor):
        swaps = FakeSwaps(failures={"confirm": [OnChainRevert("reverted")]})
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert result.attempts == 2
        assert swaps.calls.count("quote") == 2

    def test_no_liquidity_after_quoting_counts_as_failure(self, build_executor, sleeps):
        swaps = FakeSwaps(failures={"build": [NoRouteOrLiquidity("liquidity moved")]})
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert result.attempts == 2
        assert sleeps == [1.0]


def _timeout():
    return ConfirmationTimeout("sig-1", "Transaction sig-1... not confirmed within 60s")


class TestUnconfirmedTransactions:
    def test_late_landing_counts_as_success_without_resending(self, build_executor, store, notifier, sleeps):
        swaps = FakeSwaps(failures={"confirm": [_timeout()]}, settled=TxStatus.LANDED)
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert result.attempts == 1
        assert swaps.calls == ["quote", "build", "sign", "submit", "confirm", "final_status"]
        assert sleeps == []
        assert store.data == {("solana", TOKEN): "500"}
        assert len(notifier.sent) == 1
        assert "Copy Trade Executed" in notifier.sent[0]

    def test_possibly_pending_transaction_is_never_resent(self, build_executor, store, notifier, sleeps):
        swaps = FakeSwaps(failures={"confirm": [_timeout()]}, settled=TxStatus.PENDING)
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert not result.success
        assert swaps.calls.count("submit") == 1
        assert swaps.calls.count("quote") == 1
        assert sleeps == []
        assert store.writes == []
        assert len(notifier.sent) == 1
        assert "not resending" in notifier.sent[0]

    def test_status_lookup_failure_is_treated_as_pending(self, build_executor, notifier):
        swaps = FakeSwaps(
            failures={
                "confirm": [RpcError("getSignatureStatuses", "down")],
                "final_status": [RpcError("getSignatureStatuses", "down")],
            }
        )
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert not result.success
        assert swaps.calls.count("submit") == 1
        assert len(notifier.sent) == 1

    def test_dropped_transaction_is_replaced(self, build_executor, sleeps):
        swaps = FakeSwaps(failures={"confirm": [_timeout()]}, settled=TxStatus.DROPPED)
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert result.attempts == 2
        assert swaps.calls.count("submit") == 2
        assert sleeps == [1.0]

    def test_revert_needs_no_status_check(self, build_executor):
        swaps = FakeSwaps(failures={"confirm": [OnChainRevert("reverted")]}, settled=TxStatus.PENDING)
        executor = build_executor(swaps=swaps)

        result = asyncio.run(executor.execute(make_purchase()))

        assert result.success
        assert "final_status" not in swaps.calls
