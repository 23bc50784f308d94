"""Shared fakes: in-memory ledger store, recording notifier, scripted swaps and chain."""

from decimal import Decimal

import pytest

from copytrade_bot.chains.adapter import ChainAdapter
from copytrade_bot.core.errors import NotificationFailure
from copytrade_bot.core.executor import CopyTradeExecutor
from copytrade_bot.core.ledger import HoldingsLedger
from copytrade_bot.core.models import (
    Chain,
    ChainEvent,
    Purchase,
    TokenBalanceDelta,
    TradeConfig,
    WalletActivity,
    WatchedWallet,
)
from copytrade_bot.delivery.base import NotificationSink
from copytrade_bot.swaps.base import BuiltSwap, Quote, QuoteExecutor, SignedSwap, TxStatus

WALLET = WatchedWallet(label="whale", address="WhaLe1111111111111111111111111111111111111")
OTHER = WatchedWallet(label="other", address="0ther11111111111111111111111111111111111111")
TOKEN = "TokenMint111111111111111111111111111111111"
TOKEN_B = "TokenMint222222222222222222222222222222222"
WSOL = "So11111111111111111111111111111111111111112"


class MemoryStore:
    def __init__(self, fail: set[str] | None = None) -> None:
        self.data: dict[tuple[str, str], str | None] = {}
        self.fail = fail or set()
        self.writes: list[tuple[str, str, str]] = []

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise RuntimeError(f"store {op} down")

    async def add(self, chain, token, amount):
        self._check("add")
        self.writes.append(("add", chain, token))
        if amount is not None or (chain, token) not in self.data:
            self.data[(chain, token)] = amount

    async def remove(self, chain, token):
        self._check("remove")
        self.writes.append(("remove", chain, token))
        self.data.pop((chain, token), None)

    async def has(self, chain, token):
        self._check("has")
        return (chain, token) in self.data

    async def all(self, chain):
        self._check("all")
        return {t: a for (c, t), a in self.data.items() if c == chain}


class RecordingNotifier(NotificationSink):
    def __init__(self, fail: bool = False, on_send=None) -> None:
        self.sent: list[str] = []
        self.fail = fail
        self.on_send = on_send

    async def send_text(self, text: str) -> None:
        if self.on_send:
            self.on_send(text)
        if self.fail:
            raise NotificationFailure("chat unreachable")
        self.sent.append(text)


class FakeSwaps(QuoteExecutor):
    """Each stage pops the next scripted exception (None = succeed) from `failures`."""

    base_asset = WSOL

    def __init__(
        self,
        chain: Chain = Chain.SOLANA,
        failures=None,
        estimated_output=1000,
        settled: TxStatus = TxStatus.DROPPED,
    ):
        self.chain = chain
        self.settled = settled
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.estimated_output = estimated_output
        self.calls: list[str] = []

    @property
    def taker_address(self) -> str:
        return "Operator11111111111111111111111111111111111"

    def _step(self, name: str) -> None:
        self.calls.append(name)
        queue = self.failures.get(name)
        if queue:
            exc = queue.pop(0)
            if exc is not None:
                raise exc

    async def quote(self, sell_token, buy_token, amount, slippage_bps):
        self._step("quote")
        return Quote(sell_token, buy_token, amount, self.estimated_output)

    async def build(self, quote):
        self._step("build")
        return BuiltSwap(quote=quote, payload={})

    async def sign(self, built):
        self._step("sign")
        return SignedSwap(raw=b"\x01", tx_id="sig-1")

    async def submit(self, signed):
        self._step("submit")
        return signed.tx_id

    async def confirm(self, tx_id):
        self._step("confirm")

    async def final_status(self, signed):
        self._step("final_status")
        return self.settled


class FakeAdapter(ChainAdapter):
    def __init__(
        self,
        chain: Chain = Chain.SOLANA,
        native: int | Exception = 10**9,
        balance: int | Exception = 500,
        held_before: bool | Exception = False,
        events: dict | None = None,
        streams: list | None = None,
    ) -> None:
        self.chain = chain
        self.native = native
        self.balance = balance
        self.held_before = held_before
        self.events = events or {}
        self.streams = list(streams or [])
        self.fetched: list[str] = []
        self.subscribe_calls = 0
        self.gate = None

    @staticmethod
    def _value(value):
        if isinstance(value, Exception):
            raise value
        return value

    def subscribe(self, wallets):
        self.subscribe_calls += 1
        item = self.streams.pop(0) if self.streams else []
        return self._stream(item)

    async def _stream(self, item):
        if isinstance(item, Exception):
            raise item
        for raw in item:
            yield raw

    async def fetch_event(self, raw, wallets):
        self.fetched.append(raw.key)
        if self.gate is not None:
            await self.gate.wait()
        return self._value(self.events.get(raw.key))

    async def native_balance(self, address):
        return self._value(self.native)

    async def token_balance(self, owner, token):
        return self._value(self.balance)

    async def source_held_before(self, purchase):
        return self._value(self.held_before)


def make_event(key: str, deltas=(), native_spent=True, wallet=WALLET, chain=Chain.SOLANA) -> ChainEvent:
    activity = WalletActivity(
        deltas=[TokenBalanceDelta(t, Decimal(pre), Decimal(post)) for t, pre, post in deltas],
        native_spent=native_spent,
    )
    return ChainEvent(
        key=key, chain=chain, touched={wallet.address}, activity={wallet.address: activity}
    )


def make_purchase(token: str = TOKEN, pre=0, post=100) -> Purchase:
    return Purchase(
        chain=Chain.SOLANA,
        token=token,
        source_wallet=WALLET,
        event_key="sig-src",
        pre_amount=Decimal(pre),
        post_amount=Decimal(post),
    )


@pytest.fixture
def trade_config() -> TradeConfig:
    return TradeConfig(
        amount_in_base_units=100_000_000,
        slippage_bps=500,
        fee_buffer_base_units=5_000_000,
        skip_tokens=frozenset({WSOL}),
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def build_executor(store, notifier, trade_config, fake_sleep):
    def _build(adapter=None, swaps=None, notifier_=None, store_=None) -> CopyTradeExecutor:
        return CopyTradeExecutor(
            adapter or FakeAdapter(),
            swaps or FakeSwaps(),
            HoldingsLedger(store_ or store),
            notifier_ or notifier,
            trade_config,
            sleep=fake_sleep,
        )

    return _build
