"""Data model shared by the classifier, executor, ledger and monitors."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict


def short_address(address: str) -> str:
    return f"{address[:4]}...{address[-4:]}"


class Chain(str, Enum):
    SOLANA = "solana"
    BASE = "base"

    def normalize(self, address: str) -> str:
        """EVM addresses are case-insensitive; Solana base58 is not."""
        address = address.strip()
        if self is Chain.BASE:
            return address.lower()
        return address

    @property
    def native_symbol(self) -> str:
        return "SOL" if self is Chain.SOLANA else "ETH"

    @property
    def native_decimals(self) -> int:
        return 9 if self is Chain.SOLANA else 18

    @property
    def display_name(self) -> str:
        return self.value.upper()

    def tx_url(self, tx_id: str) -> str:
        if self is Chain.SOLANA:
            return f"https://solscan.io/tx/{tx_id}"
        return f"https://basescan.org/tx/{tx_id}"


class WatchedWallet(BaseModel):
    """An external address whose activity we copy."""

    model_config = ConfigDict(frozen=True)

    label: str
    address: str


class TradeConfig(BaseModel):
    """Per-monitor trade parameters, fixed after construction."""

    model_config = ConfigDict(frozen=True)

    amount_in_base_units: int
    slippage_bps: int
    fee_buffer_base_units: int = 0
    skip_tokens: frozenset[str] = frozenset()

    @property
    def required_balance(self) -> int:
        return self.amount_in_base_units + self.fee_buffer_base_units


# ---------------------------------------------------------------------------
# Decoded chain activity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenBalanceDelta:
    token: str
    pre_amount: Decimal
    post_amount: Decimal

    @property
    def increased(self) -> bool:
        return self.post_amount > self.pre_amount

    @property
    def decreased(self) -> bool:
        return self.post_amount < self.pre_amount


@dataclass
class WalletActivity:
    """What one watched wallet did inside one transaction."""

    deltas: list[TokenBalanceDelta] = field(default_factory=list)
    native_spent: bool = False

    @property
    def spent_anything(self) -> bool:
        return self.native_spent or any(d.decreased for d in self.deltas)


@dataclass
class RawNotification:
    """A subscription push, before the transaction itself is fetched."""

    chain: Chain
    key: str
    payload: dict = field(default_factory=dict)


@dataclass
class ChainEvent:
    key: str
    chain: Chain
    touched: set[str] = field(default_factory=set)
    activity: dict[str, WalletActivity] = field(default_factory=dict)
    block: int | None = None


# ---------------------------------------------------------------------------
# Classifier decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Purchase:
    chain: Chain
    token: str
    source_wallet: WatchedWallet
    event_key: str
    pre_amount: Decimal | None = None  # None when the chain cannot tell
    post_amount: Decimal | None = None
    block: int | None = None


@dataclass(frozen=True)
class Sell:
    chain: Chain
    token: str
    source_wallet: WatchedWallet
    event_key: str


@dataclass(frozen=True)
class Ignore:
    reason: str = ""


Decision = Purchase | Sell | Ignore


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass
class CopyTradeAttempt:
    token: str
    source_wallet: WatchedWallet
    try_count: int = 0
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class ExecutionResult:
    success: bool
    tx_id: str | None = None
    skipped_reason: str | None = None
    error: str | None = None
    attempts: int = 0
    amount: str | None = None
    elapsed_seconds: float = 0.0
    ledger_flagged: bool = False

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


@dataclass
class Holding:
    chain: Chain
    token: str
    amount: str | None = None
