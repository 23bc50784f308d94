from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from copytrade_bot.core.models import Chain


class TxStatus(str, Enum):
    LANDED = "landed"
    REVERTED = "reverted"
    DROPPED = "dropped"  # can never land
    PENDING = "pending"  # may still land


@dataclass
class Quote:
    sell_token: str
    buy_token: str
    amount: int
    estimated_output: int | None = None
    payload: dict = field(default_factory=dict)


@dataclass
class BuiltSwap:
    quote: Quote
    payload: Any  # base64 tx (Solana) or tx dict (EVM)
    last_valid_block_height: int | None = None


@dataclass
class SignedSwap:
    raw: bytes
    tx_id: str
    last_valid_block_height: int | None = None  # Solana blockhash expiry
    nonce: int | None = None  # EVM sender nonce


class QuoteExecutor(ABC):
    """Quote -> build -> sign -> submit -> confirm against one swap aggregator."""

    chain: Chain
    base_asset: str

    @property
    @abstractmethod
    def taker_address(self) -> str:
        """Operator address that pays for and receives the swap."""

    @abstractmethod
    async def quote(self, sell_token: str, buy_token: str, amount: int, slippage_bps: int) -> Quote:
        """Price the swap. Raises NoRouteOrLiquidity when no route exists."""

    @abstractmethod
    async def build(self, quote: Quote) -> BuiltSwap: ...

    @abstractmethod
    async def sign(self, built: BuiltSwap) -> SignedSwap: ...

    @abstractmethod
    async def submit(self, signed: SignedSwap) -> str:
        """Broadcast and return the transaction id."""

    @abstractmethod
    async def confirm(self, tx_id: str) -> None:
        """Wait for confirmation.

        Raises OnChainRevert if it landed but failed, ConfirmationTimeout if it
        was not seen in time.
        """

    @abstractmethod
    async def final_status(self, signed: SignedSwap) -> TxStatus:
        """One last look at a transaction whose confirmation wait ran out.

        DROPPED only when the transaction provably cannot land any more, so a
        replacement can be sent without buying twice.
        """
