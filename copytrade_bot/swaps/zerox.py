"""0x Swap API v2 (permit2) on Base.

Flow: GET /swap/permit2/price (liquidity check) -> GET /swap/permit2/quote ->
sign permit2 + tx with eth-account -> eth_sendRawTransaction -> poll receipt.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from copytrade_bot.chains.rpc import JsonRpcClient
from copytrade_bot.core.errors import (
    ConfirmationTimeout,
    NoRouteOrLiquidity,
    OnChainRevert,
    TransientExternalFailure,
)
from copytrade_bot.core.models import Chain
from copytrade_bot.swaps.base import BuiltSwap, Quote, QuoteExecutor, SignedSwap, TxStatus

logger = logging.getLogger(__name__)

ETH_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
BASE_CHAIN_ID = 8453

_DEFAULT_GAS = 300_000
_GAS_MULTIPLIER = 1.1
_NO_LIQUIDITY_REASONS = {"INSUFFICIENT_ASSET_LIQUIDITY", "TOKEN_NOT_SUPPORTED"}


def is_no_liquidity(body: dict) -> bool:
    if body.get("liquidityAvailable") is False:
        return True
    if body.get("name") in _NO_LIQUIDITY_REASONS:
        return True
    details = (body.get("data") or {}).get("details") or body.get("validationErrors") or []
    return any(d.get("reason") in _NO_LIQUIDITY_REASONS for d in details if isinstance(d, dict))


def append_permit2_signature(tx_data: str, signature: bytes) -> str:
    """Permit2 calldata is the quote data + uint256(len(sig)) + sig."""
    raw = bytes.fromhex(tx_data.removeprefix("0x"))
    return "0x" + (raw + len(signature).to_bytes(32, "big") + signature).hex()


class ZeroXExecutor(QuoteExecutor):
    chain = Chain.BASE
    base_asset = ETH_ADDRESS

    def __init__(
        self,
        account: LocalAccount,
        rpc: JsonRpcClient,
        client: httpx.AsyncClient,
        api_key: str,
        api_url: str = "https://api.0x.org",
        confirm_timeout: float = 60.0,
        poll_interval: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._account = account
        self._rpc = rpc
        self._client = client
        self._api = api_url.rstrip("/")
        self._headers = {"0x-api-key": api_key, "0x-version": "v2"}
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval
        self._sleep = sleep

    @property
    def taker_address(self) -> str:
        return self._account.address

    def _params(self, sell_token: str, buy_token: str, amount: int, slippage_bps: int) -> dict:
        return {
            "chainId": str(BASE_CHAIN_ID),
            "sellToken": sell_token,
            "buyToken": buy_token,
            "sellAmount": str(amount),
            "taker": self.taker_address,
            "slippageBps": str(slippage_bps),
        }

    async def _get(self, path: str, params: dict) -> dict:
        try:
            resp = await self._client.get(f"{self._api}{path}", params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise TransientExternalFailure(f"0x {path}: {exc}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if is_no_liquidity(body):
            raise NoRouteOrLiquidity("Insufficient liquidity for trade")
        if resp.is_error:
            detail = body.get("message") or body.get("name") or f"HTTP {resp.status_code}"
            raise TransientExternalFailure(f"0x {path}: {detail}")
        return body

    async def quote(self, sell_token: str, buy_token: str, amount: int, slippage_bps: int) -> Quote:
        params = self._params(sell_token, buy_token, amount, slippage_bps)
        data = await self._get("/swap/permit2/price", params)
        buy_amount = data.get("buyAmount")
        return Quote(
            sell_token=sell_token,
            buy_token=buy_token,
            amount=amount,
            estimated_output=int(buy_amount) if buy_amount else None,
            payload={"params": params, "price": data},
        )

    async def build(self, quote: Quote) -> BuiltSwap:
        data = await self._get("/swap/permit2/quote", quote.payload["params"])
        transaction = data.get("transaction") or {}
        if not transaction.get("to") or not transaction.get("data"):
            raise TransientExternalFailure("0x quote missing transaction details")

        tx_data = transaction["data"]
        eip712 = (data.get("permit2") or {}).get("eip712")
        if eip712:
            logger.debug("Signing permit2 for %s", quote.sell_token)
            types = {k: v for k, v in eip712["types"].items() if k != "EIP712Domain"}
            signed = self._account.sign_typed_data(eip712["domain"], types, eip712["message"])
            tx_data = append_permit2_signature(tx_data, bytes(signed.signature))

        nonce = int(
            await self._rpc.call("eth_getTransactionCount", [self.taker_address, "pending"]), 16
        )
        gas_price = transaction.get("gasPrice") or await self._rpc.call("eth_gasPrice", [])
        gas = int(transaction.get("gas") or data.get("gas") or _DEFAULT_GAS)
        tx = {
            "to": to_checksum_address(transaction["to"]),
            "data": tx_data,
            "value": int(transaction.get("value") or quote.amount),
            "gas": int(gas * _GAS_MULTIPLIER),
            "gasPrice": int(gas_price, 16) if isinstance(gas_price, str) and gas_price.startswith("0x") else int(gas_price),
            "nonce": nonce,
            "chainId": BASE_CHAIN_ID,
        }
        buy_amount = data.get("buyAmount")
        if buy_amount:
            quote.estimated_output = int(buy_amount)
        return BuiltSwap(quote=quote, payload=tx)

    async def sign(self, built: BuiltSwap) -> SignedSwap:
        signed = self._account.sign_transaction(built.payload)
        return SignedSwap(
            raw=bytes(signed.raw_transaction),
            tx_id="0x" + bytes(signed.hash).hex(),
            nonce=built.payload["nonce"],
        )

    async def submit(self, signed: SignedSwap) -> str:
        result = await self._rpc.call("eth_sendRawTransaction", ["0x" + signed.raw.hex()])
        return str(result or signed.tx_id)

    async def _receipt_status(self, tx_id: str) -> TxStatus | None:
        receipt = await self._rpc.call("eth_getTransactionReceipt", [tx_id])
        if not receipt:
            return None
        if int(receipt.get("status") or "0x0", 16) == 0:
            return TxStatus.REVERTED
        return TxStatus.LANDED

    async def confirm(self, tx_id: str) -> None:
        deadline = time.monotonic() + self._confirm_timeout
        while time.monotonic() < deadline:
            status = await self._receipt_status(tx_id)
            if status is TxStatus.REVERTED:
                raise OnChainRevert(f"Transaction {tx_id[:12]}... reverted on-chain")
            if status is TxStatus.LANDED:
                return
            await self._sleep(self._poll_interval)
        raise ConfirmationTimeout(
            tx_id, f"Transaction {tx_id[:12]}... not confirmed within {self._confirm_timeout:.0f}s"
        )

    async def final_status(self, signed: SignedSwap) -> TxStatus:
        status = await self._receipt_status(signed.tx_id)
        if status is not None:
            return status
        if signed.nonce is None:
            return TxStatus.PENDING

        mined = int(
            await self._rpc.call("eth_getTransactionCount", [self.taker_address, "latest"]), 16
        )
        if mined <= signed.nonce:
            return TxStatus.PENDING
        # The nonce is used up; either this transaction was mined meanwhile or it never will be
        return await self._receipt_status(signed.tx_id) or TxStatus.DROPPED
