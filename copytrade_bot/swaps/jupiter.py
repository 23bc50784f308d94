"""Jupiter v6 swaps on Solana.

Flow: GET /quote -> POST /swap (prebuilt versioned tx) -> sign locally ->
sendTransaction -> poll getSignatureStatuses.
"""

import asyncio
import base64
import logging
import time
from typing import Awaitable, Callable

import httpx
from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.transaction import VersionedTransaction

from copytrade_bot.chains.rpc import JsonRpcClient
from copytrade_bot.chains.solana import WSOL_MINT
from copytrade_bot.core.errors import (
    ConfirmationTimeout,
    NoRouteOrLiquidity,
    OnChainRevert,
    TransientExternalFailure,
)
from copytrade_bot.core.models import Chain
from copytrade_bot.swaps.base import BuiltSwap, Quote, QuoteExecutor, SignedSwap, TxStatus

logger = logging.getLogger(__name__)

_NO_ROUTE_CODES = {"COULD_NOT_FIND_ANY_ROUTE", "TOKEN_NOT_TRADABLE", "NO_ROUTES_FOUND"}

_ACCEPTED_STATUS = {
    "processed": {"processed", "confirmed", "finalized"},
    "confirmed": {"confirmed", "finalized"},
    "finalized": {"finalized"},
}


def is_no_route(body: dict) -> bool:
    code = str(body.get("errorCode") or "")
    error = str(body.get("error") or "")
    return code in _NO_ROUTE_CODES or "no route" in error.lower()


class JupiterExecutor(QuoteExecutor):
    chain = Chain.SOLANA
    base_asset = WSOL_MINT

    def __init__(
        self,
        keypair: Keypair,
        rpc: JsonRpcClient,
        client: httpx.AsyncClient,
        api_url: str = "https://quote-api.jup.ag/v6",
        commitment: str = "confirmed",
        confirm_timeout: float = 60.0,
        poll_interval: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._keypair = keypair
        self._rpc = rpc
        self._client = client
        self._api = api_url.rstrip("/")
        self._commitment = commitment
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval
        self._sleep = sleep

    @property
    def taker_address(self) -> str:
        return str(self._keypair.pubkey())

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            resp = await self._client.request(method, f"{self._api}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise TransientExternalFailure(f"Jupiter {path}: {exc}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if resp.is_error or body.get("error"):
            if is_no_route(body):
                raise NoRouteOrLiquidity(body.get("error") or "No route found")
            detail = body.get("error") or f"HTTP {resp.status_code}"
            raise TransientExternalFailure(f"Jupiter {path}: {detail}")
        return body

    async def quote(self, sell_token: str, buy_token: str, amount: int, slippage_bps: int) -> Quote:
        data = await self._request(
            "GET",
            "/quote",
            params={
                "inputMint": sell_token,
                "outputMint": buy_token,
                "amount": str(amount),
                "slippageBps": str(slippage_bps),
                "restrictIntermediateTokens": "true",
            },
        )
        if not data.get("routePlan") and not data.get("outAmount"):
            raise NoRouteOrLiquidity("No route found")
        out_amount = data.get("outAmount")
        return Quote(
            sell_token=sell_token,
            buy_token=buy_token,
            amount=amount,
            estimated_output=int(out_amount) if out_amount else None,
            payload=data,
        )

    async def build(self, quote: Quote) -> BuiltSwap:
        data = await self._request(
            "POST",
            "/swap",
            json={
                "quoteResponse": quote.payload,
                "userPublicKey": self.taker_address,
                "wrapAndUnwrapSol": True,
                "dynamicSlippage": True,
                "prioritizationFeeLamports": {
                    "priorityLevelWithMaxLamports": {
                        "maxLamports": 10_000_000,
                        "priorityLevel": "veryHigh",
                    }
                },
                "dynamicComputeUnitLimit": True,
            },
        )
        swap_tx = data.get("swapTransaction")
        if not swap_tx:
            raise TransientExternalFailure("Jupiter /swap returned no transaction")
        if data.get("dynamicSlippageReport"):
            logger.debug("Dynamic slippage report: %s", data["dynamicSlippageReport"])
        last_valid = data.get("lastValidBlockHeight")
        return BuiltSwap(
            quote=quote,
            payload=swap_tx,
            last_valid_block_height=int(last_valid) if last_valid else None,
        )

    async def sign(self, built: BuiltSwap) -> SignedSwap:
        txn = VersionedTransaction.from_bytes(base64.b64decode(built.payload))
        signature = self._keypair.sign_message(to_bytes_versioned(txn.message))
        signed = VersionedTransaction.populate(txn.message, [signature])
        return SignedSwap(
            raw=bytes(signed),
            tx_id=str(signature),
            last_valid_block_height=built.last_valid_block_height,
        )

    async def submit(self, signed: SignedSwap) -> str:
        result = await self._rpc.call(
            "sendTransaction",
            [
                base64.b64encode(signed.raw).decode(),
                {"encoding": "base64", "skipPreflight": True, "maxRetries": 2},
            ],
        )
        return str(result or signed.tx_id)

    async def confirm(self, tx_id: str) -> None:
        accepted = _ACCEPTED_STATUS.get(self._commitment, _ACCEPTED_STATUS["confirmed"])
        deadline = time.monotonic() + self._confirm_timeout
        while time.monotonic() < deadline:
            result = await self._rpc.call(
                "getSignatureStatuses", [[tx_id], {"searchTransactionHistory": False}]
            )
            status = ((result or {}).get("value") or [None])[0]
            if status:
                if status.get("err") is not None:
                    raise OnChainRevert(f"Transaction failed: {status['err']}")
                if status.get("confirmationStatus") in accepted:
                    return
            await self._sleep(self._poll_interval)
        raise ConfirmationTimeout(
            tx_id, f"Transaction {tx_id[:16]}... not confirmed within {self._confirm_timeout:.0f}s"
        )

    async def _history_status(self, tx_id: str) -> TxStatus | None:
        accepted = _ACCEPTED_STATUS.get(self._commitment, _ACCEPTED_STATUS["confirmed"])
        result = await self._rpc.call(
            "getSignatureStatuses", [[tx_id], {"searchTransactionHistory": True}]
        )
        status = ((result or {}).get("value") or [None])[0]
        if not status:
            return None
        if status.get("err") is not None:
            return TxStatus.REVERTED
        if status.get("confirmationStatus") in accepted:
            return TxStatus.LANDED
        return TxStatus.PENDING

    async def final_status(self, signed: SignedSwap) -> TxStatus:
        status = await self._history_status(signed.tx_id)
        if status is not None:
            return status
        if signed.last_valid_block_height is None:
            return TxStatus.PENDING

        # Past its blockhash's last valid height the transaction can never be processed
        height = await self._rpc.call("getBlockHeight", [{"commitment": self._commitment}])
        if int(height) <= signed.last_valid_block_height:
            return TxStatus.PENDING
        # It may have landed just before expiry
        return await self._history_status(signed.tx_id) or TxStatus.DROPPED
