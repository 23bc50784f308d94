"""JSON-RPC over HTTP with retry on rate limiting (Solana and EVM share the envelope)."""

import asyncio
import itertools
import logging
from typing import Any

import httpx

from copytrade_bot.core.errors import RpcError

logger = logging.getLogger(__name__)

_RETRY_STATUS = (429, 502, 503)


class JsonRpcClient:
    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient,
        max_retries: int = 3,
        retry_base_seconds: float = 1.0,
    ) -> None:
        self.url = url
        self._client = client
        self._max_retries = max_retries
        self._retry_base = retry_base_seconds
        self._ids = itertools.count(1)

    async def call(self, method: str, params: list | None = None) -> Any:
        """Make a JSON-RPC call and return `result`. Raises RpcError."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.post(self.url, json=payload)
                if resp.status_code in _RETRY_STATUS:
                    if attempt < self._max_retries:
                        wait = self._retry_base * (2 ** attempt)  # 1s, 2s, 4s
                        logger.debug("RPC %d on %s, retry in %.1fs", resp.status_code, method, wait)
                        await asyncio.sleep(wait)
                        continue
                    raise RpcError(method, f"HTTP {resp.status_code}, retries exhausted")
                resp.raise_for_status()
                data = resp.json()
            except httpx.HTTPError as exc:
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_base * (2 ** attempt))
                    continue
                raise RpcError(method, str(exc) or type(exc).__name__) from exc
            except ValueError as exc:
                raise RpcError(method, f"invalid JSON response: {exc}") from exc

            if data.get("error"):
                err = data["error"]
                if isinstance(err, dict):
                    raise RpcError(method, err.get("message", str(err)), err.get("code"))
                raise RpcError(method, str(err))
            return data.get("result")

        raise RpcError(method, "retries exhausted")
