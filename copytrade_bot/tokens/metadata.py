"""Token symbol lookups via DexScreener, for readable notifications only."""

import logging

import httpx

from copytrade_bot.chains.solana import WSOL_MINT
from copytrade_bot.core.models import Chain, short_address

logger = logging.getLogger(__name__)

DEXSCREENER_BASE = "https://api.dexscreener.com/latest/dex"
MAX_CACHED_SYMBOLS = 2048


def _pick_symbol(pairs: list[dict], chain: Chain, address: str) -> str | None:
    pairs = [p for p in pairs if p.get("chainId") == chain.value]
    if not pairs:
        return None
    # Highest-liquidity pair; the token can be either side of it
    best = max(pairs, key=lambda p: (p.get("liquidity") or {}).get("usd") or 0)
    for side in ("baseToken", "quoteToken"):
        token = best.get(side) or {}
        if chain.normalize(token.get("address") or "") == address:
            return token.get("symbol") or None
    return None


class TokenMetadata:
    """Per-process symbol cache. Never raises; falls back to a shortened address."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = DEXSCREENER_BASE,
        max_cached: int = MAX_CACHED_SYMBOLS,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._max_cached = max_cached
        self._cache: dict[tuple[Chain, str], str] = {}

    async def symbol(self, chain: Chain, address: str) -> str:
        address = chain.normalize(address)
        if chain is Chain.SOLANA and address == WSOL_MINT:
            return "SOL"
        key = (chain, address)
        if key in self._cache:
            return self._cache[key]

        symbol = None
        try:
            resp = await self._client.get(f"{self._base_url}/tokens/{address}")
            resp.raise_for_status()
            body = resp.json()
            pairs = body.get("pairs") if isinstance(body, dict) else None
            if not isinstance(pairs, list):
                pairs = []
            symbol = _pick_symbol([p for p in pairs if isinstance(p, dict)], chain, address)
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("DexScreener lookup failed for %s: %s", address[:12], exc)
            return short_address(address)

        # Unknown tokens are cached too; new launches rarely get listed mid-trade
        if len(self._cache) >= self._max_cached:
            # Oldest entry first; dicts keep insertion order
            self._cache.pop(next(iter(self._cache)))
        self._cache[key] = symbol or short_address(address)
        return self._cache[key]
