from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from copytrade_bot.core.models import Chain, TradeConfig, WatchedWallet, short_address

LAMPORTS_PER_SOL = 10**9
WEI_PER_ETH = 10**18

# Always skipped: chain-native asset and major stable/wrapped assets
DEFAULT_SKIP_TOKENS: dict[Chain, frozenset[str]] = {
    Chain.SOLANA: frozenset({
        "So11111111111111111111111111111111111111112",  # WSOL
        "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",  # USDC
        "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",  # USDT
    }),
    Chain.BASE: frozenset({
        "0x4200000000000000000000000000000000000006",  # WETH
        "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",  # USDC
        "0x50c5725949a6f0c72e6c4a641f24049a917db0cb",  # DAI
        "0x0000000000000000000000000000000000000000",  # native ETH
    }),
}


def parse_wallets(raw: str, chain: Chain) -> list[WatchedWallet]:
    """Parse a comma-separated wallet list.

    Formats supported:
      - label:address
      - address            (label defaults to the shortened address)
    """
    wallets: list[WatchedWallet] = []
    seen: set[str] = set()
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            label, address = entry.split(":", 1)
            label, address = label.strip(), address.strip()
        else:
            label, address = "", entry
        address = chain.normalize(address)
        if not address or address in seen:
            continue
        seen.add(address)
        wallets.append(
            WatchedWallet(label=label or short_address(address), address=address)
        )
    return wallets


def _parse_tokens(raw: str, chain: Chain) -> set[str]:
    return {chain.normalize(t.strip()) for t in raw.split(",") if t.strip()}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    log_level: str = "INFO"

    # Telegram Bot (operator notifications + /holdings command)
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_commands_enabled: bool = True

    # Holdings ledger
    database_url: str = "sqlite+aiosqlite:///copytrade_bot.db"

    # --- Solana ---
    solana_enabled: bool = False
    solana_rpc_url: str = ""
    solana_ws_url: str = ""
    solana_trader_key: str = ""  # base58 secret key
    solana_wallets: str = ""  # comma-separated label:address
    solana_trade_amount_sol: float = 0.1
    solana_fee_buffer_sol: float = 0.005
    solana_skip_tokens: str = ""  # extra mints on top of the defaults
    solana_commitment: Literal["processed", "confirmed", "finalized"] = "confirmed"
    jupiter_api_url: str = "https://quote-api.jup.ag/v6"

    # --- Base ---
    base_enabled: bool = False
    base_rpc_url: str = ""
    base_ws_url: str = ""
    base_trader_key: str = ""  # hex private key
    base_wallets: str = ""
    base_trade_amount_eth: float = 0.0001
    base_fee_buffer_eth: float = 0.0002
    base_skip_tokens: str = ""
    zerox_api_url: str = "https://api.0x.org"
    zerox_api_key: str = ""

    # Execution
    slippage_bps: int = 500  # 5%
    confirm_timeout_seconds: float = 60.0
    confirm_poll_interval_seconds: float = 2.0

    # Monitoring
    reconnect_delay_seconds: float = 5.0
    processed_cache_size: int = 1000
    holdings_reconcile_interval_seconds: int = 600  # 0 = disabled

    def enabled_chains(self) -> list[Chain]:
        chains = []
        if self.solana_enabled:
            chains.append(Chain.SOLANA)
        if self.base_enabled:
            chains.append(Chain.BASE)
        return chains

    def missing_required(self) -> list[str]:
        """Names of required variables that are unset for the enabled chains."""
        required: list[str] = []
        if self.solana_enabled:
            required += [
                "solana_rpc_url", "solana_ws_url", "solana_trader_key", "solana_wallets",
            ]
        if self.base_enabled:
            required += [
                "base_rpc_url", "base_ws_url", "base_trader_key", "base_wallets",
                "zerox_api_key",
            ]
        return [name.upper() for name in required if not getattr(self, name)]

    def watched_wallets(self, chain: Chain) -> list[WatchedWallet]:
        raw = self.solana_wallets if chain is Chain.SOLANA else self.base_wallets
        return parse_wallets(raw, chain)

    def trade_config(self, chain: Chain) -> TradeConfig:
        if chain is Chain.SOLANA:
            amount = _to_base_units(self.solana_trade_amount_sol, LAMPORTS_PER_SOL)
            buffer = _to_base_units(self.solana_fee_buffer_sol, LAMPORTS_PER_SOL)
            extra = _parse_tokens(self.solana_skip_tokens, chain)
        else:
            amount = _to_base_units(self.base_trade_amount_eth, WEI_PER_ETH)
            buffer = _to_base_units(self.base_fee_buffer_eth, WEI_PER_ETH)
            extra = _parse_tokens(self.base_skip_tokens, chain)
        return TradeConfig(
            amount_in_base_units=amount,
            slippage_bps=self.slippage_bps,
            fee_buffer_base_units=buffer,
            skip_tokens=DEFAULT_SKIP_TOKENS[chain] | extra,
        )


def _to_base_units(amount: float, unit: int) -> int:
    # Go through str() so 0.1 SOL is exactly 100_000_000 lamports
    return int(Decimal(str(amount)) * unit)


settings = Settings()
