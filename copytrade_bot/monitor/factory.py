"""Build one monitor per enabled chain from settings."""

import logging
from dataclasses import dataclass

import httpx
from eth_account import Account
from solders.keypair import Keypair

from copytrade_bot.chains.adapter import ChainAdapter
from copytrade_bot.chains.base_chain import BaseChainAdapter
from copytrade_bot.chains.rpc import JsonRpcClient
from copytrade_bot.chains.solana import SolanaAdapter
from copytrade_bot.config import Settings
from copytrade_bot.core.dedup import ProcessedEventCache
from copytrade_bot.core.errors import ConfigError
from copytrade_bot.core.executor import CopyTradeExecutor
from copytrade_bot.core.ledger import HoldingsLedger
from copytrade_bot.core.models import Chain
from copytrade_bot.delivery.base import NotificationSink
from copytrade_bot.monitor.chain_monitor import ChainMonitor
from copytrade_bot.swaps.base import QuoteExecutor
from copytrade_bot.swaps.jupiter import JupiterExecutor
from copytrade_bot.swaps.zerox import ZeroXExecutor
from copytrade_bot.tokens.metadata import TokenMetadata

logger = logging.getLogger(__name__)


@dataclass
class ChainRuntime:
    chain: Chain
    adapter: ChainAdapter
    swaps: QuoteExecutor
    monitor: ChainMonitor


def _build_solana(cfg: Settings, client: httpx.AsyncClient) -> tuple[ChainAdapter, QuoteExecutor]:
    try:
        keypair = Keypair.from_base58_string(cfg.solana_trader_key.strip())
    except Exception as exc:
        raise ConfigError(f"SOLANA_TRADER_KEY is not a valid base58 keypair: {exc}") from exc
    rpc = JsonRpcClient(cfg.solana_rpc_url, client)
    adapter = SolanaAdapter(rpc, cfg.solana_ws_url, cfg.solana_commitment)
    swaps = JupiterExecutor(
        keypair,
        rpc,
        client,
        api_url=cfg.jupiter_api_url,
        commitment=cfg.solana_commitment,
        confirm_timeout=cfg.confirm_timeout_seconds,
        poll_interval=cfg.confirm_poll_interval_seconds,
    )
    return adapter, swaps


def _build_base(cfg: Settings, client: httpx.AsyncClient) -> tuple[ChainAdapter, QuoteExecutor]:
    try:
        account = Account.from_key(cfg.base_trader_key.strip())
    except Exception as exc:
        raise ConfigError(f"BASE_TRADER_KEY is not a valid private key: {exc}") from exc
    rpc = JsonRpcClient(cfg.base_rpc_url, client)
    adapter = BaseChainAdapter(rpc, cfg.base_ws_url)
    swaps = ZeroXExecutor(
        account,
        rpc,
        client,
        api_key=cfg.zerox_api_key,
        api_url=cfg.zerox_api_url,
        confirm_timeout=cfg.confirm_timeout_seconds,
        poll_interval=cfg.confirm_poll_interval_seconds,
    )
    return adapter, swaps


def create_runtimes(
    cfg: Settings,
    ledger: HoldingsLedger,
    notifier: NotificationSink,
    client: httpx.AsyncClient,
    metadata: TokenMetadata | None = None,
) -> list[ChainRuntime]:
    """Raises ConfigError if a chain is enabled but misconfigured."""
    runtimes: list[ChainRuntime] = []
    for chain in cfg.enabled_chains():
        wallets = cfg.watched_wallets(chain)
        if not wallets:
            raise ConfigError(f"No valid wallets configured for {chain.display_name}")

        if chain is Chain.SOLANA:
            adapter, swaps = _build_solana(cfg, client)
        else:
            adapter, swaps = _build_base(cfg, client)

        executor = CopyTradeExecutor(
            adapter, swaps, ledger, notifier, cfg.trade_config(chain), metadata=metadata
        )
        monitor = ChainMonitor(
            adapter,
            executor,
            wallets,
            cache=ProcessedEventCache(cfg.processed_cache_size),
            reconnect_delay=cfg.reconnect_delay_seconds,
        )
        logger.info(
            "[%s] Trader %s, %d watched wallets: %s",
            chain.display_name,
            swaps.taker_address,
            len(wallets),
            ", ".join(w.label for w in wallets),
        )
        runtimes.append(ChainRuntime(chain, adapter, swaps, monitor))
    return runtimes
