"""Telegram HTML message formatters for every terminal trade outcome."""

from decimal import Decimal
from html import escape

from copytrade_bot.core.models import Chain, WatchedWallet


def format_native(chain: Chain, amount: int) -> str:
    """Base units -> '0.105 SOL' style string."""
    value = Decimal(amount) / Decimal(10**chain.native_decimals)
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{text or '0'} {chain.native_symbol}"


def _header(chain: Chain, title: str, emoji: str) -> str:
    return f"{emoji} <b>{chain.display_name} {title}</b>\n\n"


def _tx_link(chain: Chain, tx_id: str) -> str:
    return f'<a href="{chain.tx_url(tx_id)}">View</a>'


def trade_executed(
    chain: Chain,
    symbol: str,
    token: str,
    wallet: WatchedWallet,
    amount_in: int,
    tx_id: str,
    elapsed_seconds: float,
    received: str | None = None,
    ledger_flagged: bool = False,
) -> str:
    text = (
        _header(chain, "Copy Trade Executed!", "✅")
        + f"<b>Token:</b> {escape(symbol)}\n"
        f"<b>CA:</b> <code>{token}</code>\n"
        f"<b>Following:</b> {escape(wallet.label)}\n"
        f"<b>Amount:</b> {format_native(chain, amount_in)}\n"
    )
    if received:
        text += f"<b>Received:</b> {received}\n"
    text += (
        f"<b>Transaction:</b> {_tx_link(chain, tx_id)}\n"
        f"<b>Execution Time:</b> {elapsed_seconds:.2f}s"
    )
    if ledger_flagged:
        text += "\n\n⚠️ Holding could not be recorded in the ledger"
    return text


def trade_skipped(chain: Chain, symbol: str, wallet: WatchedWallet, reason: str) -> str:
    return (
        _header(chain, "Trade Alert!", "ℹ️")
        + f"<b>{escape(wallet.label)}</b> bought <b>{escape(symbol)}</b>\n"
        f"Trade skipped - {escape(reason)}"
    )


def already_holding(chain: Chain, symbol: str, wallet: WatchedWallet) -> str:
    return trade_skipped(chain, symbol, wallet, "Already holding this token")


def accumulating(chain: Chain, symbol: str, wallet: WatchedWallet) -> str:
    return (
        _header(chain, "Trade Alert!", "ℹ️")
        + f"<b>{escape(wallet.label)}</b> is accumulating <b>{escape(symbol)}</b>\n"
        "Trade skipped - Only copying initial entries"
    )


def insufficient_balance(
    chain: Chain, symbol: str, wallet: WatchedWallet, required: int, available: int
) -> str:
    return (
        _header(chain, "Trade Alert!", "ℹ️")
        + f"<b>{escape(wallet.label)}</b> bought <b>{escape(symbol)}</b>\n\n"
        f"⚠️ Trade Skipped - Insufficient {chain.native_symbol} balance. "
        f"Required: {format_native(chain, required)}, "
        f"Available: {format_native(chain, available)}"
    )


def no_route(chain: Chain, symbol: str) -> str:
    return f"ℹ️ {chain.display_name} Trade Skipped - No route found: <b>{escape(symbol)}</b>"


def trade_failed(chain: Chain, symbol: str, error: str) -> str:
    return (
        _header(chain, "Copy Trade Failed!", "❌")
        + f"<b>Token:</b> {escape(symbol)}\n"
        f"<b>Error:</b> {escape(error)}"
    )


def sell_alert(chain: Chain, symbol: str, token: str, wallet: WatchedWallet, tx_id: str) -> str:
    return (
        _header(chain, "Sell Alert!", "🔔")
        + f"<b>{escape(wallet.label)}</b> is selling <b>{escape(symbol)}</b>\n"
        f"<code>{token}</code>\n"
        "You currently hold this token\n"
        f"{_tx_link(chain, tx_id)}"
    )


def holdings_report(
    holdings: dict[Chain, dict[str, str | None]],
    symbols: dict[str, str] | None = None,
) -> str:
    symbols = symbols or {}
    lines = ["💼 <b>Current Holdings</b>"]
    for chain, tokens in holdings.items():
        lines.append(f"\n<b>{chain.display_name}</b> ({len(tokens)})")
        if not tokens:
            lines.append("No holdings")
            continue
        for token, amount in tokens.items():
            symbol = symbols.get(token)
            label = f"<b>{escape(symbol)}</b> " if symbol else ""
            lines.append(f"• {label}<code>{token}</code> {amount or '?'}")
    return "\n".join(lines)
