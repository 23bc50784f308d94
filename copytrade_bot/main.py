import asyncio
import logging
import sys

import httpx

from copytrade_bot.config import settings
from copytrade_bot.core.errors import ConfigError
from copytrade_bot.core.ledger import HoldingsLedger
from copytrade_bot.delivery.base import LogNotifier, NotificationSink
from copytrade_bot.delivery.telegram_bot import TelegramNotifier
from copytrade_bot.holdings.reconcile import HoldingsReconciler, reconcile_loop
from copytrade_bot.monitor.factory import create_runtimes
from copytrade_bot.storage.database import async_session, engine, init_db
from copytrade_bot.storage.repository import SqlHoldingsStore
from copytrade_bot.tokens.metadata import TokenMetadata
from copytrade_bot.utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def main() -> int:
    setup_logging(settings.log_level)
    logger.info("Starting Copy Trade Bot")

    chains = settings.enabled_chains()
    if not chains:
        logger.error("No chain enabled: set SOLANA_ENABLED=true and/or BASE_ENABLED=true")
        return 1
    missing = settings.missing_required()
    if missing:
        logger.error("Missing required configuration: %s", ", ".join(missing))
        return 1

    try:
        await init_db()
    except Exception as exc:
        logger.error("Holdings store unavailable (%s): %s", settings.database_url, exc)
        return 1
    logger.info("Database initialized")

    ledger = HoldingsLedger(SqlHoldingsStore(async_session))

    async with httpx.AsyncClient(timeout=30) as client:
        metadata = TokenMetadata(client)
        notifier: NotificationSink
        telegram: TelegramNotifier | None = None
        if settings.telegram_bot_token and settings.telegram_chat_id:
            telegram = TelegramNotifier(
                settings.telegram_bot_token, settings.telegram_chat_id, metadata=metadata
            )
            notifier = telegram
            logger.info("Telegram notifications enabled")
        else:
            notifier = LogNotifier()
            logger.warning("Telegram not configured, notifications will only be logged")

        try:
            runtimes = create_runtimes(
                settings, ledger, notifier, client, metadata=metadata
            )
        except ConfigError as exc:
            logger.error("Invalid configuration: %s", exc)
            return 1

        reconciler = HoldingsReconciler(
            ledger,
            {rt.chain: rt.adapter for rt in runtimes},
            {rt.chain: rt.swaps.taker_address for rt in runtimes},
        )

        tasks = [rt.monitor.run() for rt in runtimes]
        if settings.holdings_reconcile_interval_seconds > 0:
            tasks.append(reconcile_loop(reconciler, settings.holdings_reconcile_interval_seconds))
            logger.info(
                "Holdings reconcile every %ds", settings.holdings_reconcile_interval_seconds
            )

        if telegram is not None and settings.telegram_commands_enabled:
            telegram.reconciler = reconciler
            tg_app = telegram.build_application()

            async def run_telegram():
                async with tg_app:
                    await tg_app.updater.start_polling()
                    await tg_app.start()
                    logger.info("Telegram bot polling started (/holdings)")
                    try:
                        while True:
                            await asyncio.sleep(3600)
                    except asyncio.CancelledError:
                        await tg_app.updater.stop()
                        await tg_app.stop()
                        raise

            tasks.append(run_telegram())

        await notifier.notify(
            "🤖 <b>Copy Trade Bot started</b>\n"
            + "\n".join(
                f"{rt.chain.display_name}: {len(rt.monitor.wallets)} wallets" for rt in runtimes
            )
        )

        try:
            await asyncio.gather(*tasks)
        finally:
            for rt in runtimes:
                await rt.monitor.stop()
            await engine.dispose()
            logger.info("Copy Trade Bot stopped")
    return 0


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
