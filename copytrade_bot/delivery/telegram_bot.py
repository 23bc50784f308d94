import logging

import telegram
from telegram import LinkPreviewOptions, Update
from telegram.ext import Application, CommandHandler, ContextTypes

from copytrade_bot.core.errors import NotificationFailure
from copytrade_bot.core.models import Chain
from copytrade_bot.delivery import messages
from copytrade_bot.delivery.base import NotificationSink
from copytrade_bot.holdings.reconcile import HoldingsReconciler
from copytrade_bot.tokens.metadata import TokenMetadata

logger = logging.getLogger(__name__)

# Telegram rejects messages over 4096 chars
_CHUNK = 4000
_NO_PREVIEW = LinkPreviewOptions(is_disabled=True)


def split_message(text: str, size: int = _CHUNK) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)] or [""]


class TelegramNotifier(NotificationSink):
    """Push notifications to the operator chat, plus the /holdings command."""

    def __init__(
        self,
        token: str,
        chat_id: str,
        reconciler: HoldingsReconciler | None = None,
        bot: telegram.Bot | None = None,
        metadata: TokenMetadata | None = None,
    ) -> None:
        self._token = token
        self._bot = bot or telegram.Bot(token=token)
        self._chat_id = chat_id
        self.reconciler = reconciler
        self.metadata = metadata
        self._app: Application | None = None

    async def send_text(self, text: str, parse_mode: str = "HTML") -> None:
        try:
            for chunk in split_message(text):
                await self._bot.send_message(
                    chat_id=self._chat_id,
                    text=chunk,
                    parse_mode=parse_mode,
                    link_preview_options=_NO_PREVIEW,
                )
        except telegram.error.TelegramError as exc:
            raise NotificationFailure(f"Telegram send failed: {exc}") from exc

    def build_application(self) -> Application:
        """Build the telegram Application with command handlers."""
        self._app = Application.builder().token(self._token).build()
        self._app.add_handler(CommandHandler("start", self._cmd_start))
        self._app.add_handler(CommandHandler("help", self._cmd_help))
        self._app.add_handler(CommandHandler("holdings", self._cmd_holdings))
        return self._app

    def _authorized(self, update: Update) -> bool:
        chat = update.effective_chat
        return chat is not None and str(chat.id) == str(self._chat_id)

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._authorized(update):
            return
        await update.message.reply_text(
            "🤖 <b>Copy Trade Bot</b>\n\n"
            "Watching wallets and copying their first entries.\n\n"
            "/holdings — Refresh and list current holdings\n"
            "/help — Show this message",
            parse_mode="HTML",
        )

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._authorized(update):
            return
        await update.message.reply_text(
            "<b>Usage:</b>\n\n"
            "<code>/holdings</code> — Check on-chain balances, drop empty positions, "
            "and list what the bot holds per chain",
            parse_mode="HTML",
        )

    async def _cmd_holdings(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._authorized(update):
            return
        if self.reconciler is None:
            await update.message.reply_text("No chains are being monitored.")
            return

        loading = await update.message.reply_text("🔄 Fetching holdings...")
        try:
            holdings = await self.reconciler.reconcile_all()
            text = messages.holdings_report(holdings, await self._symbols(holdings))
            chunks = split_message(text)
            await loading.edit_text(chunks[0], parse_mode="HTML")
            for chunk in chunks[1:]:
                await update.message.reply_text(chunk, parse_mode="HTML")
        except Exception as exc:
            logger.exception("Holdings command failed")
            await update.message.reply_text(f"❌ Error retrieving holdings: {exc}")

    async def _symbols(self, holdings: dict[Chain, dict[str, str | None]]) -> dict[str, str]:
        if self.metadata is None:
            return {}
        return {
            token: await self.metadata.symbol(chain, token)
            for chain, tokens in holdings.items()
            for token in tokens
        }
