import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Deliver an HTML message. Raises NotificationFailure if it could not be sent."""
        ...

    async def notify(self, text: str) -> None:
        """Fire-and-forget wrapper: delivery problems are logged, never raised."""
        try:
            await self.send_text(text)
        except Exception as exc:
            logger.error("Notification failed: %s", exc)


class LogNotifier(NotificationSink):
    """Used when Telegram is not configured: messages only go to the log."""

    async def send_text(self, text: str) -> None:
        logger.info("Notification: %s", text)
