"""Fan-out of important messages to every available channel."""

import logging
from datetime import datetime
from typing import Optional, Sequence

from ..models import AttemptStatus, Message, NotificationAttempt, NotificationPriority
from .base import NotificationChannel
from .telegram import TelegramChannel
from .whatsapp import WhatsAppChannel

logger = logging.getLogger(__name__)

CHANNEL_REGISTRY: dict[str, type[NotificationChannel]] = {
    "telegram": TelegramChannel,
    "whatsapp": WhatsAppChannel,
}

DEFAULT_CHANNEL_ORDER = ["telegram", "whatsapp"]


class NotificationDispatcher:
    """Sends a message through an ordered list of channels.

    The order is fixed at construction. Every available channel is tried,
    even after one succeeds, so a message can arrive on several channels.
    Unavailable channels are skipped without an attempt entry. A channel
    that raises is recorded as failed and the remaining channels still run;
    total failure shows up as a result with no SENT attempt.
    """

    def __init__(self, channels: Sequence[NotificationChannel]):
        self.channels: list[NotificationChannel] = list(channels)

    @classmethod
    def from_config(cls, config: dict) -> "NotificationDispatcher":
        """Build channels from the 'notifications' config section.

        ``channel_order`` lists channel names in delivery priority; a channel
        is only created when it also has its own config section.
        """
        channels = []
        for name in config.get("channel_order") or DEFAULT_CHANNEL_ORDER:
            channel_cls = CHANNEL_REGISTRY.get(name)
            if channel_cls is None:
                logger.warning(f"Unknown notification channel in channel_order: {name}")
                continue

            channel_config = config.get(name)
            if not channel_config:
                logger.info(f"Channel {name} not configured")
                continue

            channels.append(channel_cls(channel_config))

        return cls(channels)

    def dispatch(self, message: Optional[Message]) -> list[NotificationAttempt]:
        """Attempt delivery of ``message`` on each available channel.

        Returns:
            One attempt per channel that was tried, in channel order
        """
        attempts: list[NotificationAttempt] = []

        if message is None:
            logger.warning("Cannot send notification for null email")
            return attempts

        logger.info(f"Sending notifications for email: {message.subject}")

        for channel in self.channels:
            if not channel.is_available():
                logger.debug(f"Channel {channel.channel_name} is not available")
                continue

            attempt = NotificationAttempt(
                channel=channel.channel_type,
                title=message.subject,
                priority=NotificationPriority.HIGH,
            )

            try:
                delivered = channel.send(message)
            except Exception as e:
                logger.error(f"Error sending notification via {channel.channel_name}: {e}", exc_info=True)
                attempt.status = AttemptStatus.FAILED
                attempt.error = str(e) or type(e).__name__
            else:
                if delivered:
                    attempt.status = AttemptStatus.SENT
                    logger.info(f"Successfully sent notification via {channel.channel_name} for email: {message.subject}")
                else:
                    attempt.status = AttemptStatus.FAILED
                    attempt.error = "Channel rejected the message"
                    logger.warning(f"Failed to send notification via {channel.channel_name} for email: {message.subject}")

            attempts.append(attempt)

        if not any(a.sent for a in attempts):
            logger.error(f"Failed to send notification via any channel for email: {message.subject}")

        return attempts

    def get_status(self) -> list[dict]:
        """Availability of every configured channel, in delivery order."""
        return [
            {"type": channel.channel_type.value, "available": channel.is_available()}
            for channel in self.channels
        ]

    def test_channels(self) -> dict[str, NotificationAttempt]:
        """Send a test message to all channels."""
        test_message = Message(
            id="test",
            thread_id="",
            subject="Test Notification",
            sender_name="mail-relay",
            sender_email="",
            body="This is a test message from mail-relay.",
            received_at=datetime.now(),
        )

        results = {}
        for channel in self.channels:
            attempt = NotificationAttempt(channel=channel.channel_type, title=test_message.subject)
            if not channel.is_available():
                attempt.status = AttemptStatus.FAILED
                attempt.error = "Channel not available"
            else:
                try:
                    ok = channel.send(test_message)
                    attempt.status = AttemptStatus.SENT if ok else AttemptStatus.FAILED
                    if not ok:
                        attempt.error = "Channel rejected the message"
                except Exception as e:
                    attempt.status = AttemptStatus.FAILED
                    attempt.error = str(e)
            results[channel.channel_name] = attempt
        return results
