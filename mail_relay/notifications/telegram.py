"""Telegram notification channel using Bot API."""

import html
import json
import logging
import urllib.error
import urllib.parse
import urllib.request

from ..models import ChannelType, Message
from .base import NotificationChannel, body_preview, format_received

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
TELEGRAM_TIMEOUT = 10  # seconds
TELEGRAM_MAX_LENGTH = 4096
# Raw lengths before escaping; keeps the header well inside the message limit
SENDER_MAX_LENGTH = 100
SUBJECT_MAX_LENGTH = 300


class TelegramChannel(NotificationChannel):
    """Telegram Bot API channel, first in the default delivery order."""

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.TELEGRAM

    def __init__(self, config: dict):
        """Initialize Telegram channel.

        Config expects:
            bot_token: Telegram bot token from BotFather
            chat_id: Target chat/channel ID
            enabled: bool (defaults to True when credentials are present)
        """
        super().__init__(config)
        self.bot_token = config.get("bot_token", "")
        self.chat_id = str(config.get("chat_id", "") or "")
        self.enabled = config.get("enabled", True)

    def is_available(self) -> bool:
        return self.enabled and bool(self.bot_token) and bool(self.chat_id)

    def send(self, message: Message) -> bool:
        """Send message via Telegram Bot API."""
        if not self.is_available():
            logger.warning("Telegram channel is not available")
            return False

        text = self.format_message(message)

        try:
            url = f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"
            data = urllib.parse.urlencode({
                "chat_id": self.chat_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": "true"
            }).encode("utf-8")

            req = urllib.request.Request(url, data=data, method="POST")
            req.add_header("Content-Type", "application/x-www-form-urlencoded")

            with urllib.request.urlopen(req, timeout=TELEGRAM_TIMEOUT) as response:
                result = json.loads(response.read().decode("utf-8"))

        except urllib.error.URLError as e:
            logger.error(f"Telegram network error: {e}")
            return False
        except ValueError as e:
            logger.error(f"Telegram returned an unreadable response: {e}")
            return False

        if result.get("ok"):
            message_id = result.get("result", {}).get("message_id", "")
            logger.info(f"Sent notification via Telegram for email: {message.subject} ({message_id})")
            return True

        logger.error(f"Telegram API error: {result.get('description', 'Unknown error')}")
        return False

    def format_message(self, message: Message) -> str:
        """Render as Telegram HTML, escaping all message-supplied text."""
        def esc(value, limit):
            return html.escape(_clip(value or "", limit))

        text = (
            "<b>New Important Email</b>\n\n"
            f"<b>From:</b> {esc(message.sender_name, SENDER_MAX_LENGTH)} "
            f"&lt;{esc(message.sender_email, SENDER_MAX_LENGTH)}&gt;\n"
            f"<b>Subject:</b> {esc(message.subject, SUBJECT_MAX_LENGTH)}\n"
            f"<b>Received:</b> {format_received(message)}\n\n"
            f"{html.escape(body_preview(message.body))}"
        )
        if len(text) > TELEGRAM_MAX_LENGTH:
            text = _cut_escaped(text, TELEGRAM_MAX_LENGTH - 3) + "..."
        return text


def _clip(value: str, limit: int) -> str:
    return value if len(value) <= limit else value[:limit] + "..."


def _cut_escaped(text: str, limit: int) -> str:
    """Cut escaped HTML to ``limit`` chars without splitting an entity."""
    cut = text[:limit]
    amp = cut.rfind("&")
    if amp != -1 and ";" not in cut[amp:]:
        cut = cut[:amp]
    return cut
