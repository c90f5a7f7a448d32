"""Base notification channel abstraction."""

import html
import re
from abc import ABC, abstractmethod

from ..models import ChannelType, Message

BODY_PREVIEW_LIMIT = 500

HTML_DOCUMENT_MARKERS = ("<html", "<!doctype", "<style", "<head", "<body")
HTML_TAG_RE = re.compile(r"<[^>]*>")


class NotificationChannel(ABC):
    """Abstract base class for outbound notification channels.

    Channels render the message themselves; callers hand over the
    normalized ``Message`` untouched.
    """

    def __init__(self, config: dict):
        """Initialize channel with configuration.

        Args:
            config: Channel-specific configuration dict
        """
        self.config = config
        self.enabled = config.get("enabled", False)

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        """Return the channel identifier."""

    @abstractmethod
    def send(self, message: Message) -> bool:
        """Deliver a notification for ``message``.

        Returns:
            True if the provider accepted the message for delivery
        """

    def is_available(self) -> bool:
        """Check if channel is configured and available."""
        return self.enabled

    @property
    def channel_name(self) -> str:
        return self.channel_type.value

    @abstractmethod
    def format_message(self, message: Message) -> str:
        """Render ``message`` as the text this channel sends."""


def format_received(message: Message) -> str:
    if message.received_at is None:
        return "unknown"
    return message.received_at.strftime("%Y-%m-%d %H:%M")


def body_preview(body: str, limit: int = BODY_PREVIEW_LIMIT) -> str:
    """Readable, truncated body text for chat notifications."""
    if not body:
        return ""

    lowered = body.lower()
    if any(marker in lowered for marker in HTML_DOCUMENT_MARKERS):
        return (
            "This email contains rich HTML content.\n\n"
            "Please check your email inbox for the complete message."
        )

    text = html.unescape(HTML_TAG_RE.sub("", body))
    lines = [line.rstrip() for line in text.splitlines()]
    text = "\n".join(line for line in lines if line.strip())
    text = re.sub(r"\n{3,}", "\n\n", text).strip()

    if len(text) > limit:
        text = text[:limit] + "..."
    return text
