"""WhatsApp notification channel via the Twilio messaging API."""

import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from ..models import ChannelType, Message
from .base import NotificationChannel, body_preview, format_received

logger = logging.getLogger(__name__)

WHATSAPP_MAX_LENGTH = 1600


class WhatsAppChannel(NotificationChannel):
    """Twilio WhatsApp channel, disabled unless explicitly enabled."""

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.WHATSAPP

    def __init__(self, config: dict):
        """Initialize WhatsApp channel.

        Config expects:
            account_sid: Twilio account SID
            auth_token: Twilio auth token
            from_number: WhatsApp-enabled Twilio number (E.164)
            to_number: Recipient number (E.164)
            enabled: bool
        """
        super().__init__(config)
        self.account_sid = config.get("account_sid", "")
        self.auth_token = config.get("auth_token", "")
        self.from_number = config.get("from_number", "")
        self.to_number = config.get("to_number", "")
        self._client: Optional[Client] = None

    def is_available(self) -> bool:
        return self.enabled and all(
            (self.account_sid, self.auth_token, self.from_number, self.to_number)
        )

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
            logger.info("WhatsApp (Twilio) client initialized")
        return self._client

    def send(self, message: Message) -> bool:
        if not self.is_available():
            logger.warning("WhatsApp channel is not available")
            return False

        try:
            sent = self.client.messages.create(
                body=self.format_message(message),
                from_=_whatsapp_address(self.from_number),
                to=_whatsapp_address(self.to_number),
            )
        except TwilioException as e:
            logger.error(f"Failed to send WhatsApp notification: {e}")
            return False

        logger.info(f"Sent notification via WhatsApp for email: {message.subject}, SID: {sent.sid}")
        return True

    def format_message(self, message: Message) -> str:
        text = (
            "📥 *New Important Email*\n\n"
            f"*From:* {message.sender_display}\n"
            f"*Subject:* {message.subject}\n"
            f"*Received:* {format_received(message)}\n\n"
            f"{body_preview(message.body)}"
        )
        if len(text) > WHATSAPP_MAX_LENGTH:
            text = text[:WHATSAPP_MAX_LENGTH - 3] + "..."
        return text


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"
