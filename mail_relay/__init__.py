"""
mail-relay: relays important emails to chat channels.

Provides:
- IMAP mailbox polling with Gmail thread/category support
- Rule-based importance classification
- Telegram and WhatsApp (Twilio) notifications
- Deduplication, daily rate limiting and feedback tracking
- APScheduler-based background processing
"""

__version__ = "0.1.0"

from .filtering import ClassificationContext, ImportanceClassifier
from .inbox import ImapMailbox, MailTransportError
from .models import Message
from .notifications import NotificationDispatcher
from .processing import EmailProcessor
from .tracking import TrackingStore

__all__ = [
    "ClassificationContext",
    "ImportanceClassifier",
    "ImapMailbox",
    "MailTransportError",
    "Message",
    "NotificationDispatcher",
    "EmailProcessor",
    "TrackingStore",
]
