"""Notification channels and dispatch."""

from .base import NotificationChannel
from .telegram import TelegramChannel
from .whatsapp import WhatsAppChannel
from .dispatcher import NotificationDispatcher

__all__ = [
    "NotificationChannel",
    "TelegramChannel",
    "WhatsAppChannel",
    "NotificationDispatcher",
]
