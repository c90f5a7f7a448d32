"""Core data types shared across the relay pipeline."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class ChannelType(Enum):
    """Outbound notification channel identifiers."""
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"


class NotificationPriority(Enum):
    """Priority attached to a notification attempt."""
    HIGH = "high"


class AttemptStatus(Enum):
    """Delivery status of a single channel attempt."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Category(Enum):
    """Mailbox tab a message was sorted into by the provider."""
    PRIMARY = "primary"
    SOCIAL = "social"
    PROMOTIONS = "promotions"
    UPDATES = "updates"
    FORUMS = "forums"
    UNKNOWN = "unknown"


ALLOWED_CATEGORIES = frozenset({Category.PRIMARY, Category.UPDATES})


@dataclass
class Message:
    """A normalized mailbox message.

    Only ``important`` changes after fetch; it is set by the processor from
    the classifier verdict.
    """
    id: str
    thread_id: str
    subject: str
    sender_name: str
    sender_email: str
    body: str = ""
    received_at: Optional[datetime] = None
    important: bool = False

    @property
    def sender_display(self) -> str:
        if self.sender_name and self.sender_name != self.sender_email:
            return f"{self.sender_name} <{self.sender_email}>"
        return self.sender_email or self.sender_name


@dataclass
class ProcessedRecord:
    """Tracking entry written once a message has been handled."""
    email_id: str
    thread_id: str
    subject: str
    sender_email: str
    processed_time: datetime
    was_important: bool
    was_notified: bool

    def to_dict(self) -> dict:
        return {
            "email_id": self.email_id,
            "thread_id": self.thread_id,
            "subject": self.subject,
            "sender_email": self.sender_email,
            "processed_time": self.processed_time.isoformat(),
            "was_important": self.was_important,
            "was_notified": self.was_notified,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessedRecord":
        return cls(
            email_id=data["email_id"],
            thread_id=data.get("thread_id") or "",
            subject=data.get("subject") or "",
            sender_email=data.get("sender_email") or "",
            processed_time=datetime.fromisoformat(data["processed_time"]),
            was_important=bool(data.get("was_important", False)),
            was_notified=bool(data.get("was_notified", False)),
        )


@dataclass
class FeedbackRecord:
    """User verdict on whether a relayed message was worth the alert."""
    email_id: str
    feedback_time: datetime
    is_relevant: bool

    def to_dict(self) -> dict:
        return {
            "email_id": self.email_id,
            "feedback_time": self.feedback_time.isoformat(),
            "is_relevant": self.is_relevant,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FeedbackRecord":
        return cls(
            email_id=data["email_id"],
            feedback_time=datetime.fromisoformat(data["feedback_time"]),
            is_relevant=bool(data.get("is_relevant", False)),
        )


@dataclass
class NotificationAttempt:
    """Outcome of delivering one message through one channel."""
    channel: ChannelType
    title: str
    priority: NotificationPriority = NotificationPriority.HIGH
    status: AttemptStatus = AttemptStatus.PENDING
    error: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def sent(self) -> bool:
        return self.status == AttemptStatus.SENT

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": self.channel.value,
            "title": self.title,
            "priority": self.priority.value,
            "status": self.status.value,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }
