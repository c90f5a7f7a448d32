"""
Pytest configuration and shared fixtures.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure project root is in path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mail_relay.filtering import ClassificationContext, ImportanceClassifier
from mail_relay.models import ChannelType, Message
from mail_relay.notifications import NotificationChannel, NotificationDispatcher
from mail_relay.processing import EmailProcessor
from mail_relay.tracking import TrackingStore


NOW = datetime(2026, 3, 10, 12, 0, 0)


class FakeClock:
    """Settable clock passed wherever components accept ``clock``."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMailbox:
    """In-memory mail transport and category lookup."""

    def __init__(self, messages=None, blocked_categories=None, error=None):
        self.messages = list(messages or [])
        self.blocked = set(blocked_categories or [])
        self.error = error
        self.fetch_calls = []

    def fetch_recent(self, max_results):
        self.fetch_calls.append(max_results)
        if self.error:
            raise self.error
        return self.messages[:max_results]

    def is_allowed_category(self, message_id):
        return message_id not in self.blocked


class FakeChannel(NotificationChannel):
    """Channel that records sends and can be told to fail or raise."""

    def __init__(self, channel_type=ChannelType.TELEGRAM, available=True, result=True, error=None):
        super().__init__({"enabled": available})
        self._type = channel_type
        self.result = result
        self.error = error
        self.sent = []

    @property
    def channel_type(self):
        return self._type

    def format_message(self, message):
        return message.subject

    def send(self, message):
        self.sent.append(message)
        if self.error:
            raise self.error
        return self.result


def make_message(
    id="m1",
    thread_id="t1",
    subject="Hello",
    sender_name="Alice",
    sender_email="alice@example.net",
    body="Just checking in.",
    received_at=None,
    age_hours=1,
):
    if received_at is None:
        received_at = NOW - timedelta(hours=age_hours)
    return Message(
        id=id,
        thread_id=thread_id,
        subject=subject,
        sender_name=sender_name,
        sender_email=sender_email,
        body=body,
        received_at=received_at,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    return TrackingStore(storage_file=str(tmp_path / "tracking.json"), clock=clock)


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def build_processor(store, clock, mailbox):
    """Factory for an EmailProcessor over fakes."""

    def _build(channels=None, domains=(), keywords=(), max_per_day=20, window_hours=2, fetch=10):
        context = ClassificationContext(
            important_domains=frozenset(domains),
            important_keywords=frozenset(keywords),
            recency_hours=24,
            category_lookup=mailbox,
            feedback_stats=store.recent_feedback_stats,
            clock=clock,
        )
        return EmailProcessor(
            transport=mailbox,
            category_lookup=mailbox,
            classifier=ImportanceClassifier(context),
            dispatcher=NotificationDispatcher(channels if channels is not None else [FakeChannel()]),
            store=store,
            max_emails_per_fetch=fetch,
            max_notifications_per_day=max_per_day,
            thread_deduplication_window_hours=window_hours,
            clock=clock,
        )

    return _build
