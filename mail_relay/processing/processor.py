"""The fetch -> filter -> classify -> dispatch -> record cycle."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Protocol

from ..filtering import ImportanceClassifier
from ..models import Message
from ..notifications import NotificationDispatcher
from ..tracking import TrackingStore
from .counter import DailyCounter, next_midnight

logger = logging.getLogger(__name__)


class MailTransport(Protocol):
    def fetch_recent(self, max_results: int) -> list[Message]:
        ...


class CategoryLookup(Protocol):
    def is_allowed_category(self, message_id: str) -> bool:
        ...


@dataclass
class CycleSummary:
    """Counts reported at the end of one processing cycle."""
    started_at: datetime
    fetched: int = 0
    processed: int = 0
    important: int = 0
    notified: int = 0
    skipped: int = 0
    failed: int = 0
    error: Optional[str] = None
    duration_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "fetched": self.fetched,
            "processed": self.processed,
            "important": self.important,
            "notified": self.notified,
            "skipped": self.skipped,
            "failed": self.failed,
            "error": self.error,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class EmailProcessor:
    """Runs processing cycles and owns the daily notification counter.

    Scheduled and manual triggers both go through ``run_cycle``, which holds
    ``self._cycle_lock`` for the whole cycle; a manual trigger that arrives
    mid-cycle waits for it to finish.
    """

    def __init__(
        self,
        transport: MailTransport,
        category_lookup: CategoryLookup,
        classifier: ImportanceClassifier,
        dispatcher: NotificationDispatcher,
        store: TrackingStore,
        max_emails_per_fetch: int = 10,
        max_notifications_per_day: int = 20,
        thread_deduplication_window_hours: int = 2,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.transport = transport
        self.category_lookup = category_lookup
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.store = store
        self.max_emails_per_fetch = max_emails_per_fetch
        self.thread_deduplication_window_hours = thread_deduplication_window_hours
        self._clock = clock
        self.counter = DailyCounter(
            limit=max_notifications_per_day,
            reset_at=next_midnight(clock()),
        )
        self.last_summary: Optional[CycleSummary] = None
        self._cycle_lock = threading.Lock()

    def run_cycle(self) -> CycleSummary:
        with self._cycle_lock:
            summary = self._run_cycle_locked()
            self.last_summary = summary
            return summary

    def trigger_cycle_now(self) -> CycleSummary:
        """Entry point for manual (HTTP/CLI) triggers."""
        logger.info("Manual processing of emails triggered")
        return self.run_cycle()

    def get_channel_statuses(self) -> list[dict]:
        return self.dispatcher.get_status()

    def get_status(self) -> dict:
        return {
            "daily_notifications": self.counter.to_dict(),
            "last_cycle": self.last_summary.to_dict() if self.last_summary else None,
            "cycle_running": self._cycle_lock.locked(),
            "tracking": self.store.stats(),
        }

    def _run_cycle_locked(self) -> CycleSummary:
        start = self._clock()
        summary = CycleSummary(started_at=start)
        logger.info("Starting scheduled email processing")

        self.counter.reset_if_due(start)

        try:
            messages = self.transport.fetch_recent(self.max_emails_per_fetch)
        except Exception as e:
            logger.error(f"Error during email fetch, cycle aborted: {e}")
            summary.error = f"Fetch failed: {e}"
            summary.duration_seconds = (self._clock() - start).total_seconds()
            return summary

        summary.fetched = len(messages)
        logger.info(f"Fetched {summary.fetched} recent emails")

        for message in messages:
            try:
                self._process_message(message, summary)
            except Exception as e:
                summary.failed += 1
                summary.errors.append(f"{message.id}: {e}")
                logger.error(f"Error processing email: {message.id}: {e}", exc_info=True)

        summary.duration_seconds = (self._clock() - start).total_seconds()
        logger.info(
            f"Completed processing emails: fetched={summary.fetched}, "
            f"processed={summary.processed}, important={summary.important}, "
            f"notified={summary.notified}, skipped={summary.skipped}, failed={summary.failed}"
        )
        return summary

    def _process_message(self, message: Message, summary: CycleSummary) -> None:
        if self.store.is_processed(message.id):
            logger.debug(f"Skipping already processed email: {message.subject}")
            summary.skipped += 1
            return

        if not self.category_lookup.is_allowed_category(message.id):
            logger.debug(f"Skipping email not in PRIMARY or UPDATES category: {message.subject}")
            self._record(message, important=False, notified=False)
            summary.skipped += 1
            return

        if self.store.was_thread_recently_notified(
            message.thread_id, self.thread_deduplication_window_hours
        ):
            logger.debug(f"Skipping email in recently notified thread: {message.subject}")
            self._record(message, important=True, notified=False)
            summary.skipped += 1
            return

        summary.processed += 1
        message.important = self.classifier.classify(message)

        if not message.important:
            self._record(message, important=False, notified=False)
            return

        summary.important += 1

        if self.counter.exhausted:
            logger.info(f"Daily notification limit reached. Skipping notification for: {message.subject}")
            self._record(message, important=True, notified=False)
            return

        attempts = self.dispatcher.dispatch(message)
        notified = any(a.sent for a in attempts)
        if notified:
            self.counter.increment()
            summary.notified += 1
            logger.info(f"Sent notification for important email: {message.subject}")

        self._record(message, important=True, notified=notified)

    def _record(self, message: Message, important: bool, notified: bool) -> None:
        self.store.record_processed(
            message.id,
            message.thread_id,
            message.subject,
            message.sender_email,
            important,
            notified,
        )
