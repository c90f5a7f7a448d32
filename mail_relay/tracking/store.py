"""JSON-backed tracking of processed messages and sender feedback."""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from ..models import FeedbackRecord, ProcessedRecord

logger = logging.getLogger(__name__)

RETENTION_DAYS = 30
FEEDBACK_WINDOW_DAYS = 30
FLUSH_EVERY = 10     # new processed records between flushes
SWEEP_EVERY = 100    # new processed records between retention sweeps


class TrackingStore:
    """Remembers which messages were handled and how users rated senders.

    Lookups read the in-memory dicts directly; mutations and snapshots for
    persistence take ``self._lock``. The on-disk document has two top-level
    collections::

        {
          "processed_emails": {"<message id>": {...ProcessedRecord...}},
          "user_feedback": {"<sender address>": [{...FeedbackRecord...}]}
        }

    Memory is authoritative: a failed write is logged and retried on the
    next flush.
    """

    def __init__(
        self,
        storage_file: str = "processed_emails.json",
        retention_days: int = RETENTION_DAYS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage_path = Path(storage_file).expanduser()
        self.retention_days = retention_days
        self._clock = clock
        self._lock = threading.RLock()
        self._processed: dict[str, ProcessedRecord] = {}
        self._feedback: dict[str, list[FeedbackRecord]] = {}
        self._new_records = 0
        self._load()

    # ------------------------------------------------------------------
    # Processed messages
    # ------------------------------------------------------------------

    def is_processed(self, message_id: str) -> bool:
        return message_id in self._processed

    def get_record(self, message_id: str) -> Optional[ProcessedRecord]:
        return self._processed.get(message_id)

    def record_processed(
        self,
        message_id: str,
        thread_id: Optional[str],
        subject: Optional[str],
        sender_email: Optional[str],
        was_important: bool,
        was_notified: bool,
    ) -> ProcessedRecord:
        """Store the outcome for a message.

        A second call for the same id replaces the earlier record rather
        than adding another; only first inserts advance the flush and sweep
        cadence.
        """
        record = ProcessedRecord(
            email_id=message_id,
            thread_id=thread_id or "",
            subject=subject or "",
            sender_email=sender_email or "",
            processed_time=self._clock(),
            was_important=was_important,
            was_notified=was_notified,
        )

        with self._lock:
            is_new = message_id not in self._processed
            self._processed[message_id] = record
            if not is_new:
                logger.debug(f"Replaced tracking record for {message_id}")
                return record
            self._new_records += 1
            new_records = self._new_records

        if new_records % SWEEP_EVERY == 0:
            self.sweep()
        if new_records % FLUSH_EVERY == 0:
            self.flush()

        return record

    def was_thread_recently_notified(self, thread_id: Optional[str], lookback_hours: int) -> bool:
        """True if a message in this thread triggered a notification recently."""
        if not thread_id:
            return False

        cutoff = self._clock() - timedelta(hours=lookback_hours)
        return any(
            record.thread_id == thread_id
            and record.was_notified
            and record.processed_time > cutoff
            for record in list(self._processed.values())
        )

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_feedback(self, message_id: str, is_relevant: bool) -> bool:
        """Attach a relevance verdict to the sender of a processed message.

        Returns False (and logs) when the message is unknown or has no
        sender address.
        """
        record = self._processed.get(message_id)
        if record is None:
            logger.warning(f"Received feedback for unknown email ID: {message_id}")
            return False

        sender = record.sender_email
        if not sender:
            logger.warning(f"Email {message_id} has no sender address, feedback ignored")
            return False

        feedback = FeedbackRecord(
            email_id=message_id,
            feedback_time=self._clock(),
            is_relevant=is_relevant,
        )
        with self._lock:
            self._feedback.setdefault(sender, []).append(feedback)

        logger.info(f"Recorded {'positive' if is_relevant else 'negative'} feedback for {sender}")
        self.flush()
        return True

    def recent_feedback_stats(self, sender_email: Optional[str]) -> tuple[int, int]:
        """Return (positive_count, total_count) over the feedback window."""
        entries = self._feedback.get(sender_email or "")
        if not entries:
            return 0, 0

        cutoff = self._clock() - timedelta(days=FEEDBACK_WINDOW_DAYS)
        recent = [fb for fb in list(entries) if fb.feedback_time > cutoff]
        positive = sum(1 for fb in recent if fb.is_relevant)
        return positive, len(recent)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self) -> dict:
        """Drop records and feedback older than the retention window."""
        cutoff = self._clock() - timedelta(days=self.retention_days)
        removed_records = 0
        removed_feedback = 0

        try:
            with self._lock:
                stale = [mid for mid, rec in self._processed.items() if rec.processed_time < cutoff]
                for mid in stale:
                    del self._processed[mid]
                removed_records = len(stale)

                for sender in list(self._feedback):
                    kept = [fb for fb in self._feedback[sender] if fb.feedback_time >= cutoff]
                    removed_feedback += len(self._feedback[sender]) - len(kept)
                    if kept:
                        self._feedback[sender] = kept
                    else:
                        del self._feedback[sender]
        except Exception as e:
            logger.error(f"Tracking sweep failed: {e}", exc_info=True)

        logger.debug(
            f"Cleaned up old entries, remaining: {len(self._processed)} emails, "
            f"{len(self._feedback)} feedback senders"
        )
        return {"removed_records": removed_records, "removed_feedback": removed_feedback}

    def flush(self) -> bool:
        """Write the current state to disk. Returns False on failure."""
        with self._lock:
            data = {
                "processed_emails": {mid: rec.to_dict() for mid, rec in self._processed.items()},
                "user_feedback": {
                    sender: [fb.to_dict() for fb in entries]
                    for sender, entries in self._feedback.items()
                },
            }

        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.storage_path.parent),
                prefix=f".{self.storage_path.name}.",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_name, self.storage_path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            logger.error(f"Failed to save email tracking data to {self.storage_path}: {e}")
            return False

        logger.debug(f"Tracking data saved: {len(data['processed_emails'])} emails")
        return True

    def close(self) -> None:
        self.flush()

    def stats(self) -> dict:
        return {
            "storage_file": str(self.storage_path),
            "processed_count": len(self._processed),
            "notified_count": sum(1 for r in list(self._processed.values()) if r.was_notified),
            "feedback_senders": len(self._feedback),
        }

    def _load(self) -> None:
        if not self.storage_path.exists() or self.storage_path.stat().st_size == 0:
            logger.info("No existing email tracking data found, starting fresh")
            return

        try:
            with open(self.storage_path, encoding="utf-8") as f:
                data = json.load(f)

            for mid, raw in (data.get("processed_emails") or {}).items():
                self._processed[mid] = ProcessedRecord.from_dict(raw)

            for sender, entries in (data.get("user_feedback") or {}).items():
                self._feedback[sender] = [FeedbackRecord.from_dict(fb) for fb in entries]

        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Error loading email tracking data from {self.storage_path}: {e}")
            self._processed.clear()
            self._feedback.clear()
            return

        logger.info(
            f"Loaded {len(self._processed)} processed emails and feedback for "
            f"{len(self._feedback)} senders from storage"
        )
