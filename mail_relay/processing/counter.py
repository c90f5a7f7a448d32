"""Daily notification budget."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)


def next_midnight(now: datetime) -> datetime:
    return (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass
class DailyCounter:
    """Notifications sent today and the moment the count starts over."""
    limit: int = 20
    count: int = 0
    reset_at: Optional[datetime] = None

    def __post_init__(self):
        if self.reset_at is None:
            self.reset_at = next_midnight(datetime.now())

    @property
    def exhausted(self) -> bool:
        return self.count >= self.limit

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)

    def reset_if_due(self, now: datetime) -> bool:
        """Zero the count once ``now`` passes the reset boundary."""
        if now <= self.reset_at:
            return False
        logger.info(f"Resetting daily notification counter from {self.count}")
        self.count = 0
        self.reset_at = next_midnight(now)
        return True

    def increment(self) -> int:
        self.count += 1
        return self.count

    def to_dict(self) -> dict:
        return {
            "sent_today": self.count,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat(),
        }
