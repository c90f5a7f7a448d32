"""Processing cycle orchestration."""

from .counter import DailyCounter
from .processor import CycleSummary, EmailProcessor

__all__ = ["CycleSummary", "DailyCounter", "EmailProcessor"]
