"""Rule-based importance classification for incoming mail."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Protocol

from ..models import Message

logger = logging.getLogger(__name__)

URGENT_PATTERN = re.compile(
    r"\b(urgent|immediate|asap|important|critical|priority|alert|action\s+required)\b",
    re.IGNORECASE,
)

REPLY_PATTERN = re.compile(r"^(re:|fw:|fwd:|aw:|wg:|回复:|转发:)", re.IGNORECASE)

RELEVANCE_THRESHOLD = 0.7


class CategoryLookup(Protocol):
    def is_allowed_category(self, message_id: str) -> bool:
        ...


def _normalize_terms(terms: Optional[Iterable[str]]) -> frozenset[str]:
    """Lower-case and trim entries, dropping blanks."""
    if not terms:
        return frozenset()
    return frozenset(
        term.strip().lower()
        for term in terms
        if term is not None and term.strip()
    )


@dataclass
class ClassificationContext:
    """Signals the classifier consults besides the message itself."""
    important_domains: frozenset[str] = frozenset()
    important_keywords: frozenset[str] = frozenset()
    recency_hours: int = 24
    category_lookup: Optional[CategoryLookup] = None
    feedback_stats: Optional[Callable[[str], tuple[int, int]]] = None
    clock: Callable[[], datetime] = field(default=datetime.now)

    def __post_init__(self):
        self.important_domains = _normalize_terms(self.important_domains)
        self.important_keywords = _normalize_terms(self.important_keywords)

    def is_allowed_category(self, message_id: str) -> bool:
        if self.category_lookup is None:
            return True
        return self.category_lookup.is_allowed_category(message_id)


@dataclass
class ClassificationResult:
    important: bool
    reason: str

    def __bool__(self) -> bool:
        return self.important


class ImportanceClassifier:
    """Decides whether a message deserves an outbound notification.

    Rules run in a fixed order. The category and recency gates can only
    reject; every later rule can only accept, and the first match wins:

        1. category outside PRIMARY/UPDATES      -> not important
        2. missing or stale received date        -> not important
        3. urgency wording in the subject        -> important
        4. sender in an important domain         -> important
        5. important keyword in the subject      -> important
        6. important keyword in the body         -> important
        7. sender rated relevant > 70% of times  -> important
        8. reply/forward inside a known thread   -> important
    """

    def __init__(self, context: ClassificationContext):
        self.context = context

    def classify(self, message: Message) -> bool:
        return self.evaluate(message).important

    def evaluate(self, message: Optional[Message]) -> ClassificationResult:
        if message is None:
            return ClassificationResult(False, "no message")

        ctx = self.context
        logger.debug(
            f"Checking importance for email: Subject='{message.subject}', From='{message.sender_email}'"
        )

        if not ctx.is_allowed_category(message.id):
            return self._verdict(message, False, "category not allowed")

        if message.received_at is None:
            return self._verdict(message, False, "no received date")
        if ctx.clock() - message.received_at > timedelta(hours=ctx.recency_hours):
            return self._verdict(message, False, f"older than {ctx.recency_hours}h")

        subject = message.subject or ""

        if URGENT_PATTERN.search(subject):
            return self._verdict(message, True, "urgent subject")

        if self.is_from_important_domain(message.sender_email):
            return self._verdict(message, True, "important sender domain")

        if self.contains_important_keyword(subject):
            return self._verdict(message, True, "keyword in subject")

        if self.contains_important_keyword(message.body):
            return self._verdict(message, True, "keyword in body")

        if message.sender_email and ctx.feedback_stats is not None:
            positive, total = ctx.feedback_stats(message.sender_email)
            if total > 0 and positive / total > RELEVANCE_THRESHOLD:
                return self._verdict(
                    message, True, f"sender relevance {positive}/{total}"
                )

        if message.thread_id and REPLY_PATTERN.match(subject.strip()):
            return self._verdict(message, True, "reply in thread")

        return self._verdict(message, False, "no rule matched")

    def is_from_important_domain(self, address: Optional[str]) -> bool:
        if not address or not address.strip() or not self.context.important_domains:
            return False

        address = address.strip().lower()
        return any(
            address.endswith("@" + domain) or address.endswith("." + domain)
            for domain in self.context.important_domains
        )

    def contains_important_keyword(self, content: Optional[str]) -> bool:
        if not content or not content.strip() or not self.context.important_keywords:
            return False

        content = content.lower()
        return any(keyword in content for keyword in self.context.important_keywords)

    @staticmethod
    def _verdict(message: Message, important: bool, reason: str) -> ClassificationResult:
        logger.debug(f"Email {message.id} important={important} ({reason})")
        return ClassificationResult(important, reason)


def classify(message: Message, context: ClassificationContext) -> bool:
    """Classify a single message against the given context."""
    return ImportanceClassifier(context).classify(message)
