"""Tests for the importance classifier."""

from datetime import timedelta

import pytest

from mail_relay.filtering import ClassificationContext, ImportanceClassifier, classify

from conftest import NOW, FakeMailbox, make_message


def _classifier(clock, domains=(), keywords=(), mailbox=None, feedback=None, recency=24):
    return ImportanceClassifier(ClassificationContext(
        important_domains=domains,
        important_keywords=keywords,
        recency_hours=recency,
        category_lookup=mailbox or FakeMailbox(),
        feedback_stats=feedback or (lambda sender: (0, 0)),
        clock=clock,
    ))


class TestGates:
    """Category and recency gates only ever reject."""

    def test_disallowed_category_never_important(self, clock):
        classifier = _classifier(clock, mailbox=FakeMailbox(blocked_categories={"m1"}))
        message = make_message(subject="URGENT: server down")
        assert not classifier.classify(message)
        assert classifier.evaluate(message).reason == "category not allowed"

    def test_missing_received_date(self, clock):
        message = make_message(subject="urgent")
        message.received_at = None
        assert not _classifier(clock).classify(message)

    @pytest.mark.parametrize("subject,sender,body", [
        ("URGENT please reply", "x@y.com", ""),
        ("Hello", "ceo@example.com", ""),
        ("Your invoice", "x@y.com", ""),
        ("Hello", "x@y.com", "the invoice is attached"),
    ])
    def test_stale_message_never_important(self, clock, subject, sender, body):
        classifier = _classifier(clock, domains=["example.com"], keywords=["invoice"])
        message = make_message(subject=subject, sender_email=sender, body=body, age_hours=25)
        assert not classifier.classify(message)

    def test_exactly_at_recency_limit_still_recent(self, clock):
        message = make_message(subject="urgent", received_at=NOW - timedelta(hours=24))
        assert _classifier(clock).classify(message)


class TestUrgencyPattern:
    """Urgency vocabulary in the subject."""

    @pytest.mark.parametrize("subject", [
        "Action Required: renew",
        "action   required for account",
        "URGENT",
        "Need this ASAP",
        "[Alert] disk usage",
        "Critical update",
        "High priority ticket",
        "Immediate attention",
        "Important notice",
    ])
    def test_urgent_subjects(self, clock, subject):
        assert _classifier(clock).classify(make_message(subject=subject))

    @pytest.mark.parametrize("subject", [
        "Urgently yours",
        "Alerts digest",
        "Prioritize later",
        "Weekly newsletter",
    ])
    def test_partial_words_do_not_match(self, clock, subject):
        assert not _classifier(clock).classify(make_message(subject=subject, thread_id=""))


class TestDomainMatch:
    """Sender domain suffix matching."""

    def test_subdomain_matches(self, clock):
        classifier = _classifier(clock, domains=["example.com"])
        assert classifier.is_from_important_domain("alice@sub.example.com")

    def test_exact_domain_matches(self, clock):
        classifier = _classifier(clock, domains=["example.com"])
        assert classifier.is_from_important_domain("alice@example.com")

    def test_lookalike_domain_does_not_match(self, clock):
        classifier = _classifier(clock, domains=["example.com"])
        assert not classifier.is_from_important_domain("alice@notexample.com")

    def test_case_insensitive(self, clock):
        classifier = _classifier(clock, domains=[" Example.COM "])
        assert classifier.is_from_important_domain("Alice@Mail.EXAMPLE.com")

    def test_blank_entries_ignored(self, clock):
        classifier = _classifier(clock, domains=["", "  ", None])
        assert not classifier.is_from_important_domain("alice@example.com")
        assert classifier.context.important_domains == frozenset()

    def test_domain_makes_message_important(self, clock):
        classifier = _classifier(clock, domains=["example.com"])
        result = classifier.evaluate(make_message(subject="Lunch?", sender_email="bob@example.com"))
        assert result.important
        assert result.reason == "important sender domain"


class TestKeywords:
    """Keyword matching in subject and body."""

    def test_keyword_in_subject(self, clock):
        classifier = _classifier(clock, keywords=["Invoice"])
        result = classifier.evaluate(make_message(subject="Your INVOICE #42", thread_id=""))
        assert result.reason == "keyword in subject"

    def test_keyword_in_body(self, clock):
        classifier = _classifier(clock, keywords=["deadline"])
        result = classifier.evaluate(make_message(subject="Hi", body="The Deadline is Friday", thread_id=""))
        assert result.reason == "keyword in body"

    def test_substring_match(self, clock):
        classifier = _classifier(clock, keywords=["pay"])
        assert classifier.contains_important_keyword("payment due")

    def test_no_keywords_configured(self, clock):
        assert not _classifier(clock).contains_important_keyword("anything")


class TestFeedbackHistory:
    """Sender relevance history."""

    def test_high_relevance_sender(self, clock):
        classifier = _classifier(clock, feedback=lambda sender: (8, 10))
        result = classifier.evaluate(make_message(subject="Hi", thread_id=""))
        assert result.important
        assert result.reason.startswith("sender relevance")

    def test_exactly_seventy_percent_is_not_enough(self, clock):
        classifier = _classifier(clock, feedback=lambda sender: (7, 10))
        assert not classifier.classify(make_message(subject="Hi", thread_id=""))

    def test_no_history(self, clock):
        classifier = _classifier(clock, feedback=lambda sender: (0, 0))
        assert not classifier.classify(make_message(subject="Hi", thread_id=""))


class TestReplies:
    """Reply/forward prefixes inside a thread."""

    @pytest.mark.parametrize("subject", ["Re: lunch", "FW: report", "Fwd: notes", "AW: Termin", "回复: 会议"])
    def test_reply_in_thread(self, clock, subject):
        assert _classifier(clock).classify(make_message(subject=subject, thread_id="t9"))

    def test_reply_without_thread(self, clock):
        assert not _classifier(clock).classify(make_message(subject="Re: lunch", thread_id=""))

    def test_prefix_must_be_at_start(self, clock):
        assert not _classifier(clock).classify(make_message(subject="About re: lunch", thread_id="t9"))


class TestDefaults:
    """Fallthrough and helpers."""

    def test_plain_message_not_important(self, clock):
        result = _classifier(clock).evaluate(make_message(subject="Hello", thread_id=""))
        assert not result.important
        assert result.reason == "no rule matched"

    def test_none_message(self, clock):
        assert not _classifier(clock).evaluate(None)

    def test_module_level_classify(self, clock):
        context = ClassificationContext(recency_hours=24, clock=clock)
        assert classify(make_message(subject="Action Required: renew"), context)
