"""Mailbox transport."""

from .fetcher import ImapMailbox, MailTransportError

__all__ = ["ImapMailbox", "MailTransportError"]
