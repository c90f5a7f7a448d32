"""Mailbox access over IMAP, with Gmail thread and category extensions."""

import email
import email.message
import imaplib
import logging
import re
from datetime import datetime
from email.header import decode_header
from email.utils import parsedate_to_datetime
from typing import Callable, Optional

from ..models import ALLOWED_CATEGORIES, Category, Message

logger = logging.getLogger(__name__)

# Gmail IMAP settings
GMAIL_IMAP_HOST = "imap.gmail.com"
GMAIL_IMAP_PORT = 993
IMAP_TIMEOUT = 30  # seconds

GMAIL_CATEGORIES = [
    Category.PRIMARY,
    Category.UPDATES,
    Category.SOCIAL,
    Category.PROMOTIONS,
    Category.FORUMS,
]

_MSGID_RE = re.compile(rb"X-GM-MSGID (\d+)")
_THRID_RE = re.compile(rb"X-GM-THRID (\d+)")
_UID_RE = re.compile(rb"UID (\d+)")
_REF_RE = re.compile(r"<[^>]+>")


class MailTransportError(Exception):
    """Raised when the mailbox cannot be reached or queried."""


class ImapMailbox:
    """Fetches recent messages and remembers their Gmail category.

    Implements both the mail transport (``fetch_recent``) and the category
    lookup (``is_allowed_category``) used by the processor. Categories are
    captured during the fetch, so lookups only answer for messages from the
    most recent batch; anything else is UNKNOWN.

    With ``gmail_extensions`` off the mailbox is treated as a plain IMAP
    server: ids come from the Message-ID header, threads from References,
    and category filtering is disabled.
    """

    def __init__(
        self,
        config: dict,
        connect: Optional[Callable[[str, int], imaplib.IMAP4]] = None,
    ):
        """Initialize with the 'mailbox' config section.

        Args:
            config: host, port, username, app_password, folder,
                gmail_extensions, category_filter
            connect: Factory returning a connected IMAP4 client
        """
        self.host = config.get("host", GMAIL_IMAP_HOST)
        self.port = int(config.get("port", GMAIL_IMAP_PORT))
        self.username = config.get("username", "")
        self.app_password = config.get("app_password", "")
        self.folder = config.get("folder", "INBOX")
        self.gmail_extensions = config.get("gmail_extensions", True)
        self.category_filter = config.get("category_filter", True) and self.gmail_extensions
        self._connect = connect or self._default_connect
        self._categories: dict[str, Category] = {}

    @property
    def is_configured(self) -> bool:
        return bool(self.username and self.app_password)

    def fetch_recent(self, max_results: int = 10) -> list[Message]:
        """Fetch up to ``max_results`` newest messages from the folder.

        Raises:
            MailTransportError: on connection, authentication or IMAP errors
        """
        if not self.is_configured:
            raise MailTransportError("Mailbox username/app_password not configured")

        start_time = datetime.now()
        mail = None
        try:
            logger.debug(f"[{self.username}] Connecting to {self.host}:{self.port}")
            mail = self._connect(self.host, self.port)
            mail.login(self.username, self.app_password)
            status, _ = mail.select(self.folder, readonly=True)
            if status != "OK":
                raise MailTransportError(f"Cannot select folder {self.folder}")

            _, data = mail.uid("SEARCH", None, "ALL")
            uids = data[0].split() if data and data[0] else []
            recent_uids = uids[-max_results:] if max_results > 0 else []

            if not recent_uids:
                logger.info("No emails found.")
                self._categories = {}
                return []

            categories_by_uid = self._search_categories(mail) if self.category_filter else {}
            messages = self._fetch_messages(mail, recent_uids, categories_by_uid)

        except imaplib.IMAP4.error as e:
            logger.error(f"[{self.username}] IMAP error: {e}")
            raise MailTransportError(f"IMAP error: {e}") from e
        except TimeoutError as e:
            logger.warning(f"[{self.username}] Connection timed out after {IMAP_TIMEOUT}s")
            raise MailTransportError(f"Connection timed out after {IMAP_TIMEOUT}s") from e
        except OSError as e:
            logger.error(f"[{self.username}] Connection error: {e}")
            raise MailTransportError(f"Connection error: {e}") from e
        finally:
            if mail is not None:
                try:
                    mail.logout()
                except (imaplib.IMAP4.error, OSError) as e:
                    logger.debug(f"[{self.username}] Error during IMAP logout: {e}")

        duration_ms = int((datetime.now() - start_time).total_seconds() * 1000)
        logger.info(f"[{self.username}] Fetched {len(messages)} emails in {duration_ms}ms")
        return messages

    def is_allowed_category(self, message_id: str) -> bool:
        if not self.category_filter:
            return True
        return self.get_category(message_id) in ALLOWED_CATEGORIES

    def get_category(self, message_id: str) -> Category:
        return self._categories.get(message_id, Category.UNKNOWN)

    def _default_connect(self, host: str, port: int) -> imaplib.IMAP4:
        return imaplib.IMAP4_SSL(host, port, timeout=IMAP_TIMEOUT)

    def _search_categories(self, mail: imaplib.IMAP4) -> dict[bytes, Category]:
        """Map UIDs to their Gmail tab using X-GM-RAW searches."""
        categories: dict[bytes, Category] = {}
        for category in GMAIL_CATEGORIES:
            try:
                _, data = mail.uid("SEARCH", "X-GM-RAW", f'"category:{category.value}"')
            except imaplib.IMAP4.error as e:
                logger.error(f"Error getting Gmail category {category.name}: {e}")
                continue
            for uid in (data[0].split() if data and data[0] else []):
                categories.setdefault(uid, category)
        return categories

    def _fetch_messages(
        self,
        mail: imaplib.IMAP4,
        uids: list[bytes],
        categories_by_uid: dict[bytes, Category],
    ) -> list[Message]:
        items = "(X-GM-MSGID X-GM-THRID BODY.PEEK[])" if self.gmail_extensions else "(BODY.PEEK[])"
        _, data = mail.uid("FETCH", b",".join(uids).decode(), items)

        messages = []
        categories: dict[str, Category] = {}
        for part in data or []:
            if not isinstance(part, tuple) or len(part) < 2:
                continue

            meta, raw = part[0], part[1]
            try:
                message = self._to_message(meta, raw)
            except Exception as e:
                logger.error(f"Error processing email ({meta[:60]!r}): {e}")
                continue

            uid_match = _UID_RE.search(meta)
            uid = uid_match.group(1) if uid_match else b""
            categories[message.id] = categories_by_uid.get(uid, Category.UNKNOWN)
            messages.append(message)

        self._categories = categories
        messages.reverse()  # Newest first
        return messages

    def _to_message(self, meta: bytes, raw: bytes) -> Message:
        parsed = email.message_from_bytes(raw)

        sender_name, sender_email = self._parse_from_field(
            self._decode_header(parsed.get("From", ""))
        )

        if self.gmail_extensions:
            msgid = _MSGID_RE.search(meta)
            thrid = _THRID_RE.search(meta)
            message_id = msgid.group(1).decode() if msgid else ""
            thread_id = thrid.group(1).decode() if thrid else ""
        else:
            message_id, thread_id = self._header_identity(parsed)

        if not message_id:
            uid = _UID_RE.search(meta)
            message_id = f"uid-{uid.group(1).decode()}" if uid else ""
        if not message_id:
            raise ValueError("message has no usable identifier")

        return Message(
            id=message_id,
            thread_id=thread_id,
            subject=self._decode_header(parsed.get("Subject", "")),
            sender_name=sender_name,
            sender_email=sender_email,
            body=self._get_email_body(parsed, message_id),
            received_at=self._parse_date(parsed.get("Date", ""), message_id),
        )

    @staticmethod
    def _header_identity(parsed: email.message.Message) -> tuple[str, str]:
        message_id = (parsed.get("Message-ID") or "").strip()
        refs = _REF_RE.findall(parsed.get("References") or "")
        reply_to = (parsed.get("In-Reply-To") or "").strip()
        thread_id = refs[0] if refs else (reply_to or message_id)
        return message_id, thread_id

    def _get_email_body(self, parsed: email.message.Message, message_id: str) -> str:
        """Prefer text/plain; fall back to text/html. Empty on decode errors."""
        html_body = ""
        try:
            for part in parsed.walk():
                if part.get_content_maintype() == "multipart":
                    continue
                if "attachment" in str(part.get("Content-Disposition", "")):
                    continue

                content_type = part.get_content_type()
                if content_type not in ("text/plain", "text/html"):
                    continue

                payload = part.get_payload(decode=True)
                if not payload:
                    continue
                charset = part.get_content_charset() or "utf-8"
                text = payload.decode(charset, errors="replace")

                if content_type == "text/plain":
                    return text.strip()
                if not html_body:
                    html_body = text.strip()
        except (LookupError, UnicodeDecodeError, AttributeError, TypeError) as e:
            logger.warning(f"Could not decode body of email {message_id}: {e}")
            return ""
        return html_body

    @staticmethod
    def _parse_date(value: str, message_id: str) -> datetime:
        """Parse a Date header into naive local time, defaulting to now."""
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            parsed = None
        if parsed is None:
            logger.warning(f"Could not parse email date for {message_id}: {value!r}")
            return datetime.now()

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        return parsed

    @staticmethod
    def _parse_from_field(from_field: str) -> tuple[str, str]:
        """Parse from field into name and email."""
        if "<" in from_field and ">" in from_field:
            name = from_field.split("<")[0].strip().strip('"').strip("'")
            email_addr = from_field.split("<")[1].split(">")[0].strip()
        else:
            email_addr = from_field.strip()
            name = email_addr

        return name or email_addr, email_addr

    @staticmethod
    def _decode_header(header_value: str) -> str:
        """Decode email header handling various encodings."""
        if not header_value:
            return ""

        try:
            decoded_parts = decode_header(header_value)
            result = []
            for part, encoding in decoded_parts:
                if isinstance(part, bytes):
                    result.append(part.decode(encoding or "utf-8", errors="replace"))
                else:
                    result.append(part)
            return "".join(result)
        except (UnicodeDecodeError, LookupError, TypeError) as e:
            logger.debug(f"Header decode fallback for '{header_value[:50]}...': {e}")
            return str(header_value)
