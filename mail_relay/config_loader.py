"""
Configuration loader for mail-relay.

Reads config.yaml and lets environment variables (MAILRELAY_* prefix)
override secrets, so credentials never have to live in the YAML file.

Environment Variables:
    MAILRELAY_MAILBOX_USERNAME: IMAP login (usually the Gmail address)
    MAILRELAY_MAILBOX_APP_PASSWORD: IMAP app password
    MAILRELAY_TELEGRAM_BOT_TOKEN: Telegram bot token
    MAILRELAY_TELEGRAM_CHAT_ID: Telegram chat ID
    MAILRELAY_TWILIO_ACCOUNT_SID: Twilio account SID
    MAILRELAY_TWILIO_AUTH_TOKEN: Twilio auth token
    MAILRELAY_TRACKING_FILE: Path of the tracking JSON document
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "MAILRELAY_"
DEFAULT_CONFIG_PATH = Path("config.yaml")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or unreadable."""
    pass


@dataclass
class MailboxConfig:
    """IMAP mailbox configuration."""
    host: str = "imap.gmail.com"
    port: int = 993
    username: str = ""
    app_password: str = ""
    folder: str = "INBOX"
    gmail_extensions: bool = True
    category_filter: bool = True

    @property
    def is_configured(self) -> bool:
        return bool(self.username and self.app_password)


@dataclass
class FilterConfig:
    """Importance heuristics."""
    important_domains: list[str] = field(default_factory=list)
    important_keywords: list[str] = field(default_factory=list)
    recency_hours: int = 24


@dataclass
class ProcessingConfig:
    """Cycle cadence and notification limits."""
    check_interval_seconds: int = 300
    max_emails_per_fetch: int = 10
    max_notifications_per_day: int = 20
    thread_deduplication_window_hours: int = 2


@dataclass
class TrackingConfig:
    """Tracking store persistence."""
    storage_file: str = "processed_emails.json"
    retention_days: int = 30


@dataclass
class TelegramConfig:
    """Telegram notification configuration."""
    enabled: bool = True
    bot_token: str = ""
    chat_id: str = ""

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.bot_token and self.chat_id)


@dataclass
class WhatsAppConfig:
    """Twilio WhatsApp notification configuration."""
    enabled: bool = False
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""
    to_number: str = ""

    @property
    def is_configured(self) -> bool:
        return self.enabled and all(
            (self.account_sid, self.auth_token, self.from_number, self.to_number)
        )


@dataclass
class NotificationsConfig:
    """Notification channels in delivery order."""
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)
    channel_order: list[str] = field(default_factory=lambda: ["telegram", "whatsapp"])

    @property
    def configured_channels(self) -> list[str]:
        return [
            name for name in self.channel_order
            if getattr(getattr(self, name, None), "is_configured", False)
        ]


@dataclass
class ServerConfig:
    """Status server configuration."""
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class SchedulingConfig:
    """Background scheduler configuration."""
    enabled: bool = True
    sweep_time: str = "03:00"


@dataclass
class AppConfig:
    """Complete application configuration."""
    mailbox: MailboxConfig = field(default_factory=MailboxConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)

    def to_dict(self) -> dict:
        return asdict(self)


def _get_env(key: str, default: str = "") -> str:
    """Get environment variable with MAILRELAY_ prefix."""
    return os.environ.get(f"{ENV_PREFIX}{key}", default)


def _resolve_env_value(value: Any) -> Any:
    """
    Resolve environment variable references in config values.

    Supports ${VAR_NAME} syntax for environment variable substitution.
    """
    if not isinstance(value, str):
        return value

    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, "")

    return value


def _as_list(value: Any) -> list[str]:
    """Accept either a YAML list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _as_int(raw: dict, key: str, default: int, section: str) -> int:
    value = raw.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{section}.{key} must be an integer, got {value!r}")


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return value


def _load_yaml_config(config_path: Path) -> dict:
    """Load and parse YAML config file."""
    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}, using defaults")
        return {}

    try:
        with open(config_path) as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"YAML syntax error in {config_path}: {e}")
    except PermissionError:
        raise ConfigurationError(f"Permission denied reading {config_path}")

    if raw_config is None:
        logger.warning(f"Config file {config_path} is empty")
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return raw_config


def _build_mailbox_config(raw: dict) -> MailboxConfig:
    mailbox_raw = _section(raw, "mailbox")
    return MailboxConfig(
        host=mailbox_raw.get("host", "imap.gmail.com"),
        port=_as_int(mailbox_raw, "port", 993, "mailbox"),
        username=_get_env("MAILBOX_USERNAME") or _resolve_env_value(mailbox_raw.get("username", "")),
        app_password=_get_env("MAILBOX_APP_PASSWORD") or _resolve_env_value(mailbox_raw.get("app_password", "")),
        folder=mailbox_raw.get("folder", "INBOX"),
        gmail_extensions=bool(mailbox_raw.get("gmail_extensions", True)),
        category_filter=bool(mailbox_raw.get("category_filter", True)),
    )


def _build_filter_config(raw: dict) -> FilterConfig:
    filter_raw = _section(raw, "filter")
    return FilterConfig(
        important_domains=_as_list(filter_raw.get("important_domains")),
        important_keywords=_as_list(filter_raw.get("important_keywords")),
        recency_hours=_as_int(filter_raw, "recency_hours", 24, "filter"),
    )


def _build_processing_config(raw: dict) -> ProcessingConfig:
    proc_raw = _section(raw, "processing")
    return ProcessingConfig(
        check_interval_seconds=_as_int(proc_raw, "check_interval_seconds", 300, "processing"),
        max_emails_per_fetch=_as_int(proc_raw, "max_emails_per_fetch", 10, "processing"),
        max_notifications_per_day=_as_int(proc_raw, "max_notifications_per_day", 20, "processing"),
        thread_deduplication_window_hours=_as_int(
            proc_raw, "thread_deduplication_window_hours", 2, "processing"
        ),
    )


def _build_tracking_config(raw: dict) -> TrackingConfig:
    tracking_raw = _section(raw, "tracking")
    return TrackingConfig(
        storage_file=_get_env("TRACKING_FILE") or tracking_raw.get("storage_file", "processed_emails.json"),
        retention_days=_as_int(tracking_raw, "retention_days", 30, "tracking"),
    )


def _build_notifications_config(raw: dict) -> NotificationsConfig:
    notif_raw = _section(raw, "notifications")

    # Telegram
    telegram_raw = _section(notif_raw, "telegram")
    telegram = TelegramConfig(
        enabled=bool(telegram_raw.get("enabled", True)),
        bot_token=_get_env("TELEGRAM_BOT_TOKEN") or _resolve_env_value(telegram_raw.get("bot_token", "")),
        chat_id=str(_get_env("TELEGRAM_CHAT_ID") or _resolve_env_value(telegram_raw.get("chat_id", ""))),
    )

    # WhatsApp (Twilio)
    whatsapp_raw = _section(notif_raw, "whatsapp")
    whatsapp = WhatsAppConfig(
        enabled=bool(whatsapp_raw.get("enabled", False)),
        account_sid=_get_env("TWILIO_ACCOUNT_SID") or _resolve_env_value(whatsapp_raw.get("account_sid", "")),
        auth_token=_get_env("TWILIO_AUTH_TOKEN") or _resolve_env_value(whatsapp_raw.get("auth_token", "")),
        from_number=_resolve_env_value(whatsapp_raw.get("from_number", "")),
        to_number=_resolve_env_value(whatsapp_raw.get("to_number", "")),
    )

    return NotificationsConfig(
        telegram=telegram,
        whatsapp=whatsapp,
        channel_order=_as_list(notif_raw.get("channel_order")) or ["telegram", "whatsapp"],
    )


def _build_server_config(raw: dict) -> ServerConfig:
    server_raw = _section(raw, "server")
    return ServerConfig(
        host=server_raw.get("host", "127.0.0.1"),
        port=_as_int(server_raw, "port", 8080, "server"),
    )


def _build_scheduling_config(raw: dict) -> SchedulingConfig:
    sched_raw = _section(raw, "scheduling")
    return SchedulingConfig(
        enabled=bool(sched_raw.get("enabled", True)),
        sweep_time=str(sched_raw.get("sweep_time", "03:00")),
    )


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load application configuration from YAML file and environment variables.

    Environment variables take precedence over YAML values for secrets.

    Args:
        config_path: Path to config.yaml. Defaults to ./config.yaml

    Returns:
        AppConfig with all settings loaded

    Raises:
        ConfigurationError: If config file has syntax errors or is unreadable
    """
    raw = _load_yaml_config(Path(config_path) if config_path else DEFAULT_CONFIG_PATH)

    config = AppConfig(
        mailbox=_build_mailbox_config(raw),
        filter=_build_filter_config(raw),
        processing=_build_processing_config(raw),
        tracking=_build_tracking_config(raw),
        notifications=_build_notifications_config(raw),
        server=_build_server_config(raw),
        scheduling=_build_scheduling_config(raw),
    )

    logger.info(
        f"Configuration loaded: "
        f"mailbox={'configured' if config.mailbox.is_configured else 'not configured'}, "
        f"channels={config.notifications.configured_channels or 'none'}, "
        f"domains={len(config.filter.important_domains)}, "
        f"keywords={len(config.filter.important_keywords)}"
    )

    return config


def validate_config(config: AppConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    if not config.mailbox.is_configured:
        errors.append(
            "Mailbox username and app_password are required. "
            "Set MAILRELAY_MAILBOX_USERNAME / MAILRELAY_MAILBOX_APP_PASSWORD"
        )

    if not config.notifications.configured_channels:
        errors.append("No notification channel is configured (telegram or whatsapp)")

    for name in config.notifications.channel_order:
        if name not in ("telegram", "whatsapp"):
            errors.append(f"Unknown channel in notifications.channel_order: {name}")

    proc = config.processing
    for key in ("check_interval_seconds", "max_emails_per_fetch", "thread_deduplication_window_hours"):
        if getattr(proc, key) <= 0:
            errors.append(f"processing.{key} must be positive")
    if proc.max_notifications_per_day < 0:
        errors.append("processing.max_notifications_per_day must not be negative")

    if config.filter.recency_hours <= 0:
        errors.append("filter.recency_hours must be positive")

    if config.tracking.retention_days <= 0:
        errors.append("tracking.retention_days must be positive")

    if not (1 <= config.server.port <= 65535):
        errors.append(f"Server port {config.server.port} is out of valid range (1-65535)")

    return errors
