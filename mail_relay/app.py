"""Builds the relay components from configuration."""

import logging
from dataclasses import asdict

from .config_loader import AppConfig
from .filtering import ClassificationContext, ImportanceClassifier
from .inbox import ImapMailbox
from .notifications import NotificationDispatcher
from .processing import EmailProcessor
from .scheduling import EmailScheduler, JobDefinition, JobSchedule, PROCESS_JOB_ID, SWEEP_JOB_ID
from .tracking import TrackingStore

logger = logging.getLogger(__name__)


def build_processor(config: AppConfig) -> EmailProcessor:
    """Wire mailbox, classifier, dispatcher and tracking store together."""
    store = TrackingStore(
        storage_file=config.tracking.storage_file,
        retention_days=config.tracking.retention_days,
    )
    mailbox = ImapMailbox(asdict(config.mailbox))

    context = ClassificationContext(
        important_domains=config.filter.important_domains,
        important_keywords=config.filter.important_keywords,
        recency_hours=config.filter.recency_hours,
        category_lookup=mailbox,
        feedback_stats=store.recent_feedback_stats,
    )

    notifications = config.notifications
    dispatcher = NotificationDispatcher.from_config({
        "channel_order": notifications.channel_order,
        "telegram": asdict(notifications.telegram),
        "whatsapp": asdict(notifications.whatsapp),
    })

    processing = config.processing
    return EmailProcessor(
        transport=mailbox,
        category_lookup=mailbox,
        classifier=ImportanceClassifier(context),
        dispatcher=dispatcher,
        store=store,
        max_emails_per_fetch=processing.max_emails_per_fetch,
        max_notifications_per_day=processing.max_notifications_per_day,
        thread_deduplication_window_hours=processing.thread_deduplication_window_hours,
    )


def build_scheduler(config: AppConfig, processor: EmailProcessor) -> EmailScheduler:
    """Register the processing cycle and the daily tracking sweep."""
    scheduler = EmailScheduler(enabled=config.scheduling.enabled)

    scheduler.register_job(
        JobDefinition(
            job_id=PROCESS_JOB_ID,
            name="Process Emails",
            description="Fetch recent mail and relay important messages",
            func=lambda: processor.run_cycle().to_dict(),
        ),
        JobSchedule(
            PROCESS_JOB_ID,
            delay_seconds=config.processing.check_interval_seconds,
            run_at_start=True,
        ),
    )
    scheduler.register_job(
        JobDefinition(
            job_id=SWEEP_JOB_ID,
            name="Tracking Sweep",
            description="Drop tracking records past the retention window",
            func=lambda: _sweep_and_flush(processor),
        ),
        JobSchedule(SWEEP_JOB_ID, daily_at=config.scheduling.sweep_time),
    )
    return scheduler


def _sweep_and_flush(processor: EmailProcessor) -> dict:
    result = processor.store.sweep()
    result["success"] = processor.store.flush()
    return result
