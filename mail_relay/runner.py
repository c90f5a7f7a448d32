#!/usr/bin/env python3
"""CLI entry point for mail-relay.

Usage:
    mail-relay run
    mail-relay process
    mail-relay status
    mail-relay test
    mail-relay feedback <message_id> --relevant
    mail-relay sweep
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .app import build_processor, build_scheduler
from .config_loader import AppConfig, ConfigurationError, load_config, validate_config

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def cmd_run(args, config: AppConfig) -> int:
    """Start the scheduler and the status server."""
    from .server import create_app

    errors = validate_config(config)
    for error in errors:
        logger.warning(f"Config: {error}")

    processor = build_processor(config)
    scheduler = build_scheduler(config, processor)
    scheduler.start()

    app = create_app(processor, scheduler)
    try:
        app.run(host=config.server.host, port=config.server.port, use_reloader=False)
    finally:
        scheduler.stop()
        processor.store.close()

    return 0


def cmd_process(args, config: AppConfig) -> int:
    """Run a single processing cycle."""
    processor = build_processor(config)
    try:
        summary = processor.trigger_cycle_now()
    finally:
        processor.store.close()

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2, default=str))
    else:
        print("\nProcessing Results:")
        print(f"  Success: {summary.success}")
        print(f"  Fetched: {summary.fetched}")
        print(f"  Processed: {summary.processed}")
        print(f"  Important: {summary.important}")
        print(f"  Notified: {summary.notified}")
        print(f"  Skipped: {summary.skipped}")
        if summary.failed:
            print(f"  Failed: {summary.failed}")
        if summary.error:
            print(f"  Error: {summary.error}")
        print(f"  Duration: {summary.duration_seconds:.1f}s")

    return 0 if summary.success else 1


def cmd_status(args, config: AppConfig) -> int:
    """Show configuration and channel status."""
    processor = build_processor(config)
    status = {
        "config_errors": validate_config(config),
        "mailbox_configured": config.mailbox.is_configured,
        "channels": processor.get_channel_statuses(),
        "tracking": processor.store.stats(),
    }

    if args.json:
        print(json.dumps(status, indent=2, default=str))
    else:
        print("\nMail Relay Status")
        print("-" * 40)
        print(f"Mailbox configured: {status['mailbox_configured']}")
        print(f"Tracked emails: {status['tracking']['processed_count']}")
        print(f"Feedback senders: {status['tracking']['feedback_senders']}")
        print("\nNotification Channels:")
        for channel in status["channels"]:
            available = "available" if channel["available"] else "not available"
            print(f"  {channel['type']}: {available}")
        if status["config_errors"]:
            print("\nConfiguration problems:")
            for error in status["config_errors"]:
                print(f"  - {error}")

    return 0


def cmd_test_notifications(args, config: AppConfig) -> int:
    """Test notification channels."""
    processor = build_processor(config)
    results = processor.dispatcher.test_channels()

    print("\nNotification Test Results")
    print("-" * 40)
    if not results:
        print("  No channels configured")
    for channel, attempt in results.items():
        status = "SUCCESS" if attempt.sent else f"FAILED: {attempt.error}"
        print(f"  {channel}: {status}")

    return 0 if results and all(a.sent for a in results.values()) else 1


def cmd_feedback(args, config: AppConfig) -> int:
    """Record relevance feedback for a processed email."""
    processor = build_processor(config)
    recorded = processor.store.record_feedback(args.message_id, args.relevant)
    if not recorded:
        print(f"No tracked email with ID {args.message_id}")
        return 1

    record = processor.store.get_record(args.message_id)
    positive, total = processor.store.recent_feedback_stats(record.sender_email)
    print(f"Feedback recorded for {record.sender_email}: {positive}/{total} relevant in the last 30 days")
    return 0


def cmd_sweep(args, config: AppConfig) -> int:
    """Remove tracking data older than the retention window."""
    processor = build_processor(config)
    result = processor.store.sweep()
    processor.store.flush()
    print(f"Removed {result['removed_records']} records and {result['removed_feedback']} feedback entries")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="mail-relay",
        description="Relay important emails to chat channels",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mail-relay run
  mail-relay process --json
  mail-relay feedback 1791234567890 --not-relevant
        """
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Start scheduler and status server")
    sub.add_parser("process", help="Run one processing cycle now")
    sub.add_parser("status", help="Show channel and tracking status")
    sub.add_parser("test", help="Send a test message to every channel")
    sub.add_parser("sweep", help="Drop expired tracking data")

    feedback = sub.add_parser("feedback", help="Record relevance feedback")
    feedback.add_argument("message_id")
    verdict = feedback.add_mutually_exclusive_group(required=True)
    verdict.add_argument("--relevant", dest="relevant", action="store_true")
    verdict.add_argument("--not-relevant", dest="relevant", action="store_false")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    commands = {
        "run": cmd_run,
        "process": cmd_process,
        "status": cmd_status,
        "test": cmd_test_notifications,
        "feedback": cmd_feedback,
        "sweep": cmd_sweep,
    }

    return commands[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
