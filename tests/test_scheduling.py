"""Tests for the job registry, scheduler and app wiring."""

import threading
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from mail_relay.app import build_processor, build_scheduler
from mail_relay.config_loader import AppConfig, MailboxConfig, TelegramConfig
from mail_relay.scheduling import (
    EmailScheduler, JobDefinition, JobRegistry, JobSchedule, PROCESS_JOB_ID, SWEEP_JOB_ID,
)


def _job(job_id="demo", func=None):
    return JobDefinition(
        job_id=job_id,
        name="Demo",
        description="Demo job",
        func=func or (lambda: {"success": True}),
    )


class TestJobRegistry:
    """Registry bookkeeping."""

    def test_run_registered_job(self):
        registry = JobRegistry()
        registry.register(_job(func=lambda: {"success": True, "count": 3}))

        result = registry.run_job("demo")

        assert result["count"] == 3
        assert "duration_seconds" in result
        last_run = registry.list_jobs()[0]["last_run"]
        assert last_run["status"] == "success"
        assert last_run["trigger_type"] == "manual"

    def test_unknown_job(self):
        result = JobRegistry().run_job("missing")
        assert result == {"success": False, "error": "Unknown job: missing"}

    def test_exception_recorded_as_failure(self):
        def boom():
            raise RuntimeError("exploded")

        registry = JobRegistry()
        registry.register(_job(func=boom))

        result = registry.run_job("demo", "scheduled")

        assert result["success"] is False
        assert result["error"] == "exploded"
        assert registry.list_jobs()[0]["last_run"]["status"] == "failed"

    def test_unsuccessful_result_marked_failed(self):
        registry = JobRegistry()
        registry.register(_job(func=lambda: {"success": False, "error": "Fetch failed: down"}))
        registry.run_job("demo")
        last_run = registry.list_jobs()[0]["last_run"]
        assert last_run["status"] == "failed"
        assert last_run["error"] == "Fetch failed: down"


def _naive(trigger):
    """DateTrigger localizes naive datetimes; compare wall-clock times."""
    return trigger.run_date.replace(tzinfo=None)


class TestJobSchedule:
    """Trigger construction."""

    def test_delay_first_run_after_delay(self):
        now = datetime(2026, 3, 10, 12, 0)
        trigger = JobSchedule("demo", delay_seconds=300).build_trigger(now)
        assert isinstance(trigger, DateTrigger)
        assert _naive(trigger) == now + timedelta(seconds=300)

    def test_delay_run_at_start(self):
        now = datetime(2026, 3, 10, 12, 0)
        trigger = JobSchedule("demo", delay_seconds=300, run_at_start=True).build_trigger(now)
        assert _naive(trigger) == now

    def test_next_run_counts_from_finish(self):
        finished = datetime(2026, 3, 10, 12, 7, 30)
        schedule = JobSchedule("demo", delay_seconds=300)
        assert schedule.next_delayed_run(finished) == datetime(2026, 3, 10, 12, 12, 30)

    def test_daily_trigger(self):
        assert isinstance(JobSchedule("demo", daily_at="03:00").build_trigger(), CronTrigger)
        assert isinstance(JobSchedule("demo", daily_at="7").build_trigger(), CronTrigger)

    def test_invalid_trigger(self):
        assert JobSchedule("demo", daily_at="late").build_trigger() is None
        assert JobSchedule("demo", daily_at="25:00").build_trigger() is None
        assert JobSchedule("demo").build_trigger() is None


class TestEmailScheduler:
    """APScheduler configuration."""

    def test_disabled_scheduler_does_not_start(self):
        scheduler = EmailScheduler(enabled=False)
        assert scheduler.start() is False
        assert scheduler.get_status()["scheduler_running"] is False

    @patch("mail_relay.scheduling.scheduler.BackgroundScheduler")
    def test_jobs_added_with_single_instance_defaults(self, mock_scheduler_cls):
        scheduler = EmailScheduler(schedules=[
            JobSchedule("demo", delay_seconds=60, run_at_start=True),
            JobSchedule("other", daily_at="03:00"),
            JobSchedule("nightly", daily_at="04:00", run_at_start=True),
            JobSchedule("ghost", delay_seconds=60),
            JobSchedule("off", delay_seconds=60, enabled=False),
        ])
        for job_id in ("demo", "other", "nightly", "off"):
            scheduler.register_job(_job(job_id))

        assert scheduler.start() is True

        job_defaults = mock_scheduler_cls.call_args.kwargs["job_defaults"]
        assert job_defaults["max_instances"] == 1
        assert job_defaults["coalesce"] is True

        add_calls = mock_scheduler_cls.return_value.add_job.call_args_list
        assert [c.kwargs["id"] for c in add_calls] == ["demo", "other", "nightly"]
        assert isinstance(add_calls[0].kwargs["trigger"], DateTrigger)
        assert "next_run_time" not in add_calls[1].kwargs
        assert "next_run_time" in add_calls[2].kwargs

        scheduler.stop()
        mock_scheduler_cls.return_value.shutdown.assert_called_once_with(wait=True)

    @patch("mail_relay.scheduling.scheduler.BackgroundScheduler")
    def test_fixed_delay_job_rearmed_after_run_finishes(self, mock_scheduler_cls):
        finished = []

        def slow_job():
            time.sleep(0.05)
            finished.append(datetime.now())
            return {"success": True}

        scheduler = EmailScheduler()
        scheduler.register_job(_job(func=slow_job), JobSchedule("demo", delay_seconds=60))
        scheduler.start()

        first = mock_scheduler_cls.return_value.add_job.call_args
        first.args[0](*first.kwargs["args"])

        rearm = mock_scheduler_cls.return_value.add_job.call_args
        assert rearm.kwargs["id"] == "demo"
        assert rearm.kwargs["replace_existing"] is True
        assert _naive(rearm.kwargs["trigger"]) >= finished[0] + timedelta(seconds=60)
        assert scheduler.registry.last_run("demo").trigger_type == "scheduled"

    @patch("mail_relay.scheduling.scheduler.BackgroundScheduler")
    def test_failing_job_still_rearmed(self, mock_scheduler_cls):
        def boom():
            raise RuntimeError("down")

        scheduler = EmailScheduler()
        scheduler.register_job(_job(func=boom), JobSchedule("demo", delay_seconds=60))
        scheduler.start()

        first = mock_scheduler_cls.return_value.add_job.call_args
        first.args[0](*first.kwargs["args"])

        assert mock_scheduler_cls.return_value.add_job.call_count == 2

    @patch("mail_relay.scheduling.scheduler.BackgroundScheduler")
    def test_no_rearm_after_stop(self, mock_scheduler_cls):
        scheduler = EmailScheduler()
        scheduler.register_job(_job(), JobSchedule("demo", delay_seconds=60))
        scheduler.start()
        first = mock_scheduler_cls.return_value.add_job.call_args

        scheduler.stop()
        first.args[0](*first.kwargs["args"])

        assert mock_scheduler_cls.return_value.add_job.call_count == 1

    def test_pause_between_runs_is_at_least_the_delay(self):
        runs = []
        done = threading.Event()

        def slow_cycle():
            started = time.monotonic()
            time.sleep(0.6)
            runs.append((started, time.monotonic()))
            if len(runs) == 2:
                done.set()
            return {"success": True}

        scheduler = EmailScheduler()
        scheduler.register_job(_job(func=slow_cycle), JobSchedule("demo", delay_seconds=1, run_at_start=True))
        scheduler.start()
        try:
            assert done.wait(timeout=10)
        finally:
            scheduler.stop()

        first_end, second_start = runs[0][1], runs[1][0]
        assert second_start - first_end >= 0.9

    def test_run_job_now(self):
        scheduler = EmailScheduler(enabled=False)
        scheduler.register_job(_job())
        assert scheduler.run_job_now("demo")["success"] is True
        assert scheduler.get_status()["jobs"][0]["last_run"]["trigger_type"] == "manual"


class TestAppWiring:
    """Component construction from AppConfig."""

    def _config(self, tmp_path):
        config = AppConfig()
        config.mailbox = MailboxConfig(username="me@example.com", app_password="secret")
        config.notifications.telegram = TelegramConfig(bot_token="t", chat_id="1")
        config.tracking.storage_file = str(tmp_path / "tracking.json")
        config.filter.important_domains = ["Example.com"]
        config.processing.max_notifications_per_day = 7
        return config

    def test_build_processor(self, tmp_path):
        processor = build_processor(self._config(tmp_path))

        assert processor.counter.limit == 7
        assert processor.classifier.context.important_domains == frozenset({"example.com"})
        assert processor.get_channel_statuses() == [{"type": "telegram", "available": True}]
        assert processor.transport is processor.category_lookup

    def test_build_scheduler_registers_jobs(self, tmp_path):
        config = self._config(tmp_path)
        processor = build_processor(config)

        scheduler = build_scheduler(config, processor)

        job_ids = {job["job_id"] for job in scheduler.registry.list_jobs()}
        assert job_ids == {PROCESS_JOB_ID, SWEEP_JOB_ID}
        assert scheduler.schedules[PROCESS_JOB_ID].delay_seconds == 300
        assert scheduler.schedules[PROCESS_JOB_ID].run_at_start
        assert scheduler.schedules[SWEEP_JOB_ID].daily_at == "03:00"

    def test_process_job_runs_cycle(self, tmp_path):
        config = self._config(tmp_path)
        processor = MagicMock()
        processor.run_cycle.return_value.to_dict.return_value = {"success": True, "fetched": 0}

        scheduler = build_scheduler(config, processor)
        result = scheduler.run_job_now(PROCESS_JOB_ID)

        assert result["fetched"] == 0
        processor.run_cycle.assert_called_once()

    def test_sweep_job_sweeps_and_flushes(self, tmp_path):
        config = self._config(tmp_path)
        processor = build_processor(config)
        scheduler = build_scheduler(config, processor)

        result = scheduler.run_job_now(SWEEP_JOB_ID)

        assert result["removed_records"] == 0
        assert result["success"] is True
