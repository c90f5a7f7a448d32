"""Background scheduling of the relay cycle and tracking upkeep."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from .jobs import JobDefinition, JobRegistry

logger = logging.getLogger(__name__)

PROCESS_JOB_ID = "process_emails"
SWEEP_JOB_ID = "tracking_sweep"


@dataclass
class JobSchedule:
    """When a registered job fires.

    ``delay_seconds`` repeats the job with that much idle time between the
    end of one run and the start of the next (fixed delay, not fixed rate).
    ``daily_at`` ("HH:MM") runs it once a day.
    """
    job_id: str
    delay_seconds: Optional[int] = None
    daily_at: Optional[str] = None
    run_at_start: bool = False
    enabled: bool = True

    @property
    def fixed_delay(self) -> bool:
        return bool(self.delay_seconds)

    def next_delayed_run(self, finished_at: datetime) -> datetime:
        return finished_at + timedelta(seconds=int(self.delay_seconds))

    def build_trigger(self, now: Optional[datetime] = None) -> Optional[BaseTrigger]:
        """Trigger for the first run; fixed-delay jobs are re-armed after each run."""
        if self.delay_seconds:
            now = now or datetime.now()
            return DateTrigger(run_date=now if self.run_at_start else self.next_delayed_run(now))

        if self.daily_at:
            hour, _, minute = str(self.daily_at).partition(":")
            try:
                return CronTrigger(hour=int(hour), minute=int(minute or 0))
            except ValueError:
                logger.error(f"Invalid daily time for job {self.job_id}: {self.daily_at!r}")
                return None

        logger.warning(f"Job {self.job_id} has neither a delay nor a daily time")
        return None


class EmailScheduler:
    """Runs registered jobs on an APScheduler ``BackgroundScheduler``.

    Every job is limited to one running instance and missed runs coalesce.
    Fixed-delay jobs are scheduled one run at a time: when a run finishes
    the next one is armed ``delay_seconds`` later, so a slow processing
    cycle never shortens the pause before the next.
    """

    def __init__(
        self,
        enabled: bool = True,
        schedules: Iterable[JobSchedule] = (),
        job_registry: Optional[JobRegistry] = None,
    ):
        self.enabled = enabled
        self.schedules: dict[str, JobSchedule] = {s.job_id: s for s in schedules}
        self.registry = job_registry or JobRegistry()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def register_job(self, job: JobDefinition, schedule: Optional[JobSchedule] = None) -> None:
        self.registry.register(job)
        if schedule is not None:
            self.schedules[schedule.job_id] = schedule

    def start(self) -> bool:
        """Start background execution. Returns False when disabled or on failure."""
        if not self.enabled:
            logger.info("Scheduler disabled in config")
            return False

        if self.running:
            logger.warning("Scheduler already running")
            return True

        scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            }
        )
        # A run_at_start job may finish and re-arm before start() returns
        self._scheduler = scheduler
        try:
            for schedule in self.schedules.values():
                self._add(scheduler, schedule)
            scheduler.start()
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}", exc_info=True)
            self._scheduler = None
            return False

        logger.info(f"Relay scheduler started with {len(scheduler.get_jobs())} jobs")
        return True

    def stop(self, wait: bool = True) -> None:
        """Shut down, by default letting a running cycle finish first."""
        if self.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Relay scheduler stopped")
        self._scheduler = None

    def run_job_now(self, job_id: str) -> dict:
        return self.registry.run_job(job_id, "manual")

    def get_status(self) -> dict:
        next_runs = {}
        if self.running:
            for job in self._scheduler.get_jobs():
                next_runs[job.id] = job.next_run_time.isoformat() if job.next_run_time else None

        return {
            "scheduler_enabled": self.enabled,
            "scheduler_running": self.running,
            "jobs": [
                {**job, "next_run": next_runs.get(job["job_id"])}
                for job in self.registry.list_jobs()
            ],
        }

    def _add(self, scheduler: BackgroundScheduler, schedule: JobSchedule) -> None:
        if not schedule.enabled:
            logger.info(f"Job {schedule.job_id} disabled in config")
            return

        job = self.registry.get(schedule.job_id)
        if job is None:
            logger.warning(f"No handler registered for job: {schedule.job_id}")
            return

        trigger = schedule.build_trigger()
        if trigger is None:
            return

        if schedule.fixed_delay:
            scheduler.add_job(
                self._run_and_rearm,
                trigger=trigger,
                args=[schedule],
                id=schedule.job_id,
                name=job.name,
                replace_existing=True,
            )
        else:
            options = {}
            if schedule.run_at_start:
                # APScheduler treats an explicit None as "paused"
                options["next_run_time"] = datetime.now()
            scheduler.add_job(
                self.registry.run_job,
                trigger=trigger,
                args=[schedule.job_id, "scheduled"],
                id=schedule.job_id,
                name=job.name,
                replace_existing=True,
                **options,
            )
        logger.info(f"Scheduled job: {schedule.job_id} ({trigger})")

    def _run_and_rearm(self, schedule: JobSchedule) -> None:
        try:
            self.registry.run_job(schedule.job_id, "scheduled")
        finally:
            scheduler = self._scheduler
            if scheduler is not None and scheduler.running:
                next_run = schedule.next_delayed_run(datetime.now())
                job = self.registry.get(schedule.job_id)
                scheduler.add_job(
                    self._run_and_rearm,
                    trigger=DateTrigger(run_date=next_run),
                    args=[schedule],
                    id=schedule.job_id,
                    name=job.name if job else schedule.job_id,
                    replace_existing=True,
                )
                logger.debug(f"Next run of {schedule.job_id} at {next_run:%H:%M:%S}")
