"""Relay job scheduling."""

from .jobs import JobDefinition, JobRegistry, JobRun
from .scheduler import EmailScheduler, JobSchedule, PROCESS_JOB_ID, SWEEP_JOB_ID

__all__ = [
    "EmailScheduler",
    "JobDefinition",
    "JobRegistry",
    "JobRun",
    "JobSchedule",
    "PROCESS_JOB_ID",
    "SWEEP_JOB_ID",
]
