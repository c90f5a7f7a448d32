"""Named relay jobs and a record of their last run."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class JobDefinition:
    """A callable the scheduler, CLI or HTTP layer can run by ID.

    ``func`` returns a result dict; a falsy ``success`` key marks the run
    as failed without raising.
    """
    job_id: str
    name: str
    description: str
    func: Callable[[], dict]


@dataclass
class JobRun:
    job_id: str
    trigger_type: str
    started_at: datetime
    status: str
    duration_seconds: float
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "trigger_type": self.trigger_type,
            "started_at": self.started_at.isoformat(),
            "status": self.status,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
        }


class JobRegistry:
    """Job definitions keyed by ID, plus the outcome of each job's last run."""

    def __init__(self):
        self._jobs: dict[str, JobDefinition] = {}
        self._last_runs: dict[str, JobRun] = {}
        self._lock = threading.Lock()

    def register(self, job: JobDefinition) -> None:
        self._jobs[job.job_id] = job
        logger.info(f"Registered job: {job.job_id}")

    def get(self, job_id: str) -> Optional[JobDefinition]:
        return self._jobs.get(job_id)

    def last_run(self, job_id: str) -> Optional[JobRun]:
        with self._lock:
            return self._last_runs.get(job_id)

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self._jobs.values():
            run = self.last_run(job.job_id)
            jobs.append({
                "job_id": job.job_id,
                "name": job.name,
                "description": job.description,
                "last_run": run.to_dict() if run else None,
            })
        return jobs

    def run_job(self, job_id: str, trigger_type: str = "manual") -> dict:
        """Run a job and remember how it went.

        Args:
            job_id: ID of a registered job
            trigger_type: 'scheduled', 'manual' or 'http'

        Returns:
            The job's result dict with ``duration_seconds`` added. Exceptions
            from the job are caught and reported as ``success: False``.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return {"success": False, "error": f"Unknown job: {job_id}"}

        logger.info(f"Running job: {job_id} (trigger: {trigger_type})")
        started_at = datetime.now()

        try:
            result = job.func()
        except Exception as e:
            logger.error(f"Job {job_id} raised: {e}", exc_info=True)
            result = {"success": False, "error": str(e)}

        run = JobRun(
            job_id=job_id,
            trigger_type=trigger_type,
            started_at=started_at,
            status="success" if result.get("success", True) else "failed",
            duration_seconds=(datetime.now() - started_at).total_seconds(),
            error=result.get("error"),
        )
        with self._lock:
            self._last_runs[job_id] = run

        result["duration_seconds"] = run.duration_seconds
        logger.info(f"Job {job_id} finished: {run.status} in {run.duration_seconds:.2f}s")
        return result
