"""In-memory registry of live jobs."""

import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .models import Job, JobStatus, JobStatusView, utcnow


class JobRegistry:
    """Thread-safe map of job id to Job.

    Jobs from many concurrently running tasks are inserted, read and
    removed here. A job's own counters are only mutated by the task that
    runs it.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def add(self, job: Job) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already registered")
            self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def remove(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.pop(job_id, None)

    def get_all(self) -> List[Job]:
        with self._lock:
            return list(self._jobs.values())

    def get_by_status(self, status: JobStatus) -> List[Job]:
        with self._lock:
            return [job for job in self._jobs.values() if job.status == status]

    def status(self, job_id: str, now: Optional[datetime] = None) -> Optional[JobStatusView]:
        """Counts plus elapsed time and a linear estimate of time remaining."""
        job = self.get(job_id)
        if job is None:
            return None
        return JobStatusView.from_job(job, now=now)

    def cleanup(self, max_age_hours: float = 24, now: Optional[datetime] = None) -> int:
        """Drop terminal jobs that ended more than ``max_age_hours`` ago."""
        cutoff = (now or utcnow()) - timedelta(hours=max_age_hours)
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.is_terminal and job.end_time is not None and job.end_time < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        return len(stale)

    def get_stats(self) -> Dict[str, int]:
        """Job counts per status."""
        with self._lock:
            stats = {status.value.lower(): 0 for status in JobStatus}
            for job in self._jobs.values():
                stats[job.status.value.lower()] += 1
            stats["total"] = len(self._jobs)
        return stats
