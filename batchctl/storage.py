"""Job archive: persists finished jobs to a JSON file.

Job state lives in memory while a job runs. The archive subscribes to the
terminal lifecycle events and keeps a snapshot of every finished job so
the CLI can list them after the process that ran them has exited.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .events import TERMINAL_EVENTS, JobEvent, ProgressReporter
from .models import Job, JobStatus


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class JobArchive:
    """File-based store of terminal job snapshots."""

    def __init__(self, data_dir: str = ".batchctl"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.jobs_file = self.data_dir / "jobs.json"

        if not self.jobs_file.exists():
            self._write_json(self.jobs_file, [])

    def _write_json(self, file_path: Path, data: Any) -> None:
        """Write data to JSON file with atomic write."""
        temp_file = file_path.with_suffix(".tmp")
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2, default=_encode)
        temp_file.replace(file_path)

    def _read_json(self, file_path: Path) -> Any:
        if not file_path.exists():
            return []
        with open(file_path, "r") as f:
            return json.load(f)

    def attach(self, reporter: ProgressReporter) -> Callable[[], None]:
        """Subscribe to a reporter's terminal events."""
        return reporter.subscribe(self.record, TERMINAL_EVENTS)

    def record(self, event: JobEvent) -> None:
        """Listener: store the job carried by a terminal event."""
        job = event.data.get("job")
        if isinstance(job, Job):
            self.save_job(job)

    def save_job(self, job: Job) -> None:
        """Insert or replace a job snapshot."""
        jobs = [j for j in self._read_json(self.jobs_file) if j["id"] != job.id]
        jobs.append(job.model_dump())
        self._write_json(self.jobs_file, jobs)

    def get_job(self, job_id: str) -> Optional[Job]:
        for job_data in self._read_json(self.jobs_file):
            if job_data["id"] == job_id:
                return Job(**job_data)
        return None

    def get_jobs(self, status: Optional[JobStatus] = None) -> List[Job]:
        """All archived jobs, oldest first, optionally filtered by status."""
        jobs = [Job(**job_data) for job_data in self._read_json(self.jobs_file)]
        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        return jobs

    def get_stats(self) -> Dict[str, int]:
        """Archived job and item counts."""
        jobs = self._read_json(self.jobs_file)
        stats = {status.value.lower(): 0 for status in JobStatus}
        stats.update(total=len(jobs), items=0, items_succeeded=0, items_failed=0)

        for job in jobs:
            state = str(job.get("status", "")).lower()
            if state in stats:
                stats[state] += 1
            stats["items"] += job.get("processed_items", 0)
            stats["items_succeeded"] += job.get("succeeded_items", 0)
            stats["items_failed"] += job.get("failed_items", 0)
        return stats
