"""Data models for jobs, items and batch options."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Job lifecycle states."""
    STARTED = "STARTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

_TRANSITIONS = {
    JobStatus.STARTED: {JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
}


class ItemOutcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class ItemResult(BaseModel):
    """Outcome of one item after all of its attempts."""
    item_id: str
    index: int = 0
    outcome: ItemOutcome
    payload: Any = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.outcome == ItemOutcome.SUCCEEDED


class ItemError(BaseModel):
    """Failure record kept on the job for a permanently failed item."""
    item_id: str
    index: int = 0
    error_message: str
    error_type: Optional[str] = None
    attempts: int = 1

    @classmethod
    def from_result(cls, result: ItemResult) -> "ItemError":
        return cls(
            item_id=result.item_id,
            index=result.index,
            error_message=result.error_message or "",
            error_type=result.error_type,
            attempts=result.attempts,
        )


class BatchOptions(BaseModel):
    """Per-job batching and retry options."""
    batch_size: int = Field(default=5, ge=1)
    max_concurrent: Optional[int] = Field(default=None, ge=1)
    item_retry_attempts: int = Field(default=3, ge=1)
    item_retry_base_delay: float = Field(default=1.0, ge=0)  # seconds, linear backoff
    inter_batch_delay: float = Field(default=0.1, ge=0)  # seconds

    @property
    def concurrency(self) -> int:
        if self.max_concurrent is None:
            return self.batch_size
        return min(self.batch_size, self.max_concurrent)


class JobSummary(BaseModel):
    """Statistics computed once a job finishes running."""
    duration: float
    throughput: float
    average_time_per_item: float
    failures: List[ItemError] = Field(default_factory=list)


class Job(BaseModel):
    """A batch job and its running counters."""
    id: str
    type: str = "batch"
    status: JobStatus = JobStatus.STARTED
    total_items: int = 0
    processed_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    results: List[ItemResult] = Field(default_factory=list)
    errors: List[ItemError] = Field(default_factory=list)
    options: BatchOptions = Field(default_factory=BatchOptions)
    error: Optional[str] = None
    summary: Optional[JobSummary] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: JobStatus) -> None:
        """Move to a new status. Terminal states are absorbing."""
        if status not in _TRANSITIONS.get(self.status, ()):
            raise InvalidTransitionError(
                f"Job {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        if status.is_terminal:
            self.end_time = utcnow()

    def record(self, result: ItemResult) -> None:
        """Count one settled item."""
        self.processed_items += 1
        if result.succeeded:
            self.succeeded_items += 1
            self.results.append(result)
        else:
            self.failed_items += 1
            self.errors.append(ItemError.from_result(result))


class JobStatusView(BaseModel):
    """Point-in-time status of a job with timing estimates."""
    job_id: str
    type: str
    status: JobStatus
    total: int
    processed: int
    succeeded: int
    failed: int
    progress: float
    elapsed_time: float  # seconds
    estimated_remaining: Optional[float] = None  # seconds, None until an item settles
    start_time: datetime
    end_time: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job, now: Optional[datetime] = None) -> "JobStatusView":
        end = job.end_time or now or utcnow()
        elapsed = max(0.0, (end - job.start_time).total_seconds())
        remaining = None
        if job.processed_items > 0:
            remaining = max(
                0.0,
                (elapsed / job.processed_items) * (job.total_items - job.processed_items),
            )
        return cls(
            job_id=job.id,
            type=job.type,
            status=job.status,
            total=job.total_items,
            processed=job.processed_items,
            succeeded=job.succeeded_items,
            failed=job.failed_items,
            progress=job.processed_items / job.total_items if job.total_items else 0.0,
            elapsed_time=elapsed,
            estimated_remaining=remaining,
            start_time=job.start_time,
            end_time=job.end_time,
            error=job.error,
        )


class QueueHead(BaseModel):
    item_id: str
    context: Dict[str, Any] = Field(default_factory=dict)
    wait_time: float  # seconds since enqueue
    retries: int


class QueueStatus(BaseModel):
    """Snapshot of the rate-limited queue."""
    queue_length: int
    processing: bool
    head: Optional[QueueHead] = None
