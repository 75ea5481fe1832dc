"""batchctl - rate-limited batch job orchestration."""

from .app import AppContext
from .config import Settings
from .errors import (
    BatchError,
    OrchestrationError,
    QueueClearedError,
    RateLimitError,
    RetriableError,
    TerminalItemError,
)
from .events import EventType, JobEvent, ProgressReporter
from .models import BatchOptions, ItemResult, Job, JobStatus, JobStatusView
from .queue import RateLimitedQueue
from .registry import JobRegistry
from .retry import RetryPolicy, is_retriable_error, retry_unless_terminal
from .scheduler import BatchScheduler
from .worker import CommandWorker, RetryingWorker

__version__ = "1.0.0"
