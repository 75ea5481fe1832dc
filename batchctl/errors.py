"""Exception hierarchy for job orchestration."""

from typing import Optional


class BatchError(Exception):
    """Base class for batchctl errors."""


class RetriableError(BatchError):
    """Transient failure (rate limit, network) worth retrying."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitError(RetriableError):
    """The external dependency answered with a rate-limit signal."""

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message, status=429)


class TerminalItemError(BatchError):
    """Item failure that must not be retried."""


class CommandError(TerminalItemError):
    """A shell command exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(stderr.strip() or f"Exit code: {returncode}")


class CommandTimeoutError(RetriableError):
    """A shell command ran longer than its timeout."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timeout ({timeout:g} seconds)")


class OrchestrationError(BatchError):
    """Failure outside per-item processing. Aborts the whole job."""


class QueueClearedError(BatchError):
    """Raised into pending queue items when the queue is cleared."""

    def __init__(self, message: str = "Queue cleared"):
        super().__init__(message)


class InvalidTransitionError(BatchError):
    """A job status change that the lifecycle does not allow."""


class WorkerCancelledError(TerminalItemError):
    """The worker function's own call was cancelled."""

    def __init__(self, message: str = "Worker call was cancelled"):
        super().__init__(message)
