"""Application context: one queue, registry, reporter and scheduler per process."""

import asyncio
import logging
from typing import Optional

from .config import Settings
from .events import ProgressReporter
from .queue import RateLimitedQueue
from .registry import JobRegistry
from .scheduler import BatchScheduler
from .storage import JobArchive
from .worker import CommandWorker

logger = logging.getLogger(__name__)


class AppContext:
    """Builds and owns the orchestration components.

    Construct it once and pass it (or its parts) to whatever submits
    jobs, so every job shares the same rate-limited queue.
    """

    def __init__(self, settings: Optional[Settings] = None, archive: Optional[JobArchive] = None):
        self.settings = settings or Settings()
        self.queue = RateLimitedQueue(
            request_delay=self.settings.request_delay,
            max_retries=self.settings.queue_max_retries,
            base_retry_delay=self.settings.queue_retry_base_delay,
        )
        self.registry = JobRegistry()
        self.reporter = ProgressReporter()
        self.scheduler = BatchScheduler(
            self.registry,
            self.reporter,
            defaults=self.settings.batch_options(),
        )
        self.archive = archive
        if archive is not None:
            archive.attach(self.reporter)
        self._sweeper: Optional[asyncio.Task] = None

    def command_worker(self, template: str, rate_limited: bool = True) -> CommandWorker:
        return CommandWorker(
            template,
            timeout=self.settings.command_timeout,
            queue=self.queue if rate_limited else None,
        )

    def start(self) -> None:
        """Start the periodic cleanup sweep of old terminal jobs."""
        if self._sweeper is None:
            self._sweeper = asyncio.get_running_loop().create_task(
                self.scheduler.run_cleanup_sweep(
                    self.settings.job_retention_hours,
                    self.settings.cleanup_interval,
                )
            )

    async def close(self) -> None:
        """Finish running jobs, deliver pending events, stop background tasks."""
        await self.scheduler.shutdown()
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.queue.close()
        await self.reporter.close()
        logger.debug("Application context closed, jobs by status: %s", self.registry.get_stats())

    async def __aenter__(self) -> "AppContext":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
