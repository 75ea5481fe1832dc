"""Batch scheduler: runs a job's items batch by batch with bounded concurrency.

Each submitted job runs on its own detached asyncio task. Items are split
into consecutive batches of ``batch_size``; a batch's items run
concurrently through the RetryingWorker and the next batch starts only
once every item of the current one has settled. Progress is reported per
batch through the ProgressReporter and can be polled from the JobRegistry.

Cancellation is cooperative and non-preemptive: ``cancel`` marks the job
CANCELLED and removes it from the registry, but a batch that is already
running finishes in the background. Its results are discarded and no
further batch is started.
"""

import asyncio
import inspect
import logging
import time
import uuid
from collections.abc import Mapping, Sized
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .errors import OrchestrationError
from .events import EventType, ProgressReporter
from .models import BatchOptions, ItemResult, Job, JobStatus, JobStatusView, JobSummary
from .registry import JobRegistry
from .retry import RetryPolicy, is_retriable_error
from .worker import RetryingWorker, WorkerFn, item_retry_policy

logger = logging.getLogger(__name__)

ItemSource = Union[Iterable[Any], Callable[[], Any]]


def generate_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class BatchScheduler:
    """Submits jobs and drives them to a terminal state."""

    def __init__(
        self,
        registry: JobRegistry,
        reporter: ProgressReporter,
        defaults: Optional[BatchOptions] = None,
        worker: Optional[RetryingWorker] = None,
    ):
        self.registry = registry
        self.reporter = reporter
        self.defaults = defaults or BatchOptions()
        self.worker = worker or RetryingWorker()
        self._tasks: Dict[str, Tuple[asyncio.Task, Job]] = {}

    def submit(
        self,
        items: ItemSource,
        worker_fn: WorkerFn,
        options: Union[BatchOptions, Dict[str, Any], None] = None,
        job_type: str = "batch",
        item_key: Optional[Callable[[Any], Any]] = None,
        is_retriable: Callable[[BaseException], bool] = is_retriable_error,
    ) -> str:
        """Register a job and start it in the background. Returns the job id.

        ``items`` may be an iterable or a callable (sync or async) that
        returns one. Loading happens in the background, so a failing loader
        fails the job rather than this call.
        """
        loop = asyncio.get_running_loop()
        options = self._resolve_options(options)
        job = Job(id=generate_job_id(), type=job_type, options=options)
        if isinstance(items, Sized) and not callable(items):
            job.total_items = len(items)

        self.registry.add(job)
        logger.info("Job %s submitted (%s, %d items)", job.id, job_type, job.total_items)
        self.reporter.emit(EventType.JOB_STARTED, job.id, type=job_type, total=job.total_items)

        policy = item_retry_policy(
            options.item_retry_attempts,
            options.item_retry_base_delay,
            is_retriable=is_retriable,
        )
        task = loop.create_task(self._run(job, items, worker_fn, policy, item_key))
        self._tasks[job.id] = (task, job)
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        return job.id

    def _resolve_options(self, options: Union[BatchOptions, Dict[str, Any], None]) -> BatchOptions:
        if options is None:
            return self.defaults.model_copy()
        if isinstance(options, BatchOptions):
            return options
        return BatchOptions.model_validate({**self.defaults.model_dump(), **options})

    async def _run(
        self,
        job: Job,
        source: ItemSource,
        worker_fn: WorkerFn,
        policy: RetryPolicy,
        item_key: Optional[Callable[[Any], Any]],
    ) -> Job:
        if job.is_terminal:
            return job
        job.transition(JobStatus.PROCESSING)
        self.reporter.emit(EventType.JOB_PROCESSING, job.id)

        try:
            items = await self._load_items(source)
            job.total_items = len(items)
            batch_size = job.options.batch_size

            for start in range(0, len(items), batch_size):
                if job.is_terminal:
                    break
                batch = items[start:start + batch_size]
                logger.debug("Job %s: batch at %d (%d items)", job.id, start, len(batch))
                results = await self._run_batch(job, batch, start, worker_fn, policy, item_key)
                if job.is_terminal:
                    logger.info("Job %s was cancelled, discarding %d batch results", job.id, len(results))
                    break

                for result in results:
                    job.record(result)
                self.reporter.emit(
                    EventType.JOB_PROGRESS,
                    job.id,
                    processed=job.processed_items,
                    total=job.total_items,
                    succeeded=job.succeeded_items,
                    failed=job.failed_items,
                    progress=job.processed_items / job.total_items,
                )

                if start + batch_size < len(items) and job.options.inter_batch_delay > 0:
                    await asyncio.sleep(job.options.inter_batch_delay)
            else:
                self._complete(job)
        except Exception as exc:
            if job.is_terminal:
                logger.info("Job %s raised after reaching %s: %s", job.id, job.status.value, exc)
                return job
            logger.exception("Job %s failed", job.id)
            self._fail(job, str(exc))
        except BaseException:
            if not job.is_terminal:
                logger.warning("Job %s interrupted while %s", job.id, job.status.value)
                self._fail(job, "Job execution was interrupted")
            raise
        return job

    def _fail(self, job: Job, error: str) -> None:
        job.error = error
        job.transition(JobStatus.FAILED)
        self.reporter.emit(EventType.JOB_FAILED, job.id, error=error, job=job)

    async def _load_items(self, source: ItemSource) -> List[Any]:
        try:
            if callable(source):
                source = source()
                if inspect.isawaitable(source):
                    source = await source
            return list(source)
        except Exception as exc:
            raise OrchestrationError(f"Failed to load items: {exc}") from exc

    async def _run_batch(
        self,
        job: Job,
        batch: List[Any],
        start: int,
        worker_fn: WorkerFn,
        policy: RetryPolicy,
        item_key: Optional[Callable[[Any], Any]],
    ) -> List[ItemResult]:
        semaphore = asyncio.Semaphore(job.options.concurrency)

        async def run_one(index: int, item: Any) -> ItemResult:
            item_id = self._item_id(item, index, item_key)
            async with semaphore:
                self._emit_item(job, EventType.ITEM_PROCESSING, item_id=item_id, index=index)
                result = await self.worker.attempt(item, worker_fn, policy, item_id=item_id, index=index)
            if result.succeeded:
                self._emit_item(
                    job, EventType.ITEM_SUCCEEDED,
                    item_id=item_id, index=index, attempts=result.attempts,
                )
            else:
                self._emit_item(
                    job, EventType.ITEM_FAILED,
                    item_id=item_id, index=index, attempts=result.attempts, error=result.error_message,
                )
            return result

        return list(await asyncio.gather(
            *(run_one(start + offset, item) for offset, item in enumerate(batch))
        ))

    @staticmethod
    def _item_id(item: Any, index: int, item_key: Optional[Callable[[Any], Any]]) -> str:
        if item_key is not None:
            return str(item_key(item))
        if isinstance(item, Mapping) and "id" in item:
            return str(item["id"])
        return str(index)

    def _emit_item(self, job: Job, event_type: EventType, **data: Any) -> None:
        # results of a cancelled job are discarded, so are its item events
        if not job.is_terminal:
            self.reporter.emit(event_type, job.id, **data)

    def _complete(self, job: Job) -> None:
        job.transition(JobStatus.COMPLETED)
        duration = (job.end_time - job.start_time).total_seconds()
        job.summary = JobSummary(
            duration=duration,
            throughput=job.processed_items / duration if duration > 0 else float(job.processed_items),
            average_time_per_item=duration / job.total_items if job.total_items else 0.0,
            failures=list(job.errors),
        )
        logger.info(
            "Job %s completed: %d processed, %d succeeded, %d failed in %.2fs",
            job.id, job.processed_items, job.succeeded_items, job.failed_items, duration,
        )
        self.reporter.emit(EventType.JOB_COMPLETED, job.id, summary=job.summary, job=job)

    def get_job_status(self, job_id: str) -> Optional[JobStatusView]:
        """Current counts, elapsed time and estimated time remaining."""
        return self.registry.status(job_id)

    def get_running_jobs(self) -> Dict[str, JobStatusView]:
        return {
            job.id: JobStatusView.from_job(job)
            for status in (JobStatus.STARTED, JobStatus.PROCESSING)
            for job in self.registry.get_by_status(status)
        }

    def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not reached a terminal state.

        Work already dispatched keeps running; see the module docstring.
        """
        job = self.registry.get(job_id)
        if job is None or job.is_terminal:
            return False
        job.transition(JobStatus.CANCELLED)
        self.registry.remove(job_id)
        logger.info("Job %s cancelled", job_id)
        self.reporter.emit(EventType.JOB_CANCELLED, job_id, job=job)
        return True

    def cleanup_old_jobs(self, max_age_hours: float = 24) -> int:
        """Remove terminal jobs that ended more than ``max_age_hours`` ago."""
        removed = self.registry.cleanup(max_age_hours)
        if removed:
            logger.info("Cleaned up %d old jobs", removed)
        return removed

    async def run_cleanup_sweep(self, max_age_hours: float, interval: float) -> None:
        """Run cleanup_old_jobs every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.cleanup_old_jobs(max_age_hours)

    async def wait(self, job_id: str) -> Optional[Job]:
        """Wait for a job's background task and return its Job, or None if unknown.

        Never raises what the background task raised; the returned Job
        carries the outcome.
        """
        entry = self._tasks.get(job_id)
        if entry is None:
            return self.registry.get(job_id)
        task, job = entry
        await asyncio.wait({task})
        return job

    async def shutdown(self) -> None:
        """Wait for every running job to finish."""
        tasks = [task for task, _job in self._tasks.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
