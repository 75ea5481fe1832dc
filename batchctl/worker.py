"""Per-item execution: bounded retry around a worker function, and a shell command worker."""

import asyncio
import inspect
import logging
import shlex
from typing import Any, Awaitable, Callable, Optional, Union

from .errors import CommandError, CommandTimeoutError, WorkerCancelledError
from .models import ItemOutcome, ItemResult
from .queue import RateLimitedQueue
from .retry import RetryPolicy, is_retriable_error, linear_backoff

logger = logging.getLogger(__name__)

WorkerFn = Callable[[Any], Union[Any, Awaitable[Any]]]


def item_retry_policy(
    attempts: int,
    base_delay: float,
    is_retriable: Callable[[BaseException], bool] = is_retriable_error,
) -> RetryPolicy:
    """Policy for RetryingWorker: ``attempts`` total tries, linear backoff."""
    return RetryPolicy(
        max_retries=attempts - 1,
        base_delay=base_delay,
        backoff=linear_backoff,
        is_retriable=is_retriable,
    )


class RetryingWorker:
    """Runs one item through a worker function with its own retry budget.

    This budget is independent from the RateLimitedQueue's. When the worker
    function itself enqueues into the queue, each item attempt here may
    include several queue-level retries.
    """

    async def attempt(
        self,
        item: Any,
        worker_fn: WorkerFn,
        policy: RetryPolicy,
        item_id: Optional[str] = None,
        index: int = 0,
    ) -> ItemResult:
        """Run ``worker_fn(item)`` until it succeeds or the policy gives up.

        Never raises for item failures; the last error is returned inside a
        FAILED ItemResult.
        """
        item_id = item_id if item_id is not None else str(index)
        attempt = 0
        while True:
            attempt += 1
            try:
                payload = await self._invoke(worker_fn, item)
            except Exception as exc:
                if policy.should_retry(exc, attempt - 1):
                    delay = policy.delay_for(attempt)
                    logger.warning(
                        "Item %s failed (attempt %d), retrying in %.2fs: %s",
                        item_id, attempt, delay, exc,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.warning("Item %s failed after %d attempt(s): %s", item_id, attempt, exc)
                return ItemResult(
                    item_id=item_id,
                    index=index,
                    outcome=ItemOutcome.FAILED,
                    error_message=str(exc),
                    error_type=type(exc).__name__,
                    attempts=attempt,
                )
            return ItemResult(
                item_id=item_id,
                index=index,
                outcome=ItemOutcome.SUCCEEDED,
                payload=payload,
                attempts=attempt,
            )

    async def _invoke(self, worker_fn: WorkerFn, item: Any) -> Any:
        """One call of ``worker_fn``. Sync functions run in the default executor."""
        if _is_coroutine_function(worker_fn):
            call = asyncio.ensure_future(worker_fn(item))
        else:
            call = asyncio.get_running_loop().run_in_executor(None, worker_fn, item)
        payload = await _settled(call)
        if inspect.isawaitable(payload):
            payload = await _settled(asyncio.ensure_future(payload))
        return payload


def _is_coroutine_function(fn: Any) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(getattr(fn, "__call__", None))


async def _settled(call: "asyncio.Future[Any]") -> Any:
    """Wait for ``call`` and return its result.

    Cancelling the caller cancels ``call`` too. A ``call`` that cancels
    itself raises WorkerCancelledError instead, so it fails only its item.
    """
    try:
        await asyncio.wait({call})
    except asyncio.CancelledError:
        call.cancel()
        raise
    if call.cancelled():
        raise WorkerCancelledError()
    return call.result()


class CommandWorker:
    """Worker function that runs a shell command per item.

    The template is formatted with ``{item}`` and, for mapping items, with
    each key, e.g. ``"extract --contract {id} {path}"``. Substituted values
    are shell-quoted. With a queue, every command goes through its single
    rate-limited lane.
    """

    def __init__(
        self,
        template: str,
        timeout: float = 300,
        queue: Optional[RateLimitedQueue] = None,
    ):
        self.template = template
        self.timeout = timeout
        self.queue = queue

    def render(self, item: Any) -> str:
        fields = {}
        if isinstance(item, dict):
            fields = {key: shlex.quote(str(value)) for key, value in item.items()}
        fields["item"] = shlex.quote(str(item))
        return self.template.format(**fields)

    async def __call__(self, item: Any) -> str:
        command = self.render(item)
        if self.queue is None:
            return await self._execute(command)
        return await self.queue.enqueue(lambda: self._execute(command), context={"item": command})

    async def _execute(self, command: str) -> str:
        """Run the command and return its stripped stdout."""
        logger.debug("Running command: %s", command)
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CommandTimeoutError(command, self.timeout)

        if proc.returncode != 0:
            raise CommandError(command, proc.returncode, stderr.decode(errors="replace"))
        return stdout.decode(errors="replace").strip()
