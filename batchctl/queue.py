"""Rate-limited request queue.

Serializes every call to one rate-limited external dependency. Exactly one
``work()`` call is in flight at a time, process wide, no matter how many
jobs enqueue through the same instance. Transient failures are retried in
place at the head of the queue with exponential backoff; later items wait
behind a retrying head (head-of-line retry).
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from .errors import QueueClearedError
from .models import QueueHead, QueueStatus
from .retry import RetryPolicy, exponential_backoff, is_retriable_error

logger = logging.getLogger(__name__)

Work = Callable[[], Awaitable[Any]]


class QueueItem(BaseModel):
    """A unit of work owned by the queue until its future settles."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    work: Work
    context: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = 0
    enqueued_at: float = Field(default_factory=time.monotonic)
    future: asyncio.Future

    @property
    def label(self) -> str:
        return str(self.context.get("name") or self.context.get("item") or self.id)


class RateLimitedQueue:
    """Single-lane queue in front of a rate-limited resource."""

    def __init__(
        self,
        request_delay: float = 5.0,
        max_retries: int = 4,
        base_retry_delay: float = 10.0,
        is_retriable: Callable[[BaseException], bool] = is_retriable_error,
    ):
        self.request_delay = request_delay
        self.policy = RetryPolicy(
            max_retries=max_retries,
            base_delay=base_retry_delay,
            backoff=exponential_backoff,
            is_retriable=is_retriable,
        )
        self._items: Deque[QueueItem] = deque()
        self._drain_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._items)

    @property
    def processing(self) -> bool:
        """Whether the drain loop is currently active."""
        return self._drain_task is not None and not self._drain_task.done()

    async def enqueue(self, work: Work, context: Optional[Dict[str, Any]] = None) -> Any:
        """Add work to the tail and wait for its final outcome."""
        loop = asyncio.get_running_loop()
        item = QueueItem(work=work, context=context or {}, future=loop.create_future())
        self._items.append(item)
        logger.info("Queued request %s (queue size: %d)", item.label, len(self._items))

        if not self.processing:
            self._drain_task = loop.create_task(self._drain())
        return await item.future

    async def _drain(self) -> None:
        """Process queued items one at a time until the queue is empty."""
        logger.debug("Queue drain started (%d pending)", len(self._items))
        while self._items:
            item = self._items[0]  # peek, the head leaves only once settled
            if item.future.done():
                # waiter cancelled before its turn
                self._items.popleft()
                continue

            attempt = item.retry_count + 1
            logger.debug(
                "Processing request %s (attempt %d/%d, %d behind it)",
                item.label, attempt, self.policy.max_retries + 1, len(self._items) - 1,
            )
            try:
                result = await item.work()
            except Exception as exc:
                if self.policy.should_retry(exc, item.retry_count):
                    item.retry_count += 1
                    delay = self.policy.delay_for(item.retry_count)
                    logger.warning(
                        "Request %s failed with transient error (%s), retrying in %.2fs (retry %d/%d)",
                        item.label, exc, delay, item.retry_count, self.policy.max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error("Request %s failed permanently: %s", item.label, exc)
                self._settle(item, error=exc)
            else:
                logger.info("Request %s completed", item.label)
                self._settle(item, result=result)

            await asyncio.sleep(self.request_delay)
        logger.debug("Queue drain finished")

    def _settle(self, item: QueueItem, result: Any = None, error: Optional[BaseException] = None) -> None:
        if self._items and self._items[0] is item:
            self._items.popleft()
        if item.future.done():
            # cleared or cancelled while in flight
            return
        if error is not None:
            item.future.set_exception(error)
        else:
            item.future.set_result(result)

    def get_status(self) -> QueueStatus:
        """Report queue length, drain state and the head item's wait."""
        head = None
        if self._items:
            item = self._items[0]
            head = QueueHead(
                item_id=item.id,
                context=item.context,
                wait_time=time.monotonic() - item.enqueued_at,
                retries=item.retry_count,
            )
        return QueueStatus(queue_length=len(self._items), processing=self.processing, head=head)

    def clear(self) -> int:
        """Reject every pending request with QueueClearedError."""
        cleared = 0
        while self._items:
            item = self._items.popleft()
            if not item.future.done():
                item.future.set_exception(QueueClearedError())
                cleared += 1
        logger.info("Cleared %d requests from queue", cleared)
        return cleared

    async def close(self) -> None:
        """Clear the queue and stop the drain loop."""
        self.clear()
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
