"""Job lifecycle events and the reporter that delivers them.

The scheduler pushes events onto a channel without waiting. A dedicated
reporting task drains the channel in order and hands each event to the
registered listeners. Listeners may be plain functions or coroutines; a
failing listener is logged and skipped, it never affects job execution.
"""

import asyncio
import inspect
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union
from pydantic import BaseModel, Field

from .models import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    JOB_STARTED = "job:started"
    JOB_PROCESSING = "job:processing"
    JOB_PROGRESS = "job:progress"
    ITEM_PROCESSING = "item:processing"
    ITEM_SUCCEEDED = "item:success"
    ITEM_FAILED = "item:failed"
    JOB_COMPLETED = "job:completed"
    JOB_FAILED = "job:failed"
    JOB_CANCELLED = "job:cancelled"


TERMINAL_EVENTS = frozenset({EventType.JOB_COMPLETED, EventType.JOB_FAILED, EventType.JOB_CANCELLED})


class JobEvent(BaseModel):
    type: EventType
    job_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


Listener = Callable[[JobEvent], Union[None, Awaitable[None]]]


class ProgressReporter:
    """Fans lifecycle events out to registered listeners."""

    def __init__(self):
        self._listeners: List[Tuple[Listener, Optional[FrozenSet[EventType]]]] = []
        self._channel: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def subscribe(
        self,
        listener: Listener,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Callable[[], None]:
        """Register a listener, optionally for some event types only.

        Returns a callable that removes the listener again.
        """
        entry = (listener, frozenset(event_types) if event_types is not None else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def emit(self, event_type: EventType, job_id: str, **data: Any) -> JobEvent:
        """Queue an event for delivery.

        From a thread other than the event loop's, the event is handed over
        with ``call_soon_threadsafe`` to the loop the reporter runs on.
        """
        event = JobEvent(type=event_type, job_id=job_id, data=data)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        owner = self._loop if self._task is not None and not self._task.done() else None
        if owner is not None and owner is not running:
            owner.call_soon_threadsafe(self._put, event)
        elif running is not None:
            self._put(event)
        else:
            raise RuntimeError("ProgressReporter has no event loop to deliver to")
        return event

    def _put(self, event: JobEvent) -> None:
        self._ensure_running().put_nowait(event)

    def _ensure_running(self) -> asyncio.Queue:
        if self._task is None or self._task.done():
            self._loop = asyncio.get_running_loop()
            self._channel = asyncio.Queue()
            self._task = self._loop.create_task(self._dispatch(self._channel))
        return self._channel

    async def _dispatch(self, channel: asyncio.Queue) -> None:
        while True:
            event = await channel.get()
            try:
                for listener, types in list(self._listeners):
                    if types is None or event.type in types:
                        await self._deliver(listener, event)
            finally:
                channel.task_done()

    async def _deliver(self, listener: Listener, event: JobEvent) -> None:
        try:
            result = listener(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Event listener %r failed on %s", listener, event.type.value)

    async def flush(self) -> None:
        """Wait until every emitted event has been delivered."""
        if self._channel is not None and self._task is not None and not self._task.done():
            await self._channel.join()

    async def close(self) -> None:
        """Deliver pending events, then stop the reporting task."""
        await self.flush()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
