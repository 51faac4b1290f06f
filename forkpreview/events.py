"""Progress events for workflow runs.

Callbacks and stream subscribers are isolated from the workflow: a callback
that raises is logged and ignored, and a slow subscriber only grows its own
queue.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Set, Union

from .contracts import ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]

_CLOSED = object()


class ProgressEmitter:
    """Fans out :class:`ProgressEvent` objects to callbacks and subscribers."""

    def __init__(self, callbacks: Optional[List[ProgressCallback]] = None) -> None:
        self._callbacks: List[ProgressCallback] = list(callbacks or [])
        self._queues: List[asyncio.Queue] = []
        self._pending: Set[asyncio.Task] = set()
        self._history: List[ProgressEvent] = []
        self._closed = False

    @property
    def history(self) -> List[ProgressEvent]:
        return list(self._history)

    def emit(self, event: ProgressEvent) -> None:
        """Deliver ``event`` without waiting on any consumer."""

        self._history.append(event)
        for queue in self._queues:
            queue.put_nowait(event)
        for callback in self._callbacks:
            self._invoke(callback, event)

    def _invoke(self, callback: ProgressCallback, event: ProgressEvent) -> None:
        try:
            result = callback(event)
        except Exception as e:
            logger.warning(f"Progress callback failed for step {event.step.value}: {e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Async progress callback failed: {error}")

    async def subscribe(self, replay: bool = True) -> AsyncIterator[ProgressEvent]:
        """Yield events until the emitter is closed.

        With ``replay`` the events emitted before subscribing come first.
        """

        queue: asyncio.Queue = asyncio.Queue()
        if replay:
            for event in self._history:
                queue.put_nowait(event)
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._queues.append(queue)
        try:
            while True:
                item: Any = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def close(self) -> None:
        """End every subscription once its queued events are consumed."""

        self._closed = True
        for queue in self._queues:
            queue.put_nowait(_CLOSED)

    async def drain(self) -> None:
        """Wait for in-flight async callbacks to finish."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
