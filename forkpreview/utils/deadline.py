"""End-to-end deadline budget with cooperative cancellation."""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from ..errors import WorkflowCancelledError


class Deadline:
    """Time budget shared by every suspension point of one workflow.

    Nested waits clamp their own timeouts to :meth:`remaining`, so the worst
    case latency of a run is bounded by ``budget`` no matter how the inner
    retry loops are tuned. :meth:`cancel` wakes any pending :meth:`sleep`.
    """

    def __init__(self, budget: Optional[float] = None) -> None:
        self.budget = budget
        self._started = time.monotonic()
        self._cancelled = asyncio.Event()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def remaining(self) -> Optional[float]:
        if self.budget is None:
            return None
        return max(0.0, self.budget - self.elapsed)

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def clamp(self, timeout: Optional[float]) -> Optional[float]:
        """Return ``timeout`` shortened to the remaining budget."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def check(self) -> None:
        if self.cancelled:
            raise WorkflowCancelledError("Workflow was cancelled")

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep up to ``delay`` seconds within the budget.

        Raises :class:`WorkflowCancelledError` if cancelled while waiting.
        """

        self.check()
        timeout = self.clamp(delay)
        if timeout is None or timeout <= 0:
            return
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return
        self.check()
