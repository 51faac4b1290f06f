from __future__ import annotations

import asyncio
import logging
import socket
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from pydantic import BaseModel

from ..errors import ProvisioningError, SpawnError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lower-cased fragments of error messages that identify transient failures.
TRANSIENT_MARKERS = (
    "econnrefused",
    "connection refused",
    "enotfound",
    "name or service not known",
    "temporary failure in name resolution",
    "nodename nor servname",
    "etimedout",
    "timed out",
    "timeout",
    "websocket",
    "econnreset",
    "connection reset",
    "broken pipe",
)


class RetryDecision(BaseModel):
    retry: bool
    delay: float = 0.0


def compute_backoff(attempt: int, base: float = 2.0) -> float:
    """Linear backoff: ``base * attempt`` seconds."""
    return base * max(1, attempt)


def is_transient(error: BaseException) -> bool:
    """Return ``True`` for network, resolution, timeout and socket failures."""

    if isinstance(error, TransientError):
        return True
    if isinstance(error, SpawnError) and error.__cause__ is not None:
        return is_transient(error.__cause__)
    if isinstance(error, ProvisioningError):
        # Every other typed error is a deterministic outcome.
        return False
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, (ConnectionError, socket.gaierror, socket.timeout)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def should_retry(
    error: BaseException, attempt: int, max_attempts: int, base_delay: float = 2.0
) -> RetryDecision:
    """Decide whether failed ``attempt`` (1-based) should be retried."""

    if attempt >= max_attempts or not is_transient(error):
        return RetryDecision(retry=False)
    return RetryDecision(retry=True, delay=compute_backoff(attempt, base_delay))



async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 2.0,
    description: str = "operation",
    before_retry: Optional[Callable[[], Awaitable[Optional[T]]]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` under :func:`should_retry`.

    ``before_retry`` runs after the backoff and before the next attempt. A
    non-``None`` result is returned as is, which lets creation calls re-check
    for an existing resource instead of creating a duplicate.
    """

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            decision = should_retry(e, attempt, max_attempts, base_delay)
            if not decision.retry:
                raise
            logger.warning(
                f"{description} failed on attempt {attempt}/{max_attempts}, "
                f"retrying in {decision.delay:.1f}s: {e}"
            )
            await sleep(decision.delay)
            if before_retry is not None:
                existing = await before_retry()
                if existing is not None:
                    logger.info(f"{description}: found existing result before retrying")
                    return existing
