"""Utility helpers for forkpreview."""

from .deadline import Deadline
from .retry import RetryDecision, compute_backoff, is_transient, retry_async, should_retry

__all__ = [
    "Deadline",
    "RetryDecision",
    "compute_backoff",
    "is_transient",
    "retry_async",
    "should_retry",
]
