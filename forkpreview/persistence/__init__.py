"""Workflow run registry."""

from __future__ import annotations

from .inmemory import InMemoryWorkflowRegistry
from .models import STEP_ORDER, WorkflowRun
from .registry import WorkflowRegistry


def get_registry() -> WorkflowRegistry:
    """Factory function to obtain a fresh workflow registry.

    Every call returns a new instance so orchestrators never share state.
    """

    return InMemoryWorkflowRegistry()


__all__ = [
    "STEP_ORDER",
    "InMemoryWorkflowRegistry",
    "WorkflowRegistry",
    "WorkflowRun",
    "get_registry",
]
