"""Registry abstraction for in-flight workflow runs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol

from ..contracts import WorkflowStep
from .models import WorkflowRun


class WorkflowRegistry(Protocol):
    """Protocol for workflow run registries."""

    async def create(self, run: WorkflowRun) -> WorkflowRun:
        """Register a new run."""

    async def get(self, workflow_id: str) -> Optional[WorkflowRun]:
        """Return the latest snapshot of a run."""

    async def transition(
        self,
        workflow_id: str,
        step: WorkflowStep,
        progress: Optional[int] = None,
        **fields: Any,
    ) -> WorkflowRun:
        """Move a run to ``step`` and update ``fields`` in one snapshot."""

    async def list_runs(self) -> List[WorkflowRun]:
        """Return every registered run."""

    async def discard(self, workflow_id: str) -> None:
        """Forget a run."""

    async def prune(self, retention_seconds: float, now: Optional[datetime] = None) -> int:
        """Evict terminal runs older than ``retention_seconds``."""
