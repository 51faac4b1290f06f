"""In-memory implementation of the workflow registry."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..constants import STEP_PROGRESS
from ..contracts import TerminalState, WorkflowStep
from ..errors import ProvisioningError
from .models import STEP_ORDER, WorkflowRun, utcnow
from .registry import WorkflowRegistry


class InMemoryWorkflowRegistry(WorkflowRegistry):
    """Store workflow runs in local memory.

    Each orchestrator owns its own instance; nothing is shared between
    registries and nothing survives a process restart.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, WorkflowRun] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create(self, run: WorkflowRun) -> WorkflowRun:
        async with self._lock:
            if run.workflow_id in self._runs:
                raise ProvisioningError(f"Workflow {run.workflow_id} already exists")
            self._runs[run.workflow_id] = run
        return run

    async def get(self, workflow_id: str) -> Optional[WorkflowRun]:
        return self._runs.get(workflow_id)

    async def transition(
        self,
        workflow_id: str,
        step: WorkflowStep,
        progress: Optional[int] = None,
        **fields: Any,
    ) -> WorkflowRun:
        async with self._lock:
            run = self._runs.get(workflow_id)
            if run is None:
                raise ProvisioningError(f"Unknown workflow {workflow_id}")
            if run.is_terminal:
                raise ProvisioningError(
                    f"Workflow {workflow_id} is already {run.current_step.value}"
                )
            if step != WorkflowStep.ERROR and STEP_ORDER.index(step) < STEP_ORDER.index(
                run.current_step
            ):
                raise ProvisioningError(
                    f"Workflow {workflow_id} cannot move back from "
                    f"{run.current_step.value} to {step.value}"
                )

            target = progress if progress is not None else STEP_PROGRESS.get(step.value, 0)
            update: Dict[str, Any] = dict(fields)
            update["current_step"] = step
            update["progress_percent"] = max(run.progress_percent, min(100, target))
            if step == WorkflowStep.DEPLOYED:
                update["terminal_state"] = TerminalState.SUCCEEDED
                update["finished_at"] = utcnow()
            elif step == WorkflowStep.ERROR:
                update["terminal_state"] = TerminalState.FAILED
                update["finished_at"] = utcnow()

            snapshot = run.model_copy(update=update)
            self._runs[workflow_id] = snapshot
            return snapshot

    async def list_runs(self) -> List[WorkflowRun]:
        return list(self._runs.values())

    async def discard(self, workflow_id: str) -> None:
        async with self._lock:
            self._runs.pop(workflow_id, None)

    async def prune(self, retention_seconds: float, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        async with self._lock:
            expired = [
                workflow_id
                for workflow_id, run in self._runs.items()
                if run.finished_at is not None
                and (now - run.finished_at).total_seconds() >= retention_seconds
            ]
            for workflow_id in expired:
                del self._runs[workflow_id]
        return len(expired)
