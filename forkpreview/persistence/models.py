"""Workflow run records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..contracts import (
    DeploymentOutcome,
    DeploymentTarget,
    ForkResult,
    TerminalState,
    WorkflowStep,
)

STEP_ORDER = [
    WorkflowStep.INITIALIZE,
    WorkflowStep.FORK_START,
    WorkflowStep.FORK_COMPLETE,
    WorkflowStep.BRANCH_CREATE,
    WorkflowStep.BRANCH_READY,
    WorkflowStep.DEPLOY_START,
    WorkflowStep.DEPLOY_SUBMITTED,
    WorkflowStep.POLLING,
    WorkflowStep.DEPLOYED,
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowRun(BaseModel):
    """One provisioning attempt.

    Instances are immutable; the registry swaps in a new snapshot on every
    transition so a status query never sees half of an update.
    """

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    owner_user_id: str
    source_owner: str
    source_repo: str
    branch: str
    region: str
    current_step: WorkflowStep = WorkflowStep.INITIALIZE
    progress_percent: int = Field(default=0, ge=0, le=100)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    terminal_state: TerminalState = TerminalState.NONE
    last_error: Optional[str] = None
    fork: Optional[ForkResult] = None
    deployment: Optional[DeploymentTarget] = None
    outcome: Optional[DeploymentOutcome] = None

    @property
    def is_terminal(self) -> bool:
        return self.terminal_state != TerminalState.NONE
