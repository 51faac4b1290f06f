"""Core data contracts shared by the orchestrator and its collaborators."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkflowStep(str, Enum):
    """Steps of the fork-and-deploy state machine, in order."""

    INITIALIZE = "initialize"
    FORK_START = "fork_start"
    FORK_COMPLETE = "fork_complete"
    BRANCH_CREATE = "branch_create"
    BRANCH_READY = "branch_ready"
    DEPLOY_START = "deploy_start"
    DEPLOY_SUBMITTED = "deploy_submitted"
    POLLING = "polling"
    DEPLOYED = "deployed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStep.DEPLOYED, WorkflowStep.ERROR)


class TerminalState(str, Enum):
    NONE = "none"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DeploymentOutcome(str, Enum):
    """How a successful run learned that its preview is up.

    ``ASSUMED`` means polling ran out before the platform reported the
    preview as running; the deterministic URL is handed back regardless.
    """

    CONFIRMED = "confirmed"
    ASSUMED = "assumed"


class DeploymentState(str, Enum):
    RUNNING = "running"
    PENDING = "pending"
    ERROR = "error"


class Repo(BaseModel):
    """Repository as reported by the VCS provider."""

    owner: str
    name: str
    html_url: str
    clone_url: str
    default_branch: str = "main"
    fork: bool = False


class BranchRef(BaseModel):
    name: str
    sha: str


class ForkResult(BaseModel):
    """Fork produced (or reused) by a workflow run."""

    model_config = ConfigDict(frozen=True)

    url: str
    clone_url: str
    fork_owner: str
    repo: str
    branch: str
    is_new_fork: bool


class DeploymentTarget(BaseModel):
    """Identity of the remote compute unit provisioned for a run."""

    model_config = ConfigDict(frozen=True)

    app_name: str
    preview_url: Optional[str] = None
    region: str


class DeployResult(BaseModel):
    preview_url: Optional[str] = None
    release_id: Optional[str] = None


class DeploymentStatus(BaseModel):
    status: DeploymentState
    error_message: Optional[str] = None
    preview_url: Optional[str] = None


class ProgressEvent(BaseModel):
    """Progress notification emitted on every workflow transition.

    Step specific fields (``fork_url``, ``app_name``, ``preview_url`` ...)
    are carried as extra attributes.
    """

    model_config = ConfigDict(extra="allow")

    workflow_id: str
    step: WorkflowStep
    status: str
    message: str
    progress: int = Field(ge=0, le=100)


class WorkflowResult(BaseModel):
    """Value returned once a workflow reaches ``deployed``."""

    workflow_id: str
    fork: ForkResult
    deployment: DeploymentTarget
    outcome: DeploymentOutcome
    deployment_id: Optional[str] = None
