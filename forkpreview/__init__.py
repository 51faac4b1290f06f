"""forkpreview: fork a repository and bring up a live dev-server preview."""

from .bringup import BringUpEngine, BringUpOptions, BringUpResult, bring_up
from .config import ForkPreviewConfig, load_config
from .contracts import (
    DeploymentOutcome,
    DeploymentTarget,
    ForkResult,
    ProgressEvent,
    WorkflowResult,
    WorkflowStep,
)
from .deploy import get_deployment_client
from .naming import derive_app_name
from .orchestrator import ForkAndDeployOrchestrator
from .persistence import WorkflowRun, get_registry
from .ports import match_port
from .sandbox import SandboxLifecycle, get_sandbox_client
from .utils.retry import should_retry
from .vcs import get_vcs_client

__version__ = "0.1.0"
__all__ = [
    "BringUpEngine",
    "BringUpOptions",
    "BringUpResult",
    "DeploymentOutcome",
    "DeploymentTarget",
    "ForkAndDeployOrchestrator",
    "ForkPreviewConfig",
    "ForkResult",
    "ProgressEvent",
    "SandboxLifecycle",
    "WorkflowResult",
    "WorkflowRun",
    "WorkflowStep",
    "bring_up",
    "derive_app_name",
    "get_deployment_client",
    "get_registry",
    "get_sandbox_client",
    "get_vcs_client",
    "load_config",
    "match_port",
    "should_retry",
]
