"""Deployment clients."""

from __future__ import annotations

from typing import Optional

from ..config import ForkPreviewConfig, load_config
from ..sandbox import SandboxLifecycle, get_sandbox_client
from .base import DeploymentClient
from .fly import FlyDeploymentClient
from .sandbox import SandboxDeploymentClient


def get_deployment_client(
    backend: Optional[str] = None, config: Optional[ForkPreviewConfig] = None
) -> DeploymentClient:
    """Factory function to get the configured deployment client."""

    config = config or load_config()
    backend = (backend or config.deploy_backend).lower()

    if backend == "fly":
        return FlyDeploymentClient(config.fly, config.bringup)
    if backend == "sandbox":
        client = get_sandbox_client(config)
        return SandboxDeploymentClient(
            SandboxLifecycle(client, config.retry),
            sandbox=config.sandbox,
            bringup=config.bringup,
            retry=config.retry,
            working_directory=client.default_working_directory,
        )
    raise ValueError(f"Unsupported deployment backend: {backend}")


__all__ = [
    "DeploymentClient",
    "FlyDeploymentClient",
    "SandboxDeploymentClient",
    "get_deployment_client",
]
