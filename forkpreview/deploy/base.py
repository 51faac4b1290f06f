"""Deployment client interface consumed by the orchestrator."""

from __future__ import annotations

import abc
from typing import Dict, Optional

from pydantic import SecretStr

from ..contracts import DeploymentStatus, DeployResult


class DeploymentClient(metaclass=abc.ABCMeta):
    """Deploys a repository branch as a named preview app."""

    def is_configured(self) -> bool:
        return True

    def preview_url(self, app_name: str) -> Optional[str]:
        """Deterministic preview URL for ``app_name`` if known before deploy."""
        return None

    @abc.abstractmethod
    async def deploy(
        self,
        app_name: str,
        clone_url: str,
        branch: str,
        env_vars: Dict[str, str],
        region: Optional[str] = None,
        vcs_token: Optional[SecretStr] = None,
    ) -> DeployResult:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_status(self, app_name: str) -> DeploymentStatus:
        raise NotImplementedError

    @abc.abstractmethod
    async def destroy(self, app_name: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None
