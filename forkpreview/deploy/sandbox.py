"""Deployment client backed by a remote sandbox and the bring-up engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from pydantic import SecretStr

from ..bringup import BringUpEngine, BringUpOptions, BringUpResult
from ..config import BringUpConfig, RetryConfig, SandboxConfig
from ..contracts import DeploymentState, DeploymentStatus, DeployResult
from ..errors import NotFoundError
from ..sandbox.base import SandboxHandle, SandboxSpec
from ..sandbox.lifecycle import SandboxLifecycle
from ..utils.retry import retry_async
from .base import DeploymentClient

logger = logging.getLogger(__name__)


class SandboxDeploymentClient(DeploymentClient):
    """Runs each preview as a dev server inside its own sandbox.

    ``deploy`` returns once the sandbox exists and the bring-up has been
    started in the background; ``get_status`` reports ``running`` once a
    port has been detected.
    """

    def __init__(
        self,
        lifecycle: SandboxLifecycle,
        sandbox: Optional[SandboxConfig] = None,
        bringup: Optional[BringUpConfig] = None,
        retry: Optional[RetryConfig] = None,
        working_directory: Optional[str] = None,
    ) -> None:
        self.lifecycle = lifecycle
        self.sandbox = sandbox or SandboxConfig()
        self.bringup = bringup or BringUpConfig()
        self.retry = retry or RetryConfig()
        self.working_directory = working_directory
        self.engine = BringUpEngine(lifecycle, self.bringup)
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_configured(self) -> bool:
        return self.lifecycle.is_configured()

    def preview_url_for_port(self, app_name: str, port: int) -> str:
        return self.sandbox.preview_url_template.format(app_name=app_name, port=port)

    async def deploy(
        self,
        app_name: str,
        clone_url: str,
        branch: str,
        env_vars: Dict[str, str],
        region: Optional[str] = None,
        vcs_token: Optional[SecretStr] = None,
    ) -> DeployResult:
        spec = SandboxSpec(
            region=region or self.sandbox.region,
            ram_mb=self.sandbox.ram_mb,
            cpus=self.sandbox.cpus,
        )
        handle = await self.lifecycle.ensure_sandbox(app_name, spec)

        options = BringUpOptions.from_config(
            self.bringup,
            working_directory=self.working_directory,
            package_manager=env_vars.get("PACKAGE_MANAGER"),
            script_name=env_vars.get("START_SCRIPT"),
            install_command=env_vars.get("INSTALL_COMMAND"),
            vcs_token=vcs_token,
        )

        previous = self._tasks.pop(app_name, None)
        if previous is not None and not previous.done():
            previous.cancel()
            await asyncio.gather(previous, return_exceptions=True)

        self._tasks[app_name] = asyncio.create_task(
            self._run_bring_up(handle, clone_url, branch, options)
        )
        logger.info(f"Bring-up scheduled for sandbox {app_name}")
        return DeployResult(release_id=handle.name)

    async def _run_bring_up(
        self, handle: SandboxHandle, clone_url: str, branch: str, options: BringUpOptions
    ) -> BringUpResult:
        return await retry_async(
            lambda: self.engine.bring_up(handle, clone_url, branch, options),
            max_attempts=self.retry.max_attempts,
            base_delay=self.retry.base_delay,
            description=f"Bring-up in sandbox {handle.name}",
        )

    async def get_status(self, app_name: str) -> DeploymentStatus:
        task = self._tasks.get(app_name)
        if task is None:
            raise NotFoundError(f"No deployment known for {app_name}")
        if not task.done():
            return DeploymentStatus(status=DeploymentState.PENDING)
        if task.cancelled():
            return DeploymentStatus(status=DeploymentState.ERROR, error_message="Bring-up was cancelled")
        error = task.exception()
        if error is not None:
            return DeploymentStatus(status=DeploymentState.ERROR, error_message=str(error))
        result = task.result()
        return DeploymentStatus(
            status=DeploymentState.RUNNING,
            preview_url=self.preview_url_for_port(app_name, result.port),
        )

    async def destroy(self, app_name: str) -> None:
        task = self._tasks.pop(app_name, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.engine.stop(app_name)
        await self.lifecycle.destroy(app_name)
        logger.info(f"Destroyed sandbox deployment {app_name}")

    async def close(self) -> None:
        for app_name in list(self._tasks):
            task = self._tasks.pop(app_name)
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            await self.engine.stop(app_name)
