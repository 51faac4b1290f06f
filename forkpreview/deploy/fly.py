"""Fly.io Machines API deployment client.

Every preview is its own Fly app holding a single machine. The machine boots
the same clone, install and start command the sandbox bring-up uses, so the
platform's machine state is the readiness signal here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import SecretStr

from ..bringup import BringUpOptions, build_bringup_command
from ..config import BringUpConfig, FlyConfig
from ..contracts import DeploymentState, DeploymentStatus, DeployResult
from ..errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ProvisioningError,
    TransientError,
)
from .base import DeploymentClient

logger = logging.getLogger(__name__)

RUNNING_STATES = {"started"}
ERROR_STATES = {"destroyed", "halted", "failed"}


def map_machine_state(state: Optional[str]) -> DeploymentState:
    if state in RUNNING_STATES:
        return DeploymentState.RUNNING
    if state in ERROR_STATES:
        return DeploymentState.ERROR
    return DeploymentState.PENDING


class FlyDeploymentClient(DeploymentClient):
    def __init__(
        self,
        config: Optional[FlyConfig] = None,
        bringup: Optional[BringUpConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or FlyConfig()
        self.bringup = bringup or BringUpConfig()
        headers = {"Content-Type": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        self._client = httpx.AsyncClient(
            base_url=self.config.api_url,
            headers=headers,
            timeout=self.config.timeout,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.config.token)

    def preview_url(self, app_name: str) -> Optional[str]:
        return self.config.preview_url_template.format(app_name=app_name)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if not self.is_configured():
            raise ConfigurationError("Fly.io is not configured; set FLY_API_TOKEN")
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientError(f"Fly.io request {method} {url} failed: {e}") from e
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        try:
            data = response.json()
        except ValueError:
            data = response.text
        detail = data.get("error", "") if isinstance(data, dict) else str(data)
        message = f"{action} failed ({response.status_code}): {detail}"
        status = response.status_code
        if status in (401, 403):
            raise ConfigurationError(message)
        if status == 404:
            raise NotFoundError(message)
        if status in (409, 422):
            raise ConflictError(message)
        if status == 429 or status >= 500:
            raise TransientError(message)
        raise ProvisioningError(message)

    async def ensure_app(self, app_name: str) -> bool:
        """Create the app; returns ``False`` if it already existed."""

        response = await self._request(
            "POST", "/apps", json={"app_name": app_name, "org_slug": self.config.org_slug}
        )
        try:
            self._raise_for_status(response, f"Creating Fly app {app_name}")
        except ConflictError:
            logger.info(f"Fly app {app_name} already exists, reusing it")
            return False
        logger.info(f"Created Fly app {app_name}")
        return True

    def machine_config(
        self, clone_url: str, branch: str, env_vars: Dict[str, str], region: Optional[str]
    ) -> Dict[str, Any]:
        options = BringUpOptions.from_config(
            self.bringup,
            package_manager=env_vars.get("PACKAGE_MANAGER"),
            script_name=env_vars.get("START_SCRIPT"),
            install_command=env_vars.get("INSTALL_COMMAND"),
        )
        command = build_bringup_command(clone_url, branch, options)
        env = {
            **env_vars,
            "PORT": str(self.config.internal_port),
            "HOST": "0.0.0.0",
        }
        body: Dict[str, Any] = {
            "config": {
                "image": self.config.image,
                "env": env,
                "init": {"cmd": ["sh", "-c", command]},
                "guest": {
                    "cpu_kind": "shared",
                    "cpus": self.config.cpus,
                    "memory_mb": self.config.memory_mb,
                },
                "services": [
                    {
                        "protocol": "tcp",
                        "internal_port": self.config.internal_port,
                        "ports": [
                            {"port": 443, "handlers": ["tls", "http"]},
                            {"port": 80, "handlers": ["http"]},
                        ],
                    }
                ],
                "restart": {"policy": "no"},
            }
        }
        if region:
            body["region"] = region
        return body

    async def deploy(
        self,
        app_name: str,
        clone_url: str,
        branch: str,
        env_vars: Dict[str, str],
        region: Optional[str] = None,
        vcs_token: Optional[SecretStr] = None,
    ) -> DeployResult:
        if vcs_token is not None:
            logger.debug("Fly machines clone anonymously; the VCS token is not forwarded")
        await self.ensure_app(app_name)
        response = await self._request(
            "POST",
            f"/apps/{app_name}/machines",
            json=self.machine_config(clone_url, branch, env_vars, region),
        )
        self._raise_for_status(response, f"Creating machine for {app_name}")
        machine = response.json()
        logger.info(f"Started Fly machine {machine.get('id')} for {app_name}")
        return DeployResult(preview_url=self.preview_url(app_name), release_id=machine.get("id"))

    async def list_machines(self, app_name: str) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/apps/{app_name}/machines")
        self._raise_for_status(response, f"Listing machines of {app_name}")
        return response.json() or []

    async def get_status(self, app_name: str) -> DeploymentStatus:
        machines = await self.list_machines(app_name)
        states = [map_machine_state(m.get("state")) for m in machines]
        if DeploymentState.RUNNING in states:
            return DeploymentStatus(status=DeploymentState.RUNNING, preview_url=self.preview_url(app_name))
        if states and all(state == DeploymentState.ERROR for state in states):
            raw = ", ".join(str(m.get("state")) for m in machines)
            return DeploymentStatus(
                status=DeploymentState.ERROR,
                error_message=f"Fly machine for {app_name} is not running (state: {raw})",
            )
        return DeploymentStatus(status=DeploymentState.PENDING)

    async def destroy(self, app_name: str) -> None:
        response = await self._request("DELETE", f"/apps/{app_name}", params={"force": "true"})
        if response.status_code == 404:
            logger.info(f"Fly app {app_name} already gone")
            return
        self._raise_for_status(response, f"Destroying Fly app {app_name}")
        logger.info(f"Destroyed Fly app {app_name}")
