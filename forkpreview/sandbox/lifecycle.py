"""Create, look up and destroy sandboxes on behalf of the bring-up engine."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..config import RetryConfig
from ..errors import ConfigurationError, ConflictError
from ..utils.retry import retry_async
from .base import RemoteSession, SandboxClient, SandboxHandle, SandboxSpec

logger = logging.getLogger(__name__)


class SessionInfo(BaseModel):
    """Summary of a bring-up session started in a sandbox."""

    sandbox_name: str
    process_id: Optional[str] = None
    port: Optional[int] = None
    state: str = "starting"


class SandboxLifecycle:
    """Wraps a :class:`SandboxClient` with idempotent creation and retries.

    Creation is never blindly retried: before every retry the sandbox is
    looked up again and reused if the failed attempt created it after all.
    """

    def __init__(self, client: SandboxClient, retry: Optional[RetryConfig] = None) -> None:
        self.client = client
        self.retry = retry or RetryConfig()
        self._sessions: Dict[str, List[SessionInfo]] = {}

    def is_configured(self) -> bool:
        return self.client.is_configured()

    async def ensure_sandbox(self, name: str, spec: Optional[SandboxSpec] = None) -> SandboxHandle:
        if not self.is_configured():
            raise ConfigurationError("Sandbox backend is not configured")
        spec = spec or SandboxSpec()

        existing = await self.client.get_sandbox(name)
        if existing is not None:
            logger.info(f"Reusing sandbox {name}")
            return existing

        async def _create() -> SandboxHandle:
            try:
                return await self.client.create_sandbox(name, spec)
            except ConflictError:
                handle = await self.client.get_sandbox(name)
                if handle is None:
                    raise
                return handle

        handle = await retry_async(
            _create,
            max_attempts=self.retry.max_attempts,
            base_delay=self.retry.base_delay,
            description=f"Creating sandbox {name}",
            before_retry=lambda: self.client.get_sandbox(name),
        )
        logger.info(f"Sandbox {name} ready in region {spec.region}")
        return handle

    async def get_sandbox(self, name: str) -> Optional[SandboxHandle]:
        return await self.client.get_sandbox(name)

    async def destroy(self, name: str) -> None:
        await self.client.destroy_sandbox(name)
        self._sessions.pop(name, None)

    async def spawn(
        self, handle: SandboxHandle, command: str, env: Optional[Dict[str, str]] = None
    ) -> RemoteSession:
        session = await self.client.spawn(handle, command, env=env)
        self._sessions.setdefault(handle.name, []).append(
            SessionInfo(sandbox_name=handle.name, process_id=session.process_id)
        )
        return session

    def record_session(self, name: str, process_id: Optional[str], **updates) -> None:
        for info in self._sessions.get(name, []):
            if info.process_id == process_id:
                for key, value in updates.items():
                    setattr(info, key, value)

    def list_sessions(self, name: str) -> List[SessionInfo]:
        return list(self._sessions.get(name, []))
