"""Base interfaces for remote compute sandboxes."""

from __future__ import annotations

import abc
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Optional

from pydantic import BaseModel, Field


class SandboxSpec(BaseModel):
    """Resources requested for a new sandbox."""

    region: str = "ord"
    ram_mb: int = 1024
    cpus: int = 1


class SandboxHandle(BaseModel):
    """Reference to a provisioned sandbox."""

    name: str
    region: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, str] = Field(default_factory=dict)


class RemoteSession(metaclass=abc.ABCMeta):
    """One interactive shell session running inside a sandbox.

    ``stdout`` and ``stderr`` are independent byte streams; ``wait`` resolves
    with the exit code once the remote process ends.
    """

    process_id: Optional[str] = None

    @abc.abstractmethod
    def stdout(self) -> AsyncIterator[bytes]:
        """Yield stdout chunks as they arrive."""
        raise NotImplementedError

    @abc.abstractmethod
    def stderr(self) -> AsyncIterator[bytes]:
        """Yield stderr chunks as they arrive."""
        raise NotImplementedError

    @abc.abstractmethod
    async def wait(self) -> Optional[int]:
        """Wait for the remote process to exit and return its exit code."""
        raise NotImplementedError

    @abc.abstractmethod
    async def terminate(self) -> None:
        """Stop the remote process if it is still running."""
        raise NotImplementedError


class SandboxClient(metaclass=abc.ABCMeta):
    """Provider facing sandbox operations consumed by the lifecycle wrapper."""

    # Working directory bring-ups should use, when the provider needs its own.
    default_working_directory: Optional[str] = None

    def is_configured(self) -> bool:
        return True

    @abc.abstractmethod
    async def create_sandbox(self, name: str, spec: SandboxSpec) -> SandboxHandle:
        """Create a sandbox called ``name``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_sandbox(self, name: str) -> Optional[SandboxHandle]:
        """Return the sandbox called ``name`` or ``None``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def destroy_sandbox(self, name: str) -> None:
        """Destroy the sandbox called ``name``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def spawn(
        self,
        handle: SandboxHandle,
        command: str,
        env: Optional[Dict[str, str]] = None,
    ) -> RemoteSession:
        """Start ``sh -c command`` inside the sandbox."""
        raise NotImplementedError
