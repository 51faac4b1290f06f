"""Sandbox backends and lifecycle management."""

from __future__ import annotations

from typing import Optional

from ..config import ForkPreviewConfig, load_config
from .base import RemoteSession, SandboxClient, SandboxHandle, SandboxSpec
from .lifecycle import SandboxLifecycle, SessionInfo
from .local import LocalSandboxClient, LocalSession


def get_sandbox_client(config: Optional[ForkPreviewConfig] = None) -> SandboxClient:
    """Factory function to get the configured sandbox backend."""

    config = config or load_config()
    backend = config.sandbox.backend.lower()
    if backend == "local":
        return LocalSandboxClient(config.sandbox.root)
    raise ValueError(f"Unsupported sandbox backend: {backend}")


__all__ = [
    "LocalSandboxClient",
    "LocalSession",
    "RemoteSession",
    "SandboxClient",
    "SandboxHandle",
    "SandboxLifecycle",
    "SandboxSpec",
    "SessionInfo",
    "get_sandbox_client",
]
