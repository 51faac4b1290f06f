from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel


class OrchestratorConfig(BaseModel):
    """Timing and naming policy for fork-and-deploy workflows."""

    default_branch: str = "main"
    default_region: str = "cdg"
    fork_poll_attempts: int = 20
    fork_poll_delay: float = 1.5
    poll_interval: float = 5.0
    max_poll_attempts: int = 120
    poll_progress_every: int = 6
    total_timeout: float = 1800.0
    unique_app_per_attempt: bool = True
    app_name_prefix: str = "preview"
    retention_seconds: float = 3600.0


class BringUpConfig(BaseModel):
    """Defaults for the dev-server bring-up engine."""

    working_directory: str = "/workspace"
    package_manager: str = "npm"
    script_name: str = "dev"
    timeout: float = 120.0
    port_patterns: Optional[List[str]] = None
    output_tail_size: int = 50
    error_text_limit: int = 2000


class RetryConfig(BaseModel):
    max_attempts: int = 3
    base_delay: float = 2.0


class GitHubConfig(BaseModel):
    api_url: str = "https://api.github.com"
    token: Optional[str] = None
    timeout: float = 30.0


class FlyConfig(BaseModel):
    """Settings for the Fly.io Machines deployment backend."""

    api_url: str = "https://api.machines.dev/v1"
    token: Optional[str] = None
    org_slug: str = "personal"
    image: str = "node:20-bookworm"
    memory_mb: int = 1024
    cpus: int = 1
    internal_port: int = 3000
    preview_url_template: str = "https://{app_name}.fly.dev"
    timeout: float = 30.0


class SandboxConfig(BaseModel):
    """Settings for the sandbox deployment backend."""

    backend: Literal["local"] = "local"
    root: str = ".forkpreview/sandboxes"
    preview_url_template: str = "http://localhost:{port}"
    ram_mb: int = 1024
    cpus: int = 2
    region: str = "ord"


class ForkPreviewConfig(BaseModel):
    """Top-level configuration model."""

    deploy_backend: Literal["fly", "sandbox"] = "fly"
    log_level: str = "INFO"
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    bringup: BringUpConfig = BringUpConfig()
    retry: RetryConfig = RetryConfig()
    github: GitHubConfig = GitHubConfig()
    fly: FlyConfig = FlyConfig()
    sandbox: SandboxConfig = SandboxConfig()


def load_config(path: Optional[str] = None) -> ForkPreviewConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FORKPREVIEW_CONFIG env
            variable or 'forkpreview.yaml' in the current directory.
    """

    config_path = path or os.getenv("FORKPREVIEW_CONFIG", "forkpreview.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ForkPreviewConfig(**data)
    else:
        config = ForkPreviewConfig()

    github_token = os.getenv("GITHUB_TOKEN")
    if github_token:
        config.github.token = github_token

    fly_token = os.getenv("FLY_API_TOKEN") or os.getenv("FLY_IO_TOKEN")
    if fly_token:
        config.fly.token = fly_token

    backend = os.getenv("FORKPREVIEW_DEPLOY_BACKEND")
    if backend:
        config.deploy_backend = backend.lower()

    log_level = os.getenv("FORKPREVIEW_LOG_LEVEL")
    if log_level:
        config.log_level = log_level.upper()
    return config
