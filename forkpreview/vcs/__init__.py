"""VCS clients."""

from __future__ import annotations

from typing import Optional

from ..config import ForkPreviewConfig, load_config
from ..errors import ConfigurationError
from .base import VCSClient
from .github import GitHubClient


def get_vcs_client(token: Optional[str] = None, config: Optional[ForkPreviewConfig] = None) -> VCSClient:
    """Factory function to get a VCS client for ``token``.

    Falls back to the configured GitHub token when ``token`` is not given.
    """

    config = config or load_config()
    token = token or config.github.token
    if not token:
        raise ConfigurationError("No VCS token provided; set GITHUB_TOKEN or pass a token")
    return GitHubClient(token, config.github)


__all__ = ["GitHubClient", "VCSClient", "get_vcs_client"]
