"""GitHub REST API implementation of :class:`VCSClient`."""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import GitHubConfig
from ..contracts import BranchRef, Repo
from ..errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ProvisioningError,
    TransientError,
)
from .base import VCSClient

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"


def raise_for_status(response: httpx.Response, action: str) -> None:
    """Translate an unsuccessful GitHub response into the error taxonomy."""

    if response.is_success:
        return
    try:
        data = response.json()
    except ValueError:
        data = response.text
    detail = data.get("message", "") if isinstance(data, dict) else str(data)
    message = f"{action} failed ({response.status_code}): {detail}".rstrip(": ")
    status = response.status_code
    if status in (401, 403):
        raise ConfigurationError(message)
    if status == 404:
        raise NotFoundError(message)
    if status in (409, 422) and "already exists" in response.text.lower():
        raise ConflictError(message)
    if status == 429 or status >= 500:
        raise TransientError(message)
    raise ProvisioningError(message)


class GitHubClient(VCSClient):
    """Async GitHub client authenticated with a user token."""

    def __init__(
        self,
        token: str,
        config: Optional[GitHubConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not token:
            raise ConfigurationError("A GitHub token is required")
        self.config = config or GitHubConfig()
        self._client = httpx.AsyncClient(
            base_url=self.config.api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": GITHUB_ACCEPT,
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
            timeout=self.config.timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientError(f"GitHub request {method} {url} failed: {e}") from e

    @staticmethod
    def _to_repo(data: Dict[str, Any]) -> Repo:
        return Repo(
            owner=data["owner"]["login"],
            name=data["name"],
            html_url=data["html_url"],
            clone_url=data["clone_url"],
            default_branch=data.get("default_branch") or "main",
            fork=bool(data.get("fork", False)),
        )

    async def get_authenticated_identity(self) -> str:
        response = await self._request("GET", "/user")
        raise_for_status(response, "Reading authenticated user")
        return response.json()["login"]

    async def get_repo(self, owner: str, repo: str) -> Optional[Repo]:
        response = await self._request("GET", f"/repos/{owner}/{repo}")
        if response.status_code == 404:
            return None
        raise_for_status(response, f"Reading repository {owner}/{repo}")
        return self._to_repo(response.json())

    async def create_fork(self, owner: str, repo: str) -> Repo:
        response = await self._request("POST", f"/repos/{owner}/{repo}/forks", json={})
        raise_for_status(response, f"Forking {owner}/{repo}")
        fork = self._to_repo(response.json())
        logger.info(f"Requested fork of {owner}/{repo} as {fork.owner}/{fork.name}")
        return fork

    async def get_branch_ref(self, owner: str, repo: str, branch: str) -> Optional[BranchRef]:
        response = await self._request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}")
        if response.status_code == 404:
            return None
        raise_for_status(response, f"Reading branch {branch} of {owner}/{repo}")
        return BranchRef(name=branch, sha=response.json()["object"]["sha"])

    async def create_branch_ref(self, owner: str, repo: str, branch: str, sha: str) -> bool:
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        try:
            raise_for_status(response, f"Creating branch {branch} on {owner}/{repo}")
        except ConflictError:
            logger.info(f"Branch {branch} already exists on {owner}/{repo}")
            return False
        return True

    async def list_files(self, owner: str, repo: str, ref: Optional[str] = None) -> List[str]:
        params = {"ref": ref} if ref else None
        response = await self._request("GET", f"/repos/{owner}/{repo}/contents/", params=params)
        raise_for_status(response, f"Listing files of {owner}/{repo}")
        data = response.json()
        if not isinstance(data, list):
            return []
        return [entry["name"] for entry in data if entry.get("type") == "file"]

    async def get_file_text(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> Optional[str]:
        params = {"ref": ref} if ref else None
        response = await self._request("GET", f"/repos/{owner}/{repo}/contents/{path}", params=params)
        if response.status_code == 404:
            return None
        raise_for_status(response, f"Reading {path} from {owner}/{repo}")
        data = response.json()
        content = data.get("content") if isinstance(data, dict) else None
        if content is None:
            return None
        if data.get("encoding") == "base64":
            return base64.b64decode(content).decode("utf-8", errors="replace")
        return content
