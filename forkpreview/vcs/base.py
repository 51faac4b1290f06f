"""VCS client interface consumed by the orchestrator."""

from __future__ import annotations

import abc
from typing import List, Optional

from ..contracts import BranchRef, Repo


class VCSClient(metaclass=abc.ABCMeta):
    """Fork, branch and read operations against a hosted VCS.

    Lookups return ``None`` for missing objects instead of raising, so the
    orchestrator can branch on existence. ``create_branch_ref`` returns
    ``False`` when the ref already exists.
    """

    @abc.abstractmethod
    async def get_authenticated_identity(self) -> str:
        """Return the login of the account the token belongs to."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_repo(self, owner: str, repo: str) -> Optional[Repo]:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_fork(self, owner: str, repo: str) -> Repo:
        """Request a fork of ``owner/repo`` under the authenticated account."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_branch_ref(self, owner: str, repo: str, branch: str) -> Optional[BranchRef]:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_branch_ref(self, owner: str, repo: str, branch: str, sha: str) -> bool:
        """Create ``refs/heads/<branch>`` at ``sha``.

        Returns ``True`` when created and ``False`` when it already existed.
        """
        raise NotImplementedError

    async def list_files(self, owner: str, repo: str, ref: Optional[str] = None) -> List[str]:
        """Names of the files in the repository root."""
        return []

    async def get_file_text(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> Optional[str]:
        return None

    async def close(self) -> None:
        return None
