"""Shared in-process fakes for VCS, deployment and sandbox collaborators."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

from forkpreview.config import OrchestratorConfig
from forkpreview.contracts import BranchRef, DeploymentState, DeploymentStatus, DeployResult, Repo
from forkpreview.deploy.base import DeploymentClient
from forkpreview.errors import ConflictError
from forkpreview.sandbox.base import RemoteSession, SandboxClient, SandboxHandle, SandboxSpec
from forkpreview.vcs.base import VCSClient

Chunk = Union[str, bytes]


class FakeVCSClient(VCSClient):
    def __init__(self, identity: str = "alice") -> None:
        self.identity = identity
        self.repos: Dict[Tuple[str, str], Repo] = {}
        self.branches: Dict[Tuple[str, str, str], str] = {}
        self.files: Dict[Tuple[str, str], List[str]] = {}
        self.file_text: Dict[Tuple[str, str, str], str] = {}
        self.fork_visible_after = 0
        self.branch_conflict = False
        self.calls: List[Tuple] = []
        self.closed = False
        self._pending_forks: Dict[Tuple[str, str], Tuple[Repo, int]] = {}

    def add_repo(self, owner: str, name: str, default_branch: str = "main", fork: bool = False) -> Repo:
        repo = Repo(
            owner=owner,
            name=name,
            html_url=f"https://github.com/{owner}/{name}",
            clone_url=f"https://github.com/{owner}/{name}.git",
            default_branch=default_branch,
            fork=fork,
        )
        self.repos[(owner, name)] = repo
        return repo

    async def get_authenticated_identity(self) -> str:
        self.calls.append(("identity",))
        return self.identity

    async def get_repo(self, owner: str, repo: str) -> Optional[Repo]:
        self.calls.append(("get_repo", owner, repo))
        key = (owner, repo)
        if key in self._pending_forks:
            fork, remaining = self._pending_forks[key]
            if remaining > 0:
                self._pending_forks[key] = (fork, remaining - 1)
                return None
            del self._pending_forks[key]
            self.repos[key] = fork
        return self.repos.get(key)

    async def create_fork(self, owner: str, repo: str) -> Repo:
        self.calls.append(("create_fork", owner, repo))
        source = self.repos[(owner, repo)]
        fork = Repo(
            owner=self.identity,
            name=repo,
            html_url=f"https://github.com/{self.identity}/{repo}",
            clone_url=f"https://github.com/{self.identity}/{repo}.git",
            default_branch=source.default_branch,
            fork=True,
        )
        self._pending_forks[(self.identity, repo)] = (fork, self.fork_visible_after)
        return fork

    async def get_branch_ref(self, owner: str, repo: str, branch: str) -> Optional[BranchRef]:
        self.calls.append(("get_branch_ref", owner, repo, branch))
        sha = self.branches.get((owner, repo, branch))
        return BranchRef(name=branch, sha=sha) if sha else None

    async def create_branch_ref(self, owner: str, repo: str, branch: str, sha: str) -> bool:
        self.calls.append(("create_branch_ref", owner, repo, branch, sha))
        if self.branch_conflict:
            raise ConflictError("Reference already exists")
        self.branches[(owner, repo, branch)] = sha
        return True

    async def list_files(self, owner: str, repo: str, ref: Optional[str] = None) -> List[str]:
        return self.files.get((owner, repo), [])

    async def get_file_text(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> Optional[str]:
        return self.file_text.get((owner, repo, path))

    async def close(self) -> None:
        self.closed = True


class FakeDeploymentClient(DeploymentClient):
    def __init__(self, statuses: Optional[Sequence[DeploymentStatus]] = None) -> None:
        self.statuses = list(statuses or [DeploymentStatus(status=DeploymentState.RUNNING)])
        self.configured = True
        self.deploy_error: Optional[BaseException] = None
        self.deploy_calls: List[Dict] = []
        self.status_calls = 0
        self.destroyed: List[str] = []

    def is_configured(self) -> bool:
        return self.configured

    def preview_url(self, app_name: str) -> Optional[str]:
        return f"https://{app_name}.preview.test"

    async def deploy(self, app_name, clone_url, branch, env_vars, region=None, vcs_token=None) -> DeployResult:
        self.deploy_calls.append(
            {
                "app_name": app_name,
                "clone_url": clone_url,
                "branch": branch,
                "env_vars": dict(env_vars),
                "region": region,
                "vcs_token": vcs_token,
            }
        )
        if self.deploy_error is not None:
            raise self.deploy_error
        return DeployResult(preview_url=self.preview_url(app_name), release_id=f"rel-{app_name}")

    async def get_status(self, app_name: str) -> DeploymentStatus:
        index = min(self.status_calls, len(self.statuses) - 1)
        self.status_calls += 1
        status = self.statuses[index]
        if isinstance(status, BaseException):
            raise status
        return status

    async def destroy(self, app_name: str) -> None:
        self.destroyed.append(app_name)


class FakeSession(RemoteSession):
    """Scripted remote session.

    With ``exit_code=None`` the process never exits on its own.
    """

    def __init__(
        self,
        stdout: Sequence[Chunk] = (),
        stderr: Sequence[Chunk] = (),
        exit_code: Optional[int] = None,
        chunk_delay: float = 0.0,
        exit_delay: float = 0.0,
        process_id: str = "proc-1",
    ) -> None:
        self.process_id = process_id
        self._stdout = list(stdout)
        self._stderr = list(stderr)
        self.exit_code = exit_code
        self.chunk_delay = chunk_delay
        self.exit_delay = exit_delay
        self.terminated = False
        self._stopped = asyncio.Event()

    async def _emit(self, chunks: Sequence[Chunk]):
        for chunk in chunks:
            await asyncio.sleep(self.chunk_delay)
            yield chunk.encode() if isinstance(chunk, str) else chunk

    def stdout(self):
        return self._emit(self._stdout)

    def stderr(self):
        return self._emit(self._stderr)

    async def wait(self) -> Optional[int]:
        if self.exit_code is None:
            await self._stopped.wait()
            return None
        await asyncio.sleep(self.exit_delay)
        return self.exit_code

    async def terminate(self) -> None:
        self.terminated = True
        self._stopped.set()


class FakeSandboxClient(SandboxClient):
    def __init__(self) -> None:
        self.sandboxes: Dict[str, SandboxHandle] = {}
        self.sessions: List[FakeSession] = []
        self.spawned: List[Tuple[str, str, Optional[Dict[str, str]]]] = []
        self.create_errors: List[BaseException] = []
        self.create_calls = 0
        self.create_succeeds_silently = False
        self.spawn_error: Optional[BaseException] = None
        self.destroyed: List[str] = []

    async def create_sandbox(self, name: str, spec: SandboxSpec) -> SandboxHandle:
        self.create_calls += 1
        if self.create_errors:
            error = self.create_errors.pop(0)
            if self.create_succeeds_silently:
                self.sandboxes[name] = SandboxHandle(name=name, region=spec.region)
            raise error
        handle = SandboxHandle(name=name, region=spec.region)
        self.sandboxes[name] = handle
        return handle

    async def get_sandbox(self, name: str) -> Optional[SandboxHandle]:
        return self.sandboxes.get(name)

    async def destroy_sandbox(self, name: str) -> None:
        self.destroyed.append(name)
        self.sandboxes.pop(name, None)

    async def spawn(self, handle, command, env=None) -> RemoteSession:
        self.spawned.append((handle.name, command, env))
        if self.spawn_error is not None:
            raise self.spawn_error
        session = self.sessions.pop(0) if self.sessions else FakeSession()
        return session


@pytest.fixture
def fake_vcs() -> FakeVCSClient:
    vcs = FakeVCSClient()
    vcs.add_repo("octocat", "hello")
    vcs.branches[("octocat", "hello", "main")] = "a" * 40
    return vcs


@pytest.fixture
def fake_deployment() -> FakeDeploymentClient:
    return FakeDeploymentClient()


@pytest.fixture
def fake_sandbox() -> FakeSandboxClient:
    return FakeSandboxClient()


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def fast_config() -> OrchestratorConfig:
    return OrchestratorConfig(
        fork_poll_attempts=3,
        fork_poll_delay=0.0,
        poll_interval=0.0,
        max_poll_attempts=12,
        poll_progress_every=3,
        total_timeout=30.0,
        unique_app_per_attempt=False,
    )


@pytest.fixture
def make_deployment():
    return FakeDeploymentClient


@pytest.fixture
def make_vcs():
    return FakeVCSClient
