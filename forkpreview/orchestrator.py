"""Fork-and-deploy workflow orchestration.

A workflow forks a source repository under the caller's account, makes sure
the requested branch exists on the fork, deploys the fork and polls the
deployment until the preview is reachable. Steps only move forward; any
failure ends the run in ``error`` with the failure recorded on the run.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from pydantic import SecretStr

from .config import GitHubConfig, OrchestratorConfig
from .constants import POLLING_PROGRESS_CEILING, STEP_PROGRESS
from .contracts import (
    DeploymentOutcome,
    DeploymentState,
    DeploymentTarget,
    ForkResult,
    ProgressEvent,
    Repo,
    WorkflowResult,
    WorkflowStep,
)
from .deploy.base import DeploymentClient
from .detection import build_install_command, detect_package_manager, detect_start_script
from .errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ProvisioningError,
    ProvisioningTimeoutError,
    RemoteExecutionError,
    TransientError,
    WorkflowCancelledError,
)
from .events import ProgressCallback, ProgressEmitter
from .naming import derive_app_name, time_salt
from .persistence import WorkflowRegistry, WorkflowRun, get_registry
from .utils.deadline import Deadline
from .vcs.base import VCSClient
from .vcs.github import GitHubClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

VCSFactory = Callable[[str], VCSClient]


class _WorkflowContext:
    """Inputs and per-run plumbing that never leave the orchestrator."""

    def __init__(
        self,
        workflow_id: str,
        user_id: str,
        vcs_token: SecretStr,
        source_owner: str,
        source_repo: str,
        branch: str,
        region: str,
        emitter: ProgressEmitter,
        deadline: Deadline,
    ) -> None:
        self.workflow_id = workflow_id
        self.user_id = user_id
        self.vcs_token = vcs_token
        self.source_owner = source_owner
        self.source_repo = source_repo
        self.branch = branch
        self.region = region
        self.emitter = emitter
        self.deadline = deadline
        self.fork_default_branch: Optional[str] = None
        self.task: Optional[asyncio.Task] = None


class ForkAndDeployOrchestrator:
    """Runs fork-and-deploy workflows and tracks them in a registry.

    Each instance owns its registry; several orchestrators can coexist in one
    process without sharing any state.
    """

    def __init__(
        self,
        deployment_client: DeploymentClient,
        vcs_factory: Optional[VCSFactory] = None,
        registry: Optional[WorkflowRegistry] = None,
        config: Optional[OrchestratorConfig] = None,
        github: Optional[GitHubConfig] = None,
    ) -> None:
        self.deployment_client = deployment_client
        self.registry = registry or get_registry()
        self.config = config or OrchestratorConfig()
        github = github or GitHubConfig()
        self.vcs_factory = vcs_factory or (lambda token: GitHubClient(token, github))
        self._contexts: Dict[str, _WorkflowContext] = {}

    # ------------------------------------------------------------------
    # public API

    async def start_workflow(
        self,
        user_id: str,
        vcs_token: str,
        source_owner: str,
        source_repo: str,
        branch: Optional[str] = None,
        region: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> WorkflowResult:
        """Run a workflow to completion.

        Returns once the run is ``deployed``; raises the failure after the run
        has been moved to ``error``.
        """

        ctx = await self._register(
            user_id, vcs_token, source_owner, source_repo, branch, region, progress_callback
        )
        return await self._execute(ctx)

    async def launch_workflow(
        self,
        user_id: str,
        vcs_token: str,
        source_owner: str,
        source_repo: str,
        branch: Optional[str] = None,
        region: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        """Start a workflow in the background and return its id at once."""

        ctx = await self._register(
            user_id, vcs_token, source_owner, source_repo, branch, region, progress_callback
        )
        ctx.task = asyncio.create_task(self._execute(ctx))
        ctx.task.add_done_callback(self._background_done)
        return ctx.workflow_id

    async def wait(self, workflow_id: str) -> WorkflowResult:
        """Await a workflow started with :meth:`launch_workflow`."""

        ctx = self._contexts.get(workflow_id)
        if ctx is None or ctx.task is None:
            raise NotFoundError(f"No background workflow {workflow_id}")
        return await asyncio.shield(ctx.task)

    async def get_workflow_status(self, workflow_id: str) -> Optional[WorkflowRun]:
        await self.prune()
        return await self.registry.get(workflow_id)

    async def events(self, workflow_id: str) -> AsyncIterator[ProgressEvent]:
        """Stream the progress events of a workflow, replaying earlier ones."""

        ctx = self._contexts.get(workflow_id)
        if ctx is None:
            raise NotFoundError(f"Unknown workflow {workflow_id}")
        async for event in ctx.emitter.subscribe():
            yield event

    def cancel(self, workflow_id: str) -> bool:
        """Ask a running workflow to stop at its next suspension point."""

        ctx = self._contexts.get(workflow_id)
        if ctx is None or ctx.deadline.cancelled:
            return False
        if ctx.task is not None and ctx.task.done():
            return False
        logger.info(f"[{workflow_id}] Cancellation requested")
        ctx.deadline.cancel()
        return True

    async def teardown(self, app_name: str) -> None:
        """Destroy a preview deployment. Forks are left in place."""

        logger.info(f"Tearing down preview {app_name}")
        await self.deployment_client.destroy(app_name)

    async def forget(self, workflow_id: str) -> None:
        self._contexts.pop(workflow_id, None)
        await self.registry.discard(workflow_id)

    async def prune(self) -> int:
        removed = await self.registry.prune(self.config.retention_seconds)
        if removed:
            for workflow_id in list(self._contexts):
                if await self.registry.get(workflow_id) is None:
                    del self._contexts[workflow_id]
        return removed

    async def close(self) -> None:
        for ctx in list(self._contexts.values()):
            if ctx.task is not None and not ctx.task.done():
                ctx.deadline.cancel()
                await asyncio.gather(ctx.task, return_exceptions=True)
        await self.deployment_client.close()

    # ------------------------------------------------------------------
    # workflow

    async def _register(
        self,
        user_id: str,
        vcs_token: str,
        source_owner: str,
        source_repo: str,
        branch: Optional[str],
        region: Optional[str],
        progress_callback: Optional[ProgressCallback],
    ) -> _WorkflowContext:
        await self.prune()
        ctx = _WorkflowContext(
            workflow_id=uuid.uuid4().hex,
            user_id=user_id,
            vcs_token=SecretStr(vcs_token or ""),
            source_owner=source_owner,
            source_repo=source_repo,
            branch=branch or self.config.default_branch,
            region=region or self.config.default_region,
            emitter=ProgressEmitter([progress_callback] if progress_callback else None),
            deadline=Deadline(self.config.total_timeout),
        )
        await self.registry.create(
            WorkflowRun(
                workflow_id=ctx.workflow_id,
                owner_user_id=user_id,
                source_owner=source_owner,
                source_repo=source_repo,
                branch=ctx.branch,
                region=ctx.region,
            )
        )
        self._contexts[ctx.workflow_id] = ctx
        return ctx

    async def _execute(self, ctx: _WorkflowContext) -> WorkflowResult:
        vcs: Optional[VCSClient] = None
        try:
            await self._advance(
                ctx, WorkflowStep.INITIALIZE, "in_progress", "Initializing fork and deploy process..."
            )
            if not self.deployment_client.is_configured():
                raise ConfigurationError("Deployment platform is not configured")
            if not ctx.vcs_token.get_secret_value():
                raise ConfigurationError("A VCS token is required to fork the repository")

            vcs = self.vcs_factory(ctx.vcs_token.get_secret_value())
            identity = await self._bounded(ctx, vcs.get_authenticated_identity(), "Authentication")

            fork = await self._fork_step(ctx, vcs, identity)
            await self._branch_step(ctx, vcs, fork)
            return await self._deploy_step(ctx, vcs, fork)
        except asyncio.CancelledError:
            await self._fail(ctx, WorkflowCancelledError("Workflow task was cancelled"))
            raise
        except Exception as e:
            await self._fail(ctx, e)
            raise
        finally:
            ctx.emitter.close()
            if vcs is not None:
                await vcs.close()

    async def _fork_step(self, ctx: _WorkflowContext, vcs: VCSClient, identity: str) -> ForkResult:
        await self._advance(
            ctx,
            WorkflowStep.FORK_START,
            "in_progress",
            f"Forking repository {ctx.source_owner}/{ctx.source_repo}...",
        )
        repo, is_new_fork = await self._ensure_fork(ctx, vcs, identity)
        fork = ForkResult(
            url=repo.html_url,
            clone_url=repo.clone_url,
            fork_owner=repo.owner,
            repo=repo.name,
            branch=ctx.branch,
            is_new_fork=is_new_fork,
        )
        ctx.fork_default_branch = repo.default_branch
        await self._advance(
            ctx,
            WorkflowStep.FORK_COMPLETE,
            "complete",
            f"Repository {'forked' if is_new_fork else 'already exists'} at {repo.html_url}",
            fork=fork,
            fork_url=repo.html_url,
            fork_clone_url=repo.clone_url,
            is_new_fork=is_new_fork,
        )
        return fork

    async def _ensure_fork(
        self, ctx: _WorkflowContext, vcs: VCSClient, identity: str
    ) -> Tuple[Repo, bool]:
        existing = await self._bounded(ctx, vcs.get_repo(identity, ctx.source_repo), "Fork lookup")
        if existing is not None:
            logger.info(f"[{ctx.workflow_id}] Using existing fork {existing.html_url}")
            return existing, False

        try:
            fork = await self._bounded(
                ctx, vcs.create_fork(ctx.source_owner, ctx.source_repo), "Fork request"
            )
        except NotFoundError as e:
            raise NotFoundError(
                f"Source repository {ctx.source_owner}/{ctx.source_repo} not found"
            ) from e
        except ConflictError:
            fork = await self._bounded(ctx, vcs.get_repo(identity, ctx.source_repo), "Fork lookup")
            if fork is None:
                raise
            return fork, False

        attempts = self.config.fork_poll_attempts
        for attempt in range(1, attempts + 1):
            try:
                ready = await self._bounded(ctx, vcs.get_repo(fork.owner, fork.name), "Fork lookup")
            except (NotFoundError, TransientError) as e:
                logger.debug(f"[{ctx.workflow_id}] Fork not queryable yet: {e}")
                ready = None
            if ready is not None:
                logger.info(f"[{ctx.workflow_id}] Fork is ready at {ready.html_url}")
                return ready, True
            if attempt < attempts:
                await ctx.deadline.sleep(self.config.fork_poll_delay)

        logger.warning(
            f"[{ctx.workflow_id}] Fork {fork.owner}/{fork.name} not queryable after "
            f"{attempts} attempts, proceeding anyway"
        )
        return fork, True

    async def _branch_step(self, ctx: _WorkflowContext, vcs: VCSClient, fork: ForkResult) -> None:
        default_branch = ctx.fork_default_branch or self.config.default_branch
        if ctx.branch == default_branch:
            await self._advance(
                ctx,
                WorkflowStep.BRANCH_READY,
                "complete",
                f"Using default branch {ctx.branch}",
            )
            return

        await self._advance(
            ctx, WorkflowStep.BRANCH_CREATE, "in_progress", f"Creating branch {ctx.branch}..."
        )
        existing = await self._bounded(
            ctx, vcs.get_branch_ref(fork.fork_owner, fork.repo, ctx.branch), "Branch lookup"
        )
        if existing is not None:
            logger.info(f"[{ctx.workflow_id}] Branch {ctx.branch} already exists on the fork")
        else:
            source_ref = await self._bounded(
                ctx,
                vcs.get_branch_ref(ctx.source_owner, ctx.source_repo, ctx.branch),
                "Source branch lookup",
            )
            if source_ref is None:
                raise NotFoundError(
                    f"Branch {ctx.branch} not found in {ctx.source_owner}/{ctx.source_repo}"
                )
            try:
                created = await self._bounded(
                    ctx,
                    vcs.create_branch_ref(fork.fork_owner, fork.repo, ctx.branch, source_ref.sha),
                    "Branch creation",
                )
            except ConflictError:
                created = False
            if created:
                logger.info(f"[{ctx.workflow_id}] Branch {ctx.branch} created at {source_ref.sha[:7]}")
            else:
                logger.info(f"[{ctx.workflow_id}] Branch {ctx.branch} already exists on the fork")

        await self._advance(
            ctx, WorkflowStep.BRANCH_READY, "complete", f"Branch {ctx.branch} is ready"
        )

    async def _detect_environment(
        self, ctx: _WorkflowContext, vcs: VCSClient, fork: ForkResult
    ) -> Dict[str, str]:
        try:
            files = await self._bounded(
                ctx, vcs.list_files(fork.fork_owner, fork.repo, ctx.branch), "File listing"
            )
            package_json = None
            if "package.json" in files:
                package_json = await self._bounded(
                    ctx,
                    vcs.get_file_text(fork.fork_owner, fork.repo, "package.json", ctx.branch),
                    "Manifest read",
                )
        except WorkflowCancelledError:
            raise
        except Exception as e:
            logger.warning(f"[{ctx.workflow_id}] Project detection failed, using defaults: {e}")
            return {}

        manager = detect_package_manager(files)
        script = detect_start_script(package_json)
        env = {
            "PACKAGE_MANAGER": manager.manager.value,
            "INSTALL_COMMAND": build_install_command(manager.manager),
        }
        if script.found and script.script_name:
            env["START_SCRIPT"] = script.script_name
        return env

    async def _deploy_step(
        self, ctx: _WorkflowContext, vcs: VCSClient, fork: ForkResult
    ) -> WorkflowResult:
        salt = time_salt() if self.config.unique_app_per_attempt else None
        app_name = derive_app_name(
            ctx.user_id,
            f"{ctx.source_owner}/{ctx.source_repo}",
            salt=salt,
            prefix=self.config.app_name_prefix,
        )
        await self._advance(
            ctx,
            WorkflowStep.DEPLOY_START,
            "in_progress",
            f'Deploying preview as "{app_name}"...',
            app_name=app_name,
        )

        env_vars = {
            "GITHUB_REPO": fork.clone_url,
            "BRANCH": ctx.branch,
            "FORK_OWNER": fork.fork_owner,
            "SOURCE_OWNER": ctx.source_owner,
            "SOURCE_REPO": ctx.source_repo,
        }
        env_vars.update(await self._detect_environment(ctx, vcs, fork))

        deployed = await self._bounded(
            ctx,
            self.deployment_client.deploy(
                app_name,
                fork.clone_url,
                ctx.branch,
                env_vars,
                region=ctx.region,
                vcs_token=ctx.vcs_token,
            ),
            "Deployment",
        )
        target = DeploymentTarget(
            app_name=app_name,
            preview_url=deployed.preview_url or self.deployment_client.preview_url(app_name),
            region=ctx.region,
        )
        await self._advance(
            ctx,
            WorkflowStep.DEPLOY_SUBMITTED,
            "in_progress",
            "Deployment submitted, waiting for the preview to start...",
            deployment=target,
            preview_url=target.preview_url,
            deployment_id=deployed.release_id,
        )

        target, outcome = await self._poll(ctx, target)
        if outcome == DeploymentOutcome.CONFIRMED:
            message = f"Preview is live at {target.preview_url}"
        else:
            message = f"Preview should be available at {target.preview_url} (status unknown)"
        await self._advance(
            ctx,
            WorkflowStep.DEPLOYED,
            "complete",
            message,
            deployment=target,
            outcome=outcome,
            preview_url=target.preview_url,
            deployment_id=deployed.release_id,
        )
        return WorkflowResult(
            workflow_id=ctx.workflow_id,
            fork=fork,
            deployment=target,
            outcome=outcome,
            deployment_id=deployed.release_id,
        )

    async def _poll(
        self, ctx: _WorkflowContext, target: DeploymentTarget
    ) -> Tuple[DeploymentTarget, DeploymentOutcome]:
        max_attempts = self.config.max_poll_attempts
        span = POLLING_PROGRESS_CEILING - STEP_PROGRESS["polling"]
        attempts = 0
        while attempts < max_attempts:
            if ctx.deadline.expired:
                logger.warning(f"[{ctx.workflow_id}] Time budget spent while polling")
                break
            await ctx.deadline.sleep(self.config.poll_interval)
            attempts += 1

            try:
                status = await self._bounded(
                    ctx, self.deployment_client.get_status(target.app_name), "Status poll"
                )
            except WorkflowCancelledError:
                raise
            except ProvisioningTimeoutError:
                logger.warning(f"[{ctx.workflow_id}] Time budget spent while polling")
                break
            except Exception as e:
                logger.warning(f"[{ctx.workflow_id}] Poll {attempts} failed (will retry): {e}")
                continue

            if status.status == DeploymentState.RUNNING:
                if status.preview_url and status.preview_url != target.preview_url:
                    target = target.model_copy(update={"preview_url": status.preview_url})
                return target, DeploymentOutcome.CONFIRMED
            if status.status == DeploymentState.ERROR:
                raise RemoteExecutionError(status.error_message or "Deployment failed")

            if attempts % self.config.poll_progress_every == 0:
                progress = STEP_PROGRESS["polling"] + int(min(attempts / max_attempts * span, span))
                await self._advance(
                    ctx,
                    WorkflowStep.POLLING,
                    "in_progress",
                    f"Waiting for preview to be ready... ({int(attempts * self.config.poll_interval)}s)",
                    progress=progress,
                )

        logger.warning(
            f"[{ctx.workflow_id}] Deployment status unknown after {attempts} polls, assuming it is running"
        )
        return target, DeploymentOutcome.ASSUMED

    # ------------------------------------------------------------------
    # plumbing

    async def _advance(
        self,
        ctx: _WorkflowContext,
        step: WorkflowStep,
        status: str,
        message: str,
        progress: Optional[int] = None,
        **extra: Any,
    ) -> WorkflowRun:
        fields = {key: extra.pop(key) for key in ("fork", "deployment", "outcome") if key in extra}
        run = await self.registry.transition(ctx.workflow_id, step, progress, **fields)
        if "outcome" in fields:
            extra["outcome"] = fields["outcome"].value
        logger.info(f"[{ctx.workflow_id}] {step.value} ({run.progress_percent}%): {message}")
        ctx.emitter.emit(
            ProgressEvent(
                workflow_id=ctx.workflow_id,
                step=step,
                status=status,
                message=message,
                progress=run.progress_percent,
                **extra,
            )
        )
        return run

    async def _fail(self, ctx: _WorkflowContext, error: BaseException) -> None:
        run = await self.registry.get(ctx.workflow_id)
        if run is None or run.is_terminal:
            return
        message = str(error) or error.__class__.__name__
        logger.error(f"[{ctx.workflow_id}] Workflow failed at {run.current_step.value}: {message}")
        run = await self.registry.transition(ctx.workflow_id, WorkflowStep.ERROR, last_error=message)
        ctx.emitter.emit(
            ProgressEvent(
                workflow_id=ctx.workflow_id,
                step=WorkflowStep.ERROR,
                status="error",
                message=message,
                progress=run.progress_percent,
                error=message,
            )
        )

    async def _bounded(self, ctx: _WorkflowContext, awaitable: Awaitable[T], what: str) -> T:
        """Await ``awaitable`` within the run's remaining budget.

        Cancellation of the run interrupts the wait.
        """

        task = asyncio.ensure_future(awaitable)
        if ctx.deadline.cancelled:
            task.cancel()
            ctx.deadline.check()
        cancelled = asyncio.ensure_future(ctx.deadline.wait_cancelled())
        try:
            await asyncio.wait(
                {task, cancelled},
                timeout=ctx.deadline.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            task.cancel()
            raise
        finally:
            cancelled.cancel()

        if task.done():
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        ctx.deadline.check()
        raise ProvisioningTimeoutError(f"{what} did not finish within the workflow time budget")

    @staticmethod
    def _background_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, ProvisioningError):
            logger.error(f"Background workflow crashed: {error!r}")
