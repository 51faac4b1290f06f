"""Command line interface for provisioning previews."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer

from .bringup import BringUpEngine, BringUpOptions
from .config import ForkPreviewConfig, load_config
from .contracts import ProgressEvent
from .deploy import get_deployment_client
from .errors import ProvisioningError
from .log_config import configure_logging
from .naming import derive_app_name, time_salt
from .orchestrator import ForkAndDeployOrchestrator
from .ports import match_port
from .sandbox import SandboxLifecycle, SandboxSpec, get_sandbox_client

app = typer.Typer(help="Fork repositories and provision live dev-server previews")


def _config(ctx: typer.Context) -> ForkPreviewConfig:
    return ctx.obj if isinstance(ctx.obj, ForkPreviewConfig) else load_config()


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Path to forkpreview.yaml"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the log level"),
) -> None:
    """forkpreview CLI entry point."""

    cfg = load_config(str(config) if config else None)
    if log_level:
        cfg.log_level = log_level.upper()
    configure_logging(cfg.log_level)
    ctx.obj = cfg


@app.command("deploy")
def deploy(
    ctx: typer.Context,
    repository: str = typer.Argument(..., help="Source repository as OWNER/REPO"),
    user: str = typer.Option("cli", "--user", help="User id the preview belongs to"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b"),
    region: Optional[str] = typer.Option(None, "--region", "-r"),
    token: Optional[str] = typer.Option(
        None, "--token", envvar="GITHUB_TOKEN", show_default=False, help="VCS token"
    ),
    backend: Optional[str] = typer.Option(None, "--backend", help="fly or sandbox"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """
    Fork OWNER/REPO and deploy it as a preview.

    Progress is printed as the workflow advances. The command returns once
    the preview is live or the workflow failed.

    Example:
        forkpreview deploy octocat/hello --branch feature-x --region ord
    """

    if "/" not in repository:
        _fail("Repository must be given as OWNER/REPO")
    owner, repo = repository.split("/", 1)
    cfg = _config(ctx)
    token = token or cfg.github.token
    if not token:
        _fail("A VCS token is required; pass --token or set GITHUB_TOKEN")

    def report(event: ProgressEvent) -> None:
        if not as_json:
            typer.echo(f"[{event.progress:3d}%] {event.step.value}: {event.message}")

    async def _run():
        orchestrator = ForkAndDeployOrchestrator(
            get_deployment_client(backend, cfg),
            config=cfg.orchestrator,
            github=cfg.github,
        )
        try:
            return await orchestrator.start_workflow(
                user, token, owner, repo, branch=branch, region=region, progress_callback=report
            )
        finally:
            await orchestrator.close()

    try:
        result = asyncio.run(_run())
    except ProvisioningError as e:
        _fail(f"Deployment failed: {e}")

    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        typer.echo(f"Preview URL: {result.deployment.preview_url} ({result.outcome.value})")


@app.command("bring-up")
def bring_up(
    ctx: typer.Context,
    repo_url: str = typer.Argument(..., help="Clone URL of the repository"),
    branch: str = typer.Option("main", "--branch", "-b"),
    sandbox: Optional[str] = typer.Option(None, "--sandbox", help="Sandbox name"),
    package_manager: Optional[str] = typer.Option(None, "--package-manager"),
    script: Optional[str] = typer.Option(None, "--script"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for a port"),
    hold: bool = typer.Option(False, "--hold", help="Keep the dev server running until interrupted"),
) -> None:
    """
    Start a dev server for REPO_URL in a sandbox and print its port.

    Example:
        forkpreview bring-up https://github.com/octocat/hello.git --script dev --hold
    """

    cfg = _config(ctx)
    name = sandbox or derive_app_name("cli", repo_url, salt=time_salt())

    async def _run() -> int:
        client = get_sandbox_client(cfg)
        lifecycle = SandboxLifecycle(client, cfg.retry)
        engine = BringUpEngine(lifecycle, cfg.bringup)
        handle = await lifecycle.ensure_sandbox(
            name, SandboxSpec(region=cfg.sandbox.region, ram_mb=cfg.sandbox.ram_mb, cpus=cfg.sandbox.cpus)
        )
        options = BringUpOptions.from_config(
            cfg.bringup,
            working_directory=client.default_working_directory,
            package_manager=package_manager,
            script_name=script,
            timeout=timeout,
            vcs_token=cfg.github.token,
        )
        try:
            result = await engine.bring_up(handle, repo_url, branch, options)
            typer.echo(f"Dev server in {name} listening on port {result.port}")
            if hold:
                typer.echo("Press Ctrl+C to stop")
                await asyncio.Event().wait()
            return result.port
        finally:
            await engine.stop(name)
            await lifecycle.destroy(name)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        typer.echo("Stopped")
    except ProvisioningError as e:
        _fail(f"Bring-up failed: {e}")


@app.command("destroy")
def destroy(
    ctx: typer.Context,
    app_name: str,
    backend: Optional[str] = typer.Option(None, "--backend", help="fly or sandbox"),
) -> None:
    """Tear down the preview deployment APP_NAME."""

    cfg = _config(ctx)

    async def _run() -> None:
        orchestrator = ForkAndDeployOrchestrator(get_deployment_client(backend, cfg))
        try:
            await orchestrator.teardown(app_name)
        finally:
            await orchestrator.close()

    try:
        asyncio.run(_run())
    except ProvisioningError as e:
        _fail(f"Teardown failed: {e}")
    typer.echo(f"Destroyed {app_name}")


@app.command("app-name")
def app_name(
    ctx: typer.Context,
    user_id: str,
    project: str,
    salt: Optional[str] = typer.Option(None, "--salt"),
    unique: bool = typer.Option(False, "--unique", help="Add a time based salt"),
) -> None:
    """Print the preview app name derived for USER_ID and PROJECT."""

    cfg = _config(ctx)
    if unique and not salt:
        salt = time_salt()
    typer.echo(derive_app_name(user_id, project, salt=salt, prefix=cfg.orchestrator.app_name_prefix))


@app.command("match-port")
def match_port_command(
    text: str,
    pattern: Optional[List[str]] = typer.Option(None, "--pattern", "-p", help="Custom port pattern"),
) -> None:
    """Print the port found in TEXT, or exit 1 when there is none."""

    found = match_port(text, pattern or None)
    if not found.matched:
        _fail("No port found")
    typer.echo(str(found.port))


if __name__ == "__main__":  # pragma: no cover
    app()
