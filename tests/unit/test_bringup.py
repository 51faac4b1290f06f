"""Tests for the dev-server bring-up engine."""

import asyncio
import time

import pytest

from forkpreview.bringup import BringUpEngine, BringUpOptions, build_bringup_command
from forkpreview.constants import VCS_TOKEN_ENV
from forkpreview.errors import (
    BringUpTimeoutError,
    RemoteExecutionError,
    SpawnError,
    WorkflowCancelledError,
)
from forkpreview.sandbox import SandboxHandle, SandboxLifecycle
from forkpreview.utils.deadline import Deadline
from forkpreview.utils.retry import is_transient

REPO_URL = "https://github.com/alice/hello.git"


def _engine(fake_sandbox) -> BringUpEngine:
    return BringUpEngine(SandboxLifecycle(fake_sandbox))


def _handle() -> SandboxHandle:
    return SandboxHandle(name="preview-abc")


def test_command_clones_installs_and_falls_back():
    command = build_bringup_command(
        REPO_URL, "feature/x", BringUpOptions(package_manager="pnpm", script_name="serve")
    )
    assert "git clone --depth 1 --branch feature/x https://github.com/alice/hello.git repo" in command
    assert "|| git clone https://github.com/alice/hello.git repo" in command
    assert "if [ -f package.json ]; then pnpm install; fi" in command
    assert "pnpm run serve || pnpm dev || pnpm start" in command
    assert command.startswith("mkdir -p /workspace && cd /workspace")


def test_command_never_contains_the_token():
    options = BringUpOptions(vcs_token="ghp_supersecret")
    command = build_bringup_command(REPO_URL, "main", options)
    assert "ghp_supersecret" not in command
    assert f"${{{VCS_TOKEN_ENV}}}" in command
    assert "insteadOf=https://github.com/" in command
    assert f"unset {VCS_TOKEN_ENV}" in command
    assert "ghp_supersecret" not in repr(options)


def test_command_quotes_untrusted_values():
    command = build_bringup_command(
        REPO_URL, "main; rm -rf /", BringUpOptions(working_directory="/tmp/my dir")
    )
    assert "'main; rm -rf /'" in command
    assert "'/tmp/my dir'" in command


@pytest.mark.asyncio
async def test_resolves_on_first_port_without_waiting_for_exit(fake_sandbox, make_session):
    session = make_session(stdout=["> vite\n", "  Local: http://localhost:4321\n"], exit_code=None)
    fake_sandbox.sessions.append(session)
    engine = _engine(fake_sandbox)

    result = await asyncio.wait_for(engine.bring_up(_handle(), REPO_URL, "main"), timeout=2)

    assert result.port == 4321
    assert result.sandbox_process_id == "proc-1"
    assert not session.terminated
    active = engine.get_session("preview-abc")
    assert active.detected_port == 4321
    assert active.state == "running"
    await engine.stop("preview-abc")
    assert session.terminated


@pytest.mark.asyncio
async def test_port_on_stderr_counts(fake_sandbox, make_session):
    fake_sandbox.sessions.append(make_session(stderr=["Server listening on port 8080\n"]))
    engine = _engine(fake_sandbox)
    result = await engine.bring_up(_handle(), REPO_URL, "main")
    assert result.port == 8080
    await engine.stop("preview-abc")


@pytest.mark.asyncio
async def test_port_split_across_chunks(fake_sandbox, make_session):
    fake_sandbox.sessions.append(make_session(stdout=["Local: http://local", "host:5173/\n"]))
    engine = _engine(fake_sandbox)
    result = await engine.bring_up(_handle(), REPO_URL, "main")
    assert result.port == 5173
    await engine.stop("preview-abc")


@pytest.mark.asyncio
async def test_exit_before_port_includes_error_text(fake_sandbox, make_session):
    fake_sandbox.sessions.append(
        make_session(
            stdout=["installing...\n"],
            stderr=["npm ERR! missing script: dev\n"],
            exit_code=1,
        )
    )
    engine = _engine(fake_sandbox)

    with pytest.raises(RemoteExecutionError) as exc_info:
        await engine.bring_up(_handle(), REPO_URL, "main")

    assert exc_info.value.exit_code == 1
    assert "exited with code 1" in str(exc_info.value)
    assert "npm ERR! missing script: dev" in str(exc_info.value)
    assert engine.get_session("preview-abc") is None


@pytest.mark.asyncio
async def test_error_signal_alone_does_not_fail(fake_sandbox, make_session):
    fake_sandbox.sessions.append(
        make_session(
            stdout=["warning: fatal-looking deprecation\n", "ready on http://localhost:3000\n"],
            chunk_delay=0.01,
        )
    )
    engine = _engine(fake_sandbox)
    result = await engine.bring_up(_handle(), REPO_URL, "main")
    assert result.port == 3000
    assert engine.get_session("preview-abc").has_error_signal
    await engine.stop("preview-abc")


@pytest.mark.asyncio
async def test_times_out_not_before_deadline(fake_sandbox, make_session):
    session = make_session(exit_code=None)
    fake_sandbox.sessions.append(session)
    engine = _engine(fake_sandbox)

    started = time.monotonic()
    with pytest.raises(BringUpTimeoutError) as exc_info:
        await engine.bring_up(_handle(), REPO_URL, "main", BringUpOptions(timeout=0.05))
    elapsed = time.monotonic() - started

    assert elapsed >= 0.05
    assert "did not open a port within" in str(exc_info.value)
    assert "dependencies" in str(exc_info.value)
    assert session.terminated


@pytest.mark.asyncio
async def test_spawn_failure_rejects_immediately(fake_sandbox):
    fake_sandbox.spawn_error = ConnectionRefusedError("connect ECONNREFUSED")
    engine = _engine(fake_sandbox)

    with pytest.raises(SpawnError) as exc_info:
        await engine.bring_up(_handle(), REPO_URL, "main")
    assert is_transient(exc_info.value)


@pytest.mark.asyncio
async def test_token_is_passed_through_environment_only(fake_sandbox, make_session):
    fake_sandbox.sessions.append(make_session(stdout=["Local: http://localhost:3000"]))
    engine = _engine(fake_sandbox)

    await engine.bring_up(_handle(), REPO_URL, "main", BringUpOptions(vcs_token="ghp_secret"))

    _, command, env = fake_sandbox.spawned[0]
    assert "ghp_secret" not in command
    assert env == {VCS_TOKEN_ENV: "ghp_secret"}
    await engine.stop("preview-abc")


@pytest.mark.asyncio
async def test_custom_port_patterns(fake_sandbox, make_session):
    fake_sandbox.sessions.append(make_session(stdout=["http://localhost:3000 proxy", "app@7777 up"]))
    engine = _engine(fake_sandbox)
    options = BringUpOptions(port_patterns=["(invalid", r"app@(\d+)"])
    result = await engine.bring_up(_handle(), REPO_URL, "main", options)
    assert result.port == 7777
    await engine.stop("preview-abc")


@pytest.mark.asyncio
async def test_cancellation_is_treated_like_timeout(fake_sandbox, make_session):
    session = make_session(exit_code=None)
    fake_sandbox.sessions.append(session)
    engine = _engine(fake_sandbox)
    deadline = Deadline()

    async def cancel_soon():
        await asyncio.sleep(0.02)
        deadline.cancel()

    asyncio.create_task(cancel_soon())
    with pytest.raises(WorkflowCancelledError):
        await engine.bring_up(_handle(), REPO_URL, "main", BringUpOptions(timeout=5), deadline)
    assert session.terminated


@pytest.mark.asyncio
async def test_new_bring_up_replaces_active_session(fake_sandbox, make_session):
    first = make_session(stdout=["Local: http://localhost:3000"], process_id="p1")
    second = make_session(stdout=["Local: http://localhost:3001"], process_id="p2")
    fake_sandbox.sessions.extend([first, second])
    engine = _engine(fake_sandbox)

    await engine.bring_up(_handle(), REPO_URL, "main")
    result = await engine.bring_up(_handle(), REPO_URL, "main")

    assert first.terminated
    assert result.port == 3001
    assert engine.lifecycle.list_sessions("preview-abc")[-1].port == 3001
    await engine.stop("preview-abc")


@pytest.mark.asyncio
async def test_clean_exit_without_port_waits_for_timeout(fake_sandbox, make_session):
    fake_sandbox.sessions.append(make_session(stdout=["done\n"], exit_code=0))
    engine = _engine(fake_sandbox)

    started = time.monotonic()
    with pytest.raises(BringUpTimeoutError):
        await engine.bring_up(_handle(), REPO_URL, "main", BringUpOptions(timeout=0.2))
    assert time.monotonic() - started >= 0.2


@pytest.mark.asyncio
async def test_stream_failure_after_resolution_is_logged(fake_sandbox, make_session, caplog):
    class BrokenStdout(make_session):
        def stdout(self):
            async def chunks():
                yield b"Local: http://localhost:3000\n"
                await asyncio.sleep(0.01)
                raise ConnectionResetError("stream closed")

            return chunks()

    fake_sandbox.sessions.append(BrokenStdout())
    engine = _engine(fake_sandbox)

    result = await engine.bring_up(_handle(), REPO_URL, "main")
    await asyncio.sleep(0.05)

    assert result.port == 3000
    assert "stream closed" in caplog.text
    await engine.stop("preview-abc")
