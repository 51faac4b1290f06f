"""Tests for the in-memory workflow registry."""

from datetime import timedelta

import pytest

from forkpreview.contracts import TerminalState, WorkflowStep
from forkpreview.errors import ProvisioningError
from forkpreview.persistence import InMemoryWorkflowRegistry, WorkflowRun, get_registry


def _run(workflow_id: str = "wf-1") -> WorkflowRun:
    return WorkflowRun(
        workflow_id=workflow_id,
        owner_user_id="user-1",
        source_owner="octocat",
        source_repo="hello",
        branch="main",
        region="cdg",
    )


@pytest.mark.asyncio
async def test_transition_updates_step_and_progress_together():
    registry = InMemoryWorkflowRegistry()
    await registry.create(_run())

    before = await registry.get("wf-1")
    after = await registry.transition("wf-1", WorkflowStep.FORK_START)

    assert before.current_step == WorkflowStep.INITIALIZE
    assert before.progress_percent == 0
    assert after.current_step == WorkflowStep.FORK_START
    assert after.progress_percent == 10
    assert (await registry.get("wf-1")) is after


@pytest.mark.asyncio
async def test_progress_never_decreases():
    registry = InMemoryWorkflowRegistry()
    await registry.create(_run())
    await registry.transition("wf-1", WorkflowStep.POLLING, progress=80)
    run = await registry.transition("wf-1", WorkflowStep.POLLING, progress=70)
    assert run.progress_percent == 80

    failed = await registry.transition("wf-1", WorkflowStep.ERROR, last_error="boom")
    assert failed.progress_percent == 80
    assert failed.terminal_state == TerminalState.FAILED
    assert failed.last_error == "boom"
    assert failed.finished_at is not None


@pytest.mark.asyncio
async def test_backward_and_post_terminal_transitions_are_rejected():
    registry = InMemoryWorkflowRegistry()
    await registry.create(_run())
    await registry.transition("wf-1", WorkflowStep.DEPLOY_START)

    with pytest.raises(ProvisioningError):
        await registry.transition("wf-1", WorkflowStep.FORK_START)

    await registry.transition("wf-1", WorkflowStep.DEPLOYED)
    with pytest.raises(ProvisioningError):
        await registry.transition("wf-1", WorkflowStep.ERROR)


@pytest.mark.asyncio
async def test_duplicate_and_unknown_runs():
    registry = InMemoryWorkflowRegistry()
    await registry.create(_run())
    with pytest.raises(ProvisioningError):
        await registry.create(_run())
    with pytest.raises(ProvisioningError):
        await registry.transition("missing", WorkflowStep.FORK_START)
    assert await registry.get("missing") is None


@pytest.mark.asyncio
async def test_prune_evicts_only_old_terminal_runs():
    registry = InMemoryWorkflowRegistry()
    await registry.create(_run("done"))
    await registry.create(_run("active"))
    done = await registry.transition("done", WorkflowStep.DEPLOYED)

    assert await registry.prune(60, now=done.finished_at + timedelta(seconds=30)) == 0
    assert await registry.prune(60, now=done.finished_at + timedelta(seconds=61)) == 1
    assert [r.workflow_id for r in await registry.list_runs()] == ["active"]


def test_get_registry_returns_fresh_instances():
    assert get_registry() is not get_registry()
