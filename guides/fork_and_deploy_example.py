"""Fork a repository and deploy it as a preview, printing progress as it goes."""

import asyncio
import os

from forkpreview import ForkAndDeployOrchestrator, get_deployment_client, load_config


def report(event):
    print(f"[{event.progress:3d}%] {event.step.value}: {event.message}")


async def main():
    """Fork octocat/Hello-World and deploy its default branch."""
    config = load_config()

    # Fly.io unless FORKPREVIEW_DEPLOY_BACKEND says otherwise
    orchestrator = ForkAndDeployOrchestrator(
        get_deployment_client(config=config),
        config=config.orchestrator,
        github=config.github,
    )

    try:
        result = await orchestrator.start_workflow(
            user_id="guide-user",
            vcs_token=os.environ["GITHUB_TOKEN"],
            source_owner="octocat",
            source_repo="Hello-World",
            progress_callback=report,
        )
    finally:
        await orchestrator.close()

    print(f"✅ Preview deployed ({result.outcome.value})")
    print(f"🔗 Fork: {result.fork.url}")
    print(f"🌐 Preview: {result.deployment.preview_url}")


if __name__ == "__main__":
    asyncio.run(main())
