"""Bring up a dev server in a local sandbox and report the port it opened."""

import asyncio

from forkpreview import BringUpOptions, SandboxLifecycle, bring_up, get_sandbox_client, load_config


async def main():
    config = load_config()
    client = get_sandbox_client(config)
    lifecycle = SandboxLifecycle(client, config.retry)

    handle = await lifecycle.ensure_sandbox("guide-preview")
    options = BringUpOptions.from_config(
        config.bringup,
        working_directory=client.default_working_directory,
        script_name="dev",
        timeout=300,
    )

    try:
        result = await bring_up(
            lifecycle, handle, "https://github.com/vitejs/vite-plugin-react.git", "main", options
        )
        print(f"✅ Dev server listening on port {result.port}")
        print(f"📋 Process: {result.sandbox_process_id}")
    finally:
        await lifecycle.destroy("guide-preview")


if __name__ == "__main__":
    asyncio.run(main())
