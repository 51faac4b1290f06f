"""Sandbox backend that runs sessions as local subprocesses.

Each sandbox is a directory below ``root``; sessions are ``sh -c`` processes
started in that directory. Useful for development and for exercising the
bring-up protocol without a cloud provider.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

from ..errors import ConflictError
from .base import RemoteSession, SandboxClient, SandboxHandle, SandboxSpec

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


class LocalSession(RemoteSession):
    """Wraps an ``asyncio`` subprocess as a remote session."""

    TERMINATE_GRACE = 5.0

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self.process_id = str(process.pid)

    async def _iter_stream(self, stream: Optional[asyncio.StreamReader]) -> AsyncIterator[bytes]:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk

    def stdout(self) -> AsyncIterator[bytes]:
        return self._iter_stream(self._process.stdout)

    def stderr(self) -> AsyncIterator[bytes]:
        return self._iter_stream(self._process.stderr)

    async def wait(self) -> Optional[int]:
        return await self._process.wait()

    def _signal_group(self, sig: int) -> None:
        try:
            os.killpg(os.getpgid(self._process.pid), sig)
        except ProcessLookupError:
            pass

    async def terminate(self) -> None:
        if self._process.returncode is not None:
            return
        self._signal_group(signal.SIGTERM)
        try:
            await asyncio.wait_for(self._process.wait(), timeout=self.TERMINATE_GRACE)
        except asyncio.TimeoutError:
            self._signal_group(signal.SIGKILL)
            await self._process.wait()


class LocalSandboxClient(SandboxClient):
    """Directory-per-sandbox backend."""

    default_working_directory = "workspace"

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()
        self._sessions: Dict[str, List[LocalSession]] = {}

    def _path(self, name: str) -> Path:
        return self.root / name

    def _handle(self, name: str, region: Optional[str] = None) -> SandboxHandle:
        return SandboxHandle(name=name, region=region, metadata={"path": str(self._path(name))})

    async def create_sandbox(self, name: str, spec: SandboxSpec) -> SandboxHandle:
        path = self._path(name)
        if path.exists():
            raise ConflictError(f"Sandbox {name} already exists")
        path.mkdir(parents=True)
        logger.info(f"Created local sandbox {name} at {path}")
        return self._handle(name, spec.region)

    async def get_sandbox(self, name: str) -> Optional[SandboxHandle]:
        if self._path(name).is_dir():
            return self._handle(name)
        return None

    async def destroy_sandbox(self, name: str) -> None:
        for session in self._sessions.pop(name, []):
            await session.terminate()
        shutil.rmtree(self._path(name), ignore_errors=True)
        logger.info(f"Destroyed local sandbox {name}")

    async def spawn(
        self,
        handle: SandboxHandle,
        command: str,
        env: Optional[Dict[str, str]] = None,
    ) -> RemoteSession:
        process = await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            command,
            cwd=self._path(handle.name),
            env={**os.environ, **(env or {})},
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        session = LocalSession(process)
        self._sessions.setdefault(handle.name, []).append(session)
        return session
