"""Package manager and start script classification.

Pure lookups over a repository's root file names and its ``package.json``.
Unknown or malformed input falls back to npm and the ``dev`` script.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PackageManager(str, Enum):
    NPM = "npm"
    PNPM = "pnpm"
    YARN = "yarn"
    BUN = "bun"


class PackageManagerInfo(BaseModel):
    lock_file: str
    install_cmd: str
    dev_cmd: str
    start_cmd: str
    priority: int
    config_files: List[str] = Field(default_factory=list)


PACKAGE_MANAGERS: Dict[PackageManager, PackageManagerInfo] = {
    PackageManager.NPM: PackageManagerInfo(
        lock_file="package-lock.json",
        install_cmd="npm install",
        dev_cmd="npm run dev",
        start_cmd="npm start",
        priority=1,
    ),
    PackageManager.PNPM: PackageManagerInfo(
        lock_file="pnpm-lock.yaml",
        install_cmd="pnpm install",
        dev_cmd="pnpm dev",
        start_cmd="pnpm start",
        priority=2,
        config_files=["pnpm-workspace.yaml", ".pnpmrc"],
    ),
    PackageManager.YARN: PackageManagerInfo(
        lock_file="yarn.lock",
        install_cmd="yarn install",
        dev_cmd="yarn dev",
        start_cmd="yarn start",
        priority=3,
        config_files=[".yarnrc", ".yarnrc.yml"],
    ),
    PackageManager.BUN: PackageManagerInfo(
        lock_file="bun.lockb",
        install_cmd="bun install",
        dev_cmd="bun dev",
        start_cmd="bun start",
        priority=4,
    ),
}


class PackageManagerDetection(BaseModel):
    manager: PackageManager
    install_cmd: str
    detected: bool
    detected_from: str


class StartScriptDetection(BaseModel):
    script_name: Optional[str] = None
    command: Optional[str] = None
    found: bool = False
    scripts: Dict[str, str] = Field(default_factory=dict)


class InstallationCommands(BaseModel):
    install: str
    dev: str
    start: str


def get_package_manager_info(manager: Union[str, PackageManager, None]) -> PackageManagerInfo:
    try:
        return PACKAGE_MANAGERS[PackageManager(manager)]
    except ValueError:
        return PACKAGE_MANAGERS[PackageManager.NPM]


def detect_package_manager(file_names: Iterable[str]) -> PackageManagerDetection:
    """Pick the package manager whose lockfile or config file is present.

    Lockfiles and config files rank equally; ties are broken by priority
    (npm first).
    """

    present = set(file_names)
    candidates = []
    for manager, info in PACKAGE_MANAGERS.items():
        markers = [info.lock_file, *info.config_files]
        found = next((marker for marker in markers if marker in present), None)
        if found:
            candidates.append((info.priority, manager, found))

    if candidates:
        _, manager, found = min(candidates)
        logger.info(f"Detected package manager {manager.value} from {found}")
        return PackageManagerDetection(
            manager=manager,
            install_cmd=PACKAGE_MANAGERS[manager].install_cmd,
            detected=True,
            detected_from=found,
        )

    logger.debug("No lockfile found, defaulting to npm")
    return PackageManagerDetection(
        manager=PackageManager.NPM,
        install_cmd=PACKAGE_MANAGERS[PackageManager.NPM].install_cmd,
        detected=False,
        detected_from="default",
    )


def _load_package_json(package_json: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    if package_json is None:
        return {}
    if isinstance(package_json, dict):
        return package_json
    try:
        data = json.loads(package_json)
    except ValueError as e:
        logger.warning(f"Could not parse package.json: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def detect_start_script(package_json: Union[str, Dict[str, Any], None]) -> StartScriptDetection:
    """Return the script a preview should run: ``dev`` if defined, else ``start``."""

    data = _load_package_json(package_json)
    scripts = data.get("scripts") or {}
    if not isinstance(scripts, dict):
        scripts = {}
    scripts = {str(k): str(v) for k, v in scripts.items()}

    for name in ("dev", "start"):
        if name in scripts:
            return StartScriptDetection(
                script_name=name, command=scripts[name], found=True, scripts=scripts
            )
    return StartScriptDetection(scripts=scripts)


def get_installation_commands(manager: Union[str, PackageManager, None]) -> InstallationCommands:
    info = get_package_manager_info(manager)
    return InstallationCommands(install=info.install_cmd, dev=info.dev_cmd, start=info.start_cmd)


def build_install_command(manager: Union[str, PackageManager, None], ci: bool = False) -> str:
    """Install command for ``manager``; ``ci`` selects the lockfile-strict mode."""

    info = get_package_manager_info(manager)
    if ci:
        if info is PACKAGE_MANAGERS[PackageManager.NPM]:
            return "npm ci"
        if info is PACKAGE_MANAGERS[PackageManager.PNPM]:
            return f"{info.install_cmd} --frozen-lockfile"
    return info.install_cmd
