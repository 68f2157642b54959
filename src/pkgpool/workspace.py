"""Workspaces - isolated environments with their own package bindings.

Each workspace owns workspace_root/NAME/bin/, holding symlinks into pool
directories. The `global` workspace always exists.
"""

import asyncio
import logging
import os
import shutil
from collections.abc import Mapping
from pathlib import Path
from pathlib import PurePosixPath

from .config import PoolConfig
from .exceptions import InvalidNameError
from .exceptions import PackageError
from .exceptions import PackageNotFoundError
from .store import GLOBAL_WORKSPACE
from .store import StateStore
from .utils import is_file_system_safe

logger = logging.getLogger(__name__)

WORKSPACE_ENV_VAR = "PKGPOOL_WORKSPACE"


class Workspace:
    """A named workspace rooted under an injected workspace root."""

    def __init__(self, name: str, workspace_root: Path):
        self.name = name
        self.workspace_root = workspace_root

    @property
    def directory(self) -> Path:
        return self.workspace_root / self.name

    @property
    def bin_directory(self) -> Path:
        return self.directory / "bin"

    def ensure_directories(self) -> None:
        self.bin_directory.mkdir(parents=True, exist_ok=True)

    def link_package(self, package_dir: Path, artifacts: tuple[str, ...] | list[str]) -> list[Path]:
        """
        Symlink every artifact of a pool entry into `bin/`, replacing existing links.

        Args:
            package_dir: Pool directory of the package version
            artifacts: Artifact paths relative to `package_dir`

        Returns:
            The created links
        """
        self.ensure_directories()
        links = []
        for artifact in artifacts:
            link = self.bin_directory / PurePosixPath(artifact).name
            if link.is_symlink() or link.exists():
                link.unlink()
            target = (package_dir / artifact).absolute()
            link.symlink_to(target)
            links.append(link)
            logger.debug(f"Linked {link} -> {target}")
        return links

    def unlink_package(self, package_dir: Path) -> list[Path]:
        """Remove the `bin/` links that still point into `package_dir`."""
        if not self.bin_directory.exists():
            return []
        package_dir = package_dir.absolute()
        removed = []
        for entry in self.bin_directory.iterdir():
            if not entry.is_symlink():
                continue
            target = Path(os.readlink(entry))
            if not target.is_absolute():
                target = self.bin_directory / target
            if target.is_relative_to(package_dir):
                entry.unlink()
                removed.append(entry)
        logger.debug(f"Removed {len(removed)} links into {package_dir} from workspace {self.name}")
        return removed

    def is_on_path(self, environ: Mapping[str, str] | None = None) -> bool:
        env = os.environ if environ is None else environ
        return str(self.bin_directory) in env.get("PATH", "").split(os.pathsep)

    def path_hint(self) -> str:
        return (
            "the workspace bin directory is not in $PATH.\n"
            "Add this to your shell's configuration file:\n\n"
            f"export PATH={self.bin_directory}:$PATH"
        )

    def shell_environment(self, environ: Mapping[str, str] | None = None) -> dict[str, str]:
        """Environment for a shell using this workspace: `bin/` first on PATH."""
        env = dict(os.environ if environ is None else environ)
        current = env.get("PATH", "")
        env["PATH"] = f"{self.bin_directory}{os.pathsep}{current}" if current else str(self.bin_directory)
        env[WORKSPACE_ENV_VAR] = self.name
        return env

    def __str__(self) -> str:
        return self.name


def get_workspace(store: StateStore, config: PoolConfig, name: str = "") -> Workspace:
    """
    Look up a workspace by name (the global one when `name` is empty) and ensure its directory.

    Raises:
        PackageNotFoundError: If the workspace does not exist
    """
    name = name or GLOBAL_WORKSPACE
    if not store.workspace_exists(name):
        raise PackageNotFoundError(f"workspace {name} does not exist", context={"workspace": name})
    workspace = Workspace(name, config.workspace_root)
    workspace.ensure_directories()
    return workspace


async def add_workspace(store: StateStore, config: PoolConfig, name: str) -> Workspace:
    """
    Create a workspace.

    Raises:
        InvalidNameError: If the name is not file system safe
        AlreadyExistsError: If the workspace exists
    """
    if not is_file_system_safe(name):
        raise InvalidNameError("workspace names can contain [a-zA-Z0-9._-] only", context={"workspace": name})

    store.add_workspace(name)
    workspace = Workspace(name, config.workspace_root)
    workspace.ensure_directories()
    logger.info(f"Added workspace {name}")
    return workspace


async def remove_workspace(store: StateStore, config: PoolConfig, name: str) -> None:
    """
    Remove a workspace, its bindings and its directory. Pool entries it used
    become eligible for garbage collection.

    Raises:
        PackageError: If asked to remove the global workspace
        PackageNotFoundError: If the workspace does not exist
    """
    if name == GLOBAL_WORKSPACE:
        raise PackageError("cannot remove global workspace", context={"workspace": name})

    store.remove_workspace(name)
    directory = Workspace(name, config.workspace_root).directory
    await asyncio.to_thread(shutil.rmtree, directory, True)
    logger.info(f"Removed workspace {name}")


def list_workspaces(store: StateStore) -> list[str]:
    return store.workspaces()
