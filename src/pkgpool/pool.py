"""Shared package pool - one built artifact set per (name, version).

Every workspace binding a version links to the same pool directory. At most
one physical install exists per (name, version): requesters in this process
serialize on a keyed lock, and the store's build claim collapses concurrent
builds across processes into one.

Per IMPLEMENTATION_PHILOSOPHY:
- Build in a throwaway directory, stage artifacts, then rename into place.
- Temporary directories are removed on every exit path.
"""

import asyncio
import logging
import shutil
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from pathlib import PurePosixPath

from .download import download_to
from .exceptions import ArtifactError
from .exceptions import BuildFailedError
from .packages import InstalledPackage
from .packages import InstallLog
from .packages import KnownPackage
from .protocols import BuilderProtocol
from .protocols import DownloaderProtocol
from .store import StateStore

logger = logging.getLogger(__name__)

# How often to re-check the store while another process holds a build claim.
CLAIM_POLL_INTERVAL = 0.1


class PackagePool:
    """
    Package pool rooted at an injected directory.

    Layout: package_root/NAME/VERSION/<artifact paths>
    """

    def __init__(
        self,
        package_root: Path,
        store: StateStore,
        downloader: DownloaderProtocol,
        builder: BuilderProtocol,
    ):
        self.package_root = package_root
        self.store = store
        self.downloader = downloader
        self.builder = builder
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    def directory(self, name: str, version: str) -> Path:
        return self.package_root / name / version

    @asynccontextmanager
    async def claim(self, name: str, version: str) -> AsyncIterator[None]:
        """Hold the in-process lock for (name, version).

        Install, bind and garbage collection of the same version run under it.
        """
        key = (name, version)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Drop the lock once nobody holds or waits for it.
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def install(self, package: KnownPackage) -> InstallLog:
        """
        Ensure `package` is built into the pool. Call while holding `claim`.

        Returns:
            A log with new_install=False when an existing pool entry was reused

        Raises:
            ArtifactError: If an artifact path is absolute or missing after the build
            BuildFailedError: If the build command exits with a non-zero status
            DownloadError: If the source cannot be downloaded
        """
        _check_artifact_paths(package)
        directory = self.directory(package.name, package.version)

        while True:
            existing = self.store.get_installed_package(package.name, package.version)
            if existing is not None and existing.ready:
                if directory.exists():
                    logger.debug(f"Reusing pool entry {package}")
                    return InstallLog(package_name=package.name, success=True, version=package.version)
                logger.warning(f"Pool entry {package} is registered but {directory} is missing, rebuilding")
                return await self._build(package, directory, new_install=False)
            if self.store.claim_installed_package(package.name, package.version):
                break
            logger.debug(f"{package} is being built by another process, waiting")
            await asyncio.sleep(CLAIM_POLL_INTERVAL)

        try:
            log = await self._build(package, directory, new_install=True)
        except BaseException:
            self.store.release_installed_package_claim(package.name, package.version)
            raise
        self.store.complete_installed_package(package.name, package.version)
        return log

    async def _build(self, package: KnownPackage, directory: Path, new_install: bool) -> InstallLog:
        staging = directory.parent / f".{directory.name}.staging"
        await asyncio.to_thread(shutil.rmtree, staging, True)
        staging.mkdir(parents=True)

        try:
            if package.source is None:
                # Meta-package: nothing to fetch or build.
                logger.debug(f"{package} has no source, registering empty pool entry")
            else:
                with tempfile.TemporaryDirectory(prefix=f"pkgpool-{package.name}-") as tmp:
                    work_dir = Path(tmp)
                    await download_to(self.downloader, package.source, work_dir)

                    if package.build:
                        result = await self.builder.build(package.build, work_dir)
                        if not result.success:
                            raise BuildFailedError(
                                f"build of {package} exited with code {result.exit_code}",
                                exit_code=result.exit_code,
                                stdout=result.stdout,
                                stderr=result.stderr,
                            )

                    await asyncio.to_thread(_copy_artifacts, package, work_dir, staging)

            await asyncio.to_thread(shutil.rmtree, directory, True)
            staging.rename(directory)
        finally:
            await asyncio.to_thread(shutil.rmtree, staging, True)

        logger.info(f"Built {package} into {directory}")
        return InstallLog(package_name=package.name, success=True, new_install=new_install, version=package.version)

    async def delete(self, package: InstalledPackage) -> None:
        """Delete a pool entry's directory (and its name directory once empty)."""
        directory = self.directory(package.name, package.version)
        if not directory.exists():
            logger.warning(f"Pool directory {directory} already gone")
        else:
            await asyncio.to_thread(shutil.rmtree, directory)
        try:
            directory.parent.rmdir()
        except OSError:
            pass  # other versions remain
        logger.debug(f"Deleted pool directory {directory}")


def _check_artifact_paths(package: KnownPackage) -> None:
    for artifact in package.artifacts:
        path = PurePosixPath(artifact)
        if path.is_absolute() or Path(artifact).is_absolute():
            raise ArtifactError(
                f"artifact path {artifact} of {package} must be relative",
                context={"package": str(package), "artifact": artifact},
            )
        if ".." in path.parts:
            raise ArtifactError(
                f"artifact path {artifact} of {package} escapes the build directory",
                context={"package": str(package), "artifact": artifact},
            )


def _copy_artifacts(package: KnownPackage, work_dir: Path, target: Path) -> None:
    for artifact in package.artifacts:
        src = work_dir / artifact
        dest = target / artifact
        if not src.exists():
            raise ArtifactError(
                f"artifact {artifact} of {package} not found after build",
                context={"package": str(package), "artifact": artifact},
            )
        dest.parent.mkdir(parents=True, exist_ok=True)
        if src.is_dir():
            shutil.copytree(src, dest, symlinks=True)
        else:
            shutil.copy2(src, dest)
