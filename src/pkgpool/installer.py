"""Package installation orchestrator (protocol-based).

Per KERNEL_PHILOSOPHY: Mechanism not policy - the installer doesn't know HOW
to download or build; apps provide DownloaderProtocol and BuilderProtocol
implementations, and a PoolConfig saying WHERE things live.

Per IMPLEMENTATION_PHILOSOPHY:
- One task per package; all tasks are joined before returning
- Per-package failures are data (InstallLog), never a reason to stop siblings
- Structural failures (conflicts, unknown packages) abort before any task starts
"""

import logging
from dataclasses import dataclass
from dataclasses import field

from .changeset import PackageChangeSet
from .config import PoolConfig
from .exceptions import BuildFailedError
from .exceptions import PackageError
from .packages import InstalledPackage
from .packages import InstallLog
from .packages import KnownPackage
from .packages import RemovalResult
from .packages import WorkspacePackage
from .pool import PackagePool
from .protocols import BuilderProtocol
from .protocols import DownloaderProtocol
from .request import PackageRequest
from .request import parse_requests
from .resolver import PackageResolver
from .store import StateStore
from .utils import gather_bounded
from .workspace import Workspace
from .workspace import get_workspace

logger = logging.getLogger(__name__)


@dataclass
class GarbageCollectReport:
    """Outcome of one garbage collection pass."""

    collected: list[InstalledPackage] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def summary(self) -> str:
        return f"Garbage collected {len(self.collected)} packages"


class Installer:
    """
    Install, update and remove packages in workspaces backed by a shared pool.

    Example:
        >>> config = PoolConfig.from_env()
        >>> store = StateStore(config.state_db)
        >>> installer = Installer(store, config, HttpDownloader(), ShellBuilder())
        >>> logs = await installer.install_packages(["test-package"])
        >>> print(logs[0].summary())
        Installed test-package@0.1.1
    """

    def __init__(
        self,
        store: StateStore,
        config: PoolConfig,
        downloader: DownloaderProtocol,
        builder: BuilderProtocol,
    ):
        self.store = store
        self.config = config
        self.resolver = PackageResolver(store)
        self.pool = PackagePool(config.package_root, store, downloader, builder)

    def workspace(self, name: str = "") -> Workspace:
        return get_workspace(self.store, self.config, name)

    async def install_packages(self, packages: list[str], workspace_name: str = "") -> list[InstallLog]:
        """
        Install packages into a workspace.

        Process:
        1. Parse requests and compute the change set against current bindings
        2. Resolve every added or changed request to a known version
        3. Install each package concurrently (pool hit or build), then bind it
        4. For changed packages, drop links to the previously bound version

        Args:
            packages: Request strings (`name`, `name@version`, `name@~prefix`)
            workspace_name: Target workspace (empty = global)

        Returns:
            One InstallLog per added or changed package

        Raises:
            ConflictError: If requests conflict with each other or with current bindings
            PackageNotFoundError: If the workspace or a requested package is unknown
            InvalidNameError: If a request has an invalid package name
        """
        requests = parse_requests(packages)
        workspace = self.workspace(workspace_name)
        current = self.store.workspace_packages(workspace.name)
        changeset = PackageChangeSet.add_packages(requests, current)
        bound = {pkg.name: pkg for pkg in current}

        plans: list[tuple[PackageRequest, KnownPackage, WorkspacePackage | None]] = []
        for request in changeset.add:
            plans.append((request, self.resolver.resolve_known(request), None))
        for request in changeset.change:
            plans.append((request, self.resolver.resolve_known(request), bound[request.name]))

        logs = await gather_bounded(
            (self._install_one(workspace, request, known, replaces) for request, known, replaces in plans),
            self.config.max_concurrency,
        )
        self._report(logs)
        if logs and not workspace.is_on_path():
            logger.warning(workspace.path_hint())
        return logs

    async def update_packages(self, packages: list[str] | None = None, workspace_name: str = "") -> list[InstallLog]:
        """
        Update bound packages to the newest known version matching each request.

        With no packages, every binding in the workspace is checked. Packages
        that are already on the newest version are skipped silently.

        Returns:
            One InstallLog per package that had an update available

        Raises:
            PackageNotFoundError: If the workspace is unknown or a named package is not bound
            ConflictError: If requests for one name conflict
        """
        requests = parse_requests(packages or [])
        workspace = self.workspace(workspace_name)
        current = self.store.workspace_packages(workspace.name)
        changeset = PackageChangeSet.update_packages(requests, current)
        bound = {pkg.name: pkg for pkg in current}

        plans: list[tuple[PackageRequest, KnownPackage, WorkspacePackage]] = []
        for request in changeset.change:
            existing = bound[request.name]
            update = self.resolver.available_update(existing, request.version)
            if update is None:
                logger.debug(f"{existing} is up to date")
                continue
            plans.append((request, update, existing))

        logs = await gather_bounded(
            (self._install_one(workspace, request, known, replaces) for request, known, replaces in plans),
            self.config.max_concurrency,
        )
        self._report(logs)
        return logs

    async def _install_one(
        self,
        workspace: Workspace,
        request: PackageRequest,
        package: KnownPackage,
        replaces: WorkspacePackage | None,
    ) -> InstallLog:
        """Install one resolved package and bind it, reporting any failure as a log."""
        try:
            async with self.pool.claim(package.name, package.version):
                log = await self.pool.install(package)
                workspace.link_package(self.pool.directory(package.name, package.version), package.artifacts)
                self.store.add_workspace_package(WorkspacePackage.from_request(workspace.name, request, package.version))
        except BuildFailedError as e:
            logger.debug(f"Failed to install {package}: {e}")
            return InstallLog(
                package_name=package.name,
                success=False,
                exit_code=e.exit_code,
                stdout=e.stdout,
                stderr=e.stderr,
                version=package.version,
            )
        except (PackageError, OSError) as e:
            logger.debug(f"Failed to install {package}: {e}")
            return InstallLog.failed(package.name, str(e))

        # The new binding replaced the old row; only links into the old version remain.
        if replaces is not None and replaces.version != package.version:
            try:
                workspace.unlink_package(self.pool.directory(replaces.name, replaces.version))
            except OSError as e:
                logger.warning(f"Failed to remove links to {replaces.name}@{replaces.version}: {e}")

        return log

    async def remove_packages(self, packages: list[str], workspace_name: str = "") -> list[RemovalResult]:
        """
        Remove packages from a workspace.

        Every request must match a binding; this is checked for all of them
        before anything is removed. Pool entries stay until garbage collection.

        Raises:
            PackageNotFoundError: If the workspace is unknown or a package is not installed
        """
        requests = parse_requests(packages)
        workspace = self.workspace(workspace_name)
        current = self.store.workspace_packages(workspace.name)
        changeset = PackageChangeSet.remove_packages(requests, current)

        results = await gather_bounded(
            (self._remove_one(workspace, binding) for binding in changeset.remove),
            self.config.max_concurrency,
        )
        for result in results:
            if result.success:
                logger.info(result.summary())
            else:
                logger.error(result.summary())
        return results

    async def _remove_one(self, workspace: Workspace, binding: WorkspacePackage) -> RemovalResult:
        try:
            async with self.pool.claim(binding.name, binding.version):
                workspace.unlink_package(self.pool.directory(binding.name, binding.version))
                self.store.remove_workspace_package(binding)
        except (PackageError, OSError) as e:
            return RemovalResult(binding, error=str(e))
        return RemovalResult(binding)

    async def garbage_collect(self) -> GarbageCollectReport:
        """
        Delete every pool entry no workspace binds.

        Each entry is collected concurrently and independently: its directory
        is deleted, then its row. A failure on one entry is recorded in the
        report and does not block the others.
        """
        candidates = self.store.unused_installed_packages()
        outcomes = await gather_bounded(
            (self._collect_one(package) for package in candidates),
            self.config.max_concurrency,
        )

        report = GarbageCollectReport()
        for package, outcome in zip(candidates, outcomes):
            if outcome is True:
                report.collected.append(package)
            elif isinstance(outcome, str):
                report.failed[str(package)] = outcome
        logger.info(report.summary())
        return report

    async def _collect_one(self, package: InstalledPackage) -> bool | str:
        """True if collected, False if it became referenced again, or an error message."""
        try:
            async with self.pool.claim(package.name, package.version):
                if self.store.is_installed_package_referenced(package.name, package.version):
                    logger.debug(f"{package} was bound again, keeping it")
                    return False
                await self.pool.delete(package)
                self.store.remove_installed_package(package.name, package.version)
        except (PackageError, OSError) as e:
            logger.error(f"Failed to garbage collect {package}: {e}")
            return str(e)
        return True

    def list_packages(self, workspace_name: str = "") -> list[WorkspacePackage]:
        """Bindings of a workspace, ordered by name."""
        return self.store.workspace_packages(self.workspace(workspace_name).name)

    def show_package(self, package: str) -> KnownPackage:
        """
        Resolve a request against known packages.

        Raises:
            PackageNotFoundError: If the package is not known
        """
        return self.resolver.resolve_known(PackageRequest.parse(package))

    def search_packages(self, query: str, all_versions: bool = False) -> list[KnownPackage]:
        return self.resolver.search(query, all_versions)

    def _report(self, logs: list[InstallLog]) -> None:
        for log in logs:
            if log.success:
                logger.info(log.summary())
            else:
                logger.error(log.summary())
