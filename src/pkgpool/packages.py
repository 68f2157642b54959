"""Package records: known to a registry, bound to a workspace, installed in the pool."""

from dataclasses import dataclass
from dataclasses import field

from .request import PackageRequest
from .version import VersionSpec


@dataclass(frozen=True)
class KnownPackage:
    """A package version recorded from a registry manifest."""

    name: str
    version: str
    registry: str
    description: str | None = None
    homepage: str | None = None
    license: str | None = None
    source: str | None = None
    build: str | None = None
    artifacts: tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    def describe(self) -> str:
        """Multi-line display: `name@version` followed by present metadata fields."""
        lines = [str(self)]
        if self.description:
            lines.append(f"  Description: {self.description}")
        if self.homepage:
            lines.append(f"  Homepage: {self.homepage}")
        if self.license:
            lines.append(f"  License: {self.license}")
        lines.append(f"  Registry: {self.registry}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class WorkspacePackage:
    """A workspace's binding of one exact version of a package."""

    workspace: str
    name: str
    version: str
    requested: VersionSpec = field(default_factory=VersionSpec.any)

    @classmethod
    def from_request(cls, workspace: str, request: PackageRequest, version: str) -> "WorkspacePackage":
        return cls(workspace=workspace, name=request.name, version=version, requested=request.version)

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    def as_request(self) -> PackageRequest:
        """The request this binding was resolved from."""
        return PackageRequest(name=self.name, version=self.requested)

    def __str__(self) -> str:
        return f"{self.name}@{self.version} (resolved from {self.requested})"


@dataclass(frozen=True)
class InstalledPackage:
    """A built artifact set in the shared pool, independent of any workspace.

    `ready` is False while a requester still holds the build claim.
    """

    name: str
    version: str
    ready: bool = field(default=True, compare=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass
class InstallLog:
    """Result of one package's install attempt."""

    package_name: str
    success: bool
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    new_install: bool = False
    version: str | None = None

    @classmethod
    def failed(cls, package_name: str, message: str, exit_code: int = -1, stdout: str = "") -> "InstallLog":
        """Failure not caused by a build exit status carries exit code -1."""
        return cls(package_name=package_name, success=False, exit_code=exit_code, stdout=stdout, stderr=message)

    def summary(self) -> str:
        """One-line (or, on build failure, multi-line) user-facing report."""
        if self.success:
            label = f"{self.package_name}@{self.version}" if self.version else self.package_name
            return f"Installed {label}"
        return (
            f"Failed to install {self.package_name}, build exited with code {self.exit_code}\n"
            f"STDOUT:\n{self.stdout}STDERR:\n{self.stderr}"
        )


@dataclass
class RemovalResult:
    """Result of removing one binding from a workspace."""

    package: WorkspacePackage
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def summary(self) -> str:
        if self.success:
            return f"Uninstalled {self.package}"
        return f"Failed to uninstall {self.package}: {self.error}"
