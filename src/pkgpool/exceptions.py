"""Package manager exceptions.

Per IMPLEMENTATION_PHILOSOPHY: Clear, actionable error messages.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .changeset import Conflicts


class PackageError(Exception):
    """Base exception for package operations."""

    def __init__(self, message: str, context: dict | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (names, paths, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InvalidVersionSpecError(PackageError):
    """A version spec or package request could not be parsed."""


class ConflictError(PackageError):
    """Simultaneous requests for one or more packages cannot be satisfied together."""

    def __init__(self, conflicts: "Conflicts"):
        super().__init__(str(conflicts).rstrip("\n"), context={"names": conflicts.names()})
        self.conflicts = conflicts


class PackageNotFoundError(PackageError):
    """Package, registry or workspace not found."""


class AlreadyExistsError(PackageError):
    """Registry, workspace or installed version already exists."""


class InvalidNameError(PackageError):
    """Name or version is not safe to use in a file system path."""


class BuildFailedError(PackageError):
    """Build command exited with a non-zero status."""

    def __init__(self, message: str, exit_code: int, stdout: str = "", stderr: str = ""):
        super().__init__(message, context={"exit_code": exit_code})
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class RegistryCollisionError(PackageError):
    """Two registries claim the same (name, version)."""

    def __init__(self, message: str, registry: str, other_registry: str, packages: list[str]):
        super().__init__(
            message,
            context={"registry": registry, "other_registry": other_registry, "packages": packages},
        )
        self.registry = registry
        self.other_registry = other_registry
        self.packages = packages


class StoreError(PackageError):
    """State store operation failed."""


class ManifestError(PackageError):
    """Registry manifest is invalid or uses an unsupported schema."""


class DownloadError(PackageError):
    """Download of a manifest or package source failed."""


class ArtifactError(PackageError):
    """Declared build artifact is absolute or missing."""
