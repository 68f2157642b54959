"""pkgpool - Workspace package manager with a shared, deduplicated package pool.

Public API exports.

Per KERNEL_PHILOSOPHY: This is library mechanism, apps inject policy (paths,
downloaders, builders).
"""

from .builder import BuildResult
from .builder import ShellBuilder
from .changeset import Conflicts
from .changeset import PackageChangeSet
from .changeset import merge_package_requests
from .config import PoolConfig
from .download import HttpDownloader
from .exceptions import AlreadyExistsError
from .exceptions import ArtifactError
from .exceptions import BuildFailedError
from .exceptions import ConflictError
from .exceptions import DownloadError
from .exceptions import InvalidNameError
from .exceptions import InvalidVersionSpecError
from .exceptions import ManifestError
from .exceptions import PackageError
from .exceptions import PackageNotFoundError
from .exceptions import RegistryCollisionError
from .exceptions import StoreError
from .installer import GarbageCollectReport
from .installer import Installer
from .packages import InstalledPackage
from .packages import InstallLog
from .packages import KnownPackage
from .packages import RemovalResult
from .packages import WorkspacePackage
from .pool import PackagePool
from .protocols import BuilderProtocol
from .protocols import DownloaderProtocol
from .protocols import FetcherProtocol
from .registry import ManifestFetcher
from .registry import Registry
from .registry import RegistryUri
from .registry import add_registry
from .registry import fetch_registries
from .registry import remove_registry
from .request import PackageRequest
from .resolver import PackageResolver
from .schema import Manifest
from .schema import ManifestPackage
from .store import GLOBAL_WORKSPACE
from .store import StateStore
from .utils import is_file_system_safe
from .version import VersionSpec
from .version import merge_version_specs
from .workspace import Workspace
from .workspace import add_workspace
from .workspace import get_workspace
from .workspace import list_workspaces
from .workspace import remove_workspace

__all__ = [
    # Versions and requests
    "VersionSpec",
    "merge_version_specs",
    "PackageRequest",
    "Conflicts",
    "PackageChangeSet",
    "merge_package_requests",
    # Package records
    "KnownPackage",
    "WorkspacePackage",
    "InstalledPackage",
    "InstallLog",
    "RemovalResult",
    # Registries
    "Manifest",
    "ManifestPackage",
    "Registry",
    "RegistryUri",
    "ManifestFetcher",
    "add_registry",
    "remove_registry",
    "fetch_registries",
    # State
    "StateStore",
    "GLOBAL_WORKSPACE",
    "PoolConfig",
    # Workspaces
    "Workspace",
    "get_workspace",
    "add_workspace",
    "remove_workspace",
    "list_workspaces",
    # Installation
    "Installer",
    "GarbageCollectReport",
    "PackagePool",
    "PackageResolver",
    "HttpDownloader",
    "ShellBuilder",
    "BuildResult",
    "FetcherProtocol",
    "DownloaderProtocol",
    "BuilderProtocol",
    # Exceptions
    "PackageError",
    "InvalidVersionSpecError",
    "ConflictError",
    "PackageNotFoundError",
    "AlreadyExistsError",
    "InvalidNameError",
    "BuildFailedError",
    "RegistryCollisionError",
    "StoreError",
    "ManifestError",
    "DownloadError",
    "ArtifactError",
    # Utilities
    "is_file_system_safe",
]

__version__ = "0.1.0"
