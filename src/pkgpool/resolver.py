"""Package resolver - Resolve requests to concrete versions.

Versions are ordered as plain strings, newest first, exactly as the store
sorts them ("10.0.0" sorts before "2.0.0"). The first version a request's
spec matches wins.

Per AGENTS.md: Ruthless simplicity - direct store lookups, no caching.
"""

import logging

from .exceptions import PackageNotFoundError
from .packages import KnownPackage
from .packages import WorkspacePackage
from .request import PackageRequest
from .store import StateStore
from .version import VersionSpec

logger = logging.getLogger(__name__)


class PackageResolver:
    """
    Resolve package requests against a state store (injected).

    Example:
        >>> resolver = PackageResolver(store)
        >>> resolver.resolve_known(PackageRequest.parse("test-package"))
        KnownPackage(name='test-package', version='0.1.1', ...)
    """

    def __init__(self, store: StateStore):
        self.store = store

    def resolve_known(self, request: PackageRequest) -> KnownPackage:
        """
        Resolve a request to the newest matching registry-known version.

        Raises:
            PackageNotFoundError: If no version of the package is known, or none matches
        """
        versions = self.store.known_package_versions(request.name)
        if not versions:
            raise PackageNotFoundError(f"package {request.name} is not known", context={"name": request.name})

        resolved = next((version for version in versions if request.version.matches(version)), None)
        if resolved is None:
            raise PackageNotFoundError(
                f"package {request} is not known, but these versions are: {', '.join(versions)}",
                context={"name": request.name, "versions": versions},
            )

        package = self.store.get_known_package(request.name, resolved)
        if package is None:
            # Registry refresh removed it between the two lookups.
            raise PackageNotFoundError(f"package {request} is not known", context={"name": request.name})
        logger.debug(f"Resolved {request} to {package}")
        return package

    def available_update(self, binding: WorkspacePackage, spec: VersionSpec | None = None) -> KnownPackage | None:
        """
        Newest known version matching `spec` (any version by default), if it
        differs from the bound one.
        """
        spec = spec or VersionSpec.any()
        versions = self.store.known_package_versions(binding.name)
        latest = next((version for version in versions if spec.matches(version)), None)
        if latest is None or latest == binding.version:
            return None
        return self.store.get_known_package(binding.name, latest)

    def search(self, query: str, all_versions: bool = False) -> list[KnownPackage]:
        """Known packages whose name contains `query` (latest version of each unless `all_versions`)."""
        return self.store.search_known_packages(query, latest_only=not all_versions)
