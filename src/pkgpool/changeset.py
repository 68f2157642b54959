"""Change sets: the diff between requested packages and a workspace's bindings.

Per KERNEL_PHILOSOPHY: Pure computation. No store access, no filesystem; the
installer feeds in current bindings and acts on the result.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field

from .exceptions import ConflictError
from .exceptions import PackageNotFoundError
from .packages import WorkspacePackage
from .request import PackageRequest
from .version import VersionSpec

logger = logging.getLogger(__name__)


class Conflicts:
    """Accumulator of mutually incompatible requests, keyed by package name."""

    def __init__(self) -> None:
        self._inner: dict[str, set[VersionSpec]] = {}

    def add_conflict(self, name: str, a: VersionSpec, b: VersionSpec) -> None:
        self._inner.setdefault(name, set()).update((a, b))

    def names(self) -> list[str]:
        return list(self._inner)

    def specs(self, name: str) -> set[VersionSpec]:
        return set(self._inner.get(name, set()))

    def is_empty(self) -> bool:
        return not self._inner

    def __contains__(self, name: object) -> bool:
        return name in self._inner

    def __len__(self) -> int:
        return len(self._inner)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Conflicts):
            return NotImplemented
        return self._inner == other._inner

    def __str__(self) -> str:
        lines = []
        for name, specs in self._inner.items():
            lines.append(f"conflicting requests for dependency '{name}':")
            lines.extend(f"  {spec}" for spec in sorted(specs, key=str))
        return "\n".join(lines) + "\n" if lines else ""


def merge_package_requests(requests: Iterable[PackageRequest]) -> list[PackageRequest]:
    """Merge requests so each package name appears once with the intersection of its specs.

    First-seen order of names is preserved.

    Raises:
        ConflictError: Listing every name whose specs cannot be intersected
    """
    merged: dict[str, VersionSpec] = {}
    conflicts = Conflicts()

    for request in requests:
        existing = merged.get(request.name)
        if existing is None:
            merged[request.name] = request.version
            continue

        combined = existing & request.version
        if combined is not None:
            merged[request.name] = combined
            continue

        conflicts.add_conflict(request.name, existing, request.version)

    if not conflicts.is_empty():
        logger.debug(f"Conflicting requests for: {', '.join(conflicts.names())}")
        raise ConflictError(conflicts)

    return [PackageRequest(name=name, version=spec) for name, spec in merged.items()]


@dataclass
class PackageChangeSet:
    """
    A set of changes to a workspace's package bindings.

    - add: requested packages with no current binding
    - change: bound packages whose binding no longer satisfies the request
      (install mode) or that are targeted for update (update mode)
    - remove: bindings to drop
    """

    add: list[PackageRequest] = field(default_factory=list)
    change: list[PackageRequest] = field(default_factory=list)
    remove: list[WorkspacePackage] = field(default_factory=list)

    @classmethod
    def add_packages(
        cls,
        requests: list[PackageRequest],
        current: list[WorkspacePackage],
    ) -> "PackageChangeSet":
        """Change set for installing `requests` into a workspace bound to `current`.

        Current bindings take part in the merge through the version spec they were
        requested with, so a new request conflicting with an existing binding's
        request is a conflict.

        Raises:
            ConflictError: If any name has incompatible requests
        """
        bound = {pkg.name: pkg for pkg in current}
        merged = merge_package_requests([pkg.as_request() for pkg in current] + list(requests))
        requested_names = {request.name for request in requests}

        changeset = cls()
        for request in merged:
            existing = bound.get(request.name)
            if existing is None:
                changeset.add.append(request)
            elif request.name in requested_names and not request.version.matches(existing.version):
                changeset.change.append(request)

        logger.debug(f"Install change set: add={changeset.add} change={changeset.change}")
        return changeset

    @classmethod
    def update_packages(
        cls,
        requests: list[PackageRequest],
        current: list[WorkspacePackage],
    ) -> "PackageChangeSet":
        """Change set for updating `requests`, or every binding when `requests` is empty.

        Whether a newer version exists is decided later, against known
        packages; packages without one drop out silently.

        Raises:
            PackageNotFoundError: If a named package is not bound in the workspace
            ConflictError: If any name has incompatible requests
        """
        if not requests:
            requests = [PackageRequest(name=pkg.name) for pkg in current]

        bound_names = {pkg.name for pkg in current}
        missing = [request.name for request in requests if request.name not in bound_names]
        if missing:
            raise _not_installed(missing)

        return cls(change=merge_package_requests(requests))

    @classmethod
    def remove_packages(
        cls,
        requests: list[PackageRequest],
        current: list[WorkspacePackage],
    ) -> "PackageChangeSet":
        """Change set for removing `requests`.

        Every request must match a current binding; this is checked for all
        of them before anything is removed.

        Raises:
            PackageNotFoundError: Naming every request without a matching binding
        """
        bound = {pkg.name: pkg for pkg in current}
        missing = []
        remove: dict[str, WorkspacePackage] = {}
        for request in requests:
            existing = bound.get(request.name)
            if existing is None or not request.version.matches(existing.version):
                missing.append(str(request))
                continue
            remove[existing.name] = existing

        if missing:
            raise _not_installed(missing)

        return cls(remove=list(remove.values()))

    def is_empty(self) -> bool:
        return not (self.add or self.change or self.remove)


def _not_installed(names: list[str]) -> PackageNotFoundError:
    if len(names) == 1:
        return PackageNotFoundError(f"package {names[0]} is not installed", context={"names": names})
    return PackageNotFoundError(f"packages {', '.join(names)} are not installed", context={"names": names})
