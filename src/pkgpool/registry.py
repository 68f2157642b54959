"""Registries - named sources of package manifests.

A registry is constructed unnamed from a URI. `initialize` performs the first
fetch, takes the name the manifest declares and persists it; later `fetch`
calls reconcile known packages with the manifest.

Per KERNEL_PHILOSOPHY: How manifests are retrieved is injected (FetcherProtocol).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC
from datetime import datetime
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import InvalidNameError
from .exceptions import ManifestError
from .exceptions import PackageError
from .protocols import DownloaderProtocol
from .protocols import FetcherProtocol
from .schema import Manifest
from .utils import gather_bounded

if TYPE_CHECKING:
    from .store import StateStore

logger = logging.getLogger(__name__)


class UriScheme(str, Enum):
    FILE = "file"
    HTTP = "http"
    HTTPS = "https"


@dataclass(frozen=True)
class RegistryUri:
    """Location of a registry manifest: a local file or an HTTP(S) URL."""

    scheme: UriScheme
    location: str

    @classmethod
    def parse(cls, text: str) -> "RegistryUri":
        if text.startswith("https://"):
            return cls(UriScheme.HTTPS, text)
        if text.startswith("http://"):
            return cls(UriScheme.HTTP, text)
        return cls(UriScheme.FILE, text)

    @property
    def is_remote(self) -> bool:
        return self.scheme is not UriScheme.FILE

    @property
    def path(self) -> Path:
        return Path(self.location).expanduser()

    def __str__(self) -> str:
        return self.location


class Registry:
    """
    A registry and its fetch state.

    Example:
        >>> registry = Registry("https://example.invalid/registry.toml")
        >>> await registry.initialize(store, fetcher)
        >>> registry.name
        'main'
    """

    def __init__(
        self,
        uri: "str | RegistryUri",
        name: str | None = None,
        last_fetched: datetime | None = None,
    ):
        self.uri = uri if isinstance(uri, RegistryUri) else RegistryUri.parse(uri)
        self.name = name
        self.last_fetched = last_fetched

    async def _fetch_manifest(self, fetcher: FetcherProtocol) -> Manifest:
        text = await fetcher.fetch(self)
        manifest = Manifest.from_toml(text)

        unsafe = manifest.unsafe_packages()
        if unsafe:
            raise InvalidNameError(
                f"registry {self.uri} lists packages with names or versions that are not "
                f"file system safe: {', '.join(unsafe)}",
                context={"uri": str(self.uri), "packages": unsafe},
            )
        return manifest

    async def initialize(self, store: "StateStore", fetcher: FetcherProtocol) -> Manifest:
        """
        First fetch: name the registry after its manifest and persist it with its packages.

        Raises:
            AlreadyExistsError: If a registry with this name or URI exists
            RegistryCollisionError: If another registry already provides one of its packages
            InvalidNameError: If the manifest lists unsafe names or versions
            ManifestError: If the manifest cannot be parsed
        """
        manifest = await self._fetch_manifest(fetcher)
        fetched_at = datetime.now(UTC)

        self.name = manifest.name
        self.last_fetched = fetched_at
        store.add_registry(self, [pkg.to_known(manifest.name) for pkg in manifest.packages])

        logger.info(f"Added registry {self} with {len(manifest.packages)} packages")
        return manifest

    async def fetch(self, store: "StateStore", fetcher: FetcherProtocol) -> Manifest:
        """
        Refresh known packages from the registry's manifest.

        Packages gone from the manifest are forgotten, every listed package is
        upserted, and the fetch timestamp is updated. Nothing is written if
        any check fails.

        Raises:
            PackageNotFoundError: If the registry was never initialized
            RegistryCollisionError: If another registry already provides one of its packages
            InvalidNameError: If the manifest lists unsafe names or versions
            ManifestError: If the manifest cannot be parsed
        """
        manifest = await self._fetch_manifest(fetcher)
        fetched_at = datetime.now(UTC)

        added, removed = store.sync_registry(
            str(self.uri),
            manifest.name,
            [pkg.to_known(manifest.name) for pkg in manifest.packages],
            fetched_at,
        )
        self.name = manifest.name
        self.last_fetched = fetched_at

        logger.info(f"Fetched registry {self}: {added} new, {removed} removed")
        return manifest

    def should_update(self, interval: timedelta, now: datetime | None = None) -> bool:
        """Local files are always stale; remote registries once `interval` has passed."""
        if not self.uri.is_remote or self.last_fetched is None:
            return True
        now = now or datetime.now(UTC)
        return now - self.last_fetched >= interval

    def __str__(self) -> str:
        return f"{self.uri} ({self.name})"


class ManifestFetcher:
    """Fetcher reading local manifests from disk and remote ones through a downloader."""

    def __init__(self, downloader: DownloaderProtocol):
        self.downloader = downloader

    async def fetch(self, registry: Registry) -> str:
        """
        Raises:
            ManifestError: If a local manifest cannot be read or remote content is not UTF-8
            DownloadError: If a remote manifest cannot be downloaded
        """
        if not registry.uri.is_remote:
            try:
                return await asyncio.to_thread(registry.uri.path.read_text)
            except OSError as e:
                raise ManifestError(f"failed to read manifest at {registry.uri}: {e}") from e

        content = await self.downloader.download(str(registry.uri))
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ManifestError(f"failed to parse downloaded manifest from {registry.uri} as utf-8") from e


async def add_registry(store: "StateStore", uri: str, fetcher: FetcherProtocol) -> Registry:
    """Add and initialize a registry from its URI."""
    registry = Registry(uri)
    await registry.initialize(store, fetcher)
    return registry


async def remove_registry(store: "StateStore", name_or_uri: str) -> None:
    """
    Remove a registry by name or URI, forgetting the packages it provided.

    Raises:
        PackageNotFoundError: If the registry does not exist
    """
    store.remove_registry(name_or_uri)
    logger.info(f"Removed registry {name_or_uri}")


async def fetch_registries(
    store: "StateStore",
    fetcher: FetcherProtocol,
    force: bool = False,
    interval: timedelta = timedelta(hours=1),
    limit: int | None = None,
) -> list[Registry]:
    """
    Refresh every registry that is due (or all of them, with `force`), concurrently.

    Every registry gets its attempt before any failure is reported.

    Returns:
        The registries that were fetched successfully

    Raises:
        PackageError: The single failure, or a summary when several registries failed
    """
    due = [registry for registry in store.registries() if force or registry.should_update(interval)]

    async def fetch_one(registry: Registry) -> PackageError | None:
        try:
            await registry.fetch(store, fetcher)
        except PackageError as e:
            logger.error(f"Failed to fetch registry {registry}: {e}")
            return e
        return None

    errors = await gather_bounded((fetch_one(registry) for registry in due), limit)

    failures = {str(registry.uri): error for registry, error in zip(due, errors) if error is not None}
    if len(failures) == 1:
        raise next(iter(failures.values()))
    if failures:
        raise PackageError(
            f"failed to update registries: {', '.join(failures)}",
            context={"errors": {uri: str(error) for uri, error in failures.items()}},
        )
    return [registry for registry, error in zip(due, errors) if error is None]
