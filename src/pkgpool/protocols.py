"""Protocols for the package manager's external collaborators.

Per KERNEL_PHILOSOPHY: Protocol-based extensibility over configuration.
Per IMPLEMENTATION_PHILOSOPHY: Composition over inheritance.
"""

from collections.abc import AsyncIterator
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Protocol

if TYPE_CHECKING:
    from .builder import BuildResult
    from .registry import Registry


class FetcherProtocol(Protocol):
    """Protocol for retrieving a registry's raw manifest text.

    Implementations must be safe to retry and free of side effects on the caller.

    Example implementations:
    - ManifestFetcher: local files and HTTP(S) via a downloader
    - In-memory fakes for tests
    """

    async def fetch(self, registry: "Registry") -> str:
        """Return the manifest text served by `registry`.

        Raises:
            Exception: If the manifest cannot be retrieved
        """
        ...


class DownloaderProtocol(Protocol):
    """Protocol for downloading manifests and package sources."""

    async def download(self, url: str) -> bytes:
        """Download `url` fully into memory."""
        ...

    def stream(self, url: str) -> AsyncIterator[bytes]:
        """Download `url` as a stream of byte chunks."""
        ...


class BuilderProtocol(Protocol):
    """Protocol for running a package's build command."""

    async def build(self, command: str, working_dir: Path) -> "BuildResult":
        """Run `command` in a shell inside `working_dir`.

        Returns:
            Exit status and captured output. A non-zero exit is returned, not raised.
        """
        ...
