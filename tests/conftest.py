"""Shared fixtures: an isolated store, config and fake collaborators."""

import asyncio
from datetime import UTC
from datetime import datetime
from pathlib import Path

import pytest
from pkgpool import BuildResult
from pkgpool import Installer
from pkgpool import Manifest
from pkgpool import ManifestError
from pkgpool import PoolConfig
from pkgpool import Registry
from pkgpool import StateStore

REGISTRY_URI = "/registries/test-registry.toml"

TEST_MANIFEST = """
schema_version = 1
name = "test-registry"
uri = "/registries/test-registry.toml"
description = "Registry used by the test suite"

[[packages]]
name = "test-package"
version = "0.1.0"
description = "A package for testing"
homepage = "https://example.invalid/test-package"
license = "MIT"
source = "https://example.invalid/test-package-0.1.0.tar.gz"
build = "create bin/test-package"
artifacts = ["bin/test-package"]

[[packages]]
name = "test-package"
version = "0.1.1"
description = "A package for testing"
source = "https://example.invalid/test-package-0.1.1.tar.gz"
build = "create bin/test-package"
artifacts = ["bin/test-package"]

[[packages]]
name = "another-package"
version = "0.2.0"
source = "https://example.invalid/another-package-0.2.0.tar.gz"
build = "create bin/another-package lib/another/data.txt"
artifacts = ["bin/another-package", "lib/another"]

[[packages]]
name = "failing-build"
version = "1.0.0"
source = "https://example.invalid/failing-build-1.0.0.tar.gz"
build = "exit 2"
artifacts = ["bin/failing-build"]

[[packages]]
name = "meta-package"
version = "1.0.0"
description = "Groups nothing, builds nothing"
"""


class MockFetcher:
    """Mock manifest fetcher serving manifests from memory, keyed by registry URI."""

    def __init__(self, manifests: dict[str, str] | None = None):
        self.manifests = dict(manifests or {REGISTRY_URI: TEST_MANIFEST})
        self.fetched: list[str] = []

    async def fetch(self, registry) -> str:
        self.fetched.append(str(registry.uri))
        if str(registry.uri) not in self.manifests:
            raise ManifestError(f"failed to read manifest at {registry.uri}")
        return self.manifests[str(registry.uri)]


class MockDownloader:
    """Mock downloader returning fixed content and recording requested URLs."""

    def __init__(self, content: bytes = b"source archive"):
        self.content = content
        self.downloaded: list[str] = []

    async def download(self, url: str) -> bytes:
        self.downloaded.append(url)
        return self.content

    async def stream(self, url: str):
        self.downloaded.append(url)
        yield self.content[:6]
        yield self.content[6:]


class MockBuilder:
    """
    Mock builder interpreting two commands:

    - `create PATH...` writes each PATH (relative to the build directory)
    - `exit N` fails with exit code N
    """

    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.calls: list[tuple[str, Path]] = []

    async def build(self, command: str, working_dir: Path) -> BuildResult:
        self.calls.append((command, working_dir))
        await asyncio.sleep(self.delay)

        verb, *args = command.split()
        if verb == "exit":
            return BuildResult(exit_code=int(args[0]), stdout="building\n", stderr="boom\n")

        for arg in args:
            path = working_dir / arg
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"built {arg}\n")
        return BuildResult(exit_code=0, stdout="built\n")


def register_test_registry(store: StateStore, text: str = TEST_MANIFEST, uri: str = REGISTRY_URI) -> Registry:
    """Register a manifest's packages directly, without a fetcher."""
    manifest = Manifest.from_toml(text)
    registry = Registry(uri, name=manifest.name, last_fetched=datetime.now(UTC))
    store.add_registry(registry, [pkg.to_known(manifest.name) for pkg in manifest.packages])
    return registry


@pytest.fixture
def config(tmp_path):
    return PoolConfig(
        state_db=tmp_path / "state" / "state.db",
        package_root=tmp_path / "packages",
        workspace_root=tmp_path / "workspaces",
    )


@pytest.fixture
def store(config):
    state = StateStore(config.state_db)
    yield state
    state.close()


@pytest.fixture
def fetcher():
    return MockFetcher()


@pytest.fixture
def downloader():
    return MockDownloader()


@pytest.fixture
def builder():
    return MockBuilder()


@pytest.fixture
def installer(store, config, downloader, builder):
    register_test_registry(store)
    return Installer(store, config, downloader, builder)
