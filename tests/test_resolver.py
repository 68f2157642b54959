"""Tests for resolving requests against known packages."""

import pytest
from conftest import register_test_registry
from pkgpool import PackageNotFoundError
from pkgpool import PackageRequest
from pkgpool import PackageResolver
from pkgpool import VersionSpec
from pkgpool import WorkspacePackage


@pytest.fixture
def resolver(store):
    register_test_registry(store)
    return PackageResolver(store)


def test_resolve_known_picks_newest_match(resolver):
    assert str(resolver.resolve_known(PackageRequest.parse("test-package"))) == "test-package@0.1.1"
    assert str(resolver.resolve_known(PackageRequest.parse("test-package@0.1.0"))) == "test-package@0.1.0"
    assert str(resolver.resolve_known(PackageRequest.parse("test-package@~0.1"))) == "test-package@0.1.1"


def test_resolve_known_errors(resolver):
    with pytest.raises(PackageNotFoundError, match="package missing is not known"):
        resolver.resolve_known(PackageRequest.parse("missing"))
    with pytest.raises(PackageNotFoundError, match="package test-package@~0.2 is not known"):
        resolver.resolve_known(PackageRequest.parse("test-package@~0.2"))


def test_available_update(resolver):
    old = WorkspacePackage("global", "test-package", "0.1.0")
    current = WorkspacePackage("global", "test-package", "0.1.1")

    assert str(resolver.available_update(old)) == "test-package@0.1.1"
    assert resolver.available_update(current) is None
    assert resolver.available_update(old, VersionSpec.exact("0.1.0")) is None
