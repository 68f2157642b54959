"""Tests for the installer: install, update, remove and garbage collection."""

import asyncio

import pytest
from conftest import register_test_registry
from pkgpool import ConflictError
from pkgpool import Installer
from pkgpool import InvalidNameError
from pkgpool import KnownPackage
from pkgpool import PackageNotFoundError
from pkgpool import Registry
from pkgpool import StateStore
from pkgpool import add_workspace
from pkgpool import remove_workspace


def bound(installer: Installer, workspace: str = "") -> list[str]:
    return [str(pkg) for pkg in installer.list_packages(workspace)]


def link_target(installer: Installer, name: str, workspace: str = ""):
    return (installer.workspace(workspace).bin_directory / name).resolve()


@pytest.mark.asyncio
async def test_install_latest_version(installer):
    """Test installing a package without a version resolves to the newest."""
    logs = await installer.install_packages(["test-package"])

    assert len(logs) == 1
    assert logs[0].success
    assert logs[0].new_install
    assert logs[0].summary() == "Installed test-package@0.1.1"
    assert bound(installer) == ["test-package@0.1.1 (resolved from *)"]
    assert link_target(installer, "test-package") == (
        installer.pool.directory("test-package", "0.1.1") / "bin" / "test-package"
    ).resolve()


@pytest.mark.asyncio
async def test_broader_request_keeps_existing_binding(installer, builder):
    """Installing an exact version then the bare name changes nothing."""
    await installer.install_packages(["test-package@0.1.0"])
    logs = await installer.install_packages(["test-package"])

    assert logs == []
    assert bound(installer) == ["test-package@0.1.0 (resolved from 0.1.0)"]
    assert len(builder.calls) == 1


@pytest.mark.asyncio
async def test_narrower_request_changes_binding(installer):
    """Installing the bare name then an exact version switches to that version."""
    await installer.install_packages(["test-package"])
    logs = await installer.install_packages(["test-package@0.1.0"])

    assert [log.summary() for log in logs] == ["Installed test-package@0.1.0"]
    assert bound(installer) == ["test-package@0.1.0 (resolved from 0.1.0)"]
    assert link_target(installer, "test-package") == (
        installer.pool.directory("test-package", "0.1.0") / "bin" / "test-package"
    ).resolve()


@pytest.mark.asyncio
async def test_conflicting_exact_versions(installer, builder):
    await installer.install_packages(["test-package@0.1.0"])

    with pytest.raises(ConflictError, match="conflicting requests for dependency 'test-package'"):
        await installer.install_packages(["test-package@0.1.1"])
    assert bound(installer) == ["test-package@0.1.0 (resolved from 0.1.0)"]
    assert len(builder.calls) == 1


@pytest.mark.asyncio
async def test_conflicting_requests_in_one_call(installer, builder):
    with pytest.raises(ConflictError):
        await installer.install_packages(["another-package", "test-package@0.1.0", "test-package@0.1.1"])
    assert bound(installer) == []
    assert builder.calls == []


@pytest.mark.asyncio
async def test_unknown_package_aborts_before_installing(installer, builder):
    with pytest.raises(PackageNotFoundError, match="package nope is not known"):
        await installer.install_packages(["another-package", "nope"])
    assert builder.calls == []
    assert bound(installer) == []


@pytest.mark.asyncio
async def test_unknown_version_lists_known_versions(installer):
    with pytest.raises(PackageNotFoundError, match="but these versions are: 0.1.1, 0.1.0"):
        await installer.install_packages(["test-package@9.9"])


@pytest.mark.asyncio
async def test_invalid_request(installer):
    with pytest.raises(InvalidNameError):
        await installer.install_packages(["../test-package"])


@pytest.mark.asyncio
async def test_unknown_workspace(installer):
    with pytest.raises(PackageNotFoundError, match="workspace dev does not exist"):
        await installer.install_packages(["test-package"], "dev")


@pytest.mark.asyncio
async def test_failed_build_does_not_stop_siblings(installer, store):
    logs = await installer.install_packages(["failing-build", "another-package"])

    failed, installed = logs
    assert not failed.success
    assert failed.exit_code == 2
    assert failed.stdout == "building\n"
    assert installed.success
    assert bound(installer) == ["another-package@0.2.0 (resolved from *)"]
    assert store.get_installed_package("failing-build", "1.0.0") is None

    link = installer.workspace().bin_directory / "another-package"
    assert link.is_symlink()


@pytest.mark.asyncio
async def test_meta_package(installer):
    logs = await installer.install_packages(["meta-package"])

    assert logs[0].success
    assert bound(installer) == ["meta-package@1.0.0 (resolved from *)"]


@pytest.mark.asyncio
async def test_concurrent_installs_share_one_build(installer, store, config, builder):
    """Two workspaces requesting the same version concurrently build it once."""
    await add_workspace(store, config, "dev")

    global_logs, dev_logs = await asyncio.gather(
        installer.install_packages(["test-package"]),
        installer.install_packages(["test-package"], "dev"),
    )

    assert len(builder.calls) == 1
    assert [log.new_install for log in global_logs + dev_logs].count(True) == 1
    assert bound(installer) == bound(installer, "dev") == ["test-package@0.1.1 (resolved from *)"]
    assert link_target(installer, "test-package") == link_target(installer, "test-package", "dev")


@pytest.mark.asyncio
async def test_separate_store_connections_share_one_build(store, config, downloader, builder):
    """Installers that share only the state database still build a version once."""
    register_test_registry(store)
    await add_workspace(store, config, "dev")
    other_store = StateStore(config.state_db)
    try:
        first = Installer(store, config, downloader, builder)
        second = Installer(other_store, config, downloader, builder)

        global_logs, dev_logs = await asyncio.gather(
            first.install_packages(["test-package"]),
            second.install_packages(["test-package"], "dev"),
        )
    finally:
        other_store.close()

    assert len(builder.calls) == 1
    assert [log.new_install for log in global_logs + dev_logs].count(True) == 1
    assert store.get_installed_package("test-package", "0.1.1").ready
    assert bound(first) == bound(first, "dev") == ["test-package@0.1.1 (resolved from *)"]


@pytest.mark.asyncio
async def test_bounded_concurrency(store, config, downloader, builder):
    register_test_registry(store)
    bounded = config.model_copy(update={"max_concurrency": 1})
    installer = Installer(store, bounded, downloader, builder)

    logs = await installer.install_packages(["test-package", "another-package"])

    assert all(log.success for log in logs)
    assert len(builder.calls) == 2


@pytest.mark.asyncio
async def test_update_to_newest(installer):
    await installer.install_packages(["test-package@0.1.0"])

    logs = await installer.update_packages()

    assert [log.summary() for log in logs] == ["Installed test-package@0.1.1"]
    assert bound(installer) == ["test-package@0.1.1 (resolved from *)"]
    assert link_target(installer, "test-package") == (
        installer.pool.directory("test-package", "0.1.1") / "bin" / "test-package"
    ).resolve()


@pytest.mark.asyncio
async def test_update_skips_up_to_date(installer, builder):
    await installer.install_packages(["test-package", "another-package"])

    assert await installer.update_packages(["test-package"]) == []
    assert await installer.update_packages() == []
    assert len(builder.calls) == 2


@pytest.mark.asyncio
async def test_update_unbound_package(installer):
    with pytest.raises(PackageNotFoundError, match="package another-package is not installed"):
        await installer.update_packages(["another-package"])


@pytest.mark.asyncio
async def test_remove_package(installer, store):
    await installer.install_packages(["test-package", "another-package"])

    results = await installer.remove_packages(["test-package"])

    assert [result.summary() for result in results] == ["Uninstalled test-package@0.1.1 (resolved from *)"]
    assert bound(installer) == ["another-package@0.2.0 (resolved from *)"]
    assert not (installer.workspace().bin_directory / "test-package").is_symlink()
    # The pool entry stays until garbage collection.
    assert installer.pool.directory("test-package", "0.1.1").exists()
    assert store.get_installed_package("test-package", "0.1.1") is not None


@pytest.mark.asyncio
async def test_remove_checks_every_request_first(installer):
    await installer.install_packages(["test-package"])

    with pytest.raises(PackageNotFoundError, match="packages test-package@0.1.0, missing are not installed"):
        await installer.remove_packages(["test-package@0.1.0", "missing"])
    with pytest.raises(PackageNotFoundError, match="package missing is not installed"):
        await installer.remove_packages(["test-package", "missing"])
    assert bound(installer) == ["test-package@0.1.1 (resolved from *)"]


@pytest.mark.asyncio
async def test_garbage_collect_unused_entries(installer, store, config):
    await add_workspace(store, config, "dev")
    await installer.install_packages(["test-package"])
    await installer.install_packages(["test-package@0.1.0", "another-package"], "dev")
    await installer.install_packages(["test-package@0.1.0"])

    report = await installer.garbage_collect()

    assert [str(p) for p in report.collected] == ["test-package@0.1.1"]
    assert report.failed == {}
    assert not installer.pool.directory("test-package", "0.1.1").exists()
    assert installer.pool.directory("test-package", "0.1.0").exists()
    assert installer.pool.directory("another-package", "0.2.0").exists()
    assert [str(p) for p in store.installed_packages()] == ["another-package@0.2.0", "test-package@0.1.0"]


@pytest.mark.asyncio
async def test_garbage_collect_after_workspace_removal(installer, store, config):
    await add_workspace(store, config, "dev")
    await installer.install_packages(["another-package"], "dev")
    await remove_workspace(store, config, "dev")

    report = await installer.garbage_collect()

    assert [str(p) for p in report.collected] == ["another-package@0.2.0"]
    assert store.installed_packages() == []
    assert not (config.package_root / "another-package").exists()


@pytest.mark.asyncio
async def test_reinstall_after_garbage_collect(installer, builder):
    await installer.install_packages(["test-package"])
    await installer.remove_packages(["test-package"])
    await installer.garbage_collect()

    logs = await installer.install_packages(["test-package"])

    assert logs[0].new_install
    assert len(builder.calls) == 2


def test_show_and_search(installer):
    package = installer.show_package("test-package@~0.1")

    assert str(package) == "test-package@0.1.1"
    assert package.describe().splitlines()[-1] == "  Registry: test-registry"
    assert [str(p) for p in installer.search_packages("test")] == ["test-package@0.1.1"]
    assert [str(p) for p in installer.search_packages("test", all_versions=True)] == [
        "test-package@0.1.1",
        "test-package@0.1.0",
    ]

    with pytest.raises(PackageNotFoundError):
        installer.show_package("missing")


@pytest.mark.asyncio
async def test_sequential_requests_check_only_current_binding(installer):
    """Each request is merged with the current binding, not with earlier requests."""
    for request in ["test-package@0.1.0", "test-package@~0.1", "test-package"]:
        await installer.install_packages([request])

    assert bound(installer) == ["test-package@0.1.0 (resolved from 0.1.0)"]


@pytest.mark.asyncio
async def test_garbage_collect_keeps_entries_bound_elsewhere(installer, store, config):
    await add_workspace(store, config, "dev")
    await installer.install_packages(["test-package"])
    await installer.install_packages(["test-package"], "dev")

    await installer.remove_packages(["test-package"])
    report = await installer.garbage_collect()

    assert report.collected == []
    assert installer.pool.directory("test-package", "0.1.1").exists()
    assert bound(installer, "dev") == ["test-package@0.1.1 (resolved from *)"]

    await installer.remove_packages(["test-package"], "dev")
    report = await installer.garbage_collect()

    assert [str(p) for p in report.collected] == ["test-package@0.1.1"]
    assert not installer.pool.directory("test-package", "0.1.1").exists()


@pytest.mark.asyncio
async def test_failed_build_log_summary(installer):
    (log,) = await installer.install_packages(["failing-build"])

    assert log.summary() == (
        "Failed to install failing-build, build exited with code 2\nSTDOUT:\nbuilding\nSTDERR:\nboom\n"
    )


@pytest.mark.asyncio
async def test_missing_artifact_is_reported_not_raised(installer, store):
    broken = KnownPackage(
        "broken",
        "1.0",
        "broken-registry",
        source="https://example.invalid/broken.tar.gz",
        build="create not-the-artifact",
        artifacts=("bin/broken",),
    )
    store.add_registry(Registry("/registries/broken.toml", name="broken-registry"), [broken])

    (log,) = await installer.install_packages(["broken"])

    assert not log.success
    assert log.exit_code == -1
    assert "not found after build" in log.stderr
    assert bound(installer) == []
