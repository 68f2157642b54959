"""Persistent package manager state, backed by SQLite.

Tracks registries, known packages, workspaces, workspace bindings and pool
entries.

Per KERNEL_PHILOSOPHY:
- The database path is app policy - injected, never hardcoded.
- Callers use typed operations only, never raw queries.

Per IMPLEMENTATION_PHILOSOPHY:
- Every multi-step sequence (check + write) runs in one IMMEDIATE
  transaction, so concurrent tasks and processes cannot interleave inside it.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC
from datetime import datetime
from datetime import timedelta
from pathlib import Path

from .exceptions import AlreadyExistsError
from .exceptions import PackageNotFoundError
from .exceptions import RegistryCollisionError
from .exceptions import StoreError
from .packages import InstalledPackage
from .packages import KnownPackage
from .packages import WorkspacePackage
from .registry import Registry
from .version import VersionSpec

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
GLOBAL_WORKSPACE = "global"

# A build claim older than this is assumed to belong to a dead process.
STALE_CLAIM_AGE = timedelta(hours=1)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT NOT NULL PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS registries (
    name TEXT NOT NULL PRIMARY KEY,
    uri TEXT NOT NULL UNIQUE,
    last_fetched TEXT
);

CREATE TABLE IF NOT EXISTS known_packages (
    name TEXT NOT NULL,
    version TEXT NOT NULL,
    description TEXT,
    homepage TEXT,
    license TEXT,
    source TEXT,
    build TEXT,
    artifacts TEXT NOT NULL DEFAULT '[]',
    registry TEXT NOT NULL,
    PRIMARY KEY (name, version),
    FOREIGN KEY (registry) REFERENCES registries (name) ON UPDATE CASCADE ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS installed_packages (
    name TEXT NOT NULL,
    version TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'ready',
    claimed_at TEXT,
    PRIMARY KEY (name, version)
);

CREATE TABLE IF NOT EXISTS workspaces (
    name TEXT NOT NULL PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS workspace_packages (
    workspace TEXT NOT NULL,
    name TEXT NOT NULL,
    version TEXT NOT NULL,
    requested TEXT NOT NULL,
    PRIMARY KEY (workspace, name),
    FOREIGN KEY (workspace) REFERENCES workspaces (name) ON DELETE CASCADE,
    FOREIGN KEY (name, version) REFERENCES installed_packages (name, version)
);
"""

_KNOWN_COLUMNS = "name, version, description, homepage, license, source, build, artifacts, registry"


class StateStore:
    """
    State store with injected database path.

    Use ":memory:" for a throwaway store (tests).

    Example:
        >>> store = StateStore(Path.home() / ".config" / "pkgpool" / "state.db")
        >>> store.workspaces()
        ['global']
    """

    def __init__(self, db_path: Path | str):
        """Open (and initialize if new) the state database.

        Args:
            db_path: Path to the SQLite file, or ":memory:"

        Raises:
            StoreError: If the database cannot be opened or has a newer schema
        """
        self.db_path = db_path
        try:
            if str(db_path) != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"failed to open state database {db_path}: {e}") from e
        self._init_schema()

    def _init_schema(self) -> None:
        with self._transaction() as db:
            for statement in _SCHEMA.split(";"):
                if statement.strip():
                    db.execute(statement)
            db.execute(
                "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            db.execute("INSERT OR IGNORE INTO workspaces (name) VALUES (?)", (GLOBAL_WORKSPACE,))
            row = db.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()

        if int(row["value"]) > SCHEMA_VERSION:
            raise StoreError(f"unsupported database schema version {row['value']}")
        logger.debug(f"Opened state database {self.db_path}")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one IMMEDIATE transaction; wrap sqlite errors in StoreError."""
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError(f"failed to begin transaction: {e}") from e
        try:
            yield self._conn
        except sqlite3.Error as e:
            self._conn.execute("ROLLBACK")
            raise StoreError(f"state database operation failed: {e}") from e
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StoreError(f"failed to commit transaction: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"state database query failed: {e}") from e

    def close(self) -> None:
        self._conn.close()

    # Registries

    def add_registry(self, registry: Registry, packages: list[KnownPackage]) -> None:
        """
        Register a new registry together with its known packages.

        Raises:
            AlreadyExistsError: If a registry with the same name or URI exists
            RegistryCollisionError: If another registry already provides one of the packages
        """
        with self._transaction() as db:
            existing = db.execute(
                "SELECT name FROM registries WHERE name = ? OR uri = ?",
                (registry.name, str(registry.uri)),
            ).fetchone()
            if existing is not None:
                raise AlreadyExistsError(
                    f"registry {existing['name']} already exists",
                    context={"registry": existing["name"], "uri": str(registry.uri)},
                )
            self._check_collisions(db, registry.name, packages)
            db.execute(
                "INSERT INTO registries (name, uri, last_fetched) VALUES (?, ?, ?)",
                (registry.name, str(registry.uri), _format_time(registry.last_fetched)),
            )
            self._upsert_known_packages(db, packages)

        logger.debug(f"Added registry {registry.name} with {len(packages)} packages")

    def sync_registry(
        self,
        uri: str,
        name: str,
        packages: list[KnownPackage],
        fetched_at: datetime,
    ) -> tuple[int, int]:
        """
        Replace a registry's known packages with a freshly fetched set.

        Collision check, removal of vanished packages, upsert and timestamp
        update happen in one transaction: either all of it is written or none.

        Args:
            uri: URI of the registry being refreshed
            name: Registry name from the fetched manifest
            packages: Every package the manifest lists, attributed to `name`
            fetched_at: Fetch timestamp

        Returns:
            (number of new package versions, number of removed package versions)

        Raises:
            PackageNotFoundError: If no registry has this URI
            RegistryCollisionError: If another registry already provides one of the packages
        """
        with self._transaction() as db:
            row = db.execute("SELECT name FROM registries WHERE uri = ?", (uri,)).fetchone()
            if row is None:
                raise PackageNotFoundError(f"registry {uri} does not exist", context={"uri": uri})
            if row["name"] != name:
                logger.warning(f"Registry {uri} renamed itself from {row['name']} to {name}")
                db.execute("UPDATE registries SET name = ? WHERE uri = ?", (name, uri))

            self._check_collisions(db, name, packages)

            previous = {
                (r["name"], r["version"])
                for r in db.execute("SELECT name, version FROM known_packages WHERE registry = ?", (name,))
            }
            current = {pkg.key for pkg in packages}
            vanished = previous - current
            db.executemany(
                "DELETE FROM known_packages WHERE name = ? AND version = ? AND registry = ?",
                [(pkg_name, version, name) for pkg_name, version in vanished],
            )
            self._upsert_known_packages(db, packages)
            db.execute(
                "UPDATE registries SET last_fetched = ? WHERE uri = ?",
                (_format_time(fetched_at), uri),
            )

        added = len(current - previous)
        logger.debug(f"Synced registry {name}: {added} new, {len(vanished)} removed")
        return added, len(vanished)

    def _check_collisions(self, db: sqlite3.Connection, registry: str, packages: list[KnownPackage]) -> None:
        collisions: dict[str, list[str]] = {}
        for pkg in packages:
            row = db.execute(
                "SELECT registry FROM known_packages WHERE name = ? AND version = ? AND registry != ?",
                (pkg.name, pkg.version, registry),
            ).fetchone()
            if row is not None:
                collisions.setdefault(row["registry"], []).append(str(pkg))

        if collisions:
            other, colliding = next(iter(collisions.items()))
            raise RegistryCollisionError(
                f"registry {registry} provides {', '.join(colliding)}, "
                f"which registry {other} already provides",
                registry=registry,
                other_registry=other,
                packages=colliding,
            )

    def _upsert_known_packages(self, db: sqlite3.Connection, packages: list[KnownPackage]) -> None:
        db.executemany(
            f"""
            INSERT INTO known_packages ({_KNOWN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (name, version) DO UPDATE SET
                description = excluded.description,
                homepage = excluded.homepage,
                license = excluded.license,
                source = excluded.source,
                build = excluded.build,
                artifacts = excluded.artifacts,
                registry = excluded.registry
            """,
            [
                (
                    pkg.name,
                    pkg.version,
                    pkg.description,
                    pkg.homepage,
                    pkg.license,
                    pkg.source,
                    pkg.build,
                    json.dumps(list(pkg.artifacts)),
                    pkg.registry,
                )
                for pkg in packages
            ],
        )

    def get_registry(self, name_or_uri: str) -> Registry | None:
        rows = self._query(
            "SELECT name, uri, last_fetched FROM registries WHERE name = ? OR uri = ?",
            (name_or_uri, name_or_uri),
        )
        return _registry_from_row(rows[0]) if rows else None

    def registries(self) -> list[Registry]:
        rows = self._query("SELECT name, uri, last_fetched FROM registries ORDER BY name")
        return [_registry_from_row(row) for row in rows]

    def remove_registry(self, name_or_uri: str) -> None:
        """
        Remove a registry and every package it made known.

        Raises:
            PackageNotFoundError: If no registry has this name or URI
        """
        with self._transaction() as db:
            deleted = db.execute(
                "DELETE FROM registries WHERE name = ? OR uri = ?",
                (name_or_uri, name_or_uri),
            ).rowcount
        if not deleted:
            raise PackageNotFoundError(
                f"registry {name_or_uri} does not exist",
                context={"registry": name_or_uri},
            )
        logger.debug(f"Removed registry {name_or_uri}")

    # Known packages

    def known_package_versions(self, name: str) -> list[str]:
        """All known versions of a package, newest first (string order)."""
        rows = self._query("SELECT version FROM known_packages WHERE name = ? ORDER BY version DESC", (name,))
        return [row["version"] for row in rows]

    def get_known_package(self, name: str, version: str) -> KnownPackage | None:
        rows = self._query(
            f"SELECT {_KNOWN_COLUMNS} FROM known_packages WHERE name = ? AND version = ?",
            (name, version),
        )
        return _known_from_row(rows[0]) if rows else None

    def search_known_packages(self, query: str, latest_only: bool = True) -> list[KnownPackage]:
        """Known packages whose name contains `query`, optionally only the latest version of each."""
        sql = f"SELECT {_KNOWN_COLUMNS} FROM known_packages k WHERE instr(name, ?) > 0"
        if latest_only:
            sql += " AND version = (SELECT MAX(version) FROM known_packages WHERE name = k.name)"
        rows = self._query(sql + " ORDER BY name, version DESC", (query,))
        return [_known_from_row(row) for row in rows]

    # Workspaces

    def add_workspace(self, name: str) -> None:
        """
        Raises:
            AlreadyExistsError: If the workspace exists
        """
        with self._transaction() as db:
            inserted = db.execute("INSERT OR IGNORE INTO workspaces (name) VALUES (?)", (name,)).rowcount
        if not inserted:
            raise AlreadyExistsError(f"workspace {name} already exists", context={"workspace": name})

    def workspace_exists(self, name: str) -> bool:
        return bool(self._query("SELECT 1 FROM workspaces WHERE name = ?", (name,)))

    def workspaces(self) -> list[str]:
        return [row["name"] for row in self._query("SELECT name FROM workspaces ORDER BY name")]

    def remove_workspace(self, name: str) -> None:
        """
        Remove a workspace and all of its bindings.

        Raises:
            PackageNotFoundError: If the workspace does not exist
        """
        with self._transaction() as db:
            deleted = db.execute("DELETE FROM workspaces WHERE name = ?", (name,)).rowcount
        if not deleted:
            raise PackageNotFoundError(f"workspace {name} does not exist", context={"workspace": name})

    # Workspace bindings

    def workspace_packages(self, workspace: str) -> list[WorkspacePackage]:
        rows = self._query(
            "SELECT workspace, name, version, requested FROM workspace_packages WHERE workspace = ? ORDER BY name",
            (workspace,),
        )
        return [_binding_from_row(row) for row in rows]

    def get_workspace_package(self, workspace: str, name: str) -> WorkspacePackage | None:
        rows = self._query(
            "SELECT workspace, name, version, requested FROM workspace_packages WHERE workspace = ? AND name = ?",
            (workspace, name),
        )
        return _binding_from_row(rows[0]) if rows else None

    def add_workspace_package(self, binding: WorkspacePackage) -> None:
        """Bind a version in a workspace, replacing any binding for the same name."""
        with self._transaction() as db:
            db.execute(
                """
                INSERT INTO workspace_packages (workspace, name, version, requested) VALUES (?, ?, ?, ?)
                ON CONFLICT (workspace, name) DO UPDATE SET
                    version = excluded.version,
                    requested = excluded.requested
                """,
                (binding.workspace, binding.name, binding.version, str(binding.requested)),
            )

    def remove_workspace_package(self, binding: WorkspacePackage) -> bool:
        """Drop a binding if it still points at the same version. Returns True if removed."""
        with self._transaction() as db:
            deleted = db.execute(
                "DELETE FROM workspace_packages WHERE workspace = ? AND name = ? AND version = ?",
                (binding.workspace, binding.name, binding.version),
            ).rowcount
        return bool(deleted)

    # Installed packages (pool entries)

    def get_installed_package(self, name: str, version: str) -> InstalledPackage | None:
        rows = self._query(
            "SELECT name, version, status FROM installed_packages WHERE name = ? AND version = ?",
            (name, version),
        )
        return _installed_from_row(rows[0]) if rows else None

    def installed_packages(self) -> list[InstalledPackage]:
        rows = self._query("SELECT name, version, status FROM installed_packages ORDER BY name, version")
        return [_installed_from_row(row) for row in rows]

    def claim_installed_package(self, name: str, version: str) -> bool:
        """
        Atomically claim the right to build (name, version) into the pool.

        Returns True if the caller now holds the claim: no row existed, or an
        unfinished claim had gone stale. Returns False if the entry is ready or
        another claim is in progress.
        """
        now = datetime.now(UTC)
        with self._transaction() as db:
            inserted = db.execute(
                "INSERT OR IGNORE INTO installed_packages (name, version, status, claimed_at) "
                "VALUES (?, ?, 'building', ?)",
                (name, version, _format_time(now)),
            ).rowcount
            if inserted:
                return True
            taken_over = db.execute(
                "UPDATE installed_packages SET claimed_at = ? "
                "WHERE name = ? AND version = ? AND status = 'building' AND claimed_at < ?",
                (_format_time(now), name, version, _format_time(now - STALE_CLAIM_AGE)),
            ).rowcount
        if taken_over:
            logger.warning(f"Took over stale build claim for {name}@{version}")
        return bool(taken_over)

    def complete_installed_package(self, name: str, version: str) -> None:
        """Mark a claimed pool entry as built."""
        with self._transaction() as db:
            db.execute(
                "UPDATE installed_packages SET status = 'ready', claimed_at = NULL WHERE name = ? AND version = ?",
                (name, version),
            )

    def release_installed_package_claim(self, name: str, version: str) -> None:
        """Give up an unfinished claim so another requester can build."""
        with self._transaction() as db:
            db.execute(
                "DELETE FROM installed_packages WHERE name = ? AND version = ? AND status = 'building'",
                (name, version),
            )

    def is_installed_package_referenced(self, name: str, version: str) -> bool:
        return bool(
            self._query(
                "SELECT 1 FROM workspace_packages WHERE name = ? AND version = ? LIMIT 1",
                (name, version),
            )
        )

    def unused_installed_packages(self) -> list[InstalledPackage]:
        """Built pool entries that no workspace (in any workspace) binds."""
        rows = self._query(
            """
            SELECT i.name, i.version, i.status FROM installed_packages i
            WHERE i.status = 'ready' AND NOT EXISTS (
                SELECT 1 FROM workspace_packages w WHERE w.name = i.name AND w.version = i.version
            )
            ORDER BY i.name, i.version
            """
        )
        return [_installed_from_row(row) for row in rows]

    def remove_installed_package(self, name: str, version: str) -> bool:
        """Remove a pool entry unless a workspace binds it. Returns True if removed."""
        with self._transaction() as db:
            deleted = db.execute(
                """
                DELETE FROM installed_packages WHERE name = ? AND version = ? AND NOT EXISTS (
                    SELECT 1 FROM workspace_packages w WHERE w.name = ? AND w.version = ?
                )
                """,
                (name, version, name, version),
            ).rowcount
        return bool(deleted)


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _registry_from_row(row: sqlite3.Row) -> Registry:
    last_fetched = datetime.fromisoformat(row["last_fetched"]) if row["last_fetched"] else None
    return Registry(row["uri"], name=row["name"], last_fetched=last_fetched)


def _known_from_row(row: sqlite3.Row) -> KnownPackage:
    return KnownPackage(
        name=row["name"],
        version=row["version"],
        registry=row["registry"],
        description=row["description"],
        homepage=row["homepage"],
        license=row["license"],
        source=row["source"],
        build=row["build"],
        artifacts=tuple(json.loads(row["artifacts"])),
    )


def _binding_from_row(row: sqlite3.Row) -> WorkspacePackage:
    return WorkspacePackage(
        workspace=row["workspace"],
        name=row["name"],
        version=row["version"],
        requested=VersionSpec.parse(row["requested"]),
    )


def _installed_from_row(row: sqlite3.Row) -> InstalledPackage:
    return InstalledPackage(name=row["name"], version=row["version"], ready=row["status"] == "ready")
