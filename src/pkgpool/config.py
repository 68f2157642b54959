"""Package manager configuration.

Per KERNEL_PHILOSOPHY: Paths are app policy. The library never reads global
state for them; apps build a PoolConfig and inject it.
"""

import os
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

DEFAULT_REFRESH_INTERVAL = timedelta(hours=1)


class PoolConfig(BaseModel):
    """
    Roots and limits shared by the store, pool, workspaces and installer.

    Layout:
    - package_root/NAME/VERSION/   built artifacts, shared by all workspaces
    - workspace_root/NAME/bin/     per-workspace symlinks into package_root
    """

    model_config = ConfigDict(frozen=True)

    state_db: Path
    package_root: Path
    workspace_root: Path
    max_concurrency: int | None = Field(default=None, ge=1)
    registry_refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PoolConfig":
        """
        Build configuration from PKGPOOL_* environment variables.

        Variables:
        - PKGPOOL_STATE_DB (default ~/.config/pkgpool/state.db)
        - PKGPOOL_PACKAGE_ROOT (default ~/.local/share/pkgpool/packages)
        - PKGPOOL_WORKSPACE_ROOT (default ~/.local/share/pkgpool/workspaces)
        - PKGPOOL_MAX_CONCURRENCY (default unbounded)
        """
        env = os.environ if environ is None else environ
        data_dir = Path("~/.local/share/pkgpool")
        max_concurrency = env.get("PKGPOOL_MAX_CONCURRENCY")
        return cls(
            state_db=Path(env.get("PKGPOOL_STATE_DB", "~/.config/pkgpool/state.db")).expanduser(),
            package_root=Path(env.get("PKGPOOL_PACKAGE_ROOT", data_dir / "packages")).expanduser(),
            workspace_root=Path(env.get("PKGPOOL_WORKSPACE_ROOT", data_dir / "workspaces")).expanduser(),
            max_concurrency=int(max_concurrency) if max_concurrency else None,
        )
