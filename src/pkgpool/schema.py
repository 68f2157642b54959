"""Registry manifest schema - Parse manifest TOML documents.

Per KERNEL_PHILOSOPHY: The manifest format is registry policy; this module only
turns text into validated models.
Per AGENTS.md: Ruthless simplicity - use standard library (tomllib), minimal fields.

Example manifest:

    schema_version = 1
    name = "main"
    uri = "https://example.invalid/registry.toml"
    description = "Main registry"

    [[packages]]
    name = "test-package"
    version = "0.1.0"
    source = "https://example.invalid/test-package-0.1.0.tar.gz"
    build = "tar xzf test-package-0.1.0.tar.gz"
    artifacts = ["test-package-0.1.0/bin/test-package"]
"""

import tomllib

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import StrictInt
from pydantic import ValidationError

from .exceptions import ManifestError
from .packages import KnownPackage
from .utils import is_file_system_safe

SUPPORTED_SCHEMA_VERSION = 1


class ManifestPackage(BaseModel):
    """A package entry in a registry manifest."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str | None = None
    homepage: str | None = None
    license: str | None = None
    source: str | None = None
    build: str | None = None
    artifacts: list[str] = Field(default_factory=list)

    def is_file_system_safe(self) -> bool:
        return is_file_system_safe(self.name) and is_file_system_safe(self.version)

    def to_known(self, registry: str) -> KnownPackage:
        """Record this entry as known, contributed by `registry`."""
        return KnownPackage(
            name=self.name,
            version=self.version,
            registry=registry,
            description=self.description,
            homepage=self.homepage,
            license=self.license,
            source=self.source,
            build=self.build,
            artifacts=tuple(self.artifacts),
        )


class Manifest(BaseModel):
    """
    Registry manifest document.

    Only an integer `schema_version <= 1` is accepted.
    """

    model_config = ConfigDict(frozen=True)

    schema_version: StrictInt
    name: str
    uri: str
    description: str | None = None
    packages: list[ManifestPackage] = Field(default_factory=list)

    @classmethod
    def from_toml(cls, text: str) -> "Manifest":
        """
        Parse a manifest from TOML text.

        Args:
            text: Raw manifest document

        Returns:
            Manifest instance

        Raises:
            ManifestError: If the TOML is invalid, fields are missing, or the
                schema version is unsupported
        """
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ManifestError(f"failed to parse manifest: {e}") from e

        schema_version = data.get("schema_version")
        if type(schema_version) is int and schema_version > SUPPORTED_SCHEMA_VERSION:
            raise ManifestError(
                f"unsupported manifest schema version {schema_version}",
                context={"schema_version": schema_version},
            )

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ManifestError(f"invalid manifest: {e}") from e

    def unsafe_packages(self) -> list[str]:
        """Packages whose name or version cannot be used as a path component."""
        return [f"{pkg.name}@{pkg.version}" for pkg in self.packages if not pkg.is_file_system_safe()]
