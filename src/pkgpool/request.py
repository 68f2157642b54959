"""Package requests parsed from user input."""

from dataclasses import dataclass
from dataclasses import field

from .exceptions import InvalidNameError
from .utils import is_file_system_safe
from .version import VersionSpec


@dataclass(frozen=True)
class PackageRequest:
    """
    A request for a package: a name plus a version spec.

    Accepted forms: `name`, `name@version`, `name@~prefix`, `name@*`.
    A request without `@version` asks for any version.
    """

    name: str
    version: VersionSpec = field(default_factory=VersionSpec.any)

    @classmethod
    def parse(cls, text: str) -> "PackageRequest":
        """Parse a request string.

        Raises:
            InvalidNameError: If the package name is empty or not file system safe
        """
        name, _, version = text.partition("@")
        if not is_file_system_safe(name):
            raise InvalidNameError(
                f"invalid package name in request '{text}'",
                context={"request": text},
            )
        return cls(name=name, version=VersionSpec.parse(version))

    def __str__(self) -> str:
        if self.version == VersionSpec.any():
            return self.name
        return f"{self.name}@{self.version}"


def parse_requests(texts: list[str]) -> list[PackageRequest]:
    """Parse a list of request strings, preserving order."""
    return [PackageRequest.parse(text) for text in texts]
