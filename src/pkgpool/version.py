"""Version spec algebra.

A version spec is the constraint a request places on acceptable versions:
any version, a version with a given prefix, or exactly one version.

Per RUTHLESS_SIMPLICITY: Prefix matching only, no semver ranges.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class SpecKind(str, Enum):
    """Variant of a version spec."""

    ANY = "any"
    PARTIAL = "partial"
    EXACT = "exact"


@dataclass(frozen=True)
class VersionSpec:
    """
    A constraint on versions, resolvable to a concrete version.

    Value type: equality and hashing are structural. `value` holds the
    prefix for PARTIAL, the version for EXACT, and is empty for ANY.

    Text form:
    - "*" (or empty): any version
    - "~PREFIX": versions starting with PREFIX at a component boundary
    - anything else: exactly that version
    """

    kind: SpecKind = SpecKind.ANY
    value: str = ""

    @classmethod
    def any(cls) -> "VersionSpec":
        return cls(SpecKind.ANY)

    @classmethod
    def partial(cls, prefix: str) -> "VersionSpec":
        return cls(SpecKind.PARTIAL, prefix)

    @classmethod
    def exact(cls, version: str) -> "VersionSpec":
        return cls(SpecKind.EXACT, version)

    @classmethod
    def parse(cls, text: str) -> "VersionSpec":
        """Parse a version spec from its text form.

        The grammar accepts every string, so this never raises
        InvalidVersionSpecError today.
        """
        if text == "" or text == "*":
            return cls.any()
        if text.startswith("~"):
            return cls.partial(text[1:])
        return cls.exact(text)

    def matches(self, version: str) -> bool:
        """Return True if `version` satisfies this spec.

        A partial spec only matches at a component boundary: "1" matches
        "1", "1.0.0" and "1-alpha2", but not "10.0.0".
        """
        if self.kind is SpecKind.ANY:
            return True
        if self.kind is SpecKind.EXACT:
            return version == self.value
        prefix = self.value
        if not version.startswith(prefix):
            return False
        if len(version) == len(prefix):
            return True
        following = version[len(prefix)]
        return not (following.isascii() and following.isdigit())

    def is_compatible(self, other: "VersionSpec") -> bool:
        """Return True if at least one theoretical version satisfies both specs."""
        if self.kind is SpecKind.ANY or other.kind is SpecKind.ANY:
            return True
        if self.kind is SpecKind.EXACT and other.kind is SpecKind.EXACT:
            return self.value == other.value
        if self.kind is SpecKind.EXACT:
            return other.matches(self.value)
        if other.kind is SpecKind.EXACT:
            return self.matches(other.value)
        return self.matches(other.value) or other.matches(self.value)

    def __and__(self, other: "VersionSpec") -> "VersionSpec | None":
        """Intersect two specs, returning the more specific one or None if incompatible."""
        if not isinstance(other, VersionSpec):
            return NotImplemented
        if self == other:
            return self
        if not self.is_compatible(other):
            return None
        if self.kind is SpecKind.ANY:
            return other
        if other.kind is SpecKind.ANY:
            return self
        if self.kind is SpecKind.EXACT:
            return self
        if other.kind is SpecKind.EXACT:
            return other
        # Two compatible partials: the longer prefix is more specific.
        return other if len(self.value) <= len(other.value) else self

    def __str__(self) -> str:
        if self.kind is SpecKind.ANY:
            return "*"
        if self.kind is SpecKind.PARTIAL:
            return f"~{self.value}"
        return self.value


def merge_version_specs(specs: Iterable[VersionSpec]) -> VersionSpec | None:
    """Intersect all specs, starting from any version.

    Args:
        specs: Version specs requested simultaneously for one package

    Returns:
        The combined spec, or None as soon as two specs cannot be intersected
    """
    merged: VersionSpec | None = VersionSpec.any()
    for spec in specs:
        merged = merged & spec
        if merged is None:
            logger.debug(f"Version spec {spec} is incompatible with earlier specs")
            return None
    return merged
