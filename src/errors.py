"""Exception hierarchy for resolution, fetching and installation.

An install spans registry access, version resolution, tree building,
archive verification and extraction. Every failure mode gets its own class
under :class:`PackageManagerError` so the command line can map categories to
exit codes while callers keep access to the specific details (offending
package id, chain, file).
"""

from __future__ import annotations

from typing import Optional, Sequence

__all__ = [
    "PackageManagerError",
    "ConfigError",
    "ManifestError",
    "DuplicateDependencyError",
    "RegistryError",
    "NoMatchingVersionError",
    "UnresolvableCycleError",
    "UnsupportedPlatformError",
    "HashMismatchError",
    "VerificationError",
    "UnsafeArchiveError",
    "ExtractionError",
]


class PackageManagerError(RuntimeError):
    """Base exception for every install failure."""


class ConfigError(PackageManagerError):
    """Raised when a configuration file or override is invalid."""


class ManifestError(PackageManagerError):
    """Raised when a manifest or a requested specifier cannot be used."""


class DuplicateDependencyError(ManifestError):
    """Raised when a name is listed in both dependency sections of a manifest."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"{name} is listed in both dependencies and devDependencies"
        )
        self.name = name


class RegistryError(PackageManagerError):
    """Raised on transport, status or decoding failures talking to the registry."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class NoMatchingVersionError(PackageManagerError):
    """Raised when no published version satisfies a constraint."""

    def __init__(self, name: str, constraint: str, reason: Optional[str] = None) -> None:
        message = f"No version of {name} matches '{constraint}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.name = name
        self.constraint = constraint


class UnresolvableCycleError(PackageManagerError):
    """Raised when a chain needs two versions of one name that cannot coexist."""

    def __init__(self, chain: Sequence[str]) -> None:
        self.chain = tuple(chain)
        super().__init__(f"Unresolvable cycle: {' > '.join(self.chain)}")


class UnsupportedPlatformError(PackageManagerError):
    """Raised when a required package does not support the current platform."""

    def __init__(self, package_id: str, platform: str, required_by: Optional[str] = None) -> None:
        message = f"Unsupported platform '{platform}' for {package_id}"
        if required_by:
            message = f"{message} (required by {required_by})"
        super().__init__(message)
        self.package_id = package_id
        self.platform = platform
        self.required_by = required_by


class HashMismatchError(PackageManagerError):
    """Raised when a downloaded archive does not match its published checksum."""

    def __init__(self, path: str, expected: str, actual: str) -> None:
        super().__init__(f"Hash mismatch for {path}: expected {expected}, got {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


class VerificationError(PackageManagerError):
    """Raised when an archive fails naming or format verification."""


class UnsafeArchiveError(PackageManagerError):
    """Raised when an archive has entries outside its single top-level directory."""

    def __init__(self, path: str, entries: Sequence[str]) -> None:
        self.entries = tuple(entries)
        shown = ", ".join(self.entries[:5])
        super().__init__(f"Refusing to extract {path}: unsafe entries ({shown})")
        self.path = path


class ExtractionError(PackageManagerError):
    """Raised when an archive cannot be unpacked."""
