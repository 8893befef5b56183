"""Data models for registry documents, resolved packages and install trees."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from constants import Constants

# Canonical "name@version" identity of one resolved package.
PackageId = str
# Ordered package ids from a top-level request down to one package.
DependencyChain = Tuple[PackageId, ...]
# Nested "is installed inside" forest keyed by package id.
InstallTree = Dict[PackageId, "InstallTree"]
DependencyGraph = Dict[PackageId, List[PackageId]]


def make_package_id(name: str, version: str) -> PackageId:
    """Return the canonical id for a resolved package."""
    return f"{name}@{version}"


def split_package_id(package_id: PackageId) -> Tuple[str, str]:
    """Split ``name@version`` on the rightmost ``@`` so scoped names survive."""
    name, sep, version = package_id.rpartition("@")
    if not sep or not name:
        raise ValueError(f"Not a package id: {package_id!r}")
    return name, version


def package_name(package_id: PackageId) -> str:
    """Return the name part of a package id."""
    return split_package_id(package_id)[0]


@dataclass(frozen=True)
class PackageSpec:
    """A requested dependency: a name plus a constraint (possibly empty)."""
    name: str
    constraint: str = ""

    @property
    def key(self) -> str:
        """Stable ``name@constraint`` string used for memoization."""
        return f"{self.name}@{self.constraint}"

    def __str__(self) -> str:
        return self.key


@dataclass
class Dist:
    """Archive location and checksums of one version."""
    tarball: str
    shasum: Optional[str] = None
    integrity: Optional[str] = None


@dataclass
class VersionRecord:
    """One concrete version of one package."""
    name: str
    version: str
    dependencies: Dict[str, str] = field(default_factory=dict)
    optional_dependencies: Dict[str, str] = field(default_factory=dict)
    os: Optional[List[str]] = None
    dist: Dist = field(default_factory=lambda: Dist(tarball=""))

    @property
    def package_id(self) -> PackageId:
        """Canonical ``name@version`` id."""
        return make_package_id(self.name, self.version)

    def dependency_specs(self) -> List[PackageSpec]:
        """Declared dependencies, optional ones included, one spec per name.

        An optional entry overrides a regular entry of the same name, matching
        how npm merges the two sections.
        """
        merged: Dict[str, str] = dict(self.dependencies)
        merged.update(self.optional_dependencies)
        return [PackageSpec(name, constraint) for name, constraint in merged.items()]

    def is_optional(self, dependency_name: str) -> bool:
        """Return True when ``dependency_name`` is declared optional."""
        return dependency_name in self.optional_dependencies

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VersionRecord":
        """Build a record from one entry of a registry document's ``versions``."""
        dist = data.get("dist") or {}
        os_field = data.get("os")
        if isinstance(os_field, str):
            os_field = [os_field]
        return cls(
            name=data["name"],
            version=data["version"],
            dependencies=dict(data.get("dependencies") or {}),
            optional_dependencies=dict(data.get("optionalDependencies") or {}),
            os=list(os_field) if os_field else None,
            dist=Dist(
                tarball=dist.get("tarball", ""),
                shasum=dist.get("shasum"),
                integrity=dist.get("integrity"),
            ),
        )


@dataclass
class RegistryDocument:
    """Per-name registry metadata, stripped of fields the installer never reads."""
    name: str
    versions: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    dist_tags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(cls, name: str, data: Dict[str, Any]) -> "RegistryDocument":
        """Build a document from raw registry JSON, dropping bulky fields."""
        versions: Dict[str, Dict[str, Any]] = {}
        for version, row in (data.get("versions") or {}).items():
            if not isinstance(row, dict):
                continue
            cleaned = {
                k: v for k, v in row.items() if k not in Constants.STRIPPED_VERSION_FIELDS
            }
            cleaned.setdefault("name", name)
            cleaned.setdefault("version", version)
            versions[version] = cleaned
        return cls(
            name=data.get("name") or name,
            versions=versions,
            dist_tags=dict(data.get("dist-tags") or {}),
        )

    def to_json(self) -> Dict[str, Any]:
        """Serialise back to the registry's JSON shape."""
        return {"name": self.name, "versions": self.versions, "dist-tags": self.dist_tags}

    def record(self, version: str) -> VersionRecord:
        """Return the :class:`VersionRecord` for a published version."""
        return VersionRecord.from_json(self.versions[version])


@dataclass
class ClosureResult:
    """Flat outcome of transitive resolution."""
    table: Dict[PackageId, VersionRecord] = field(default_factory=dict)
    version_map: Dict[str, PackageId] = field(default_factory=dict)


@dataclass
class InstallReport:
    """Summary of one install run."""
    tree: InstallTree
    table: Dict[PackageId, VersionRecord]
    archives: Dict[PackageId, str] = field(default_factory=dict)
    placed: int = 0
    dry_run: bool = False
