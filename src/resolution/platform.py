"""Platform support checks and the pruned dependency graph."""

from __future__ import annotations

import logging
import sys
from collections import deque
from typing import Dict, Iterable, List, Optional

from errors import UnsupportedPlatformError
from versioning.models import DependencyGraph, PackageId, VersionRecord

logger = logging.getLogger(__name__)

# sys.platform prefixes mapped onto the identifiers used in package "os" lists.
_PLATFORM_PREFIXES = (
    ("linux", "linux"),
    ("darwin", "darwin"),
    ("win32", "win32"),
    ("cygwin", "win32"),
    ("freebsd", "freebsd"),
    ("openbsd", "openbsd"),
    ("netbsd", "netbsd"),
    ("sunos", "sunos"),
    ("aix", "aix"),
)


def current_platform() -> str:
    """Return the running platform's identifier (``linux``, ``darwin``, ``win32``...)."""
    for prefix, platform in _PLATFORM_PREFIXES:
        if sys.platform.startswith(prefix):
            return platform
    return sys.platform


def is_supported(record: VersionRecord, platform: Optional[str] = None) -> bool:
    """Return False only when the record's ``os`` list excludes ``platform``.

    Entries prefixed with ``!`` exclude a platform; plain entries form an
    allow-list. A record without an ``os`` list supports every platform.
    """
    if not record.os:
        return True
    platform = platform or current_platform()
    allowed = [entry for entry in record.os if not entry.startswith("!")]
    blocked = {entry[1:] for entry in record.os if entry.startswith("!")}
    if platform in blocked:
        return False
    return not allowed or platform in allowed


def _supported_edges(
    package_id: PackageId,
    table: Dict[PackageId, VersionRecord],
    version_map: Dict[str, PackageId],
    platform: str,
) -> List[PackageId]:
    record = table[package_id]
    edges = []
    for spec in record.dependency_specs():
        dep_id = version_map[spec.key]
        if is_supported(table[dep_id], platform):
            edges.append(dep_id)
            continue
        if record.is_optional(spec.name):
            logger.warning(
                "Skipping optional dependency %s of %s: unsupported platform %s",
                dep_id,
                package_id,
                platform,
            )
            continue
        raise UnsupportedPlatformError(dep_id, platform, required_by=package_id)
    return edges


def build_dependency_graph(
    table: Dict[PackageId, VersionRecord],
    version_map: Dict[str, PackageId],
    platform: Optional[str] = None,
    roots: Optional[Iterable[PackageId]] = None,
) -> DependencyGraph:
    """Map package ids to the ids of their platform-supported dependencies.

    With ``roots`` the graph covers only what those ids reach through
    supported edges, so the dependencies of a skipped optional package are
    never checked. Without ``roots`` every id in ``table`` is mapped.
    Unsupported optional dependencies are dropped with a warning. An
    unsupported root is mapped to no edges and left for the tree builder
    to reject.

    Raises:
        UnsupportedPlatformError: If a required dependency is unsupported.
    """
    platform = platform or current_platform()
    graph: DependencyGraph = {}
    if roots is None:
        for package_id in table:
            graph[package_id] = _supported_edges(package_id, table, version_map, platform)
        return graph

    queue = deque()
    for root in roots:
        if root in graph:
            continue
        graph[root] = []
        if is_supported(table[root], platform):
            queue.append(root)
    while queue:
        package_id = queue.popleft()
        edges = _supported_edges(package_id, table, version_map, platform)
        graph[package_id] = edges
        for dep_id in edges:
            if dep_id not in graph:
                graph[dep_id] = []
                queue.append(dep_id)
    return graph
