"""NPM version resolver using semantic versioning."""

import asyncio
import logging
import re
from typing import Dict, List, Optional, Union

import semantic_version

from errors import NoMatchingVersionError
from ..models import PackageSpec, RegistryDocument, VersionRecord

logger = logging.getLogger(__name__)

Spec = Union[semantic_version.NpmSpec, semantic_version.SimpleSpec]


class NpmVersionResolver:
    """Resolve ``(name, constraint)`` pairs to concrete version records.

    Results are memoized per ``name@constraint`` for the lifetime of the
    resolver, so one install run always maps a given spec to the same record.
    Concurrent calls for the same key share one in-flight resolution.
    """

    def __init__(self, metadata):
        """Initialize the resolver.

        Args:
            metadata: Object exposing ``async get_document(name) -> RegistryDocument``.
        """
        self.metadata = metadata
        self._resolved: Dict[str, "asyncio.Task[VersionRecord]"] = {}

    async def resolve(self, name: str, constraint: str = "") -> VersionRecord:
        """Return the record that satisfies ``constraint`` for package ``name``.

        Raises:
            NoMatchingVersionError: If no published version satisfies the constraint.
            RegistryError: If the registry document cannot be obtained.
        """
        key = PackageSpec(name, constraint).key
        task = self._resolved.get(key)
        if task is None:
            task = asyncio.ensure_future(self._resolve(name, constraint))
            self._resolved[key] = task
        return await asyncio.shield(task)

    async def _resolve(self, name: str, constraint: str) -> VersionRecord:
        document = await self.metadata.get_document(name)
        version = self.pick(document, constraint)
        logger.debug("Resolved %s@%s to %s", name, constraint, version)
        return document.record(version)

    def pick(self, document: RegistryDocument, constraint: str) -> str:
        """Apply npm resolution rules to select a version.

        Order: exact version, dist-tag, ``latest`` (when the constraint is
        empty or ``latest`` satisfies it), then the highest satisfying version.

        Raises:
            NoMatchingVersionError: If nothing matches.
        """
        constraint = (constraint or "").strip()
        versions = document.versions

        # Try specific version
        if constraint in versions:
            return constraint

        # Try tag name
        tagged = document.dist_tags.get(constraint)
        if tagged is not None and tagged in versions:
            return tagged

        latest = document.dist_tags.get("latest")
        if not constraint:
            if latest in versions:
                return latest
            return self._pick_highest(document.name, "", list(versions), None)

        spec = self._parse_spec(document.name, constraint)
        if latest in versions and self._satisfies(latest, spec):
            return latest

        return self._pick_highest(document.name, constraint, list(versions), spec)

    def _parse_spec(self, name: str, constraint: str) -> Spec:
        """Parse an npm range, falling back to a normalized SimpleSpec."""
        try:
            return semantic_version.NpmSpec(constraint)
        except ValueError:
            try:
                return semantic_version.SimpleSpec(self._normalize_spec(constraint))
            except ValueError as e:
                raise NoMatchingVersionError(
                    name, constraint, f"invalid version range ({e})"
                ) from e

    def _satisfies(self, version: str, spec: Spec) -> bool:
        try:
            return spec.match(semantic_version.Version(version))
        except ValueError:
            return False

    def _pick_highest(
        self, name: str, constraint: str, candidates: List[str], spec: Optional[Spec]
    ) -> str:
        """Pick the highest valid candidate, restricted to ``spec`` when given."""
        matching = []
        for v in candidates:
            try:
                ver = semantic_version.Version(v)
            except ValueError:
                continue  # Skip invalid versions
            if spec is None or spec.match(ver):
                matching.append((ver, v))

        if not matching:
            reason = "no versions published" if not candidates else None
            raise NoMatchingVersionError(name, constraint, reason)

        matching.sort(key=lambda item: item[0], reverse=True)
        return matching[0][1]

    def _normalize_spec(self, spec_str: str) -> str:
        """Normalize npm range syntax (hyphen, x-ranges) into SimpleSpec-compatible form."""
        s = spec_str.strip()

        # Hyphen ranges: "1.2.3 - 1.4.5" => ">=1.2.3,<=1.4.5"
        m = re.match(r'^\s*([0-9A-Za-z\.\-\+]+)\s+-\s+([0-9A-Za-z\.\-\+]+)\s*$', s)
        if m:
            left, right = m.group(1), m.group(2)
            return f">={left},<={right}"

        # x-ranges: 1.2.x or 1.x or 1.* -> convert to comparator pairs
        s2 = s.replace('*', 'x').lower()
        m = re.match(r'^\s*(\d+)\.(\d+)\.x\s*$', s2)
        if m:
            major, minor = int(m.group(1)), int(m.group(2))
            return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

        m = re.match(r'^\s*(\d+)(\.x)?\s*$', s2)
        if m:
            major = int(m.group(1))
            return f">={major}.0.0,<{major + 1}.0.0"

        # Comparators written with a space after the operator: ">= 1.2.3 < 2"
        return re.sub(r'([<>=~^]+)\s+', r'\1', s).replace(' ', ',')
