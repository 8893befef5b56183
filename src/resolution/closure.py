"""Breadth-first transitive resolution of requested specs.

Each round resolves every queued spec through the bounded work pool, records
the results, and queues the dependencies of the newly resolved packages that
are not already in the version map. Rounds run strictly one after another
because a round's queue is derived from the previous round's results.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from constants import Constants
from common.logging_utils import extra_context, Timer
from common.pool import bounded_gather
from versioning.models import ClosureResult, PackageSpec, VersionRecord

logger = logging.getLogger(__name__)


def _dedupe(specs: Iterable[PackageSpec]) -> List[PackageSpec]:
    seen: Dict[str, PackageSpec] = {}
    for spec in specs:
        seen.setdefault(spec.key, spec)
    return list(seen.values())


async def build_closure(
    specs: Iterable[PackageSpec],
    resolver,
    concurrency: int = Constants.RESOLVE_CONCURRENCY,
) -> ClosureResult:
    """Resolve ``specs`` and all of their transitive dependencies.

    Args:
        specs: Top-level requested specs.
        resolver: Object exposing ``async resolve(name, constraint) -> VersionRecord``.
        concurrency: Maximum number of resolutions in flight.

    Returns:
        ClosureResult with the package table and the spec -> id version map.

    Raises:
        NoMatchingVersionError, RegistryError: From the first failing resolution.
    """
    result = ClosureResult()
    remaining = _dedupe(specs)
    rounds = 0

    async def _resolve(spec: PackageSpec) -> VersionRecord:
        return await resolver.resolve(spec.name, spec.constraint)

    with Timer() as timer:
        while remaining:
            rounds += 1
            resolved = await bounded_gather(_resolve, remaining, concurrency)
            for spec, record in zip(remaining, resolved):
                package_id = record.package_id
                result.version_map[spec.key] = package_id
                result.table[package_id] = record

            remaining = _dedupe(
                dep
                for record in resolved
                for dep in record.dependency_specs()
                if dep.key not in result.version_map
            )
            logger.debug("Resolution round %d queued %d specs", rounds, len(remaining))

    logger.info(
        "Resolved %d packages from %d specs",
        len(result.table),
        len(result.version_map),
        extra=extra_context(
            event="resolution",
            component="closure",
            outcome="success",
            rounds=rounds,
            duration_ms=timer.duration_ms(),
        ),
    )
    return result
