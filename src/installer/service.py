"""End-to-end install: resolve, build the tree, fetch and place archives."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from common.http_client import RegistryClient
from common.logging_utils import extra_context, Timer
from installer.fetch import ArchiveFetcher
from installer.layout import place_tree
from registry.npm.metadata_cache import MetadataCache
from resolution.closure import build_closure
from resolution.platform import build_dependency_graph, current_platform
from resolution.tree import build_tree, tree_chains
from versioning.models import InstallReport, PackageId, PackageSpec, VersionRecord
from versioning.resolvers import NpmVersionResolver

logger = logging.getLogger(__name__)


async def install(
    specs: Iterable[PackageSpec],
    config,
    prefix: str,
    dry_run: bool = False,
    client=None,
    platform: Optional[str] = None,
) -> InstallReport:
    """Install ``specs`` and their dependencies under ``prefix``.

    Args:
        specs: Top-level specs to install.
        config: InstallConfig with registry, cache and concurrency settings.
        prefix: Project directory receiving ``node_modules``.
        dry_run: Stop after building the tree; nothing is downloaded or written.
        client: Registry client to use; one is opened for the run when omitted.
        platform: Platform identifier; defaults to the running platform.

    Returns:
        InstallReport describing the tree and what was placed.
    """
    if client is None:
        async with RegistryClient(config.registry, timeout=config.timeout) as session_client:
            return await _install(list(specs), config, prefix, dry_run, session_client, platform)
    return await _install(list(specs), config, prefix, dry_run, client, platform)


async def _install(specs, config, prefix, dry_run, client, platform) -> InstallReport:
    platform = platform or current_platform()
    with Timer() as timer:
        metadata = MetadataCache(client, config.cache, ttl=config.metadata_ttl)
        resolver = NpmVersionResolver(metadata)
        closure = await build_closure(specs, resolver, config.resolve_concurrency)

        graph = build_dependency_graph(
            closure.table,
            closure.version_map,
            platform,
            roots=[closure.version_map[spec.key] for spec in specs],
        )
        tree = build_tree(specs, closure.table, closure.version_map, graph, platform)
        report = InstallReport(tree=tree, table=closure.table, dry_run=dry_run)
        if dry_run:
            return report

        # Only packages that made it into the tree are fetched.
        in_tree: Dict[PackageId, VersionRecord] = {}
        for chain in tree_chains(tree):
            in_tree.setdefault(chain[-1], closure.table[chain[-1]])

        fetcher = ArchiveFetcher(client, config.cache)
        report.archives = await fetcher.download_all(
            in_tree.values(), config.download_concurrency
        )
        report.placed = await place_tree(tree, closure.table, report.archives, prefix)

    logger.info(
        "Installed %d packages (%d distinct)",
        report.placed,
        len(report.archives),
        extra=extra_context(
            event="install",
            component="service",
            outcome="success",
            duration_ms=timer.duration_ms(),
        ),
    )
    return report
