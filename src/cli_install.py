"""CLI handler for the ``install`` command.

Decides which specs to install, runs the install and prints the resulting
tree. Explicit specifiers install only what was named; without specifiers the
local manifest's dependencies (and devDependencies unless ``--omit-dev``)
are installed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any, List, TextIO

from cli_config import load_config
from installer.service import install
from registry.npm.manifest import manifest_specs, read_manifest
from versioning.models import InstallReport, InstallTree, PackageSpec
from versioning.parser import parse_spec_token

logger = logging.getLogger(__name__)


def collect_specs(args: Any) -> List[PackageSpec]:
    """Return the top-level specs for this invocation.

    Raises:
        ManifestError: On an invalid specifier or manifest.
    """
    tokens = getattr(args, "SPECS", None) or []
    if tokens:
        return [parse_spec_token(token) for token in tokens]
    prefix = getattr(args, "PREFIX", None) or "."
    manifest = read_manifest(prefix)
    return manifest_specs(manifest, include_dev=not getattr(args, "OMIT_DEV", False))


def format_tree(tree: InstallTree, depth: int = 0) -> List[str]:
    """Render an install tree as indented lines, one package per line."""
    lines = []
    for package_id, children in tree.items():
        lines.append(f"{'  ' * depth}{package_id}")
        lines.extend(format_tree(children, depth + 1))
    return lines


def run_install(args: Any, out: TextIO = sys.stdout) -> InstallReport:
    """Entry point for the install command.

    Args:
        args: Parsed CLI arguments namespace.
        out: Stream the tree listing is written to.

    Returns:
        The InstallReport of the run.
    """
    config = load_config(args)
    specs = collect_specs(args)
    prefix = os.path.abspath(getattr(args, "PREFIX", None) or ".")
    dry_run = bool(getattr(args, "DRY_RUN", False))

    if not specs:
        logger.info("Nothing to install")
        return InstallReport(tree={}, table={}, dry_run=dry_run)

    logger.info(
        "Installing %d top-level packages into %s%s",
        len(specs),
        prefix,
        " (dry run)" if dry_run else "",
    )
    report = asyncio.run(install(specs, config, prefix, dry_run=dry_run))

    if not getattr(args, "QUIET", False):
        for line in format_tree(report.tree):
            out.write(f"{line}\n")
    return report
