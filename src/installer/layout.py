"""Placement of an install tree onto disk."""

from __future__ import annotations

import logging
import os
from collections import deque
from typing import Dict

from constants import Constants
from errors import ExtractionError
from installer.extract import extract
from versioning.models import InstallTree, PackageId, VersionRecord

logger = logging.getLogger(__name__)


def package_dir(parent_dir: str, name: str) -> str:
    """Return ``<parent_dir>/node_modules/<name>``, refusing path-escaping names."""
    parts = name.split("/")
    if any(part in ("", ".", "..") for part in parts) or len(parts) > 2:
        raise ExtractionError(f"Refusing to place package with name {name!r}")
    return os.path.join(parent_dir, Constants.DEPENDENCY_DIR, *parts)


async def place_tree(
    tree: InstallTree,
    table: Dict[PackageId, VersionRecord],
    archives: Dict[PackageId, str],
    prefix: str,
) -> int:
    """Extract every node of ``tree`` under ``prefix``.

    Nodes are placed breadth-first so a package's directory exists before its
    nested dependencies are extracted into it.

    Returns:
        Number of packages placed.
    """
    placed = 0
    queue = deque([(tree, prefix)])
    while queue:
        subtree, parent_dir = queue.popleft()
        for package_id, children in subtree.items():
            target = package_dir(parent_dir, table[package_id].name)
            await extract(archives[package_id], target)
            placed += 1
            queue.append((children, target))
    logger.info("Placed %d packages under %s", placed, prefix)
    return placed
