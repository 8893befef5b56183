"""Local manifest (package.json) reading."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List

from constants import Constants
from errors import DuplicateDependencyError, ManifestError
from versioning.models import PackageSpec
from versioning.parser import parse_manifest_entry

logger = logging.getLogger(__name__)


def locate_manifest(dir_path: str) -> str:
    """Return the manifest path inside ``dir_path``."""
    return os.path.join(dir_path, Constants.PACKAGE_JSON_FILE)


def read_manifest(dir_path: str) -> Dict[str, Any]:
    """Load the manifest found in ``dir_path``.

    Raises:
        ManifestError: If the file is missing, unreadable or not a JSON object.
    """
    path = locate_manifest(dir_path)
    try:
        with open(path, "r", encoding="utf-8") as file:
            data = json.load(file)
    except FileNotFoundError as exc:
        raise ManifestError(f"No {Constants.PACKAGE_JSON_FILE} found in {dir_path}") from exc
    except json.JSONDecodeError as exc:
        raise ManifestError(f"Invalid JSON in {path}: {exc}") from exc
    except OSError as exc:
        raise ManifestError(f"Cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestError(f"{path} does not contain a JSON object")
    return data


def _section(manifest: Dict[str, Any], key: str) -> Dict[str, str]:
    section = manifest.get(key) or {}
    if not isinstance(section, dict):
        raise ManifestError(f"'{key}' must be an object")
    return section


def manifest_specs(manifest: Dict[str, Any], include_dev: bool = True) -> List[PackageSpec]:
    """Return the specs a manifest asks to install.

    ``dependencies`` come first, then ``devDependencies`` when ``include_dev``
    is set. The duplicate check runs on both sections regardless, so a broken
    manifest is reported before any network activity.

    Raises:
        DuplicateDependencyError: If a name appears in both sections.
    """
    deps = _section(manifest, "dependencies")
    dev_deps = _section(manifest, "devDependencies")

    for name in deps:
        if name in dev_deps:
            raise DuplicateDependencyError(name)

    specs = [parse_manifest_entry(name, spec) for name, spec in deps.items()]
    if include_dev:
        specs.extend(parse_manifest_entry(name, spec) for name, spec in dev_deps.items())
    logger.debug(
        "Manifest lists %d dependencies and %d devDependencies", len(deps), len(dev_deps)
    )
    return specs
