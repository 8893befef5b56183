"""Runtime configuration for installs.

Settings come from four layers, later ones winning: built-in defaults from
``Constants``, an optional YAML or JSON file (``--config``), environment
variables and finally command-line flags.

Example config file::

    registry: https://registry.example.com/
    cache: /var/cache/pkgnest
    metadata_ttl: 600
    resolve_concurrency: 16
    download_concurrency: 8
    timeout: 60
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

import yaml

from constants import Constants
from errors import ConfigError

logger = logging.getLogger(__name__)

_INT_FIELDS = ("metadata_ttl", "resolve_concurrency", "download_concurrency", "timeout")


def normalize_registry_url(url: str) -> str:
    """Return ``url`` with exactly one trailing slash."""
    url = url.strip()
    if not url:
        raise ConfigError("Registry URL must not be empty")
    return url.rstrip("/") + "/"


@dataclass(frozen=True)
class InstallConfig:
    """Resolved settings for one install run."""
    registry: str = Constants.REGISTRY_URL_NPM
    cache: str = Constants.CACHE_DIR
    metadata_ttl: int = Constants.METADATA_TTL_SEC
    resolve_concurrency: int = Constants.RESOLVE_CONCURRENCY
    download_concurrency: int = Constants.DOWNLOAD_CONCURRENCY
    timeout: int = Constants.REQUEST_TIMEOUT

    def merged(self, values: Mapping[str, Any]) -> "InstallConfig":
        """Return a copy with ``values`` applied and validated.

        Raises:
            ConfigError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        updates: Dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if key in _INT_FIELDS:
                try:
                    value = int(value)
                except (TypeError, ValueError) as exc:
                    raise ConfigError(f"'{key}' must be an integer, got {value!r}") from exc
                if value < 0 or (value == 0 and key != "metadata_ttl"):
                    raise ConfigError(f"'{key}' must be positive, got {value}")
            elif key == "registry":
                value = normalize_registry_url(str(value))
            elif key == "cache":
                value = os.path.expanduser(str(value))
            updates[key] = value
        return replace(self, **updates)


def read_config_file(path: str) -> Dict[str, Any]:
    """Load a YAML or JSON config file into a dict.

    Files ending in ``.json`` are parsed as JSON, anything else as YAML.

    Raises:
        ConfigError: If the file is missing, unparsable or not a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect overrides from ``PKGNEST_REGISTRY`` and ``PKGNEST_CACHE``."""
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    registry = environ.get(Constants.ENV_REGISTRY)
    if registry and registry.strip():
        values["registry"] = registry
    cache = environ.get(Constants.ENV_CACHE)
    if cache and cache.strip():
        values["cache"] = cache
    return values


def load_config(args, environ: Optional[Mapping[str, str]] = None) -> InstallConfig:
    """Build the InstallConfig for parsed CLI ``args``.

    Raises:
        ConfigError: On any invalid layer.
    """
    config = InstallConfig()
    path = getattr(args, "CONFIG", None)
    if path:
        config = config.merged(read_config_file(path))
        logger.debug("Loaded configuration from %s", path)
    config = config.merged(env_overrides(environ))
    config = config.merged(
        {
            "registry": getattr(args, "REGISTRY", None),
            "cache": getattr(args, "CACHE_DIR", None),
        }
    )
    logger.debug("Using registry %s and cache %s", config.registry, config.cache)
    return config
