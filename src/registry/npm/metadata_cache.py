"""Disk-backed registry document cache with a freshness window.

One JSON file per package name under ``<cache>/meta`` holds
``{"name", "fetchedAt", "data"}``. Entries younger than the TTL are served
without touching the network. Within one process each name is fetched at most
once: concurrent callers share the same in-flight task.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

from constants import Constants
from errors import RegistryError
from common.logging_utils import extra_context, is_debug_enabled
from versioning.models import RegistryDocument

logger = logging.getLogger(__name__)


def cache_file_name(name: str) -> str:
    """Map a package name to its cache file name (scoped names escape the slash)."""
    return name.replace("/", "%2f") + ".json"


class MetadataCache:
    """Registry document cache shared by every resolver in one run."""

    def __init__(
        self,
        client,
        cache_dir: str,
        ttl: int = Constants.METADATA_TTL_SEC,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the metadata cache.

        Args:
            client: Object exposing ``async get_json(name) -> dict``.
            cache_dir: Root cache directory; documents live in its ``meta`` subdir.
            ttl: Freshness window in seconds.
            clock: Time source returning epoch seconds.
        """
        self._client = client
        self._meta_dir = os.path.join(cache_dir, Constants.META_SUBDIR)
        self._ttl = ttl
        self._clock = clock
        self._documents: Dict[str, RegistryDocument] = {}
        self._pending: Dict[str, "asyncio.Task[RegistryDocument]"] = {}
        self._dir_ready = False

    def path_for(self, name: str) -> str:
        """Return the on-disk cache path for ``name``."""
        return os.path.join(self._meta_dir, cache_file_name(name))

    async def get_document(self, name: str) -> RegistryDocument:
        """Return the registry document for ``name``.

        Raises:
            RegistryError: When the document cannot be fetched or decoded.
        """
        document = self._documents.get(name)
        if document is not None:
            return document

        task = self._pending.get(name)
        if task is None:
            task = asyncio.ensure_future(self._load(name))
            self._pending[name] = task
        try:
            document = await asyncio.shield(task)
        finally:
            if self._pending.get(name) is task and task.done():
                del self._pending[name]
        self._documents[name] = document
        return document

    async def _load(self, name: str) -> RegistryDocument:
        path = self.path_for(name)
        entry = await asyncio.to_thread(self._read_entry, path)
        if entry is not None:
            age = self._clock() - float(entry["fetchedAt"])
            if 0 <= age < self._ttl:
                if is_debug_enabled(logger):
                    logger.debug(
                        "Metadata cache hit",
                        extra=extra_context(
                            event="cache_hit",
                            component="metadata_cache",
                            package=name,
                            age_sec=int(age),
                        ),
                    )
                return RegistryDocument.from_json(name, entry.get("data") or {})

        data = await self._client.get_json(name)
        if not isinstance(data.get("versions"), dict):
            raise RegistryError(f"Registry document for {name} has no versions")
        document = RegistryDocument.from_json(name, data)
        await asyncio.to_thread(self._write_entry, path, name, document)
        logger.debug("Fetched metadata for %s (%d versions)", name, len(document.versions))
        return document

    def _read_entry(self, path: str) -> Optional[Dict[str, Any]]:
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                entry = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable metadata cache entry %s: %s", path, exc)
            return None
        if not isinstance(entry, dict) or not isinstance(entry.get("data"), dict):
            logger.warning("Ignoring malformed metadata cache entry %s", path)
            return None
        fetched_at = entry.get("fetchedAt")
        if isinstance(fetched_at, bool) or not isinstance(fetched_at, (int, float)):
            logger.warning("Ignoring malformed metadata cache entry %s: bad fetchedAt", path)
            return None
        return entry

    def _write_entry(self, path: str, name: str, document: RegistryDocument) -> None:
        if not self._dir_ready:
            os.makedirs(self._meta_dir, exist_ok=True)
            self._dir_ready = True
        entry = {"name": name, "fetchedAt": int(self._clock()), "data": document.to_json()}
        tmp_path = f"{path}{Constants.PART_SUFFIX}"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(entry, f)
        os.replace(tmp_path, path)
