"""Archive download pipeline with checksum and format verification.

Archives are cached under ``<cache>/packages`` by the final segment of their
tarball URL. A cached file is reused when its checksum matches. Otherwise the
archive streams into a ``.part`` sibling, is verified, and only then is
renamed into place, so the final path never holds a corrupt file.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import os
import re
import tarfile
import urllib.parse
import zlib
from typing import Dict, Iterable, List

from constants import Constants
from errors import HashMismatchError, VerificationError
from common.logging_utils import extra_context, safe_url, Timer
from common.pool import bounded_gather
from versioning.models import Dist, PackageId, VersionRecord

logger = logging.getLogger(__name__)

_ARCHIVE_NAME = re.compile(Constants.ARCHIVE_NAME_PATTERN)
_SCOPE_NAME = re.compile(Constants.SCOPE_NAME_PATTERN)


def archive_relpath(record: VersionRecord) -> str:
    """Return the cache path of ``record``'s archive relative to the packages dir.

    Raises:
        VerificationError: If the URL does not end in an acceptable file name.
    """
    url_path = urllib.parse.urlsplit(record.dist.tarball).path
    filename = url_path.rsplit("/", 1)[-1]
    if not _ARCHIVE_NAME.match(filename):
        raise VerificationError(
            f"Refusing archive name {filename!r} from {safe_url(record.dist.tarball)}"
        )
    if record.name.startswith("@"):
        scope = record.name.split("/", 1)[0]
        if not _SCOPE_NAME.match(scope):
            raise VerificationError(f"Refusing package scope {scope!r}")
        return os.path.join(scope, filename)
    return filename


def _sri_digests(integrity: str, algorithm: str) -> List[str]:
    prefix = f"{algorithm}-"
    return [
        token[len(prefix):].split("?", 1)[0]
        for token in integrity.split()
        if token.startswith(prefix)
    ]


def verify_checksum(path: str, dist: Dist) -> None:
    """Check ``path`` against the published SHA-1 shasum and sha512 integrity.

    Raises:
        HashMismatchError: If a published checksum does not match.
        VerificationError: If the registry published no usable checksum.
    """
    expected_sri = _sri_digests(dist.integrity or "", "sha512")
    if not dist.shasum and not expected_sri:
        raise VerificationError(f"No checksum published for {path}")

    sha1 = hashlib.sha1()
    sha512 = hashlib.sha512()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(Constants.DOWNLOAD_CHUNK_BYTES), b""):
            sha1.update(chunk)
            sha512.update(chunk)

    if dist.shasum:
        actual = sha1.hexdigest()
        if actual != dist.shasum.lower():
            raise HashMismatchError(path, dist.shasum, actual)
    if expected_sri:
        actual_sri = base64.b64encode(sha512.digest()).decode("ascii")
        if actual_sri not in expected_sri:
            raise HashMismatchError(path, f"sha512-{expected_sri[0]}", f"sha512-{actual_sri}")


def verify_format(path: str) -> None:
    """Check that ``path`` is a readable gzip-compressed tarball.

    Raises:
        VerificationError: If the archive cannot be listed.
    """
    try:
        with tarfile.open(path, "r:gz") as archive:
            for _ in archive:
                pass
    except (tarfile.TarError, OSError, EOFError, zlib.error) as exc:
        raise VerificationError(f"Corrupt archive {path}: {exc}") from exc


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class ArchiveFetcher:
    """Downloads and verifies package archives into the local cache."""

    def __init__(self, client, cache_dir: str, attempts: int = Constants.DOWNLOAD_ATTEMPTS):
        """Initialize the fetcher.

        Args:
            client: Object exposing ``async download(url, destination) -> int``.
            cache_dir: Root cache directory; archives live in its ``packages`` subdir.
            attempts: Download attempts per archive when verification fails.
        """
        self._client = client
        self._packages_dir = os.path.join(cache_dir, Constants.PACKAGES_SUBDIR)
        self._attempts = max(1, attempts)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._ready_dirs = set()

    def path_for(self, record: VersionRecord) -> str:
        """Absolute cache path for ``record``'s archive."""
        return os.path.join(self._packages_dir, archive_relpath(record))

    async def download(self, record: VersionRecord) -> str:
        """Return a verified local archive for ``record``, downloading it if needed.

        Raises:
            HashMismatchError, VerificationError: When the last attempt fails verification.
            RegistryError: On transport failure.
        """
        path = self.path_for(record)
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            directory = os.path.dirname(path)
            if directory not in self._ready_dirs:
                await asyncio.to_thread(os.makedirs, directory, exist_ok=True)
                self._ready_dirs.add(directory)

            if await asyncio.to_thread(self._cached_is_valid, path, record):
                logger.debug("Using cached archive %s", path)
                return path

            for attempt in range(1, self._attempts + 1):
                try:
                    await self._fetch(record, path)
                    return path
                except (HashMismatchError, VerificationError) as exc:
                    if attempt >= self._attempts:
                        raise
                    logger.warning(
                        "Verification failed for %s, downloading again: %s",
                        record.package_id,
                        exc,
                    )
        return path  # pragma: no cover

    async def download_all(
        self, records: Iterable[VersionRecord], limit: int = Constants.DOWNLOAD_CONCURRENCY
    ) -> Dict[PackageId, str]:
        """Download every distinct record with at most ``limit`` transfers in flight."""
        unique: Dict[PackageId, VersionRecord] = {}
        for record in records:
            unique.setdefault(record.package_id, record)
        paths = await bounded_gather(self.download, list(unique.values()), limit)
        return dict(zip(unique.keys(), paths))

    def _cached_is_valid(self, path: str, record: VersionRecord) -> bool:
        if not os.path.isfile(path):
            return False
        try:
            verify_checksum(path, record.dist)
        except (HashMismatchError, VerificationError) as exc:
            logger.warning("Discarding cached archive for %s: %s", record.package_id, exc)
            return False
        return True

    async def _fetch(self, record: VersionRecord, path: str) -> None:
        part_path = f"{path}{Constants.PART_SUFFIX}"
        logger.info("Downloading %s", record.package_id)
        with Timer() as timer:
            try:
                size = await self._client.download(record.dist.tarball, part_path)
                await asyncio.to_thread(verify_checksum, part_path, record.dist)
                await asyncio.to_thread(verify_format, part_path)
            except BaseException:
                _discard(part_path)
                raise
        os.replace(part_path, path)
        logger.debug(
            "Archive stored",
            extra=extra_context(
                event="download",
                component="fetch",
                outcome="success",
                package=record.package_id,
                bytes=size,
                duration_ms=timer.duration_ms(),
            ),
        )
