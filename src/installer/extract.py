"""Safe archive extraction.

Package archives hold exactly one top-level directory whose contents become
the installed package. Every entry is checked before anything touches the
filesystem; an archive with a loose file at its top level, an absolute or
parent-relative path, a link or a device is refused outright.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tarfile
import tempfile
import zlib
from typing import List

from errors import ExtractionError, UnsafeArchiveError

logger = logging.getLogger(__name__)


def _components(member_name: str) -> List[str]:
    return [part for part in member_name.split("/") if part not in ("", ".")]


def list_entries(archive_path: str) -> List[tarfile.TarInfo]:
    """Return the members of a gzip tarball.

    Raises:
        ExtractionError: If the archive cannot be read.
    """
    try:
        with tarfile.open(archive_path, "r:*") as archive:
            return archive.getmembers()
    except (tarfile.TarError, OSError, EOFError, zlib.error) as exc:
        raise ExtractionError(f"Cannot read {archive_path}: {exc}") from exc


def unsafe_entries(members: List[tarfile.TarInfo]) -> List[str]:
    """Names of members that must not be extracted."""
    unsafe = []
    for member in members:
        name = member.name
        parts = _components(name)
        if name.startswith("/") or ".." in parts:
            unsafe.append(name)
        elif not (member.isfile() or member.isdir()):
            # symlinks, hard links, devices, fifos
            unsafe.append(name)
        elif member.isfile() and len(parts) < 2:
            unsafe.append(name)
    return unsafe


def extract_archive(archive_path: str, target_dir: str) -> int:
    """Extract ``archive_path`` into ``target_dir``, dropping the top-level directory.

    The archive unpacks into a temporary sibling of ``target_dir`` which then
    replaces any previous contents.

    Returns:
        Number of files written.

    Raises:
        UnsafeArchiveError: If any entry is unsafe; nothing is written.
        ExtractionError: On read or write failures.
    """
    members = list_entries(archive_path)
    refused = unsafe_entries(members)
    if refused:
        raise UnsafeArchiveError(archive_path, refused)

    parent = os.path.dirname(os.path.abspath(target_dir))
    written = 0
    try:
        os.makedirs(parent, exist_ok=True)
        staging = tempfile.mkdtemp(prefix=".extract-", dir=parent)
    except OSError as exc:
        raise ExtractionError(f"Cannot prepare {target_dir}: {exc}") from exc

    try:
        with tarfile.open(archive_path, "r:*") as archive:
            for member in archive:
                parts = _components(member.name)[1:]
                if not parts:
                    continue
                destination = os.path.join(staging, *parts)
                if member.isdir():
                    os.makedirs(destination, exist_ok=True)
                    continue
                os.makedirs(os.path.dirname(destination), exist_ok=True)
                source = archive.extractfile(member)
                if source is None:
                    raise ExtractionError(f"Cannot read {member.name} from {archive_path}")
                with source, open(destination, "wb") as out:
                    shutil.copyfileobj(source, out)
                os.chmod(destination, (member.mode & 0o777) | 0o600)
                written += 1
        if os.path.isdir(target_dir):
            shutil.rmtree(target_dir)
        os.replace(staging, target_dir)
    except (tarfile.TarError, OSError, EOFError, zlib.error) as exc:
        shutil.rmtree(staging, ignore_errors=True)
        raise ExtractionError(f"Failed to extract {archive_path}: {exc}") from exc
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    logger.debug("Extracted %d files from %s into %s", written, archive_path, target_dir)
    return written


async def extract(archive_path: str, target_dir: str) -> int:
    """Run :func:`extract_archive` off the event loop."""
    return await asyncio.to_thread(extract_archive, archive_path, target_dir)
