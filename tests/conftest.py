"""Shared fixtures: an in-memory registry and tarball builders."""

import base64
import copy
import hashlib
import io
import json
import tarfile
from typing import Dict, List, Optional

import pytest

from cli_config import InstallConfig
from errors import RegistryError

REGISTRY_URL = "https://registry.test/"


def make_tarball(files: Dict[str, bytes]) -> bytes:
    """Build a gzip tarball holding ``files`` (member name -> content)."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def checksums(payload: bytes) -> Dict[str, str]:
    """Return the ``shasum``/``integrity`` pair a registry would publish."""
    return {
        "shasum": hashlib.sha1(payload).hexdigest(),
        "integrity": "sha512-" + base64.b64encode(hashlib.sha512(payload).digest()).decode(),
    }


class FakeRegistry:
    """Registry client double serving documents and archives from memory."""

    def __init__(self):
        self.documents: Dict[str, dict] = {}
        # url -> payloads served in order; the last one repeats
        self.archives: Dict[str, List[bytes]] = {}
        self.json_calls: List[str] = []
        self.downloads: List[str] = []

    def publish(
        self,
        name: str,
        version: str,
        dependencies: Optional[Dict[str, str]] = None,
        optional: Optional[Dict[str, str]] = None,
        os: Optional[List[str]] = None,
        latest: bool = True,
        files: Optional[Dict[str, bytes]] = None,
    ) -> dict:
        """Publish one version and return its version row."""
        doc = self.documents.setdefault(
            name, {"name": name, "versions": {}, "dist-tags": {}, "readme": "# " + name}
        )
        manifest = {"name": name, "version": version}
        payload = make_tarball(
            {"package/package.json": json.dumps(manifest).encode(), **(files or {})}
        )
        basename = name.rsplit("/", 1)[-1]
        url = f"{REGISTRY_URL}{name}/-/{basename}-{version}.tgz"
        row = {
            "name": name,
            "version": version,
            "dependencies": dict(dependencies or {}),
            "dist": {"tarball": url, **checksums(payload)},
            "readme": "long text",
        }
        if optional:
            row["optionalDependencies"] = dict(optional)
        if os:
            row["os"] = list(os)
        doc["versions"][version] = row
        if latest:
            doc["dist-tags"]["latest"] = version
        self.archives[url] = [payload]
        return row

    async def get_json(self, name: str) -> dict:
        self.json_calls.append(name)
        if name not in self.documents:
            raise RegistryError(f"Registry returned HTTP 404 for {name}")
        return copy.deepcopy(self.documents[name])

    async def download(self, url: str, destination: str) -> int:
        self.downloads.append(url)
        payloads = self.archives[url]
        data = payloads.pop(0) if len(payloads) > 1 else payloads[0]
        with open(destination, "wb") as f:
            f.write(data)
        return len(data)


@pytest.fixture
def registry():
    """Fresh in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def config(tmp_path):
    """Install configuration rooted in a temporary cache."""
    return InstallConfig(registry=REGISTRY_URL, cache=str(tmp_path / "cache"))
