"""Tests for the async registry client."""

import asyncio
import json

import aiohttp
import pytest

from constants import Constants
from errors import RegistryError
from common.http_client import RegistryClient


class DummyContent:
    """Stand-in for aiohttp's StreamReader."""

    def __init__(self, chunks):
        self._chunks = chunks

    async def iter_chunked(self, size):
        for chunk in self._chunks:
            yield chunk


class DummyResponse:
    """Async context manager mimicking an aiohttp response."""

    def __init__(self, status=200, text="", chunks=()):
        self.status = status
        self._text = text
        self.content = DummyContent(list(chunks))

    async def read(self):
        if isinstance(self._text, bytes):
            return self._text
        return self._text.encode("utf-8")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummySession:
    """Session returning a fixed response, or raising ``error``."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.urls = []

    def get(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        pass


def client_with(session):
    client = RegistryClient("https://registry.test")
    client._session = session
    return client


class TestRegistryClient:
    """Document and archive requests."""

    def test_registry_url_normalized(self):
        assert RegistryClient("https://registry.test").registry_url == "https://registry.test/"

    def test_scoped_document_url(self):
        client = RegistryClient("https://registry.test/")
        assert client.document_url("@types/node") == "https://registry.test/@types%2Fnode"
        assert client.document_url("left-pad") == "https://registry.test/left-pad"

    def test_get_json(self):
        session = DummySession(DummyResponse(text=json.dumps({"name": "left-pad", "versions": {}})))
        data = asyncio.run(client_with(session).get_json("left-pad"))
        assert data["name"] == "left-pad"
        assert session.urls == ["https://registry.test/left-pad"]

    def test_non_200(self):
        session = DummySession(DummyResponse(status=404, text="not found"))
        with pytest.raises(RegistryError) as exc_info:
            asyncio.run(client_with(session).get_json("missing"))
        assert "404" in str(exc_info.value)

    @pytest.mark.parametrize("body", ["<html>", "[1, 2, 3]", b'{"versions": "\xff\xfe\xfa"}'])
    def test_bad_body(self, body):
        session = DummySession(DummyResponse(text=body))
        with pytest.raises(RegistryError):
            asyncio.run(client_with(session).get_json("left-pad"))

    @pytest.mark.parametrize(
        "error", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()]
    )
    def test_transport_errors_wrapped(self, error):
        session = DummySession(error=error)
        with pytest.raises(RegistryError):
            asyncio.run(client_with(session).get_json("left-pad"))

    def test_download_streams_to_file(self, tmp_path):
        session = DummySession(DummyResponse(chunks=[b"abc", b"def"]))
        destination = tmp_path / "x.tgz"

        written = asyncio.run(
            client_with(session).download("https://registry.test/x/-/x-1.0.0.tgz", str(destination))
        )

        assert written == 6
        assert destination.read_bytes() == b"abcdef"

    def test_download_file_work_runs_in_threads(self, tmp_path, monkeypatch):
        """Opening, writing and closing the archive never block the event loop."""
        offloaded = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(getattr(func, "__name__", repr(func)))
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)
        session = DummySession(DummyResponse(chunks=[b"abc", b"def"]))

        asyncio.run(
            client_with(session).download("https://registry.test/x/-/x-1.0.0.tgz", str(tmp_path / "x.tgz"))
        )

        assert offloaded == ["open", "write", "write", "close"]

    def test_download_non_200(self, tmp_path):
        session = DummySession(DummyResponse(status=500))
        with pytest.raises(RegistryError):
            asyncio.run(client_with(session).download("https://registry.test/x.tgz", str(tmp_path / "x")))

    def test_user_agent_header(self):
        """The real session carries the tool's User-Agent."""

        async def run():
            async with RegistryClient() as client:
                return dict(client._session.headers)

        headers = asyncio.run(run())
        assert headers["User-Agent"] == Constants.USER_AGENT
