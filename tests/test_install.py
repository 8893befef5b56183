"""End-to-end install tests against the in-memory registry."""

import asyncio
import io
import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest

import cli_install
import pkgnest
from cli_install import collect_specs, format_tree, run_install
from constants import Constants, ExitCodes
from errors import (
    DuplicateDependencyError,
    HashMismatchError,
    NoMatchingVersionError,
    RegistryError,
    UnresolvableCycleError,
    UnsupportedPlatformError,
)
from installer.service import install
from versioning.models import InstallReport, PackageSpec


@pytest.fixture
def published(registry):
    """a@1.2.0 depends on b@^2.0.0; b has 2.0.0 and 2.1.0."""
    registry.publish("a", "1.0.0")
    registry.publish("a", "1.2.0", dependencies={"b": "^2.0.0"})
    registry.publish("b", "2.0.0")
    registry.publish("b", "2.1.0")
    return registry


def installed_version(path):
    return json.loads((path / "package.json").read_text())["version"]


class TestInstall:
    """Orchestration through every component."""

    def test_end_to_end(self, published, config, tmp_path):
        prefix = tmp_path / "project"

        report = asyncio.run(
            install([PackageSpec("a", "^1.0.0")], config, str(prefix), client=published, platform="linux")
        )

        assert report.tree == {"a@1.2.0": {}, "b@2.1.0": {}}
        assert report.placed == 2
        assert set(report.archives) == {"a@1.2.0", "b@2.1.0"}
        assert installed_version(prefix / "node_modules" / "a") == "1.2.0"
        assert installed_version(prefix / "node_modules" / "b") == "2.1.0"

    def test_second_run_uses_caches(self, published, config, tmp_path):
        """A repeat install inside the freshness window needs no network."""
        spec = [PackageSpec("a", "^1.0.0")]
        asyncio.run(install(spec, config, str(tmp_path / "one"), client=published, platform="linux"))
        published.json_calls.clear()
        published.downloads.clear()

        asyncio.run(install(spec, config, str(tmp_path / "two"), client=published, platform="linux"))

        assert published.json_calls == []
        assert published.downloads == []
        assert installed_version(tmp_path / "two" / "node_modules" / "b") == "2.1.0"

    def test_dry_run_writes_nothing(self, published, config, tmp_path):
        prefix = tmp_path / "project"

        report = asyncio.run(
            install([PackageSpec("a", "")], config, str(prefix), dry_run=True, client=published, platform="linux")
        )

        assert report.dry_run is True
        assert report.tree == {"a@1.2.0": {}, "b@2.1.0": {}}
        assert published.downloads == []
        assert not prefix.exists()

    def test_unsupported_optional_dependency_not_fetched(self, registry, config, tmp_path):
        registry.publish("app", "1.0.0", optional={"fsevents": "^2.0.0"})
        registry.publish("fsevents", "2.3.0", os=["darwin"])

        report = asyncio.run(
            install([PackageSpec("app", "")], config, str(tmp_path), client=registry, platform="linux")
        )

        assert report.tree == {"app@1.0.0": {}}
        assert all("fsevents" not in url for url in registry.downloads)

    def test_optional_dependency_with_unsupported_required_dependency(self, registry, config, tmp_path):
        """A skipped optional package's own requirements do not fail the install."""
        registry.publish("app", "1.0.0", optional={"fsevents": "^1.0.0"})
        registry.publish("fsevents", "1.0.0", os=["darwin"], dependencies={"darwin-core": "^1.0.0"})
        registry.publish("darwin-core", "1.0.0", os=["darwin"])

        report = asyncio.run(
            install([PackageSpec("app", "")], config, str(tmp_path), client=registry, platform="linux")
        )

        assert report.tree == {"app@1.0.0": {}}
        assert all("darwin-core" not in url for url in registry.downloads)

    def test_conflicting_versions_nested(self, registry, config, tmp_path):
        registry.publish("x", "1.0.0", dependencies={"shared": "^1.0.0"})
        registry.publish("shared", "1.0.0")
        registry.publish("shared", "2.0.0")

        report = asyncio.run(
            install(
                [PackageSpec("x", ""), PackageSpec("shared", "2.0.0")],
                config,
                str(tmp_path),
                client=registry,
                platform="linux",
            )
        )

        assert report.tree == {"shared@2.0.0": {}, "x@1.0.0": {"shared@1.0.0": {}}}
        modules = tmp_path / "node_modules"
        assert installed_version(modules / "shared") == "2.0.0"
        assert installed_version(modules / "x" / "node_modules" / "shared") == "1.0.0"

    def test_cycle_aborts_before_downloading(self, registry, config, tmp_path):
        registry.publish("a", "1.0.0", dependencies={"a": "2.0.0"}, latest=False)
        registry.publish("a", "2.0.0", dependencies={"a": "1.0.0"}, latest=False)

        with pytest.raises(UnresolvableCycleError):
            asyncio.run(
                install([PackageSpec("a", "1.0.0")], config, str(tmp_path), client=registry, platform="linux")
            )
        assert registry.downloads == []


class TestCliInstall:
    """Spec selection and output of the install command."""

    def test_explicit_specs_ignore_manifest(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"devDependencies": {"jest": "^29"}}))
        args = SimpleNamespace(SPECS=["lodash@^4"], PREFIX=str(tmp_path), OMIT_DEV=False)
        assert collect_specs(args) == [PackageSpec("lodash", "^4")]

    def test_manifest_specs(self, tmp_path):
        (tmp_path / "package.json").write_text(
            json.dumps({"dependencies": {"a": "^1"}, "devDependencies": {"b": "^2"}})
        )
        with_dev = SimpleNamespace(SPECS=[], PREFIX=str(tmp_path), OMIT_DEV=False)
        without_dev = SimpleNamespace(SPECS=[], PREFIX=str(tmp_path), OMIT_DEV=True)

        assert collect_specs(with_dev) == [PackageSpec("a", "^1"), PackageSpec("b", "^2")]
        assert collect_specs(without_dev) == [PackageSpec("a", "^1")]

    def test_duplicate_manifest_entry(self, tmp_path):
        (tmp_path / "package.json").write_text(
            json.dumps({"dependencies": {"a": "^1"}, "devDependencies": {"a": "^2"}})
        )
        with pytest.raises(DuplicateDependencyError):
            collect_specs(SimpleNamespace(SPECS=[], PREFIX=str(tmp_path), OMIT_DEV=False))

    def test_format_tree(self):
        tree = {"a@1.0.0": {"c@1.0.0": {}}, "b@1.0.0": {}}
        assert format_tree(tree) == ["a@1.0.0", "  c@1.0.0", "b@1.0.0"]

    def test_run_install_prints_tree(self, tmp_path):
        report = InstallReport(tree={"a@1.2.0": {}, "b@2.1.0": {}}, table={}, placed=2)

        async def fake_install(specs, config, prefix, dry_run=False):
            assert specs == [PackageSpec("a", "^1.0.0")]
            return report

        args = pkgnest.parse_args(["install", "a@^1.0.0", "--prefix", str(tmp_path), "--cache-dir", str(tmp_path)])
        out = io.StringIO()
        with patch.object(cli_install, "install", fake_install):
            assert run_install(args, out=out) is report
        assert out.getvalue() == "a@1.2.0\nb@2.1.0\n"


class TestExitCodes:
    """Mapping of failures onto process exit codes."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (RegistryError("down"), ExitCodes.CONNECTION_ERROR),
            (DuplicateDependencyError("a"), ExitCodes.FILE_ERROR),
            (NoMatchingVersionError("a", "^9"), ExitCodes.RESOLUTION_ERROR),
            (UnresolvableCycleError(["a@1", "a@2", "a@1"]), ExitCodes.RESOLUTION_ERROR),
            (UnsupportedPlatformError("a@1", "linux"), ExitCodes.RESOLUTION_ERROR),
            (HashMismatchError("f", "x", "y"), ExitCodes.INTEGRITY_ERROR),
        ],
    )
    def test_run_maps_errors(self, monkeypatch, error, code):
        monkeypatch.setenv(Constants.LOG_LEVEL_ENV, "INFO")

        def failing(args):
            raise error

        with patch.object(cli_install, "run_install", failing):
            assert pkgnest.run(["install", "a"]) == code.value

    def test_success(self, monkeypatch):
        monkeypatch.setenv(Constants.LOG_LEVEL_ENV, "INFO")
        with patch.object(cli_install, "run_install", lambda args: None):
            assert pkgnest.run(["i"]) == ExitCodes.SUCCESS.value

    def test_unexpected_error_reported(self, monkeypatch, caplog):
        """Errors outside the known hierarchy still end in a logged exit code."""
        monkeypatch.setenv(Constants.LOG_LEVEL_ENV, "INFO")

        def failing(args):
            raise ValueError("bad state")

        with patch.object(cli_install, "run_install", failing):
            assert pkgnest.run(["install", "a"]) == ExitCodes.RESOLUTION_ERROR.value
        assert any("Unexpected error: bad state" in r.getMessage() for r in caplog.records)
