"""Tests for platform filtering of dependency edges."""

import logging
import sys

import pytest

from errors import UnsupportedPlatformError
from resolution.platform import build_dependency_graph, current_platform, is_supported
from versioning.models import VersionRecord


def record(name, version="1.0.0", os=None, dependencies=None, optional=None):
    """Helper to build a version record."""
    return VersionRecord(
        name=name,
        version=version,
        os=os,
        dependencies=dependencies or {},
        optional_dependencies=optional or {},
    )


class TestIsSupported:
    """Support checks against the os field."""

    def test_no_os_field_supports_everything(self):
        assert is_supported(record("a"), "aix")

    def test_allow_list(self):
        rec = record("a", os=["darwin", "linux"])
        assert is_supported(rec, "linux")
        assert not is_supported(rec, "win32")

    def test_negated_entry(self):
        """A ``!`` entry excludes that platform only."""
        rec = record("a", os=["!win32"])
        assert is_supported(rec, "linux")
        assert not is_supported(rec, "win32")

    @pytest.mark.parametrize(
        "sys_platform,expected",
        [("linux", "linux"), ("darwin", "darwin"), ("win32", "win32"), ("freebsd13", "freebsd")],
    )
    def test_current_platform(self, monkeypatch, sys_platform, expected):
        monkeypatch.setattr(sys, "platform", sys_platform)
        assert current_platform() == expected


class TestBuildDependencyGraph:
    """Pruning of unsupported edges."""

    def test_unsupported_optional_dependency_dropped(self, caplog):
        """Optional edges to unsupported packages are skipped with a warning."""
        table = {
            "app@1.0.0": record(
                "app", dependencies={"lib": "^1.0.0"}, optional={"fsevents": "^2.0.0"}
            ),
            "lib@1.0.0": record("lib"),
            "fsevents@2.3.0": record("fsevents", "2.3.0", os=["darwin"]),
        }
        version_map = {"lib@^1.0.0": "lib@1.0.0", "fsevents@^2.0.0": "fsevents@2.3.0"}

        with caplog.at_level(logging.WARNING):
            graph = build_dependency_graph(table, version_map, "linux")

        assert graph["app@1.0.0"] == ["lib@1.0.0"]
        assert graph["fsevents@2.3.0"] == []
        assert any("fsevents@2.3.0" in r.getMessage() for r in caplog.records)

    def test_supported_optional_dependency_kept(self):
        table = {
            "app@1.0.0": record("app", optional={"fsevents": "^2.0.0"}),
            "fsevents@2.3.0": record("fsevents", "2.3.0", os=["darwin"]),
        }
        graph = build_dependency_graph(table, {"fsevents@^2.0.0": "fsevents@2.3.0"}, "darwin")
        assert graph["app@1.0.0"] == ["fsevents@2.3.0"]

    def test_unsupported_required_dependency_raises(self):
        """A required edge to an unsupported package names both ends."""
        table = {
            "app@1.0.0": record("app", dependencies={"winonly": "1.0.0"}),
            "winonly@1.0.0": record("winonly", os=["win32"]),
        }

        with pytest.raises(UnsupportedPlatformError) as exc_info:
            build_dependency_graph(table, {"winonly@1.0.0": "winonly@1.0.0"}, "linux")

        assert exc_info.value.package_id == "winonly@1.0.0"
        assert exc_info.value.required_by == "app@1.0.0"

    def test_walk_from_roots_skips_dropped_optional_subtree(self):
        """Required dependencies of a skipped optional package are never checked."""
        table = {
            "app@1.0.0": record("app", optional={"fsevents": "^1.0.0"}),
            "fsevents@1.0.0": record(
                "fsevents", os=["darwin"], dependencies={"darwin-core": "^1.0.0"}
            ),
            "darwin-core@1.0.0": record("darwin-core", os=["darwin"]),
        }
        version_map = {
            "fsevents@^1.0.0": "fsevents@1.0.0",
            "darwin-core@^1.0.0": "darwin-core@1.0.0",
        }

        graph = build_dependency_graph(table, version_map, "linux", roots=["app@1.0.0"])

        assert graph == {"app@1.0.0": []}

    def test_unsupported_root_left_for_tree_builder(self):
        table = {
            "winonly@1.0.0": record("winonly", os=["win32"], dependencies={"lib": "^1.0.0"}),
            "lib@1.0.0": record("lib"),
        }

        graph = build_dependency_graph(
            table, {"lib@^1.0.0": "lib@1.0.0"}, "linux", roots=["winonly@1.0.0"]
        )

        assert graph == {"winonly@1.0.0": []}
