"""Dependency expansion, confirmation gate and upgrade ordering."""

from __future__ import annotations

from pathlib import Path

import pytest

from kettle.errors import PackageNotFoundError
from kettle.manifest import DeviceManifest
from kettle.meta import Catalog
from kettle.package import BuildContext, Package
from kettle.resolver import Resolver

ARCH = "x86_64"


def pkg(name, deps=None, binary=False, version="1.0"):
    attrs = {"name": name, "version": version, "dependencies": deps or {},
             "source_url": f"https://example.org/{name}.tar.gz", "source_sha256": "0" * 64}
    if binary:
        attrs["binary_url"] = {ARCH: f"https://example.org/{name}-bin.tar.gz"}
        attrs["binary_sha256"] = {ARCH: "1" * 64}
    return Package(**attrs)


def resolver_for(tmp_path: Path, *packages, installed=()):
    catalog = Catalog(None)
    for p in packages:
        catalog.add(p)
    manifest = DeviceManifest(str(tmp_path / "device.json"), ARCH,
                              [{"name": n, "version": "1.0"} for n in installed])
    return Resolver(catalog, manifest)


class TestExpand:
    def test_binary_install_skips_build_dependencies(self, tmp_path: Path) -> None:
        top = pkg("top", {"A": [], "B": ["build"]}, binary=True)
        r = resolver_for(tmp_path, top, pkg("A"), pkg("B"))
        assert r.expand(top, BuildContext(ARCH)) == ["A"]

    def test_source_install_includes_build_dependencies(self, tmp_path: Path) -> None:
        top = pkg("top", {"A": [], "B": ["build"]})
        r = resolver_for(tmp_path, top, pkg("A"), pkg("B"))
        assert r.expand(top, BuildContext(ARCH)) == ["A", "B"]

    def test_build_from_source_flag_includes_build_dependencies(self, tmp_path: Path) -> None:
        top = pkg("top", {"A": [], "B": ["build"]}, binary=True)
        r = resolver_for(tmp_path, top, pkg("A"), pkg("B"))
        assert sorted(r.expand(top, BuildContext(ARCH, build_from_source=True))) == ["A", "B"]

    def test_upgrade_includes_build_dependencies(self, tmp_path: Path) -> None:
        top = pkg("top", {"B": ["build"]}, binary=True)
        r = resolver_for(tmp_path, top, pkg("B"), installed=["top"])
        assert r.expand(top, BuildContext(ARCH)) == []
        assert r.expand(top, BuildContext(ARCH, in_upgrade=True)) == ["B"]

    def test_diamond_has_no_duplicates_and_dependencies_first(self, tmp_path: Path) -> None:
        top = pkg("top", ["A", "B"])
        r = resolver_for(tmp_path, top, pkg("A", ["C"]), pkg("B", ["C"]), pkg("C"))
        assert r.expand(top, BuildContext(ARCH)) == ["C", "A", "B"]

    def test_cycle_terminates(self, tmp_path: Path) -> None:
        a = pkg("A", ["B"])
        r = resolver_for(tmp_path, a, pkg("B", ["C"]), pkg("C", ["A"]))
        assert r.expand(a, BuildContext(ARCH)) == ["C", "B"]

    def test_dependency_build_deps_follow_recursive(self, tmp_path: Path) -> None:
        top = pkg("top", ["A"])
        r = resolver_for(tmp_path, top, pkg("A", {"T": ["build"]}, binary=True), pkg("T"))
        assert r.expand(top, BuildContext(ARCH)) == ["A"]
        assert r.expand(top, BuildContext(ARCH, recursive=True)) == ["T", "A"]

    def test_unknown_dependency(self, tmp_path: Path) -> None:
        top = pkg("top", ["ghost"])
        r = resolver_for(tmp_path, top)
        with pytest.raises(PackageNotFoundError, match="ghost"):
            r.expand(top, BuildContext(ARCH))

    def test_missing_filters_installed(self, tmp_path: Path) -> None:
        top = pkg("top", ["A", "B"])
        r = resolver_for(tmp_path, top, pkg("A"), pkg("B"), installed=["A"])
        assert r.missing(top, BuildContext(ARCH)) == ["B"]


class TestConfirm:
    @pytest.mark.parametrize("answer,expected", [("y", True), ("YES", True), ("n", False), ("", False)])
    def test_answers(self, tmp_path: Path, answer: str, expected: bool) -> None:
        r = resolver_for(tmp_path)
        out = []
        assert r.confirm(pkg("top"), ["A", "B"], input_fn=lambda _: answer, output_fn=out.append) is expected
        assert "A B" in out[1]

    def test_eof_is_no(self, tmp_path: Path) -> None:
        def eof(_):
            raise EOFError
        assert resolver_for(tmp_path).confirm(pkg("top"), ["A"], input_fn=eof, output_fn=lambda _: None) is False


class TestUpgradeOrder:
    def test_dependencies_before_dependents(self, tmp_path: Path) -> None:
        r = resolver_for(tmp_path, pkg("app", ["lib"]), pkg("lib", ["base"]), pkg("base"),
                         installed=["app", "base", "lib"])
        order = r.upgrade_order()
        assert order.index("base") < order.index("lib") < order.index("app")
        assert sorted(order) == ["app", "base", "lib"]

    def test_cycle_and_unknown_packages(self, tmp_path: Path) -> None:
        r = resolver_for(tmp_path, pkg("A", ["B"]), pkg("B", ["A"]), installed=["A", "B", "orphan"])
        assert sorted(r.upgrade_order()) == ["A", "B"]

    def test_reverse_dependencies(self, tmp_path: Path) -> None:
        r = resolver_for(tmp_path, pkg("app", ["lib"]), pkg("lib"), pkg("other"),
                         installed=["app", "lib", "other"])
        assert r.reverse_dependencies("lib") == ["app"]
        assert r.reverse_dependencies("app") == []
