"""Build pipeline: hook order, staging, documentation compression, stripping, archives."""

from __future__ import annotations

import gzip
import os
import tarfile
from pathlib import Path
from unittest import mock

import pytest

from kettle.buildsystem import BuildSystem, scan_tree
from kettle.errors import HookError
from kettle.package import BuildContext, Package


class Recorder(Package):
    name = "rec"
    version = "2.1"
    source_url = "https://example.org/rec-2.1.tar.gz"

    def __init__(self, **attrs):
        super().__init__(**attrs)
        self.calls = []

    def _record(self, hook, ctx):
        self.calls.append((hook, ctx.in_build))

    def preinstall(self, ctx):
        self._record("preinstall", ctx)

    def patch(self, ctx):
        self._record("patch", ctx)

    def build(self, ctx):
        self._record("build", ctx)

    def check(self, ctx):
        self._record("check", ctx)

    def install(self, ctx):
        self._record("install", ctx)
        base = Path(ctx.dest_dir, ctx.prefix.lstrip("/"))
        (base / "bin").mkdir(parents=True)
        (base / "bin" / "rec").write_text("#!/bin/sh\n")
        (base / "share" / "man" / "man1").mkdir(parents=True)
        (base / "share" / "man" / "man1" / "rec.1").write_text(".TH REC 1\n")
        os.symlink("rec.1", base / "share" / "man" / "man1" / "rec-alias.1")


@pytest.fixture
def ctx(tmp_path: Path) -> BuildContext:
    return BuildContext("x86_64", dest_dir=str(tmp_path / "dest"), no_strip=True)


@pytest.fixture
def bs(tmp_path: Path) -> BuildSystem:
    return BuildSystem(str(tmp_path / "work"))


class TestScanTree:
    def test_parents_first_and_symlinks_are_files(self, tmp_path: Path) -> None:
        (tmp_path / "usr" / "local" / "lib").mkdir(parents=True)
        (tmp_path / "usr" / "local" / "lib" / "liba.so.1").write_text("")
        os.symlink("liba.so.1", tmp_path / "usr" / "local" / "lib" / "liba.so")
        files, dirs = scan_tree(str(tmp_path))
        assert dirs == ["/usr", "/usr/local", "/usr/local/lib"]
        assert files == ["/usr/local/lib/liba.so", "/usr/local/lib/liba.so.1"]

    def test_skip_top(self, tmp_path: Path) -> None:
        (tmp_path / "filelist").write_text("")
        (tmp_path / "usr").mkdir()
        (tmp_path / "usr" / "x").write_text("")
        assert scan_tree(str(tmp_path), skip_top=("filelist",)) == (["/usr/x"], ["/usr"])


class TestBuild:
    def test_hook_order_and_staging(self, bs: BuildSystem, ctx: BuildContext, tmp_path: Path) -> None:
        pkg = Recorder()
        payload = bs.build(pkg, str(tmp_path), ctx)
        assert [h for h, _ in pkg.calls] == ["preinstall", "patch", "build", "install"]
        assert all(in_build for _, in_build in pkg.calls)
        assert ctx.in_build is False
        assert "/usr/local/bin/rec" in payload.files
        assert "/usr/local/share/man/man1/rec.1.gz" in payload.files
        assert payload.directories[0] == "/usr"

    def test_check_runs_when_enabled(self, bs: BuildSystem, ctx: BuildContext, tmp_path: Path) -> None:
        ctx.run_checks = True
        pkg = Recorder()
        bs.build(pkg, str(tmp_path), ctx)
        assert [h for h, _ in pkg.calls] == ["preinstall", "patch", "build", "check", "install"]

    def test_staging_root_is_fresh(self, bs: BuildSystem, ctx: BuildContext, tmp_path: Path) -> None:
        Path(ctx.dest_dir).mkdir()
        Path(ctx.dest_dir, "leftover").write_text("")
        payload = bs.build(Recorder(), str(tmp_path), ctx)
        assert "/leftover" not in payload.files

    def test_hook_failure(self, bs: BuildSystem, ctx: BuildContext, tmp_path: Path) -> None:
        class Broken(Recorder):
            def build(self, ctx):
                raise RuntimeError("make: *** [all] Error 2")

        with pytest.raises(HookError) as exc:
            bs.build(Broken(), str(tmp_path), ctx)
        assert exc.value.hook == "build"
        assert exc.value.package == "rec"
        assert "Error 2" in str(exc.value)
        assert ctx.in_build is False

    def test_false_return_fails(self, bs: BuildSystem, ctx: BuildContext) -> None:
        class Refuses(Package):
            name = "refuses"

            def patch(self, ctx):
                return False

        with pytest.raises(HookError, match="patch"):
            bs.run_hook(Refuses(), "patch", ctx)

    def test_no_compress(self, bs: BuildSystem, ctx: BuildContext, tmp_path: Path) -> None:
        ctx.no_compress = True
        payload = bs.build(Recorder(), str(tmp_path), ctx)
        assert "/usr/local/share/man/man1/rec.1" in payload.files


class TestCompressDocs:
    def test_man_pages_and_symlinks(self, bs: BuildSystem, tmp_path: Path) -> None:
        man = tmp_path / "usr" / "local" / "share" / "man" / "man1"
        man.mkdir(parents=True)
        (man / "a.1").write_text(".TH A 1\n")
        (man / "b.1.gz").write_bytes(gzip.compress(b".TH B 1\n"))
        os.symlink("a.1", man / "c.1")
        info = tmp_path / "usr" / "local" / "share" / "info"
        info.mkdir(parents=True)
        (info / "dir").write_text("index")
        (info / "a.info").write_text("info")

        assert bs.compress_docs(str(tmp_path), "/usr/local") == 2
        assert sorted(os.listdir(man)) == ["a.1.gz", "b.1.gz", "c.1.gz"]
        assert os.readlink(man / "c.1.gz") == "a.1.gz"
        assert gzip.decompress((man / "a.1.gz").read_bytes()) == b".TH A 1\n"
        assert sorted(os.listdir(info)) == ["a.info.gz"]


class TestStrip:
    def test_only_elf_and_ar_are_stripped(self, bs: BuildSystem, tmp_path: Path) -> None:
        (tmp_path / "prog").write_bytes(b"\x7fELF" + b"\0" * 60)
        (tmp_path / "liba.a").write_bytes(b"!<arch>\n" + b"\0" * 8)
        (tmp_path / "script").write_text("#!/bin/sh\n")
        with mock.patch("kettle.buildsystem.shutil.which", return_value="/usr/bin/strip"), \
                mock.patch("kettle.buildsystem.subprocess.call", return_value=0) as call:
            stripped = bs.strip_binaries(str(tmp_path))
        assert sorted(os.path.basename(p) for p in stripped) == ["liba.a", "prog"]
        assert all(c[0][0][:2] == ["/usr/bin/strip", "-S"] for c in call.call_args_list)

    def test_missing_strip_is_not_fatal(self, bs: BuildSystem, tmp_path: Path) -> None:
        (tmp_path / "prog").write_bytes(b"\x7fELF" + b"\0" * 60)
        with mock.patch("kettle.buildsystem.shutil.which", return_value=None):
            assert bs.strip_binaries(str(tmp_path)) == []


class TestArchive:
    def test_archive_layout(self, bs: BuildSystem, ctx: BuildContext, tmp_path: Path) -> None:
        pkg = Recorder()
        payload = bs.build(pkg, str(tmp_path), ctx)
        tarpath, sumpath = bs.archive(pkg, payload, str(tmp_path / "out"), "x86_64")
        assert os.path.basename(tarpath) == "rec-2.1-linux-x86_64.tar.xz"
        with tarfile.open(tarpath) as tf:
            names = tf.getnames()
        assert "filelist" in names and "dlist" in names
        assert "usr/local/bin/rec" in names
        digest, name = Path(sumpath).read_text().split()
        assert name == "rec-2.1-linux-x86_64.tar.xz"
        assert len(digest) == 64

    def test_cleanup(self, bs: BuildSystem) -> None:
        os.makedirs(bs.work_dir)
        assert bs.cleanup(keep=True) is False
        assert os.path.isdir(bs.work_dir)
        assert bs.cleanup() is True
        assert not os.path.exists(bs.work_dir)
