"""Shared fixtures: a throwaway install root, config, local archives and a stub downloader."""

from __future__ import annotations

import hashlib
import io
import shutil
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from kettle import config as config_mod
from kettle.installer import PackageManager
from kettle.meta import Catalog

ARCH = "x86_64"
BASE_URL = "https://packages.example.org"


def sha256_of(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def make_tarball(path: Path, members: Dict[str, str], lists: bool = False) -> Path:
    """Write a tar.gz whose members are {relative path: text content}."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tf:
        for name, text in sorted(members.items()):
            data = text.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if "/bin/" in name else 0o644
            tf.addfile(info, io.BytesIO(data))
        if lists:
            # binary archives carry their own lists, which the installer re-derives
            for list_name in ("filelist", "dlist"):
                data = b"/bogus/path\n"
                info = tarfile.TarInfo(list_name)
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))
    return path


class LocalDownloader:
    """Serves registered URLs from local files and records every request."""

    def __init__(self):
        self.sources: Dict[str, Path] = {}
        self.calls: List[Tuple[str, str]] = []

    def serve(self, url: str, path: Path) -> str:
        self.sources[url] = path
        return url

    def __call__(self, url: str, dest: str) -> int:
        self.calls.append((url, dest))
        src = self.sources.get(url)
        if src is None:
            return 22
        shutil.copyfile(src, dest)
        return 0

    def urls(self) -> List[str]:
        return [u for u, _ in self.calls]


class Answers:
    """input() replacement returning a fixed answer and counting prompts."""

    def __init__(self, answer: str = "y"):
        self.answer = answer
        self.prompts: List[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


@pytest.fixture
def root(tmp_path: Path) -> Path:
    r = tmp_path / "root"
    r.mkdir()
    return r


@pytest.fixture
def kettle_config(tmp_path: Path, root: Path, monkeypatch):
    monkeypatch.delenv("KETTLE_ROOT", raising=False)
    monkeypatch.delenv("KETTLE_ARCH", raising=False)
    return config_mod.from_mapping({
        "architecture": ARCH,
        "paths": {
            "root": str(root),
            "lib_path": str(tmp_path / "lib"),
            "config_path": str(tmp_path / "etc"),
            "brew_dir": str(tmp_path / "brew"),
        },
        "build": {"output_dir": str(tmp_path / "out"), "no_strip": True},
    })


@pytest.fixture
def downloader() -> LocalDownloader:
    return LocalDownloader()


@pytest.fixture
def answers() -> Answers:
    return Answers("y")


@pytest.fixture
def catalog() -> Catalog:
    return Catalog(None)


@pytest.fixture
def make_manager(kettle_config, downloader, answers):
    def factory(catalog: Catalog, input_fn: Optional[Answers] = None) -> PackageManager:
        return PackageManager(kettle_config, catalog=catalog, downloader=downloader,
                              input_fn=input_fn or answers, output_fn=lambda msg: None)
    return factory


@pytest.fixture
def binary_archive(tmp_path: Path, downloader: LocalDownloader):
    """Build a binary archive for name-version, register it, return (url, sha256)."""
    def factory(name: str, version: str, members: Dict[str, str]) -> Tuple[str, str]:
        filename = f"{name}-{version}-linux-{ARCH}.tar.gz"
        path = make_tarball(tmp_path / "archives" / filename, members, lists=True)
        url = downloader.serve(f"{BASE_URL}/{filename}", path)
        return url, sha256_of(path)
    return factory


@pytest.fixture
def source_archive(tmp_path: Path, downloader: LocalDownloader):
    """Build a source tarball with a single top-level directory, return (url, sha256)."""
    def factory(name: str, version: str) -> Tuple[str, str]:
        filename = f"{name}-{version}.tar.gz"
        top = f"{name}-{version}"
        path = make_tarball(tmp_path / "archives" / filename, {
            f"{top}/configure": "#!/bin/sh\n",
            f"{top}/main.c": "int main(void) { return 0; }\n",
        })
        url = downloader.serve(f"{BASE_URL}/src/{filename}", path)
        return url, sha256_of(path)
    return factory
