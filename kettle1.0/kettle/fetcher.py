# Kettle/kettle1.0/kettle/fetcher.py
"""
fetcher.py - artifact acquisition for kettle

Features:
- Chooses the payload: binary for the device architecture unless none exists or
  a source build was requested, otherwise the source archive
- Downloads into the working directory through an external downloader (curl by
  default): resumable transfers, insecure TLS tolerated, progress bar on the terminal
- Reuses a previously downloaded file whose checksum already matches
- SHA-256 verification against the descriptor (SKIP disables it, a missing
  checksum is refused before download)
- Extraction of .zip and tar archives (gz/bz2/xz) into <archive>.dir; source
  archives with a single top-level directory use it as the build root
"""

from __future__ import annotations

import os
import shutil
import hashlib
import tarfile
import zipfile
import zlib
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

from kettle.errors import (AcquisitionError, ChecksumMismatchError, DownloadError,
                           EmptyArchiveError, NoArtifactError)
from kettle.logging import get_logger
from kettle.package import BuildContext, Package

logger = get_logger("fetcher")

SKIP_CHECKSUM = "SKIP"

# (url, destination path) -> process exit status
Downloader = Callable[[str, str], int]

# -----------------------------------------------------------------------
# Utility helpers
# -----------------------------------------------------------------------
def _sha256_of_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()

def _filename_from_url(url: str) -> str:
    name = os.path.basename(urlparse(url).path)
    if not name:
        raise AcquisitionError(f"cannot derive a file name from {url}")
    return name

def curl_downloader(insecure: bool = True, resume: bool = True, program: str = "curl") -> Downloader:
    def download(url: str, dest: str) -> int:
        cmd: List[str] = [program, "-L", "-#", "-o", dest]
        if resume:
            cmd[1:1] = ["-C", "-"]
        if insecure:
            cmd.insert(1, "--insecure")
        cmd.append(url)
        logger.debug("RUN: %s", " ".join(cmd))
        try:
            return subprocess.call(cmd)
        except OSError as e:
            logger.error("cannot run downloader %s: %s", program, e)
            return 127
    return download


@dataclass
class Artifact:
    package: str
    is_source: bool
    filename: str
    path: str
    extract_dir: str
    build_root: str


class Fetcher:
    def __init__(self, work_dir: str, downloader: Optional[Downloader] = None):
        self.work_dir = work_dir
        self.downloader = downloader or curl_downloader()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def select(self, pkg: Package, ctx: BuildContext) -> Tuple[str, Optional[str], bool]:
        """Return (url, expected sha256, is_source)."""
        arch = ctx.architecture
        if pkg.is_binary(arch) and not ctx.build_from_source:
            return pkg.binary_url[arch], pkg.binary_sha256.get(arch), False
        if pkg.source_url:
            return pkg.source_url, pkg.source_sha256, True
        raise NoArtifactError(pkg.name, arch)

    # ------------------------------------------------------------------
    # Download / verify
    # ------------------------------------------------------------------
    @staticmethod
    def _skipped(expected: Optional[str]) -> bool:
        return (expected or "").strip().upper() == SKIP_CHECKSUM

    def download(self, url: str, filename: str, expected: Optional[str]) -> str:
        os.makedirs(self.work_dir, exist_ok=True)
        dest = os.path.join(self.work_dir, filename)
        if os.path.isfile(dest) and expected and not self._skipped(expected) \
                and _sha256_of_file(dest) == expected.lower():
            logger.info("using cached %s", filename)
            return dest
        logger.info("downloading %s", url)
        rc = self.downloader(url, dest)
        if rc != 0:
            raise DownloadError(url, rc)
        if not os.path.isfile(dest):
            raise DownloadError(url, rc)
        return dest

    @staticmethod
    def check_recorded(filename: str, expected: Optional[str]):
        """Only an explicit SKIP opts out; a missing checksum is refused."""
        if not (expected or "").strip():
            raise AcquisitionError(f"no checksum recorded for {filename}")

    def verify(self, path: str, expected: Optional[str]):
        self.check_recorded(os.path.basename(path), expected)
        if self._skipped(expected):
            logger.warning("checksum verification skipped for %s", os.path.basename(path))
            return
        actual = _sha256_of_file(path)
        if actual != expected.lower():
            os.unlink(path)
            raise ChecksumMismatchError(os.path.basename(path), expected.lower(), actual)
        logger.info("%s: sha256 ok", os.path.basename(path))

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    @staticmethod
    def _extract_zip(path: str, dest: str):
        try:
            with zipfile.ZipFile(path) as zf:
                for info in zf.infolist():
                    target = zf.extract(info, dest)
                    mode = info.external_attr >> 16
                    if mode and not info.is_dir():
                        os.chmod(target, mode & 0o7777)
        except zipfile.BadZipFile as e:
            raise AcquisitionError(f"cannot extract {os.path.basename(path)}: {e}") from e

    @staticmethod
    def _extract_tar(path: str, dest: str):
        if not tarfile.is_tarfile(path):
            raise AcquisitionError(f"{os.path.basename(path)} is not a supported archive")
        try:
            with tarfile.open(path, "r:*") as tf:
                if hasattr(tarfile, "tar_filter"):
                    tf.extractall(dest, filter="tar")
                else:
                    tf.extractall(dest)
        except (tarfile.TarError, EOFError, zlib.error) as e:
            # FilterError (member escaping dest, absolute links) is a TarError too
            raise AcquisitionError(f"cannot extract {os.path.basename(path)}: {e}") from e

    def unpack(self, path: str, is_source: bool) -> Tuple[str, str]:
        """Extract path, return (extract_dir, build_root)."""
        filename = os.path.basename(path)
        extract_dir = os.path.join(self.work_dir, filename + ".dir")
        if os.path.exists(extract_dir):
            shutil.rmtree(extract_dir)
        os.makedirs(extract_dir)
        logger.info("unpacking %s", filename)
        if filename.lower().endswith(".zip"):
            self._extract_zip(path, extract_dir)
        else:
            self._extract_tar(path, extract_dir)
        entries = os.listdir(extract_dir)
        if not entries:
            raise EmptyArchiveError(filename)
        build_root = extract_dir
        if is_source and len(entries) == 1:
            only = os.path.join(extract_dir, entries[0])
            if os.path.isdir(only) and not os.path.islink(only):
                build_root = only
        return extract_dir, build_root

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------
    def acquire(self, pkg: Package, ctx: BuildContext) -> Artifact:
        url, expected, is_source = self.select(pkg, ctx)
        filename = _filename_from_url(url)
        self.check_recorded(filename, expected)
        logger.info("%s: fetching %s archive %s", pkg.name, "source" if is_source else "binary", filename)
        path = self.download(url, filename, expected)
        self.verify(path, expected)
        extract_dir, build_root = self.unpack(path, is_source)
        return Artifact(package=pkg.name, is_source=is_source, filename=filename, path=path,
                        extract_dir=extract_dir, build_root=build_root)
