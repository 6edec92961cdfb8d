# Kettle/kettle1.0/kettle/buildsystem.py
"""
buildsystem.py - build pipeline for kettle

Features:
- Runs descriptor hooks in fixed order: preinstall, patch, build, (check), install
- Fresh staging root (DESTDIR) for every build
- Post-processing of the staged tree: gzip of man/info pages, strip of ELF and
  ar archives (detected by magic bytes, not extension)
- Records staged files and directories (directories parent-first)
- Packaging of a staged tree into <name>-<version>-<tag>-<arch>.tar.xz plus a
  sha256sum-style companion file
- Working directory cleanup (honours keep_workdir)
"""

from __future__ import annotations

import os
import gzip
import shutil
import hashlib
import tarfile
import subprocess
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from kettle.errors import HookError, InstallError, KettleError
from kettle.logging import get_logger
from kettle.package import BuildContext, Package

logger = get_logger("buildsystem")

ELF_MAGIC = b"\x7fELF"
AR_MAGIC = b"!<arch>\n"
COMPRESSED_SUFFIXES = (".gz", ".bz2", ".xz", ".zst")
DOC_DIRS = ("share/man", "share/info")
# names a binary archive carries at its top level besides the filesystem tree
ARCHIVE_LISTS = ("filelist", "dlist")


@dataclass
class StagedPayload:
    root: str
    files: List[str] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)


# --- helpers ---
def _sha256_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024*1024), b""):
            h.update(chunk)
    return h.hexdigest()

def scan_tree(root: str, skip_top: Sequence[str] = ()) -> Tuple[List[str], List[str]]:
    """
    (files, directories) under root as absolute paths ("/usr/local/bin/x").
    Directories are listed parent-first; symlinks count as files.
    """
    files: List[str] = []
    dirs: List[str] = []

    def walk(path: str, rel: str):
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            if not rel and entry.name in skip_top:
                continue
            entry_rel = rel + "/" + entry.name
            if entry.is_dir(follow_symlinks=False):
                dirs.append(entry_rel)
                walk(entry.path, entry_rel)
            else:
                files.append(entry_rel)

    walk(root, "")
    return files, dirs

def _is_strippable(path: str) -> bool:
    try:
        with open(path, "rb") as f:
            head = f.read(8)
    except OSError:
        return False
    return head.startswith(ELF_MAGIC) or head == AR_MAGIC

def _gzip_file(path: str):
    with open(path, "rb") as src, gzip.open(path + ".gz", "wb", compresslevel=9) as dst:
        shutil.copyfileobj(src, dst)
    shutil.copystat(path, path + ".gz")
    os.unlink(path)


class BuildSystem:
    def __init__(self, work_dir: str, strip_program: str = "strip", platform_tag: str = "linux"):
        self.work_dir = work_dir
        self.strip_program = strip_program
        self.platform_tag = platform_tag

    # --- hooks ---
    def run_hook(self, pkg: Package, hook: str, ctx: BuildContext):
        logger.info("%s: running %s", pkg.name, hook)
        try:
            result = getattr(pkg, hook)(ctx)
        except InstallError:
            raise
        except KettleError as e:
            raise HookError(pkg.name, hook, str(e)) from e
        except Exception as e:
            raise HookError(pkg.name, hook, f"{type(e).__name__}: {e}") from e
        if result is False:
            raise HookError(pkg.name, hook, "hook reported failure")

    # --- post-processing ---
    def compress_docs(self, dest_dir: str, prefix: str) -> int:
        """gzip man and info pages below <dest_dir><prefix>; returns number of files compressed."""
        count = 0
        base = os.path.join(dest_dir, prefix.lstrip("/"))
        for sub in DOC_DIRS:
            top = os.path.join(base, sub)
            if not os.path.isdir(top):
                continue
            dir_file = os.path.join(top, "dir")
            if sub == "share/info" and os.path.isfile(dir_file):
                # the info index is regenerated on the live system
                os.unlink(dir_file)
            for dirpath, _dirnames, filenames in os.walk(top):
                for fname in filenames:
                    path = os.path.join(dirpath, fname)
                    if fname.endswith(COMPRESSED_SUFFIXES):
                        continue
                    if os.path.islink(path):
                        target = os.readlink(path)
                        os.unlink(path)
                        if not target.endswith(COMPRESSED_SUFFIXES):
                            target += ".gz"
                        os.symlink(target, path + ".gz")
                        continue
                    _gzip_file(path)
                    count += 1
        if count:
            logger.info("compressed %d documentation files", count)
        return count

    def strip_binaries(self, dest_dir: str) -> List[str]:
        """Strip debug symbols from ELF objects and ar archives; returns the stripped paths."""
        candidates: List[str] = []
        for dirpath, _dirnames, filenames in os.walk(dest_dir):
            for fname in filenames:
                path = os.path.join(dirpath, fname)
                if os.path.islink(path) or not os.path.isfile(path):
                    continue
                if _is_strippable(path):
                    candidates.append(path)
        if not candidates:
            return []
        program = shutil.which(self.strip_program)
        if not program:
            logger.warning("%s not found; leaving %d binaries unstripped", self.strip_program, len(candidates))
            return []
        for path in candidates:
            mode = os.stat(path).st_mode
            os.chmod(path, mode | 0o200)
            rc = subprocess.call([program, "-S", path])
            os.chmod(path, mode)
            if rc != 0:
                logger.warning("strip failed on %s (exit %d)", path, rc)
        logger.info("stripped %d binaries", len(candidates))
        return candidates

    # --- main pipeline ---
    def build(self, pkg: Package, build_root: str, ctx: BuildContext) -> StagedPayload:
        """Run the build hooks in build_root and stage the result into ctx.dest_dir."""
        ctx.in_build = True
        ctx.build_root = build_root
        try:
            for hook in ("preinstall", "patch", "build"):
                self.run_hook(pkg, hook, ctx)
            if ctx.run_checks:
                self.run_hook(pkg, "check", ctx)

            if os.path.exists(ctx.dest_dir):
                shutil.rmtree(ctx.dest_dir)
            os.makedirs(ctx.dest_dir)
            self.run_hook(pkg, "install", ctx)
            if not os.listdir(ctx.dest_dir):
                logger.warning("%s: install hook staged no files", pkg.name)

            if not ctx.no_compress:
                self.compress_docs(ctx.dest_dir, ctx.prefix)
            if not ctx.no_strip:
                self.strip_binaries(ctx.dest_dir)

            files, dirs = scan_tree(ctx.dest_dir)
            logger.info("%s: staged %d files in %d directories", pkg.name, len(files), len(dirs))
            return StagedPayload(root=ctx.dest_dir, files=files, directories=dirs)
        finally:
            ctx.in_build = False

    def stage_binary(self, extract_dir: str) -> StagedPayload:
        """A binary archive already mirrors the filesystem; only its lists are re-derived."""
        files, dirs = scan_tree(extract_dir, skip_top=ARCHIVE_LISTS)
        return StagedPayload(root=extract_dir, files=files, directories=dirs)

    # --- packaging (build-only workflow) ---
    def archive_name(self, pkg: Package, architecture: str) -> str:
        return f"{pkg.name}-{pkg.version}-{self.platform_tag}-{architecture}.tar.xz"

    def archive(self, pkg: Package, payload: StagedPayload, output_dir: str, architecture: str) -> Tuple[str, str]:
        """Write the staged tree plus filelist/dlist as a tar.xz; returns (archive, checksum file)."""
        os.makedirs(output_dir, exist_ok=True)
        with open(os.path.join(payload.root, "filelist"), "w", encoding="utf-8") as f:
            f.writelines(p + "\n" for p in payload.files)
        with open(os.path.join(payload.root, "dlist"), "w", encoding="utf-8") as f:
            f.writelines(p + "\n" for p in payload.directories)

        name = self.archive_name(pkg, architecture)
        tarpath = os.path.join(output_dir, name)
        with tarfile.open(tarpath, "w:xz") as tf:
            for entry in sorted(os.listdir(payload.root)):
                tf.add(os.path.join(payload.root, entry), arcname=entry)
        digest = _sha256_file(tarpath)
        sumpath = tarpath + ".sha256"
        with open(sumpath, "w", encoding="utf-8") as f:
            f.write(f"{digest}  {name}\n")
        logger.info("%s: wrote %s (sha256 %s)", pkg.name, tarpath, digest)
        return tarpath, sumpath

    # --- cleanup ---
    def cleanup(self, keep: bool = False) -> bool:
        """Wipe the working directory; returns False when it was kept."""
        if keep:
            logger.info("Keeping build dir %s", self.work_dir)
            return False
        shutil.rmtree(self.work_dir, ignore_errors=True)
        return True
