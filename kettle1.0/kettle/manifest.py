# Kettle/kettle1.0/kettle/manifest.py
"""
manifest.py - device manifest and per-package file/directory lists

The device manifest (device.json) is the only authority on what is installed:

    {
      "architecture": "x86_64",
      "installed_packages": [{"name": "zlib", "version": "1.3.1"}, ...]
    }

It is rewritten in full after every change (temporary sibling + rename). File
ownership is kept as two plain-text lists per package in the meta directory:
<name>.filelist and <name>.directorylist, one absolute path per line, the
directory list ordered parents first.
"""

from __future__ import annotations

import os
import json
import tempfile
from typing import Any, Dict, List, Optional, Tuple

from kettle.errors import ManifestError
from kettle.logging import get_logger

logger = get_logger("manifest")

FILELIST_SUFFIX = ".filelist"
DIRLIST_SUFFIX = ".directorylist"


def _atomic_write_text(path: str, text: str):
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class DeviceManifest:
    def __init__(self, path: str, architecture: str, installed: Optional[List[Dict[str,str]]] = None):
        self.path = path
        self.architecture = architecture
        self._installed: List[Dict[str,str]] = []
        for entry in installed or []:
            self._append(str(entry["name"]), str(entry.get("version", "")))

    @classmethod
    def load(cls, path: str, default_architecture: str) -> "DeviceManifest":
        """Read device.json; a missing file yields an empty manifest for default_architecture."""
        if not os.path.exists(path):
            logger.debug("no device manifest at %s, starting empty (%s)", path, default_architecture)
            return cls(path, default_architecture)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ManifestError(f"cannot read device manifest {path}: {e}") from e
        if not isinstance(data, dict) or "installed_packages" not in data:
            raise ManifestError(f"malformed device manifest {path}")
        entries = data.get("installed_packages") or []
        if not isinstance(entries, list):
            raise ManifestError(f"malformed device manifest {path}: installed_packages is not a list")
        for i, entry in enumerate(entries):
            if not isinstance(entry, dict) or not entry.get("name"):
                raise ManifestError(f"malformed device manifest {path}: entry {i} has no package name")
        return cls(path, str(data.get("architecture") or default_architecture), entries)

    # ------------------------
    # Queries
    # ------------------------
    @property
    def installed_packages(self) -> List[Dict[str,str]]:
        return [dict(e) for e in self._installed]

    def names(self) -> List[str]:
        return [e["name"] for e in self._installed]

    def is_installed(self, name: str) -> bool:
        return any(e["name"] == name for e in self._installed)

    def installed_version(self, name: str) -> Optional[str]:
        for e in self._installed:
            if e["name"] == name:
                return e["version"]
        return None

    # ------------------------
    # Mutation (caller persists with save())
    # ------------------------
    def _append(self, name: str, version: str):
        self._installed = [e for e in self._installed if e["name"] != name]
        self._installed.append({"name": name, "version": version})

    def add(self, name: str, version: str):
        self._append(name, version)

    def remove(self, name: str) -> bool:
        before = len(self._installed)
        self._installed = [e for e in self._installed if e["name"] != name]
        return len(self._installed) != before

    def to_dict(self) -> Dict[str,Any]:
        return {"architecture": self.architecture, "installed_packages": self.installed_packages}

    def save(self):
        try:
            _atomic_write_text(self.path, json.dumps(self.to_dict(), indent=2) + "\n")
        except OSError as e:
            raise ManifestError(f"cannot write device manifest {self.path}: {e}") from e
        logger.debug("device manifest written to %s (%d packages)", self.path, len(self._installed))


class FileListStore:
    """Per-package recorded file and directory lists."""

    def __init__(self, meta_dir: str):
        self.meta_dir = meta_dir

    def filelist_path(self, name: str) -> str:
        return os.path.join(self.meta_dir, name + FILELIST_SUFFIX)

    def dirlist_path(self, name: str) -> str:
        return os.path.join(self.meta_dir, name + DIRLIST_SUFFIX)

    def exists(self, name: str) -> bool:
        return os.path.isfile(self.filelist_path(name))

    def write(self, name: str, files: List[str], directories: List[str]):
        _atomic_write_text(self.filelist_path(name), "".join(f + "\n" for f in files))
        _atomic_write_text(self.dirlist_path(name), "".join(d + "\n" for d in directories))

    @staticmethod
    def _read_lines(path: str) -> List[str]:
        if not os.path.isfile(path):
            return []
        with open(path, "r", encoding="utf-8") as f:
            return [line.rstrip("\n") for line in f if line.strip()]

    def read(self, name: str) -> Optional[Tuple[List[str], List[str]]]:
        if not self.exists(name):
            return None
        return self._read_lines(self.filelist_path(name)), self._read_lines(self.dirlist_path(name))

    def owners(self, path: str) -> List[str]:
        """Packages whose file list contains path."""
        wanted = "/" + path.lstrip("/")
        found: List[str] = []
        if not os.path.isdir(self.meta_dir):
            return found
        for fname in sorted(os.listdir(self.meta_dir)):
            if not fname.endswith(FILELIST_SUFFIX):
                continue
            name = fname[: -len(FILELIST_SUFFIX)]
            if wanted in self._read_lines(os.path.join(self.meta_dir, fname)):
                found.append(name)
        return found
