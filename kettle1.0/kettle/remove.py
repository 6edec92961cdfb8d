# Kettle/kettle1.0/kettle/remove.py
"""
remove.py - best-effort removal of an installed package's files

Removal works purely from the recorded lists: every file in <name>.filelist is
unlinked, then every directory in <name>.directorylist is removed in reverse
order (children before parents), then the two lists themselves go. A path that
cannot be removed (already gone, directory still shared with another package,
permission problem) never aborts the rest; it is collected in the report.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Tuple

from kettle.logging import get_logger
from kettle.manifest import FileListStore

logger = get_logger("remove")


@dataclass
class RemovalReport:
    package: str
    removed: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    lists_removed: bool = False
    manifest_updated: bool = False

    @property
    def complete(self) -> bool:
        return not self.failed

    def to_dict(self):
        return {
            "package": self.package,
            "removed": list(self.removed),
            "missing": list(self.missing),
            "failed": [{"path": p, "error": e} for p, e in self.failed],
            "lists_removed": self.lists_removed,
            "manifest_updated": self.manifest_updated,
        }


class Remover:
    def __init__(self, store: FileListStore, root: str = "/"):
        self.store = store
        self.root = root

    def _live(self, path: str) -> str:
        return os.path.join(self.root, path.lstrip("/"))

    def remove_files(self, name: str) -> RemovalReport:
        """Delete what name recorded at install time. Never raises for filesystem errors."""
        report = RemovalReport(package=name)
        lists = self.store.read(name)
        if lists is None:
            logger.warning("%s: no file list recorded, nothing to delete", name)
            return report
        files, directories = lists

        for path in files:
            live = self._live(path)
            try:
                os.unlink(live)
                report.removed.append(path)
            except FileNotFoundError:
                report.missing.append(path)
            except OSError as e:
                report.failed.append((path, e.strerror or str(e)))

        for path in reversed(directories):
            live = self._live(path)
            try:
                os.rmdir(live)
                report.removed.append(path)
            except FileNotFoundError:
                report.missing.append(path)
            except OSError as e:
                # still holds files of another package
                report.failed.append((path, e.strerror or str(e)))

        lists_ok = True
        for list_path in (self.store.filelist_path(name), self.store.dirlist_path(name)):
            try:
                os.unlink(list_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                lists_ok = False
                report.failed.append((list_path, e.strerror or str(e)))
        report.lists_removed = lists_ok

        logger.info("%s: removed %d paths (%d already gone, %d kept)", name, len(report.removed),
                    len(report.missing), len(report.failed))
        for path, err in report.failed:
            logger.debug("%s: could not remove %s: %s", name, path, err)
        return report
