# Kettle/kettle1.0/kettle/upgrade.py
"""
upgrade.py - upgrade planning for kettle

An installed package is out of date when its descriptor version differs from
the version recorded in the device manifest (versions are compared for
equality only). A bulk plan lists every out-of-date package in dependency
order so a library is rebuilt before the programs linking against it.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from kettle.errors import PackageNotFoundError
from kettle.logging import get_logger
from kettle.manifest import DeviceManifest
from kettle.meta import Catalog
from kettle.resolver import Resolver

logger = get_logger("upgrade")


class UpgradePlanItem:
    def __init__(self, package: str, installed_version: str, target_version: str):
        self.package = package
        self.installed_version = installed_version
        self.target_version = target_version
        self.status = "pending"  # pending,ok,failed
        self.error: Optional[str] = None

    def to_dict(self):
        return {
            "package": self.package,
            "installed_version": self.installed_version,
            "target_version": self.target_version,
            "status": self.status,
            "error": self.error,
        }


class UpgradePlan:
    def __init__(self, items: Optional[List[UpgradePlanItem]] = None):
        self.items: List[UpgradePlanItem] = items or []
        self.created_at = int(time.time())

    def add_item(self, it: UpgradePlanItem):
        self.items.append(it)

    @property
    def failed(self) -> List[UpgradePlanItem]:
        return [i for i in self.items if i.status == "failed"]

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str,Any]:
        return {"created_at": self.created_at, "items": [i.to_dict() for i in self.items]}


def outdated(catalog: Catalog, manifest: DeviceManifest, name: str) -> Optional[UpgradePlanItem]:
    """Plan item for name when its descriptor version differs from the installed one."""
    installed = manifest.installed_version(name)
    if installed is None:
        return None
    try:
        pkg = catalog.get(name)
    except PackageNotFoundError:
        logger.warning("%s is installed but no longer in the catalog; skipping", name)
        return None
    if pkg.version == installed:
        return None
    return UpgradePlanItem(name, installed, pkg.version)


def plan_all(resolver: Resolver) -> UpgradePlan:
    plan = UpgradePlan()
    for name in resolver.upgrade_order():
        item = outdated(resolver.catalog, resolver.manifest, name)
        if item is not None:
            plan.add_item(item)
    logger.info("%d packages to upgrade", len(plan.items))
    return plan
