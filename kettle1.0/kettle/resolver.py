# Kettle/kettle1.0/kettle/resolver.py
"""
resolver.py - dependency expansion for kettle

Features:
- Depth-first, cycle-safe expansion of a package's dependency set
- Install-time policy: build-only dependencies are pulled in only when the
  package will actually be compiled (no usable binary, source build requested,
  or upgrade in progress)
- Filtering against the device manifest (what still needs installing)
- Operator confirmation gate for the resolved list
- Dependency-respecting order over all installed packages for bulk upgrades
  (DFS topological sort, cycles broken at the back edge)
- Reverse dependency lookup over installed packages
"""

from __future__ import annotations

from typing import Callable, Dict, List, Set

from kettle.errors import PackageNotFoundError
from kettle.logging import get_logger
from kettle.manifest import DeviceManifest
from kettle.meta import Catalog
from kettle.package import BuildContext, Package

logger = get_logger("resolver")

YES_ANSWERS = ("y", "yes")


class Resolver:
    def __init__(self, catalog: Catalog, manifest: DeviceManifest):
        self.catalog = catalog
        self.manifest = manifest

    # -----------------------
    # Expansion policy
    # -----------------------
    def _runtime_only(self, pkg: Package, ctx: BuildContext) -> bool:
        """True when build-only dependencies are irrelevant for pkg under ctx."""
        if ctx.in_upgrade or ctx.build_from_source:
            return False
        return pkg.is_binary(ctx.architecture) or self.manifest.is_installed(pkg.name)

    def _edges(self, pkg: Package, ctx: BuildContext) -> List[str]:
        if self._runtime_only(pkg, ctx):
            return pkg.runtime_dependencies()
        return pkg.all_dependencies()

    def expand(self, package: Package, ctx: BuildContext) -> List[str]:
        """
        Ordered, duplicate-free transitive dependency names of package.
        Every name comes after its own dependencies, so the list is an install order.
        """
        result: List[str] = []
        visited: Set[str] = {package.name}
        dep_ctx = ctx.for_dependency()

        def visit(pkg: Package, pctx: BuildContext):
            for dep in self._edges(pkg, pctx):
                if dep in visited:
                    continue
                visited.add(dep)
                try:
                    dep_pkg = self.catalog.get(dep)
                except PackageNotFoundError:
                    logger.error("%s depends on %s, which is not in the catalog", pkg.name, dep)
                    raise
                visit(dep_pkg, dep_ctx)
                result.append(dep)

        visit(package, ctx)
        logger.debug("expanded %s -> %s", package.name, result)
        return result

    def missing(self, package: Package, ctx: BuildContext) -> List[str]:
        """Expanded dependencies that are not installed yet."""
        return [d for d in self.expand(package, ctx) if not self.manifest.is_installed(d)]

    # -----------------------
    # Confirmation gate
    # -----------------------
    def confirm(self, package: Package, names: List[str], input_fn: Callable[[str], str] = input,
                output_fn: Callable[[str], None] = print) -> bool:
        """Ask once; only an explicit yes proceeds. EOF counts as no."""
        output_fn(f"{package.name} needs the following packages to be installed first:")
        output_fn("  " + " ".join(names))
        try:
            answer = input_fn("Do you agree? [y/N] ")
        except EOFError:
            answer = ""
        ok = answer.strip().lower() in YES_ANSWERS
        if not ok:
            logger.warning("dependency installation for %s declined", package.name)
        return ok

    # -----------------------
    # Installed-set helpers
    # -----------------------
    def _installed_descriptors(self) -> Dict[str, Package]:
        out: Dict[str, Package] = {}
        for name in self.manifest.names():
            try:
                out[name] = self.catalog.get(name)
            except PackageNotFoundError:
                logger.warning("installed package %s has no descriptor in the catalog", name)
        return out

    def upgrade_order(self) -> List[str]:
        """
        Installed package names, dependencies before dependents.
        Packages without a descriptor are left out. A dependency cycle is cut at
        the edge that closes it.
        """
        installed = self._installed_descriptors()
        state: Dict[str, int] = {}
        order: List[str] = []

        def dfs(name: str):
            state[name] = 1
            for dep in installed[name].all_dependencies():
                if dep not in installed:
                    continue
                s = state.get(dep, 0)
                if s == 1:
                    logger.debug("dependency cycle through %s -> %s ignored for ordering", name, dep)
                    continue
                if s == 0:
                    dfs(dep)
            state[name] = 2
            order.append(name)

        for name in self.manifest.names():
            if name in installed and state.get(name, 0) == 0:
                dfs(name)
        return order

    def reverse_dependencies(self, name: str) -> List[str]:
        return [n for n, pkg in self._installed_descriptors().items() if n != name and name in pkg.dependencies]
