# Kettle/kettle1.0/kettle/package.py
"""
package.py - package descriptor base class and per-operation build context

A descriptor is catalog data plus lifecycle hooks. Descriptors are shared for
the whole process run, so nothing an operation decides (build from source,
upgrading, currently building) is stored on them; that state lives in the
BuildContext passed alongside.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Set

BUILD_TAG = "build"

HOOKS = ("preinstall", "patch", "build", "check", "install", "postinstall")


def _normalize_deps(deps: Optional[Any]) -> Dict[str, Set[str]]:
    """Accept {name: tags}, {name: None} or a plain list of names."""
    out: Dict[str, Set[str]] = {}
    if not deps:
        return out
    if isinstance(deps, dict):
        items = deps.items()
    else:
        items = ((d, None) for d in deps)
    for name, tags in items:
        if tags is None:
            out[str(name)] = set()
        elif isinstance(tags, str):
            out[str(name)] = {tags}
        else:
            out[str(name)] = {str(t) for t in tags}
    return out


@dataclass
class BuildContext:
    """Flags and locations for one install/build/upgrade of one package."""

    architecture: str
    build_from_source: bool = False
    in_upgrade: bool = False
    in_build: bool = False
    recursive: bool = False
    keep_workdir: bool = False
    no_strip: bool = False
    no_compress: bool = False
    run_checks: bool = False
    root: str = "/"
    prefix: str = "/usr/local"
    dest_dir: str = ""
    build_root: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def for_dependency(self) -> "BuildContext":
        # only --recursive carries the source-build request down to dependencies
        return replace(
            self,
            build_from_source=self.recursive,
            in_upgrade=False,
            in_build=False,
            build_root=None,
            extra=dict(self.extra),
        )


class Package:
    """
    Base descriptor. Subclasses set the class attributes and override the hook
    methods; data-only descriptors (recipes) pass everything as keyword arguments.

    Hooks receive the BuildContext and signal failure by raising.
    """

    name: str = ""
    version: str = ""
    homepage: str = ""
    description: str = ""
    dependencies: Dict[str, Set[str]] = {}
    binary_url: Dict[str, str] = {}
    binary_sha256: Dict[str, str] = {}
    source_url: Optional[str] = None
    source_sha256: Optional[str] = None
    fake: bool = False

    def __init__(self, **attrs: Any):
        for key, value in attrs.items():
            if not hasattr(type(self), key):
                raise TypeError(f"unknown descriptor attribute: {key}")
            setattr(self, key, value)
        # per-instance copies so one descriptor never mutates class-level data
        self.dependencies = _normalize_deps(self.dependencies)
        self.binary_url = dict(self.binary_url or {})
        self.binary_sha256 = dict(self.binary_sha256 or {})
        if not self.name:
            raise ValueError("descriptor without a name")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}-{self.version}>"

    # -----------------------------
    # Predicates
    # -----------------------------
    def is_fake(self) -> bool:
        return bool(self.fake) or (not self.source_url and not self.binary_url)

    def is_binary(self, architecture: str) -> bool:
        return bool(self.binary_url.get(architecture)) and bool(self.binary_sha256.get(architecture))

    def is_source(self, architecture: str) -> bool:
        return bool(self.source_url) and not self.is_binary(architecture)

    def get_url(self, architecture: str) -> Optional[str]:
        if self.is_binary(architecture):
            return self.binary_url[architecture]
        return self.source_url

    # -----------------------------
    # Dependencies
    # -----------------------------
    def runtime_dependencies(self) -> List[str]:
        return [d for d, tags in self.dependencies.items() if BUILD_TAG not in tags]

    def all_dependencies(self) -> List[str]:
        return list(self.dependencies.keys())

    def depends_on(self, names: Iterable[str]) -> bool:
        return any(n in self.dependencies for n in names)

    # -----------------------------
    # Lifecycle hooks (no-ops by default)
    # -----------------------------
    def preinstall(self, ctx: BuildContext) -> None:
        pass

    def patch(self, ctx: BuildContext) -> None:
        pass

    def build(self, ctx: BuildContext) -> None:
        pass

    def check(self, ctx: BuildContext) -> None:
        pass

    def install(self, ctx: BuildContext) -> None:
        pass

    def postinstall(self, ctx: BuildContext) -> None:
        pass
