# Kettle/kettle1.0/kettle/meta.py
"""
meta.py - recipe loader and descriptor catalog

Features:
- Parse recipe files in YAML (preferred) or JSON from the packages directory
- Template expansion in URLs (${NAME}, ${VERSION})
- Dependency maps with tags ({zlib: [], pkgconfig: [build]}) or plain name lists
- Hooks as lists of shell commands, run with DESTDIR/PREFIX/ARCH/BUILD_ROOT exported
- Catalog with exactly one descriptor instance per name per process run
- Programmatic descriptors can be registered next to recipe files
"""

from __future__ import annotations

import os
import re
import json
import subprocess
from typing import Any, Dict, List, Optional

import yaml

from kettle.errors import HookError, KettleError, PackageNotFoundError
from kettle.logging import get_logger
from kettle.package import HOOKS, BuildContext, Package

logger = get_logger("meta")

RECIPE_SUFFIXES = (".yaml", ".yml", ".json")

# Basic safe template substitution for ${VAR}
TEMPLATE_RE = re.compile(r"\$\{([A-Za-z0-9_]+)\}")

def _expand_template(s: str, ctx: Dict[str,str]) -> str:
    def repl(m):
        k = m.group(1)
        return ctx.get(k, m.group(0))
    return TEMPLATE_RE.sub(repl, s)


class MetaError(KettleError):
    pass


class RecipePackage(Package):
    """Descriptor loaded from a recipe file; every hook is a list of shell commands."""

    hooks: Dict[str, List[str]] = {}
    recipe_path: Optional[str] = None

    def _hook_env(self, ctx: BuildContext) -> Dict[str,str]:
        env = dict(os.environ)
        env.update({
            "NAME": self.name,
            "VERSION": self.version,
            "ARCH": ctx.architecture,
            "PREFIX": ctx.prefix,
            "DESTDIR": ctx.dest_dir,
            "ROOT": ctx.root,
            "BUILD_ROOT": ctx.build_root or "",
        })
        env.update({k: v for k, v in ctx.extra.items() if isinstance(v, str)})
        return env

    def _run_hook(self, hook: str, ctx: BuildContext) -> None:
        commands = self.hooks.get(hook) or []
        if isinstance(commands, str):
            commands = [commands]
        cwd = ctx.build_root if ctx.build_root and os.path.isdir(ctx.build_root) else None
        env = self._hook_env(ctx)
        for cmd in commands:
            logger.info("%s: %s: %s", self.name, hook, cmd)
            proc = subprocess.run(["/bin/sh", "-c", cmd], cwd=cwd, env=env)
            if proc.returncode != 0:
                raise HookError(self.name, hook, f"'{cmd}' exited with status {proc.returncode}")

    def preinstall(self, ctx: BuildContext) -> None:
        self._run_hook("preinstall", ctx)

    def patch(self, ctx: BuildContext) -> None:
        self._run_hook("patch", ctx)

    def build(self, ctx: BuildContext) -> None:
        self._run_hook("build", ctx)

    def check(self, ctx: BuildContext) -> None:
        self._run_hook("check", ctx)

    def install(self, ctx: BuildContext) -> None:
        self._run_hook("install", ctx)

    def postinstall(self, ctx: BuildContext) -> None:
        self._run_hook("postinstall", ctx)


def _parse_file(path: str) -> Dict[str,Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise MetaError(f"Cannot read recipe file: {path}: {e}") from e
    try:
        if path.endswith(".json"):
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise MetaError(f"Cannot parse recipe file: {path}: {e}") from e
    if not isinstance(data, dict):
        raise MetaError(f"Recipe {path} is not a mapping")
    return data


def recipe_from_dict(data: Dict[str,Any], source_path: Optional[str] = None) -> RecipePackage:
    name = str(data.get("name") or "")
    if not name:
        raise MetaError(f"Recipe {source_path or '<inline>'}: missing package name")
    version = str(data.get("version") or "")
    ctx = {"NAME": name, "VERSION": version}

    binary_url = {str(a): _expand_template(str(u), ctx) for a, u in (data.get("binary_url") or {}).items()}
    binary_sha256 = {str(a): str(s).lower() for a, s in (data.get("binary_sha256") or {}).items()}
    source_url = data.get("source_url")
    if source_url:
        source_url = _expand_template(str(source_url), ctx)
    source_sha256 = data.get("source_sha256")

    hooks = data.get("hooks") or {}
    unknown = [h for h in hooks if h not in HOOKS]
    if unknown:
        raise MetaError(f"Recipe {source_path or name}: unknown hooks {unknown}")

    return RecipePackage(
        name=name,
        version=version,
        homepage=str(data.get("homepage") or ""),
        description=str(data.get("description") or ""),
        dependencies=data.get("dependencies") or {},
        binary_url=binary_url,
        binary_sha256=binary_sha256,
        source_url=source_url,
        source_sha256=str(source_sha256).lower() if source_sha256 else None,
        fake=bool(data.get("fake", False)),
        hooks={k: list(v) if isinstance(v, list) else [v] for k, v in hooks.items()},
        recipe_path=source_path,
    )


class Catalog:
    """
    Name -> descriptor lookup over a packages directory.
    Descriptors are loaded lazily and cached, so each name maps to one instance.
    """

    def __init__(self, packages_dir: Optional[str] = None):
        self.packages_dir = packages_dir
        self._cache: Dict[str, Package] = {}

    def add(self, pkg: Package) -> Package:
        existing = self._cache.get(pkg.name)
        if existing is not None and existing is not pkg:
            raise MetaError(f"descriptor for {pkg.name} already registered")
        self._cache[pkg.name] = pkg
        return pkg

    def _find_recipe(self, name: str) -> Optional[str]:
        if not self.packages_dir:
            return None
        for suffix in RECIPE_SUFFIXES:
            path = os.path.join(self.packages_dir, name + suffix)
            if os.path.isfile(path):
                return path
        return None

    def get(self, name: str) -> Package:
        pkg = self._cache.get(name)
        if pkg is not None:
            return pkg
        path = self._find_recipe(name)
        if path is None:
            raise PackageNotFoundError(name)
        pkg = recipe_from_dict(_parse_file(path), source_path=path)
        if pkg.name != name:
            raise MetaError(f"Recipe {path} declares name '{pkg.name}', expected '{name}'")
        logger.debug("loaded recipe %s from %s", name, path)
        self._cache[name] = pkg
        return pkg

    def __contains__(self, name: str) -> bool:
        return name in self._cache or self._find_recipe(name) is not None

    def names(self) -> List[str]:
        found = set(self._cache)
        if self.packages_dir and os.path.isdir(self.packages_dir):
            for fname in os.listdir(self.packages_dir):
                base, ext = os.path.splitext(fname)
                if ext in RECIPE_SUFFIXES:
                    found.add(base)
        return sorted(found)
