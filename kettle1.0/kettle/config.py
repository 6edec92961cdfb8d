# Kettle/kettle1.0/kettle/config.py
# -*- coding: utf-8 -*-
"""
Kettle configuration

Features:
- DEFAULTS merged with the first config file found: explicit path, $KETTLE_CONFIG,
  ./kettle.{yaml,yml,json}, ~/.config/kettle/config.yaml, /etc/kettle/config.yaml
- Derived paths (meta dir, device manifest, staging root, recipe directory)
- KETTLE_ROOT and KETTLE_ARCH environment overrides
- Structural validation (warnings, or ValueError with fatal=True)
- Dot-path access through Config.get("paths.prefix")
- from_mapping() for throwaway configs; reload() notifies registered watchers
"""

from __future__ import annotations
import os
import json
import logging
import platform
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, List, Tuple, Callable

import yaml

# logger (the kettle logging layer depends on this module, so plain stdlib here)
logger = logging.getLogger("kettle.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "paths": {
        "root": "/",
        "prefix": "/usr/local",
        "lib_path": "/usr/local/lib/kettle",
        "config_path": "/usr/local/etc/kettle",
        "meta_dir": None,        # derived: <config_path>/meta
        "device_file": None,     # derived: <config_path>/device.json
        "brew_dir": "/usr/local/tmp/kettle",
        "dest_dir": None,        # derived: <brew_dir>/dest
        "packages_dir": None,    # derived: <lib_path>/packages
    },
    "build": {
        "keep_workdir": False,
        "no_strip": False,
        "no_compress": False,
        "run_checks": False,
        "output_dir": ".",
        "platform_tag": "linux",
        "compilers": ["cc", "gcc", "clang"],
    },
    "fetcher": {
        "downloader": "curl",
        "insecure": True,
        "resume": True,
    },
    "install": {
        "assume_yes": False,
    },
    "logging": {
        "level": "INFO",
        "color": True,
        "file": None,
        "max_size": "10M",
        "backups": 5,
        "jsonl": {"enabled": False, "path": None},
        "module_levels": {},
    },
}

# machine() -> architecture name recorded in the device manifest
ARCH_ALIASES: Dict[str, str] = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv8l": "armv7l",
    "i386": "i686",
    "i586": "i686",
}

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return default if cur is None else cur

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()
_CONFIG_PATH: Optional[Path] = None
_WATCH_CALLBACKS: List[Callable[[Config], None]] = []

# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _coerce_bool(val: Any) -> bool:
    if isinstance(val, str):
        return val.strip().lower() in ("1", "true", "yes", "on")
    return bool(val)

def detect_architecture() -> str:
    machine = platform.machine().lower()
    return ARCH_ALIASES.get(machine, machine)

CONFIG_NAMES = ("kettle.yaml", "kettle.yml", "kettle.json")

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    """Explicit path, $KETTLE_CONFIG, ./kettle.{yaml,yml,json}, user file, system file."""
    found = [Path(p) for p in (explicit, os.environ.get("KETTLE_CONFIG")) if p]
    found += [Path.cwd() / n for n in CONFIG_NAMES]
    found.append(Path.home() / ".config" / "kettle" / "config.yaml")
    found.append(Path("/etc/kettle/config.yaml"))
    return found

def _load_file(path: Path) -> Optional[Dict[str, Any]]:
    """Parsed mapping, or None when the file cannot be read or parsed (logged)."""
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except OSError as e:
        logger.error("config: cannot read %s: %s", path, e)
        return None
    except (ValueError, yaml.YAMLError) as e:
        logger.error("config: cannot parse %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.error("config: %s does not hold a mapping", path)
        return None
    return data

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Derive dependent paths, expand user/env references and coerce switches."""
    out = deepcopy(cfg)
    paths = out.setdefault("paths", {})

    # environment overrides apply before derivation so derived paths follow them
    if os.environ.get("KETTLE_ROOT"):
        paths["root"] = os.environ["KETTLE_ROOT"]

    for key in ("root", "lib_path", "config_path", "brew_dir"):
        if paths.get(key):
            paths[key] = _expand_path(paths[key])
    if not paths.get("meta_dir"):
        paths["meta_dir"] = os.path.join(paths["config_path"], "meta")
    if not paths.get("device_file"):
        paths["device_file"] = os.path.join(paths["config_path"], "device.json")
    if not paths.get("dest_dir"):
        paths["dest_dir"] = os.path.join(paths["brew_dir"], "dest")
    if not paths.get("packages_dir"):
        paths["packages_dir"] = os.path.join(paths["lib_path"], "packages")
    for key in ("meta_dir", "device_file", "dest_dir", "packages_dir"):
        paths[key] = _expand_path(paths[key])

    build = out.setdefault("build", {})
    for key in ("keep_workdir", "no_strip", "no_compress", "run_checks"):
        build[key] = _coerce_bool(build.get(key, False))
    if build.get("output_dir"):
        build["output_dir"] = _expand_path(build["output_dir"])
    if isinstance(build.get("compilers"), str):
        build["compilers"] = [c.strip() for c in build["compilers"].split(",") if c.strip()]

    fetcher = out.setdefault("fetcher", {})
    for key in ("insecure", "resume"):
        fetcher[key] = _coerce_bool(fetcher.get(key, True))

    install = out.setdefault("install", {})
    install["assume_yes"] = _coerce_bool(install.get("assume_yes", False))

    if os.environ.get("KETTLE_ARCH"):
        out["architecture"] = os.environ["KETTLE_ARCH"]

    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list). Non-fatal warnings unless load() is called with fatal=True."""
    warnings: List[str] = []
    allowed = list(DEFAULTS.keys()) + ["architecture"]
    for k in cfg.keys():
        if k not in allowed:
            warnings.append(f"Unknown top-level config key: {k}")
    prefix = cfg.get("paths", {}).get("prefix")
    if not isinstance(prefix, str) or not prefix.startswith("/"):
        warnings.append("paths.prefix must be an absolute path")
    compilers = cfg.get("build", {}).get("compilers")
    if not isinstance(compilers, list) or not compilers:
        warnings.append("build.compilers must be a non-empty list")
    return (len(warnings) == 0, warnings)

def _build(raw: Dict[str, Any], fatal: bool = False) -> Config:
    merged = _deep_merge(DEFAULTS, raw)
    normalized = _normalize_and_coerce(merged)
    ok, issues = _validate_structure(normalized)
    if not ok:
        msg = f"config: validation issues: {issues}"
        if fatal:
            logger.error(msg)
            raise ValueError(msg)
        logger.warning(msg)
    return Config(raw=raw, merged=normalized)

# ----------------------------
# Process-wide instance
# ----------------------------
def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Build the config from the first existing candidate file (or DEFAULTS alone)
    and install it as the process-wide instance. fatal=True turns validation
    warnings into ValueError.
    """
    global _CONFIG, _CONFIG_PATH
    with _CONFIG_LOCK:
        path = next((p for p in _find_candidates(explicit_path) if p.is_file()), None)
        raw = (_load_file(path) if path else None) or {}
        _CONFIG = _build(raw, fatal=fatal)
        _CONFIG_PATH = path
        logger.debug("config: using %s", path or "built-in defaults")
        return _CONFIG

def from_mapping(overrides: Optional[Dict[str, Any]] = None, fatal: bool = False) -> Config:
    """Build a Config from explicit overrides without replacing the process-wide one."""
    return _build(deepcopy(overrides or {}), fatal=fatal)

def get_config() -> Config:
    with _CONFIG_LOCK:
        return _CONFIG if _CONFIG is not None else load()

def config_path() -> Optional[Path]:
    return _CONFIG_PATH

def reload(explicit_path: Optional[str] = None) -> Config:
    """load() and tell every registered watcher (the logging layer among them)."""
    cfg = load(explicit_path)
    with _CONFIG_LOCK:
        watchers = list(_WATCH_CALLBACKS)
    for cb in watchers:
        try:
            cb(cfg)
        except Exception:
            logger.exception("config: watcher %r failed", cb)
    return cfg

def register_watch_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb not in _WATCH_CALLBACKS:
            _WATCH_CALLBACKS.append(cb)

def unregister_watch_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb in _WATCH_CALLBACKS:
            _WATCH_CALLBACKS.remove(cb)
