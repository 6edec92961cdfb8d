# Kettle/kettle1.0/kettle/logging.py
# -*- coding: utf-8 -*-
"""
Kettle logging

Every kettle module logs through get_logger("<module>"), an adapter over the
single "kettle" logger that tags records with the module name. Output goes to:
 - stderr, level tag coloured when stderr is a terminal (logging.level, logging.color)
 - optionally a size-rotated log file (logging.file, logging.max_size, logging.backups)
 - optionally a JSON-lines log, one object per record (logging.jsonl.enabled / .path)
Per-module thresholds come from logging.module_levels ({"fetcher": "DEBUG"}).
Handlers are rebuilt whenever kettle.config reloads.
"""

from __future__ import annotations
import sys
import json
import time
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Dict, Any, Optional, List

from kettle.config import get_config, register_watch_callback

_logger = logging.getLogger("kettle.logging")

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(kettle_module)s] %(message)s"
DEFAULT_JSONL_PATH = "~/.kettle/kettle.jsonl"
LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _level(name: Any, default: int = logging.INFO) -> int:
    return getattr(logging, str(name).upper(), default)


class ColorFormatter(logging.Formatter):
    """Colours the level name only, so messages stay greppable."""

    LEVEL_COLORS = {
        "DEBUG": "2",
        "INFO": "36",
        "WARNING": "33",
        "ERROR": "31",
        "CRITICAL": "1;31",
    }

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        if not self.color:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"\033[{self.LEVEL_COLORS.get(plain, '0')}m{plain}\033[0m"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


class JSONLineFormatter(logging.Formatter):
    def format(self, record):
        entry = {
            "ts": round(time.time(), 3),
            "level": record.levelname,
            "module": getattr(record, "kettle_module", record.name),
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        self.thresholds = {m: _level(lvl) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        # records from plain stdlib loggers under "kettle.*" carry no module tag
        if not hasattr(record, "kettle_module"):
            record.kettle_module = record.name.rsplit(".", 1)[-1]
        threshold = self.thresholds.get(record.kettle_module)
        return threshold is None or record.levelno >= threshold


class KettleLogger:
    """Owns the handlers of the "kettle" logger; one instance per process."""

    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                inst = super().__new__(cls)
                inst._ready = False
                cls._instance = inst
        return cls._instance

    def __init__(self):
        if self._ready:
            return
        self._lock = threading.RLock()
        self._base = logging.getLogger("kettle")
        self._base.setLevel(logging.DEBUG)
        self._base.propagate = False
        self._handlers: List[logging.Handler] = []
        self._counts: Dict[str, int] = dict.fromkeys(LEVELS, 0)

        self._apply_config(get_config().merged.get("logging", {}))
        register_watch_callback(lambda _cfg: self.reload_config())
        self._ready = True

    def _count(self, record):
        if record.levelname in self._counts:
            self._counts[record.levelname] += 1
        return True

    # --- handler factories ---
    @staticmethod
    def _console_handler(cfg: Dict[str, Any], fmt: str, datefmt: str) -> logging.Handler:
        h = logging.StreamHandler(sys.stderr)
        h.setLevel(_level(cfg.get("level", "INFO")))
        use_color = bool(cfg.get("color", True)) and sys.stderr.isatty()
        h.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=use_color))
        return h

    @staticmethod
    def _file_handler(cfg: Dict[str, Any], fmt: str, datefmt: str) -> logging.Handler:
        path = Path(cfg["file"]).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        h = logging.handlers.RotatingFileHandler(
            str(path),
            maxBytes=_parse_size(cfg.get("max_size")) or 10 * 1024 * 1024,
            backupCount=int(cfg.get("backups", 5)),
            encoding="utf-8",
        )
        h.setLevel(_level(cfg.get("file_level", "DEBUG"), logging.DEBUG))
        h.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
        return h

    @staticmethod
    def _jsonl_handler(jcfg: Dict[str, Any]) -> logging.Handler:
        path = Path(jcfg.get("path") or DEFAULT_JSONL_PATH).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        h = logging.FileHandler(str(path), encoding="utf-8")
        h.setLevel(_level(jcfg.get("level", "INFO")))
        h.setFormatter(JSONLineFormatter())
        return h

    def _apply_config(self, cfg: Dict[str, Any]):
        with self._lock:
            for h in self._handlers:
                self._base.removeHandler(h)
                h.close()
            self._handlers = []

            fmt = cfg.get("format") or DEFAULT_FORMAT
            datefmt = cfg.get("datefmt", "%H:%M:%S")
            wanted = [self._console_handler(cfg, fmt, datefmt)]
            if cfg.get("file"):
                try:
                    wanted.append(self._file_handler(cfg, fmt, datefmt))
                except OSError:
                    _logger.exception("logging: cannot open log file %s", cfg.get("file"))
            jcfg = cfg.get("jsonl") or {}
            if jcfg.get("enabled"):
                try:
                    wanted.append(self._jsonl_handler(jcfg))
                except OSError:
                    _logger.exception("logging: cannot open jsonl log")

            module_filter = ModuleLevelFilter(cfg.get("module_levels") or {})
            for h in wanted:
                h.addFilter(module_filter)
                self._base.addHandler(h)
                self._handlers.append(h)
            # count what reaches the terminal
            wanted[0].addFilter(self._count)

    def reload_config(self):
        self._apply_config(get_config().merged.get("logging", {}))

    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(self._base, {"kettle_module": module_name})

    def set_level(self, level: str):
        """Change the console threshold; file handlers keep their own."""
        with self._lock:
            for h in self._handlers:
                if not isinstance(h, logging.FileHandler):
                    h.setLevel(_level(level))

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


def _parse_size(s: Any) -> Optional[int]:
    """'10M' -> 10485760; ints pass through; None or garbage -> None."""
    if s is None:
        return None
    if isinstance(s, int):
        return s
    text = str(s).strip().upper().rstrip("B")
    units = {"K": 1024, "M": 1024 ** 2, "G": 1024 ** 3}
    mul = 1
    if text and text[-1] in units:
        mul = units[text[-1]]
        text = text[:-1]
    try:
        return int(float(text) * mul)
    except ValueError:
        _logger.debug("logging: bad size %r", s)
        return None


_GLOBAL_LOGGER = KettleLogger()

def get_logger(module: str):
    return _GLOBAL_LOGGER.get_logger(module)

def set_level(level: str):
    _GLOBAL_LOGGER.set_level(level)

def reload_config():
    _GLOBAL_LOGGER.reload_config()

def get_metrics():
    return _GLOBAL_LOGGER.get_metrics()
