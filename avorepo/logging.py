# avorepo/logging.py
# -*- coding: utf-8 -*-
"""
avorepo logging

Features:
 - Configured from avorepo.config (re-applied whenever the config is reloaded)
 - Console color formatter (stderr, so stdout stays machine readable)
 - Rotating file handler
 - JSONL transparency log
 - Module-level configurable log levels (module_levels)
 - Per-level record counters
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from avorepo.config import Config, get_config, register_load_callback

_logger = logging.getLogger("avorepo.logging")

ROOT_NAME = "avorepo"
DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(avorepo_module)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(avorepo_module)s] %(message)s"

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# JSONL formatter for transparency log
# ----------------------
class JSONLineFormatter(logging.Formatter):
    def format(self, record):
        obj = {
            "timestamp": time.time(),
            "level": record.levelname,
            "module": getattr(record, "avorepo_module", record.name),
            "message": record.getMessage(),
        }
        if record.exc_info:
            obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)

# ----------------------
# Filters
# ----------------------
class ModuleFieldFilter(logging.Filter):
    """Give records from plain loggers an avorepo_module so formats never fail."""

    def filter(self, record):
        if not hasattr(record, "avorepo_module"):
            name = record.name
            if name.startswith(ROOT_NAME + "."):
                name = name[len(ROOT_NAME) + 1:]
            record.avorepo_module = name
        return True


class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Optional[Dict[str, str]] = None):
        super().__init__()
        self.module_levels = {
            m: getattr(logging, str(lvl).upper(), logging.INFO)
            for m, lvl in (module_levels or {}).items()
        }

    def filter(self, record):
        mod = getattr(record, "avorepo_module", None)
        if mod and mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True


class _CountingHandler(logging.Handler):
    def __init__(self, metrics: Dict[str, int]):
        super().__init__(level=logging.DEBUG)
        self.metrics = metrics

    def emit(self, record):
        if record.levelname in self.metrics:
            self.metrics[record.levelname] += 1

# ----------------------
# RepoLogger (singleton)
# ----------------------
class RepoLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger(ROOT_NAME)
        self._root.propagate = False
        self._handlers: List[logging.Handler] = []
        self._console: Optional[logging.Handler] = None
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
        self._counter = _CountingHandler(self._metrics)
        self._root.addHandler(self._counter)
        self._inited = True
        self.configure(get_config())
        register_load_callback(self.configure)

    # ----------------------
    # Configuration
    # ----------------------
    def configure(self, config: Config):
        cfg = config.section("logging")
        with self._lock:
            for h in self._handlers:
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            field_filter = ModuleFieldFilter()
            level_filter = ModuleLevelFilter(cfg.get("module_levels"))
            fmt = cfg.get("format") or DEFAULT_FORMAT
            datefmt = cfg.get("datefmt", "%H:%M:%S")
            levels: List[int] = []

            # console handler
            ch = logging.StreamHandler(sys.stderr)
            level = _level(cfg.get("level"), logging.INFO)
            ch.setLevel(level)
            ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=bool(cfg.get("color", True))))
            self._console = ch
            self._add(ch, field_filter, level_filter)
            levels.append(level)

            # rotating file handler
            if cfg.get("file"):
                file_path = Path(cfg["file"]).expanduser()
                file_path.parent.mkdir(parents=True, exist_ok=True)
                fh = logging.handlers.RotatingFileHandler(
                    str(file_path),
                    maxBytes=int(cfg.get("max_size_bytes") or 10 * 1024 * 1024),
                    backupCount=int(cfg.get("backups", 5)),
                    encoding="utf-8",
                )
                file_level = _level(cfg.get("file_level"), logging.DEBUG)
                fh.setLevel(file_level)
                fh.setFormatter(logging.Formatter(cfg.get("format") or FILE_FORMAT, datefmt=datefmt))
                self._add(fh, field_filter, level_filter)
                levels.append(file_level)

            # jsonl transparency log
            jsonl_cfg = cfg.get("jsonl") or {}
            if jsonl_cfg.get("enabled"):
                path = Path(jsonl_cfg.get("path") or "transparency.jsonl").expanduser()
                path.parent.mkdir(parents=True, exist_ok=True)
                jh = logging.FileHandler(str(path), encoding="utf-8")
                jsonl_level = _level(jsonl_cfg.get("level"), logging.INFO)
                jh.setLevel(jsonl_level)
                jh.setFormatter(JSONLineFormatter())
                self._add(jh, field_filter, level_filter)
                levels.append(jsonl_level)

            self._root.setLevel(min(levels))

    def _add(self, handler: logging.Handler, *filters: logging.Filter):
        for f in filters:
            handler.addFilter(f)
        self._root.addHandler(handler)
        self._handlers.append(handler)

    def set_level(self, name: str):
        """Override the console level (used by the CLI -v/-q switches)."""
        with self._lock:
            level = _level(name, logging.INFO)
            if self._console is not None:
                self._console.setLevel(level)
            self._root.setLevel(min(level, *(h.level for h in self._handlers)))

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'avorepo_module' into records."""
        return logging.LoggerAdapter(self._root, {"avorepo_module": module_name})

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)


def _level(name: Any, default: int) -> int:
    if isinstance(name, int):
        return name
    val = getattr(logging, str(name or "").upper(), None)
    return val if isinstance(val, int) else default

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER: Optional[RepoLogger] = None
_GLOBAL_LOCK = threading.Lock()

def _global() -> RepoLogger:
    global _GLOBAL_LOGGER
    with _GLOBAL_LOCK:
        if _GLOBAL_LOGGER is None:
            _GLOBAL_LOGGER = RepoLogger()
        return _GLOBAL_LOGGER

def get_logger(module: str) -> logging.LoggerAdapter:
    return _global().get_logger(module)

def set_level(name: str):
    return _global().set_level(name)

def get_metrics() -> Dict[str, int]:
    return _global().get_metrics()

def configure(config: Optional[Config] = None):
    """Re-apply handlers from ``config`` (default: the current config)."""
    return _global().configure(config or get_config())
