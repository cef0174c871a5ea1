# avorepo/config.py
# -*- coding: utf-8 -*-
"""
avorepo central configuration loader

Features:
- Read YAML/JSON config from multiple locations (explicit, env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types (human sizes to bytes)
- Environment pass-through for the build orchestrator (repo dir, codename, release id)
- Validate structure and types, warn or error (fatal optional)
- Provide typed access via Config dataclass (get_config(), get_section())
- Save supports writing only the overrides (diff against DEFAULTS)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml

from avorepo.errors import ConfigError

# logger (avorepo.logging depends on this module, so plain stdlib here)
logger = logging.getLogger("avorepo.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file": None,
        "file_level": "DEBUG",
        "color": True,
        "max_size": "10M",  # human readable
        "backups": 5,
        "format": None,
        "datefmt": "%H:%M:%S",
        "module_levels": {},
        "jsonl": {"enabled": False, "path": "~/.avorepo/transparency.jsonl"},
    },
    "repo": {
        "dir": "/tmp/avocado-dev-repo",
        "distro_codename": "latest/apollo/edge",
        "distro_version": "0.1.0",
        "base_url": "https://repo.avocadolinux.org",
        "release_id": None,
    },
    "fragments": {
        "map_file": "avocado-repo.map",
        "package_suffix": ".rpm",
    },
    "metadata": {
        "indexer": "createrepo_c",
        "index_dir": "repodata",
        "timeout": 3600,
    },
    "aggregate": {
        "lock_timeout": 30,
    },
    "checksums": {
        "staging_base": "/mnt/raid/repo/staging",
        "rpm": "rpm",
        "jobs": 0,  # 0 -> cpu count
    },
    "extensions": {
        "root": "extensions",
        "manifest": "avocado.toml",
    },
    "machines": [
        "imx8mp-evk",
        "imx91-frdm",
        "imx93-frdm",
        "imx93-evk",
        "qemuarm64",
        "qemux86-64",
        "reterminal",
        "reterminal-dm",
        "jetson-orin-nano-devkit-nvme",
        "raspberrypi4",
        "raspberrypi5",
    ],
}

# environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "AVOCADO_REPO_DIR": "repo.dir",
    "AVOCADO_DISTRO_CODENAME": "repo.distro_codename",
    "AVOCADO_RELEASE_ID": "repo.release_id",
    "AVOCADO_REPO_BASE": "repo.base_url",
}

# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def section(self, name: str) -> Dict[str, Any]:
        val = self.merged.get(name)
        return deepcopy(val) if isinstance(val, dict) else {}

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()
_LOAD_CALLBACKS: List[Callable[[Config], None]] = []

# ----------------------------
# Utilities
# ----------------------------
def _human_size_to_bytes(val: Union[str, int, None]) -> Optional[int]:
    if val is None:
        return None
    if isinstance(val, int):
        return val
    s = str(val).strip().upper()
    units = {"KB": 1024, "K": 1024, "MB": 1024**2, "M": 1024**2, "GB": 1024**3, "G": 1024**3}
    try:
        for suffix, mul in units.items():
            if s.endswith(suffix):
                num = float(s[: -len(suffix)].strip())
                return int(num * mul)
        return int(float(s))
    except ValueError:
        logger.warning("config: cannot parse human size '%s'", val)
        return None

def _expand_path(val: Optional[str]) -> Optional[str]:
    if not val:
        return val
    return os.path.abspath(os.path.expanduser(os.path.expandvars(val)))

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _set_dotted(cfg: Dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    cur = cfg
    for p in parts[:-1]:
        if not isinstance(cur.get(p), dict):
            cur[p] = {}
        cur = cur[p]
    cur[parts[-1]] = value

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("AVOREPO_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "avorepo.yaml",
        Path.cwd() / "avorepo.yml",
        Path.cwd() / "avorepo.json",
        Path.home() / ".config" / "avorepo" / "config.yaml",
        Path("/etc") / "avorepo" / "config.yaml",
    ])
    return candidates

def _load_file(path: Path) -> Optional[Dict[str, Any]]:
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("config: failed reading %s: %s", path, e)
        return None

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(txt)
        else:
            data = yaml.safe_load(txt)
    except (ValueError, yaml.YAMLError) as e:
        logger.error("config: parse failed for %s: %s", path, e)
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.error("config: %s does not contain a mapping", path)
        return None
    return data

def _apply_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = deepcopy(cfg)
    for env_name, dotted in ENV_OVERRIDES.items():
        val = os.environ.get(env_name)
        if val:
            _set_dotted(out, dotted, val)
    return out

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields, convert human sizes and coerce basic types."""
    out = deepcopy(cfg)
    path_keys = [
        ("repo", "dir"),
        ("logging", "file"),
        ("checksums", "staging_base"),
    ]
    for section, key in path_keys:
        ref = out.get(section)
        if isinstance(ref, dict) and isinstance(ref.get(key), str):
            ref[key] = _expand_path(ref[key])
    jsonl = out.get("logging", {}).get("jsonl")
    if isinstance(jsonl, dict) and isinstance(jsonl.get("path"), str):
        jsonl["path"] = _expand_path(jsonl["path"])

    # Convert human sizes
    if isinstance(out.get("logging"), dict) and "max_size" in out["logging"]:
        ms = _human_size_to_bytes(out["logging"]["max_size"])
        if ms is not None:
            out["logging"]["max_size_bytes"] = ms

    # Coerce numbers
    checksums = out.get("checksums")
    if isinstance(checksums, dict):
        try:
            jobs = int(checksums.get("jobs") or 0)
        except (TypeError, ValueError):
            logger.warning("config: checksums.jobs is not an integer, using cpu count")
            jobs = 0
        checksums["jobs"] = jobs if jobs > 0 else (os.cpu_count() or 1)

    metadata = out.get("metadata")
    if isinstance(metadata, dict):
        try:
            metadata["timeout"] = int(metadata.get("timeout") or 0) or None
        except (TypeError, ValueError):
            logger.warning("config: metadata.timeout is not an integer, disabling timeout")
            metadata["timeout"] = None

    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list). Non-fatal warnings unless called with fatal=True in load."""
    warnings: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            warnings.append(f"Unknown top-level config key: {k}")
    for section, default in DEFAULTS.items():
        if section in cfg and type(cfg[section]) is not type(default):
            warnings.append(f"{section} must be a {type(default).__name__}")
    repo = cfg.get("repo")
    if isinstance(repo, dict) and not isinstance(repo.get("distro_codename"), str):
        warnings.append("repo.distro_codename must be a string")
    machines = cfg.get("machines")
    if isinstance(machines, list) and not all(isinstance(m, str) for m in machines):
        warnings.append("machines must be a list of strings")
    aggregate = cfg.get("aggregate")
    if isinstance(aggregate, dict):
        lt = aggregate.get("lock_timeout")
        if not isinstance(lt, (int, float)) or lt < 0:
            warnings.append("aggregate.lock_timeout must be a number >= 0")
    return (len(warnings) == 0, warnings)

# ----------------------------
# Loading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit and not Path(explicit).exists():
        raise ConfigError(f"config file not found: {explicit}")
    for p in _find_candidates(explicit):
        if p.exists():
            return p
    return None

def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object and makes it the process-wide config.
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = {}
        if cfg_path:
            data = _load_file(cfg_path)
            if data is None:
                if fatal:
                    raise ConfigError(f"config file could not be parsed: {cfg_path}")
                logger.warning("config: file found but could not be parsed: %s", cfg_path)
            else:
                raw = data
        merged = _apply_env(_deep_merge(DEFAULTS, raw))
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                raise ConfigError(msg)
            logger.warning(msg)
        cfg_obj = Config(raw=raw, merged=normalized, path=cfg_path)
        _CONFIG = cfg_obj
        logger.debug("config: loaded merged config (from=%s)", cfg_path or "<defaults>")
        callbacks = list(_LOAD_CALLBACKS)
    for cb in callbacks:
        cb(cfg_obj)
    return cfg_obj

def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG

def get_section(name: str) -> Dict[str, Any]:
    return get_config().section(name)

def register_load_callback(cb: Callable[[Config], None]) -> None:
    with _CONFIG_LOCK:
        if cb not in _LOAD_CALLBACKS:
            _LOAD_CALLBACKS.append(cb)

# ----------------------------
# Save: write only override (diff) to avoid clobbering defaults
# ----------------------------
def _compute_override(merged: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    def diff(a: Any, b: Any) -> Any:
        if type(a) != type(b):
            return deepcopy(a)
        if isinstance(a, dict):
            out = {}
            for k, v in a.items():
                if k not in b:
                    out[k] = deepcopy(v)
                else:
                    d = diff(v, b[k])
                    if d is not None:
                        out[k] = d
            return out or None
        if a != b:
            return deepcopy(a)
        return None
    return diff(merged, defaults) or {}

def save(path: str, override_only: bool = True) -> Path:
    with _CONFIG_LOCK:
        cfg = get_config()
        to_write = cfg.as_dict()
        if override_only:
            to_write = _compute_override(_deep_merge(DEFAULTS, cfg.raw), DEFAULTS)
        out_path = Path(path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w", encoding="utf-8") as fh:
            if out_path.suffix.lower() == ".json":
                json.dump(to_write, fh, indent=2, ensure_ascii=False)
            else:
                yaml.safe_dump(to_write, fh, default_flow_style=False, sort_keys=False)
        logger.info("config: saved config to %s (override_only=%s)", out_path, override_only)
        return out_path

def validate_config() -> Tuple[bool, List[str]]:
    ok, issues = _validate_structure(get_config().merged)
    repo_dir = get_config().get("repo.dir")
    if repo_dir and Path(repo_dir).exists() and not os.access(repo_dir, os.W_OK):
        issues.append(f"repo.dir {repo_dir} not writable")
    return (len(issues) == 0, issues)
