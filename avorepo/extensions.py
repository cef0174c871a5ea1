# avorepo/extensions.py
"""
Extension discovery and CI build matrices.

An extension is a directory ``<root>/<name>/`` holding an ``avocado.toml``;
its optional top-level ``supported_targets`` (list, or comma separated
string, or ``"*"``) restricts the machines it is built for.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import toml

from avorepo.config import get_config, get_section
from avorepo.errors import AvorepoError
from avorepo.logging import get_logger

logger = get_logger("extensions")

ALL_TARGETS = "*"


@dataclass
class Extension:
    name: str
    path: Path
    supported_targets: List[str] = field(default_factory=lambda: [ALL_TARGETS])

    @property
    def supports_all(self) -> bool:
        return ALL_TARGETS in self.supported_targets

    def supports(self, target: str) -> bool:
        return self.supports_all or target in self.supported_targets


def _parse_supported(value: Any) -> List[str]:
    if value is None:
        return [ALL_TARGETS]
    if isinstance(value, str):
        items = [v.strip().strip("\"'") for v in value.strip("[]").split(",")]
    elif isinstance(value, list):
        items = [str(v).strip() for v in value]
    else:
        return [ALL_TARGETS]
    items = [v for v in items if v]
    return items or [ALL_TARGETS]


def load_extension(ext_dir: Path, manifest_name: str = "avocado.toml") -> Extension:
    manifest = ext_dir / manifest_name
    try:
        data = toml.load(manifest)
    except (toml.TomlDecodeError, OSError) as e:
        logger.warning("extension %s: cannot parse %s (%s), assuming all targets", ext_dir.name, manifest, e)
        data = {}
    return Extension(
        name=ext_dir.name,
        path=ext_dir,
        supported_targets=_parse_supported(data.get("supported_targets")),
    )


def discover_extensions(root: Union[str, Path, None] = None) -> List[Extension]:
    section = get_section("extensions")
    root = Path(root or section.get("root") or "extensions")
    manifest_name = section.get("manifest") or "avocado.toml"
    if not root.is_dir():
        logger.warning("extensions root %s does not exist", root)
        return []
    exts = [
        load_extension(d, manifest_name)
        for d in sorted(root.iterdir(), key=lambda p: p.name)
        if d.is_dir() and (d / manifest_name).is_file()
    ]
    logger.debug("discovered %d extension(s) under %s", len(exts), root)
    return exts


def supports_target(ext: Extension, target: str) -> bool:
    return ext.supports(target)


def extensions_for_target(exts: List[Extension], target: str) -> List[Extension]:
    return [e for e in exts if supports_target(e, target)]

# -------------------------
# Machines and matrices
# -------------------------
def machines() -> List[str]:
    return list(get_config().get("machines") or [])


def validate_machine(name: str) -> bool:
    return name in machines()


def build_matrix(build_all: bool, target: Optional[str] = None) -> List[str]:
    if build_all:
        return machines()
    if target and validate_machine(target):
        return [target]
    raise AvorepoError(f"Unknown target selected: {target}")


def extension_matrix(exts: List[Extension], build_all: bool, target: Optional[str] = None) -> List[Dict[str, str]]:
    targets = build_matrix(build_all, target)
    include: List[Dict[str, str]] = []
    for ext in exts:
        if ext.supports_all:
            ext_targets = targets
        else:
            ext_targets = [t for t in ext.supported_targets if t in targets]
        include.extend({"extension": ext.name, "target": t} for t in ext_targets)
    return include


def to_json(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"))
