# avorepo/manifest.py
"""
manifest.py - aggregate target fragments into targets.json

- Reads the previously published manifest (best-effort: missing, empty or
  corrupt means "no existing targets")
- Reads every ``*-fragment.json`` in the fragments directory (sorted by name)
- Merges with replace-not-union semantics: a target named by a new fragment
  gets exactly that fragment's repository list; targets only present in the
  existing manifest are carried forward untouched
- Writes the compact manifest atomically under an exclusive lock, then
  re-reads it and fails loudly if it does not parse back to what was merged
"""

from __future__ import annotations

import json
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from avorepo.config import get_config
from avorepo.errors import ManifestError, PrerequisiteError
from avorepo.fragments import FRAGMENT_SUFFIX
from avorepo.fsutil import atomic_write_text, exclusive_lock
from avorepo.logging import get_logger

logger = get_logger("manifest")

Targets = Dict[str, List[str]]

# -------------------------
# Parsing
# -------------------------
def _is_repo_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def parse_manifest(text: str) -> Targets:
    """Strict parse of manifest text; raises ValueError on anything but an object of string lists."""
    data = json.loads(text, object_pairs_hook=OrderedDict)
    if not isinstance(data, dict):
        raise ValueError("manifest is not a JSON object")
    out: Targets = OrderedDict()
    for target, repos in data.items():
        if not _is_repo_list(repos):
            raise ValueError(f"target {target!r} does not map to a list of strings")
        out[target] = list(repos)
    return out


def read_manifest(path: Union[str, Path, None]) -> Targets:
    """Existing manifest as an ordered mapping; never raises for missing/empty/corrupt files."""
    if path is None:
        return OrderedDict()
    p = Path(path)
    if not p.is_file() or p.stat().st_size == 0:
        logger.info("No existing targets file found or file is empty: %s", p)
        return OrderedDict()
    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        logger.warning("Existing targets file %s is not valid UTF-8 (%s), treating as empty", p, e)
        return OrderedDict()
    if not text.strip():
        return OrderedDict()
    try:
        data = json.loads(text, object_pairs_hook=OrderedDict)
    except ValueError as e:
        logger.warning("Existing targets file %s is not valid JSON (%s), treating as empty", p, e)
        return OrderedDict()
    if not isinstance(data, dict):
        logger.warning("Existing targets file %s is not a JSON object, treating as empty", p)
        return OrderedDict()
    out: Targets = OrderedDict()
    for target, repos in data.items():
        if _is_repo_list(repos):
            out[target] = list(repos)
        else:
            logger.warning("Dropping malformed entry for target %s in %s", target, p)
    logger.info("Found existing targets file: %s (%d target(s))", p, len(out))
    return out


def read_fragment(path: Union[str, Path]) -> Optional[Tuple[str, List[str]]]:
    """(target, repos) from one fragment file, or None when it must be skipped."""
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        logger.warning("Fragment file %s is not valid UTF-8 (%s), skipping", p, e)
        return None
    if not text.strip():
        logger.warning("Fragment file is empty: %s", p)
        return None
    try:
        data = json.loads(text)
    except ValueError as e:
        logger.warning("Fragment file %s is not valid JSON (%s), skipping", p, e)
        return None
    if not isinstance(data, dict) or len(data) != 1:
        logger.warning("Fragment file %s must hold exactly one target, skipping", p)
        return None
    (target, repos), = data.items()
    if not _is_repo_list(repos):
        logger.warning("Fragment file %s does not map %s to a list of strings, skipping", p, target)
        return None
    return target, list(repos)


def find_fragments(fragments_dir: Union[str, Path]) -> List[Path]:
    d = Path(fragments_dir)
    if not d.is_dir():
        raise PrerequisiteError(f"Fragments directory not found at {d}", path=d)
    return sorted(p for p in d.iterdir() if p.name.endswith(FRAGMENT_SUFFIX) and p.is_file())

# -------------------------
# Merge
# -------------------------
def merge_targets(existing: Mapping[str, List[str]],
                  fragments: Iterable[Tuple[str, List[str]]]) -> Targets:
    """
    Pure merge. Existing targets not named by a fragment come first in their
    original order, then fragment targets in processing order. A fragment
    replaces its target's list wholesale.
    """
    new: Targets = OrderedDict()
    for target, repos in fragments:
        if target in new:
            logger.warning("Target %s appears in more than one fragment, the later one wins", target)
        new[target] = list(repos)

    merged: Targets = OrderedDict()
    for target, repos in existing.items():
        if target not in new:
            merged[target] = list(repos)
    for target, repos in new.items():
        merged[target] = repos
    return merged


def render_manifest(targets: Mapping[str, List[str]]) -> str:
    return json.dumps(dict(targets), separators=(",", ":"), ensure_ascii=False)

# -------------------------
# Aggregation
# -------------------------
@dataclass
class AggregationResult:
    output: Path
    targets: Targets
    preserved: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    fragments: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.targets)


def _write_validated(output: Path, merged: Targets) -> None:
    text = render_manifest(merged)
    atomic_write_text(output, text)
    try:
        reread = parse_manifest(output.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ManifestError(f"Generated JSON is invalid in {output}: {e}") from e
    if reread != dict(merged):
        raise ManifestError(f"Generated manifest {output} does not match the merged targets")


def aggregate(fragments_dir: Union[str, Path], output_file: Union[str, Path],
              existing_file: Union[str, Path, None] = None,
              lock_timeout: Optional[float] = None,
              lock_file: Union[str, Path, None] = None) -> AggregationResult:
    """
    Merge fragments in ``fragments_dir`` with the existing manifest into ``output_file``.

    ``existing_file`` defaults to ``output_file`` itself; ``lock_file`` to
    ``<output_file>.lock``. Raises
    PrerequisiteError for a missing fragments directory and ManifestError when
    the output cannot be locked or validated.
    """
    output = Path(output_file)
    existing_path = Path(existing_file) if existing_file else output
    if lock_timeout is None:
        lock_timeout = float(get_config().get("aggregate.lock_timeout", 30))

    logger.info("Aggregating target fragments from: %s", fragments_dir)
    logger.info("Output file: %s", output)
    fragment_files = find_fragments(fragments_dir)

    lock_path = Path(lock_file) if lock_file else output.with_name(output.name + ".lock")
    try:
        with exclusive_lock(lock_path, timeout=lock_timeout):
            existing = read_manifest(existing_path)
            result = AggregationResult(output=output, targets=OrderedDict())
            parsed: List[Tuple[str, List[str]]] = []
            for f in fragment_files:
                logger.info("Processing fragment: %s", f.name)
                frag = read_fragment(f)
                if frag is None:
                    result.skipped.append(f)
                    continue
                result.fragments.append(f)
                parsed.append(frag)

            if not parsed and not existing:
                logger.warning("No fragment files found and no existing targets, writing empty targets.json")

            merged = merge_targets(existing, parsed)
            names = {t for t, _ in parsed}
            result.targets = merged
            result.preserved = [t for t in existing if t not in names]
            result.updated = [t for t in merged if t in names and t in existing]
            result.added = [t for t in merged if t in names and t not in existing]
            for t in result.updated:
                logger.info("Updating existing target: %s", t)
            for t in result.preserved:
                logger.info("Preserving existing target: %s", t)

            _write_validated(output, merged)
    except TimeoutError as e:
        raise ManifestError(str(e)) from e

    logger.info(
        "Generated targets.json with %d total target(s): %d preserved, %d updated, %d added",
        result.total, len(result.preserved), len(result.updated), len(result.added),
    )
    return result
