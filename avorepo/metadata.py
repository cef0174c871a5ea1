# avorepo/metadata.py
"""
metadata.py - RPM repository index generation over a package tree

Features:
- Leaf discovery: a directory qualifies when it directly holds packages and
  no sub-directory (index dirs excluded) holds packages at any depth, so only
  the deepest package-bearing directory of a chain is indexed
- Three selections sharing that walk: distro (everything except
  ``target/<name>-ext``), extensions (only ``target/<name>-ext``) and sdk
  (only below an ``sdk/`` segment)
- Indexer driver (createrepo_c): update mode when an index already exists at
  the output location, create mode otherwise, with a location prefix so the
  index resolves packages from a separate output tree
- Partial-failure tolerant: every leaf is attempted, failures are collected
  and reported together
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath
from typing import Callable, Dict, List, Optional, Tuple, Union

from avorepo.config import get_config
from avorepo.errors import IndexingError, PrerequisiteError
from avorepo.logging import get_logger

logger = get_logger("metadata")

# -------------------------
# Selection predicates (on the leaf path relative to the deploy dir)
# -------------------------
def _is_ext_pair(parent: str, name: str) -> bool:
    return parent == "target" and name.endswith("-ext") and len(name) > len("-ext")


def in_extension_tree(rel: PurePath) -> bool:
    parts = rel.parts
    return any(_is_ext_pair(parts[i], parts[i + 1]) for i in range(len(parts) - 1))


def is_extension_repo(rel: PurePath) -> bool:
    parts = rel.parts
    return len(parts) >= 2 and _is_ext_pair(parts[-2], parts[-1])


def in_sdk_tree(rel: PurePath) -> bool:
    parts = rel.parts
    return "sdk" in parts[:-1]


class Variant(str, Enum):
    DISTRO = "distro"
    EXTENSIONS = "extensions"
    SDK = "sdk"

    @property
    def predicate(self) -> Callable[[PurePath], bool]:
        return _PREDICATES[self]

    @property
    def label(self) -> str:
        return {"distro": "", "extensions": "extension ", "sdk": "SDK "}[self.value]


_PREDICATES: Dict[Variant, Callable[[PurePath], bool]] = {
    Variant.DISTRO: lambda rel: not in_extension_tree(rel),
    Variant.EXTENSIONS: is_extension_repo,
    Variant.SDK: in_sdk_tree,
}

# -------------------------
# Leaf discovery
# -------------------------
def _scan(directory: Path, suffix: str, index_dir: str, leaves: List[Path]) -> bool:
    """
    Post-order walk. Returns True when ``directory`` or anything below it holds
    packages; appends ``directory`` to ``leaves`` when it is a leaf.
    """
    direct = False
    below = False
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except (PermissionError, FileNotFoundError) as e:
        logger.warning("Cannot list %s: %s", directory, e)
        return False
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            if entry.name == index_dir:
                continue
            if _scan(Path(entry.path), suffix, index_dir, leaves):
                below = True
        elif entry.name.endswith(suffix) and entry.is_file():
            direct = True
    if direct and not below:
        leaves.append(directory)
    return direct or below


def find_leaf_dirs(root: Union[str, Path], suffix: str = ".rpm", index_dir: str = "repodata") -> List[Path]:
    """Every leaf package directory under (and including) ``root``, sorted by path."""
    leaves: List[Path] = []
    _scan(Path(root), suffix, index_dir, leaves)
    return sorted(leaves)


def select_leaf_dirs(root: Union[str, Path], variant: Variant, suffix: str = ".rpm",
                     index_dir: str = "repodata") -> List[Path]:
    root = Path(root)
    pred = variant.predicate
    return [d for d in find_leaf_dirs(root, suffix, index_dir) if pred(d.relative_to(root))]

# -------------------------
# Indexer
# -------------------------
@dataclass
class IndexJob:
    package_dir: Path
    output_path: Path
    location: str     # package_dir relative to output_path
    update: bool

    @property
    def mode(self) -> str:
        return "update" if self.update else "create"


class Indexer:
    """Thin wrapper around the external RPM metadata indexer."""

    def __init__(self, command: Optional[str] = None, timeout: Optional[int] = None,
                 index_dir: Optional[str] = None):
        cfg = get_config()
        self.command = command or cfg.get("metadata.indexer", "createrepo_c")
        self.timeout = timeout if timeout is not None else cfg.get("metadata.timeout")
        self.index_dir = index_dir or cfg.get("metadata.index_dir", "repodata")

    def plan(self, package_dir: Path, deploy_dir: Path, output_dir: Optional[Path] = None) -> IndexJob:
        if output_dir is not None:
            output_path = output_dir / package_dir.relative_to(deploy_dir)
        else:
            output_path = package_dir
        location = os.path.relpath(package_dir, output_path)
        return IndexJob(
            package_dir=package_dir,
            output_path=output_path,
            location=location,
            update=(output_path / self.index_dir).is_dir(),
        )

    def argv(self, job: IndexJob) -> List[str]:
        cmd = [self.command]
        if job.update:
            cmd.append("--update")
        cmd += ["--outputdir", ".", "--location-prefix", f"{job.location}/", job.location]
        return cmd

    def run(self, job: IndexJob) -> Tuple[int, str]:
        job.output_path.mkdir(parents=True, exist_ok=True)
        cmd = self.argv(job)
        logger.debug("running %s (cwd=%s)", " ".join(cmd), job.output_path)
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(job.output_path),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return 127, f"{self.command}: command not found"
        except subprocess.TimeoutExpired:
            return 124, f"{self.command}: timed out after {self.timeout}s"
        return proc.returncode, proc.stdout or ""

# -------------------------
# Update
# -------------------------
@dataclass
class UpdateResult:
    variant: Variant
    processed: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)  # leaves of other variants
    jobs: List[IndexJob] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def update(target_deploy_dir: Union[str, Path], variant: Union[Variant, str] = Variant.DISTRO,
           baseurl: Optional[str] = None, output_dir: Union[str, Path, None] = None,
           indexer: Optional[Indexer] = None, dry_run: bool = False) -> UpdateResult:
    """
    Create or update the index of every selected leaf under ``target_deploy_dir``.

    ``baseurl`` is accepted and logged but does not change the generated
    metadata. Raises PrerequisiteError when the deploy dir is missing; the
    returned result lists failed leaves (check ``result.ok``).
    """
    variant = Variant(variant)
    deploy = Path(target_deploy_dir)
    if not deploy.is_dir():
        raise PrerequisiteError(f"Target directory {deploy} not found", path=deploy)
    out = Path(output_dir) if output_dir else None
    indexer = indexer or Indexer()
    suffix = get_config().get("fragments.package_suffix", ".rpm")

    logger.info("Target deploy directory: %s", deploy)
    if baseurl:
        logger.info("Base URL for packages: %s (not embedded in metadata)", baseurl)
    if out is not None:
        logger.info("Output directory for metadata: %s", out)

    result = UpdateResult(variant=variant)
    leaves: List[Path] = []
    for leaf in find_leaf_dirs(deploy, suffix=suffix, index_dir=indexer.index_dir):
        if variant.predicate(leaf.relative_to(deploy)):
            leaves.append(leaf)
        else:
            result.skipped.append(leaf)
    if not leaves:
        logger.info("No %srepositories found to process under %s", variant.label, deploy)
        if variant is Variant.SDK and "sdk" in deploy.resolve().parts:
            logger.warning(
                "%s is itself inside an sdk tree; sdk repositories are matched relative to "
                "the deploy dir, pass its parent instead", deploy,
            )
        return result

    for leaf in leaves:
        job = indexer.plan(leaf, deploy, out)
        result.jobs.append(job)
        logger.info(
            "%s %srepository: packages in %s, metadata in %s",
            "Updating existing" if job.update else "Creating new",
            variant.label, leaf, job.output_path,
        )
        if dry_run:
            logger.info("dry-run: %s", " ".join(indexer.argv(job)))
            continue
        rc, output = indexer.run(job)
        if rc == 0:
            result.processed.append(leaf)
        else:
            logger.error("Indexer failed for %s (exit %d): %s", leaf, rc, output.strip()[-2000:])
            result.failed.append(leaf)

    if result.failed:
        logger.error("%d of %d %srepositories failed", len(result.failed), len(leaves), variant.label)
    else:
        logger.info("%s repository metadata update complete (%d processed)", variant.value, len(result.processed))
    return result


def update_or_raise(*args, **kwargs) -> UpdateResult:
    """update() that raises IndexingError after all leaves were attempted."""
    result = update(*args, **kwargs)
    if not result.ok:
        raise IndexingError(
            f"metadata indexing failed for {len(result.failed)} director(ies)",
            failed=result.failed,
        )
    return result
