# avorepo/publish.py
"""
publish.py - per-release targets.json publishing

stage_target() writes a target's fragment into the release's staging area
once its packages are synced; publish_targets() aggregates the staged
fragments into releases/<codename>/<release>/targets.json, merging against
the persistent manifest kept in staging so targets not rebuilt in this
release stay available, then refreshes that persistent copy.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from avorepo import fragments, manifest
from avorepo.config import get_config
from avorepo.errors import PrerequisiteError
from avorepo.fsutil import atomic_copy
from avorepo.logging import get_logger
from avorepo.releases import RepoLayout

logger = get_logger("publish")


def find_fragments_dir(staging_base: Union[str, Path], release: str) -> Optional[Path]:
    """
    The release's own fragments dir, else the one of the most recently
    modified staging directory, else None.
    """
    base = Path(staging_base)
    if not base.is_dir():
        return None
    own = base / release / "fragments"
    if own.is_dir():
        logger.info("Using fragments from staging directory: %s", own.parent)
        return own
    subdirs = [p for p in base.iterdir() if p.is_dir()]
    if not subdirs:
        return None
    latest = max(subdirs, key=lambda p: p.stat().st_mtime)
    if (latest / "fragments").is_dir():
        logger.info("Using fragments from latest staging directory: %s", latest)
        return latest / "fragments"
    return None


def publish_targets(layout: RepoLayout) -> Optional[manifest.AggregationResult]:
    fragments_dir = find_fragments_dir(layout.staging_base, layout.release)
    if fragments_dir is None:
        logger.warning(
            "No fragments directory found in staging, skipping targets.json generation "
            "(expected %s)", layout.fragments_dir,
        )
        return None

    persistent = layout.persistent_manifest
    existing = None
    if persistent.is_file() and persistent.stat().st_size > 0:
        logger.info("Merging with persistent targets.json: %s", persistent)
        existing = persistent
    else:
        logger.info("No persistent targets.json found, creating new file")

    result = manifest.aggregate(fragments_dir, layout.manifest, existing, lock_file=layout.manifest_lock)
    logger.info("targets.json generated from %d fragment(s): %s", len(result.fragments), layout.manifest)

    atomic_copy(layout.manifest, persistent)
    logger.info("Updated persistent targets.json: %s", persistent)
    return result


def stage_target(layout: RepoLayout, source_deploy_dir: Union[str, Path], target: str,
                 releasever: Optional[str] = None) -> fragments.Fragment:
    """Generate ``target``'s fragment into the release's staging fragments dir."""
    deploy = Path(source_deploy_dir)
    if not deploy.is_dir():
        raise PrerequisiteError(
            f"Source deploy directory {deploy} not found; has the build for {target} completed?",
            path=deploy,
        )
    map_file = deploy / get_config().get("fragments.map_file", "avocado-repo.map")
    if not map_file.is_file():
        raise PrerequisiteError(f"Map file not found at {map_file}", path=map_file)
    return fragments.generate(deploy, target, layout.fragments_dir, releasever or layout.codename)
