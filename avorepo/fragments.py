# avorepo/fragments.py
"""
fragments.py - per-target targets.json fragment generation

For one build target, read the deploy directory's repository map, keep the
sub-repositories that actually hold packages, always add the target's
extension repository, and write ``<output>/<target>-fragment.json``::

    {"qemux86-64":["sdk/x86_64","target/qemux86-64-ext"]}

The extension repository is appended unconditionally because extensions are
packaged after the distro sync that produces the fragment.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from avorepo.config import get_config
from avorepo.fsutil import atomic_write_text, has_packages
from avorepo.logging import get_logger
from avorepo.repomap import RepositoryMap

logger = get_logger("fragments")

FRAGMENT_SUFFIX = "-fragment.json"


def extension_repo(target: str) -> str:
    return f"target/{target}-ext"


def fragment_path(output_dir: Union[str, Path], target: str) -> Path:
    return Path(output_dir) / f"{target}{FRAGMENT_SUFFIX}"


def render_fragment(target: str, repos: List[str]) -> str:
    return json.dumps({target: list(repos)}, separators=(",", ":"), ensure_ascii=False)


@dataclass
class Fragment:
    target: str
    repos: List[str] = field(default_factory=list)
    path: Optional[Path] = None

    def render(self) -> str:
        return render_fragment(self.target, self.repos)


def collect_repos(repo_map: RepositoryMap, source_deploy_dir: Union[str, Path], target: str,
                  releasever: str, package_suffix: Optional[str] = None) -> List[str]:
    """Relative repository paths for ``target``: populated map entries, then the extension repo."""
    suffix = package_suffix or get_config().get("fragments.package_suffix", ".rpm")
    deploy = Path(source_deploy_dir)
    resolved = repo_map.resolve(releasever)
    repos: List[str] = []
    for key, relative in resolved.items():
        source_dir = deploy / key
        if has_packages(source_dir, suffix):
            logger.info("Found packages in: %s -> %s", source_dir, relative)
            repos.append(relative)
        else:
            logger.debug("No packages in %s, skipping %s", source_dir, relative)
    ext = extension_repo(target)
    repos.append(ext)
    logger.info("Added extension repository: %s", ext)
    return repos


def generate(source_deploy_dir: Union[str, Path], target: str, output_dir: Union[str, Path],
             releasever: str, map_file: Optional[str] = None) -> Fragment:
    """
    Generate the fragment for one target.

    Raises PrerequisiteError when the map file is missing. Re-running against
    the same on-disk state rewrites a byte-identical file.
    """
    deploy = Path(source_deploy_dir)
    map_name = map_file or get_config().get("fragments.map_file", "avocado-repo.map")
    map_path = deploy / map_name

    logger.info("Generating target fragment for: %s", target)
    logger.info("Using map file: %s", map_path)
    logger.info("Output directory: %s (releasever=%s)", output_dir, releasever)

    repo_map = RepositoryMap.load(map_path)
    repos = collect_repos(repo_map, deploy, target, releasever)

    frag = Fragment(target=target, repos=repos, path=fragment_path(output_dir, target))
    atomic_write_text(frag.path, frag.render())
    logger.info("Generated target fragment: %s", frag.path)
    for r in repos:
        logger.info("  - %s", r)
    return frag
