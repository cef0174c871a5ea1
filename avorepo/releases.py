# avorepo/releases.py
"""
Release directories and the repository tree layout.

A release is a timestamp-named directory (``dev-YYYYMMDD-HHMMSS`` for
development builds, ``YYYY-MM-DD-HHMMSS`` for staged CI builds); names sort
chronologically, so the latest release is the greatest name.

Repository tree (rooted at ``repo.dir``)::

    packages/<codename>/                    package files
    releases/<codename>/<release>/          per-release metadata + targets.json
    staging/<release>/fragments/            per-target fragments of a build
    staging/<codename>/targets.json         persistent manifest across builds
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Pattern, Sequence, Union

from avorepo.config import get_config
from avorepo.errors import ReleaseNotFound
from avorepo.logging import get_logger

logger = get_logger("releases")

DEV_RELEASE_RE = re.compile(r"^dev-\d{8}-\d{6}$")
DATED_RELEASE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}-\d{6}$")
RELEASE_PATTERNS = (DEV_RELEASE_RE, DATED_RELEASE_RE)


def is_release_name(name: str, patterns: Sequence[Pattern[str]] = RELEASE_PATTERNS) -> bool:
    return any(p.match(name) for p in patterns)


def latest_release(base: Union[str, Path], patterns: Sequence[Pattern[str]] = RELEASE_PATTERNS) -> Path:
    """Lexicographically greatest release directory directly under ``base``."""
    base = Path(base)
    if not base.is_dir():
        raise ReleaseNotFound(f"Releases directory not found: {base}")
    candidates = [p for p in base.iterdir() if p.is_dir() and is_release_name(p.name, patterns)]
    if not candidates:
        raise ReleaseNotFound(f"No release directories found in {base}")
    latest = max(candidates, key=lambda p: p.name)
    logger.debug("latest release under %s is %s", base, latest.name)
    return latest


def resolve_release(base: Union[str, Path], explicit: Optional[str] = None) -> Path:
    """The named release (which must exist) or the latest one."""
    base = Path(base)
    if explicit:
        path = base / explicit
        if not path.is_dir():
            raise ReleaseNotFound(f"Specified release directory does not exist: {path}")
        return path
    return latest_release(base)


def new_release_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("dev-%Y%m%d-%H%M%S")


@dataclass(frozen=True)
class RepoLayout:
    repo_dir: Path
    codename: str
    release: str

    @classmethod
    def from_config(cls, repo_dir: Union[str, Path, None] = None, codename: Optional[str] = None,
                    release: Optional[str] = None, create: bool = False) -> "RepoLayout":
        """
        Fill unspecified parts from config.

        By default the release must already exist under releases/<codename>
        (an unspecified one resolves to the latest). With ``create`` a named
        release is taken as-is and an unspecified one falls back to the
        latest existing release, or a fresh ``dev-`` id when there is none.
        """
        cfg = get_config()
        root = Path(repo_dir or cfg.get("repo.dir")).resolve()
        codename = codename or cfg.get("repo.distro_codename")
        release = release or cfg.get("repo.release_id")
        base = root / "releases" / codename
        if not create:
            release = resolve_release(base, release).name
        elif not release:
            try:
                release = latest_release(base).name
            except ReleaseNotFound:
                release = new_release_id()
                logger.info("No existing release under %s, starting %s", base, release)
        return cls(repo_dir=root, codename=codename, release=release)

    @property
    def packages(self) -> Path:
        return self.repo_dir / "packages" / self.codename

    @property
    def releases_base(self) -> Path:
        return self.repo_dir / "releases" / self.codename

    @property
    def release_dir(self) -> Path:
        return self.releases_base / self.release

    @property
    def staging_base(self) -> Path:
        return self.repo_dir / "staging"

    @property
    def staging_dir(self) -> Path:
        return self.staging_base / self.release

    @property
    def fragments_dir(self) -> Path:
        return self.staging_dir / "fragments"

    @property
    def manifest(self) -> Path:
        return self.release_dir / "targets.json"

    @property
    def persistent_manifest(self) -> Path:
        return self.staging_base / self.codename / "targets.json"

    @property
    def manifest_lock(self) -> Path:
        # kept in staging, release dirs are served as-is
        return self.persistent_manifest.with_name("targets.json.lock")
