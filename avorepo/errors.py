# avorepo/errors.py
"""
Exception hierarchy shared by the avorepo modules.

Partial-data conditions (an empty sub-repository, a missing manifest) are
not errors and never raise; everything here means the run cannot report
success.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional


class AvorepoError(Exception):
    """Base class for every failure the CLI turns into exit code 1."""


class ConfigError(AvorepoError):
    """Configuration file could not be validated."""


class PrerequisiteError(AvorepoError):
    """A prerequisite step never ran (missing map file, fragments dir, deploy dir)."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class ManifestError(AvorepoError):
    """targets.json could not be written, locked or validated."""


class IndexingError(AvorepoError):
    """One or more metadata indexer invocations failed."""

    def __init__(self, message: str, failed: Optional[List[Path]] = None):
        super().__init__(message)
        self.failed = list(failed or [])


class ReleaseNotFound(AvorepoError):
    """No release directory matched, or the requested one does not exist."""
