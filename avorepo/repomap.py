# avorepo/repomap.py
"""
Reader for the build system's repository map (avocado-repo.map).

Each line is ``<sub-path>=<destination>``, the destination carrying a
shell-style ``$releasever`` reference, e.g.::

    sdk/x86_64=$releasever/sdk/x86_64
    target/qemux86-64=$releasever/target/qemux86-64
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Dict, Iterator, List, Optional, Union

from avorepo.errors import PrerequisiteError
from avorepo.logging import get_logger

logger = get_logger("repomap")


@dataclass(frozen=True)
class RepoMapEntry:
    key: str
    template: str

    def expand(self, variables: Dict[str, str]) -> str:
        # unknown variables stay verbatim, like an unset shell var would not
        return Template(self.template).safe_substitute(variables)


def relative_to_release(expanded: str, releasever: str) -> str:
    """Strip a leading ``<releasever>/`` so the path is relative to targets.json."""
    prefix = releasever.rstrip("/") + "/"
    if releasever and expanded.startswith(prefix):
        return expanded[len(prefix):]
    return expanded


class RepositoryMap:
    """Ordered key -> templated destination mapping, read-only once parsed."""

    def __init__(self, entries: Optional[List[RepoMapEntry]] = None, source: Optional[Path] = None):
        self._entries: Dict[str, RepoMapEntry] = {}
        for e in entries or []:
            self._entries[e.key] = e
        self.source = source

    @classmethod
    def parse(cls, text: str, source: Optional[Path] = None) -> "RepositoryMap":
        entries: Dict[str, RepoMapEntry] = {}
        for lineno, raw in enumerate(text.splitlines(), 1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                logger.debug("repomap: %s:%d has no '=', skipped", source or "<text>", lineno)
                continue
            key, value = line.split("=", 1)
            key, value = key.strip(), value.strip()
            if not key or not value:
                continue
            if key in entries:
                logger.warning("repomap: duplicate key %s at line %d, last value wins", key, lineno)
            entries[key] = RepoMapEntry(key, value)
        return cls(list(entries.values()), source=source)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "RepositoryMap":
        p = Path(path)
        if not p.is_file():
            raise PrerequisiteError(f"Map file not found at {p}", path=p)
        return cls.parse(p.read_text(encoding="utf-8"), source=p)

    def __iter__(self) -> Iterator[RepoMapEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[RepoMapEntry]:
        return self._entries.get(key)

    def keys(self) -> List[str]:
        return list(self._entries)

    def resolve(self, releasever: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Map every key to its destination relative to the release root."""
        variables = {"releasever": releasever}
        variables.update(extra or {})
        return {
            e.key: relative_to_release(e.expand(variables), releasever)
            for e in self._entries.values()
        }
