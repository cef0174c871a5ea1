# avorepo/checksums.py
"""
checksums.py - staging checksum anomaly analysis

Finds packages that were staged more than once at the same tree location
with different header checksums (a rebuild that changed bits without a
version bump).

Phases:
 1. discover every package file under the staging dir
 2. workers query each package's SHA256 header checksum and NEVRA with
    ``rpm -qp`` in parallel, each returning its own record
 3. a single-threaded merge groups records by (package, location) and flags
    groups whose checksums differ
"""

from __future__ import annotations

import csv
import io
import json
import re
import subprocess
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from avorepo.config import get_config
from avorepo.errors import ReleaseNotFound
from avorepo.logging import get_logger
from avorepo.releases import DATED_RELEASE_RE, latest_release

logger = get_logger("checksums")

QUERY_FORMAT = "%{SHA256HEADER}|%{NAME}-%{VERSION}-%{RELEASE}.%{ARCH}"
_CHECKSUM_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class RpmRecord:
    checksum: str
    package: str
    location: str   # directory relative to the staging dir
    path: Path


@dataclass
class Anomaly:
    package: str
    location: str
    records: List[RpmRecord] = field(default_factory=list)


@dataclass
class ChecksumReport:
    staging_dir: Path
    total_files: int = 0
    groups: int = 0
    anomalies: List[Anomaly] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.anomalies

# -------------------------
# Staging dir resolution
# -------------------------
def resolve_staging_dir(path: Union[str, Path, None] = None) -> Path:
    """A timestamped dir is used as-is; a base dir resolves to its latest timestamped child."""
    if path is None:
        path = get_config().get("checksums.staging_base")
    p = Path(path)
    if not p.is_dir():
        raise ReleaseNotFound(f"Staging directory does not exist: {p}")
    if DATED_RELEASE_RE.match(p.name):
        return p
    latest = latest_release(p, patterns=(DATED_RELEASE_RE,))
    logger.info("Found latest staging directory: %s", latest.name)
    return latest

# -------------------------
# Workers
# -------------------------
def discover_packages(staging_dir: Path, suffix: str = ".rpm") -> List[Path]:
    return sorted(p for p in staging_dir.rglob(f"*{suffix}") if p.is_file())


def query_rpm(path: Path, staging_dir: Path, rpm_cmd: str = "rpm") -> Optional[RpmRecord]:
    try:
        proc = subprocess.run(
            [rpm_cmd, "-qp", "--qf", QUERY_FORMAT, str(path)],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError:
        logger.error("%s: command not found", rpm_cmd)
        return None
    if proc.returncode != 0:
        logger.debug("Failed to extract RPM info from: %s", path)
        return None
    checksum, sep, package = proc.stdout.strip().partition("|")
    if not sep or not _CHECKSUM_RE.match(checksum):
        logger.debug("Invalid checksum format from: %s", path)
        return None
    if path.parent == staging_dir:
        # packages staged at the top level are keyed by file name
        location = path.name
    else:
        location = path.parent.relative_to(staging_dir).as_posix()
    return RpmRecord(checksum=checksum, package=package, location=location, path=path)


def collect_records(files: List[Path], staging_dir: Path, jobs: int,
                    query: Optional[Callable[[Path, Path], Optional[RpmRecord]]] = None) -> List[RpmRecord]:
    if query is None:
        rpm_cmd = get_config().get("checksums.rpm", "rpm")
        query = lambda p, s: query_rpm(p, s, rpm_cmd)  # noqa: E731
    records: List[RpmRecord] = []
    done = 0
    with ThreadPoolExecutor(max_workers=max(1, jobs)) as exc:
        futures = {exc.submit(query, f, staging_dir): f for f in files}
        for fut in as_completed(futures):
            done += 1
            rec = fut.result()
            if rec is not None:
                records.append(rec)
            if done % 100 == 0 or done == len(files):
                logger.debug("Processing RPMs: %d/%d", done, len(files))
    records.sort(key=lambda r: str(r.path))
    return records

# -------------------------
# Merge phase
# -------------------------
def analyze(records: Iterable[RpmRecord], staging_dir: Path, total_files: int = 0) -> ChecksumReport:
    grouped: Dict[Tuple[str, str], List[RpmRecord]] = OrderedDict()
    for rec in sorted(records, key=lambda r: (r.package, r.location, str(r.path))):
        grouped.setdefault((rec.package, rec.location), []).append(rec)
    report = ChecksumReport(staging_dir=staging_dir, total_files=total_files)
    for (package, location), recs in grouped.items():
        if len(recs) < 2:
            continue
        report.groups += 1
        if len({r.checksum for r in recs}) > 1:
            report.anomalies.append(Anomaly(package=package, location=location, records=recs))
    logger.info("Found %d groups with duplicate packages", report.groups)
    logger.info("Analysis complete: %d anomalies found", len(report.anomalies))
    return report


def run(staging: Union[str, Path, None] = None, jobs: Optional[int] = None) -> ChecksumReport:
    staging_dir = resolve_staging_dir(staging)
    jobs = jobs or int(get_config().get("checksums.jobs") or 1)
    suffix = get_config().get("fragments.package_suffix", ".rpm")
    logger.info("Phase 1: Discovering RPM files in %s", staging_dir)
    files = discover_packages(staging_dir, suffix)
    logger.info("Found %d RPM files", len(files))
    if not files:
        logger.warning("No RPM files found in %s", staging_dir)
        return ChecksumReport(staging_dir=staging_dir)
    logger.info("Phase 2: Extracting RPM checksums (using %d parallel jobs)", jobs)
    records = collect_records(files, staging_dir, jobs)
    logger.info("Phase 3: Analyzing for duplicate packages and checksum anomalies")
    return analyze(records, staging_dir, total_files=len(files))

# -------------------------
# Renderers
# -------------------------
def render_text(report: ChecksumReport) -> str:
    if report.ok:
        return (
            "No checksum anomalies found\n"
            f"Analyzed {report.groups} package groups - all duplicates have matching checksums\n"
        )
    lines = ["Checksum Anomalies Found:"]
    for a in report.anomalies:
        lines += ["", f"Package: {a.package}", f"Location: {a.location}",
                  f"Conflicting instances: {len(a.records)}"]
        for r in a.records:
            lines += [f"    Checksum: {r.checksum}", f"    File: {r.path}"]
    return "\n".join(lines) + "\n"


def render_json(report: ChecksumReport) -> str:
    data = {
        "anomalies": [
            {
                "package_name": a.package,
                "tree_location": a.location,
                "conflicting_files": [
                    {"checksum": r.checksum, "file_path": str(r.path)} for r in a.records
                ],
            }
            for a in report.anomalies
        ]
    }
    return json.dumps(data, indent=2) + "\n"


def render_csv(report: ChecksumReport) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["package_name", "tree_location", "checksum", "file_path"])
    for a in report.anomalies:
        for r in a.records:
            writer.writerow([a.package, a.location, r.checksum, str(r.path)])
    return buf.getvalue()


RENDERERS = {"text": render_text, "json": render_json, "csv": render_csv}
