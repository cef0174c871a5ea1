#!/usr/bin/env python3
# avorepo/cli.py
"""
avorepo CLI - entry point for the build orchestrator

Each sub-command maps onto one module:

* ``generate``        - fragments.generate (one target's targets.json fragment)
* ``aggregate``       - manifest.aggregate (fragments -> targets.json)
* ``update-metadata`` - metadata.update (distro / extensions / sdk indexes)
* ``latest-release``  - releases.latest_release
* ``stage-target``    - publish.stage_target
* ``publish-targets`` - publish.publish_targets
* ``checksums``       - checksums.run
* ``extensions``      - extension listing and CI matrices
* ``config``          - show / validate / save configuration

Exit status is 0 on success (including "nothing to do") and 1 on any failure.
Status lines go to stderr; stdout only carries requested output.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, List, Optional

from rich.console import Console
from rich.table import Table

from avorepo import checksums, config, extensions, fragments, manifest, metadata, publish, releases
from avorepo.errors import AvorepoError, IndexingError
from avorepo.logging import configure as configure_logging, get_logger, set_level

logger = get_logger("cli")

console = Console(stderr=True, highlight=False)

# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}")

def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {msg}")

def print_err(msg: str):
    console.print(f"[bold red]✖[/] {msg}")

def print_info(msg: str):
    console.print(f"[cyan]{msg}[/cyan]")

# -----------------------
# Command handlers
# -----------------------
def cmd_generate(args) -> int:
    frag = fragments.generate(args.source_deploy_dir, args.target, args.output_dir, args.releasever)
    print_ok(f"Target fragment for {frag.target}: {frag.path} ({len(frag.repos)} repositories)")
    return 0


def cmd_aggregate(args) -> int:
    res = manifest.aggregate(args.fragments_dir, args.output_file, args.existing_file)
    print_ok(
        f"targets.json valid with {res.total} target(s): "
        f"{len(res.preserved)} preserved, {len(res.updated)} updated, {len(res.added)} added"
    )
    if res.skipped:
        print_warn(f"{len(res.skipped)} fragment(s) skipped: {', '.join(p.name for p in res.skipped)}")
    return 0


def cmd_update_metadata(args) -> int:
    try:
        res = metadata.update_or_raise(
            args.target_deploy_dir,
            variant=args.variant,
            baseurl=args.baseurl or None,
            output_dir=args.output_dir or None,
            dry_run=args.dry_run,
        )
    except IndexingError as e:
        print_err(f"{e}:")
        for d in e.failed:
            print_err(f"  {d}")
        return 1
    if args.dry_run:
        for job in res.jobs:
            print(f"{job.mode}\t{job.package_dir}\t{job.output_path}")
        return 0
    if not res.jobs:
        print_info(f"No {args.variant} repositories found to process")
        return 0
    print_ok(f"{args.variant} metadata updated for {len(res.processed)} repositories")
    return 0


def cmd_latest_release(args) -> int:
    latest = releases.latest_release(args.releases_base)
    print(latest.name)
    return 0


def _layout(args, create: bool = False) -> releases.RepoLayout:
    return releases.RepoLayout.from_config(args.repo_dir, args.distro, args.release, create=create)


def cmd_stage_target(args) -> int:
    frag = publish.stage_target(_layout(args, create=True), args.source_deploy_dir, args.target, args.releasever)
    print_ok(f"Staged fragment for {frag.target}: {frag.path}")
    return 0


def cmd_publish_targets(args) -> int:
    layout = _layout(args)
    res = publish.publish_targets(layout)
    if res is None:
        print_warn("No fragments found in staging, targets.json not generated")
        return 0
    print_ok(f"targets.json generated from {len(res.fragments)} fragment(s): {layout.manifest}")
    return 0


def cmd_checksums(args) -> int:
    report = checksums.run(args.staging_dir, jobs=args.jobs)
    sys.stdout.write(checksums.RENDERERS[args.format](report))
    if report.ok:
        print_ok(f"No checksum anomalies in {report.total_files} files")
        return 0
    print_err(f"{len(report.anomalies)} checksum anomalies found")
    return 1


def cmd_extensions(args) -> int:
    exts = extensions.discover_extensions(args.root)
    if args.ext_action == "list":
        table = Table(title="Extensions")
        table.add_column("name")
        table.add_column("supported targets")
        for e in exts:
            table.add_row(e.name, ", ".join(e.supported_targets))
        Console().print(table)
        return 0
    if args.ext_action == "for-target":
        for e in extensions.extensions_for_target(exts, args.target):
            print(e.name)
        return 0
    # matrix
    if args.extensions:
        out: Any = extensions.extension_matrix(exts, args.all, args.target)
    else:
        out = extensions.build_matrix(args.all, args.target)
    print(extensions.to_json(out))
    return 0


def cmd_config(args) -> int:
    cfg = config.get_config()
    if args.config_action == "show":
        print(json.dumps(cfg.raw if args.raw else cfg.merged, indent=2, ensure_ascii=False))
        return 0
    if args.config_action == "validate":
        ok, issues = config.validate_config()
        for it in issues:
            print_warn(it)
        if ok:
            print_ok(f"config OK (from {cfg.path or '<defaults>'})")
            return 0
        return 1
    path = config.save(args.path, override_only=not args.full)
    print_ok(f"Saved to {path}")
    return 0

# -----------------------
# Parser
# -----------------------
class _Parser(argparse.ArgumentParser):
    """Usage errors exit 1 like every other failure."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    ap = _Parser(prog="avorepo", description="Package repository metadata tooling")
    ap.add_argument("-c", "--config", help="explicit config file")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    ap.add_argument("-q", "--quiet", action="store_true", help="warnings and errors only")
    ap.add_argument("--no-color", action="store_true", help="disable colored output")
    sub = ap.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("generate", help="generate a target fragment")
    p.add_argument("source_deploy_dir")
    p.add_argument("target")
    p.add_argument("output_dir")
    p.add_argument("releasever")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("aggregate", help="aggregate fragments into targets.json")
    p.add_argument("fragments_dir")
    p.add_argument("output_file")
    p.add_argument("existing_file", nargs="?")
    p.set_defaults(func=cmd_aggregate)

    p = sub.add_parser("update-metadata", help="create/update repository indexes")
    p.add_argument("variant", choices=[v.value for v in metadata.Variant])
    p.add_argument("target_deploy_dir")
    p.add_argument("baseurl", nargs="?", default="")
    p.add_argument("output_dir", nargs="?", default="")
    p.add_argument("--dry-run", action="store_true", help="list repositories without indexing")
    p.set_defaults(func=cmd_update_metadata)

    p = sub.add_parser("latest-release", help="print the latest release under a releases dir")
    p.add_argument("releases_base")
    p.set_defaults(func=cmd_latest_release)

    for name, func, helptext in (
        ("stage-target", cmd_stage_target, "stage a target fragment for a release"),
        ("publish-targets", cmd_publish_targets, "publish targets.json for a release"),
    ):
        p = sub.add_parser(name, help=helptext)
        if name == "stage-target":
            p.add_argument("target")
            p.add_argument("source_deploy_dir")
            p.add_argument("--releasever", help="default: the distro codename")
        p.add_argument("-r", "--repo-dir")
        p.add_argument("-d", "--distro", help="distro codename")
        p.add_argument("-i", "--release", help="release id (default: latest existing release)")
        p.set_defaults(func=func)

    p = sub.add_parser("checksums", help="find staged packages with conflicting checksums")
    p.add_argument("staging_dir", nargs="?")
    p.add_argument("-j", "--jobs", type=int)
    p.add_argument("--format", choices=sorted(checksums.RENDERERS), default="text")
    p.set_defaults(func=cmd_checksums)

    p = sub.add_parser("extensions", help="extension listing and build matrices")
    p.add_argument("--root", help="extensions root directory")
    esub = p.add_subparsers(dest="ext_action", metavar="ACTION")
    esub.required = True
    esub.add_parser("list")
    e = esub.add_parser("for-target")
    e.add_argument("target")
    e = esub.add_parser("matrix")
    group = e.add_mutually_exclusive_group(required=True)
    group.add_argument("--all", action="store_true")
    group.add_argument("--target")
    e.add_argument("--extensions", action="store_true", help="emit the extension x target matrix")
    p.set_defaults(func=cmd_extensions)

    p = sub.add_parser("config", help="inspect configuration")
    csub = p.add_subparsers(dest="config_action", metavar="ACTION")
    csub.required = True
    c = csub.add_parser("show")
    c.add_argument("--raw", action="store_true", help="file values only")
    csub.add_parser("validate")
    c = csub.add_parser("save")
    c.add_argument("path")
    c.add_argument("--full", action="store_true", help="write merged config, not only overrides")
    p.set_defaults(func=cmd_config)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    global console
    args = build_parser().parse_args(argv)
    try:
        if args.config:
            config.load(args.config)
        if args.no_color:
            console = Console(stderr=True, highlight=False, no_color=True)
            cfg = config.get_config()
            cfg.merged["logging"]["color"] = False
            configure_logging(cfg)
        if args.verbose:
            set_level("DEBUG")
        elif args.quiet:
            set_level("WARNING")
        return args.func(args)
    except AvorepoError as e:
        logger.debug("command %s failed", args.command, exc_info=True)
        print_err(str(e))
        return 1
    except KeyboardInterrupt:
        print_err("interrupted")
        return 1


if __name__ == "__main__":
    sys.exit(main())
