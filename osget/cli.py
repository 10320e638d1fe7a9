"""CLI entry points for osget."""

from __future__ import annotations

import argparse
import traceback
from pathlib import Path
from typing import List, Optional

from osget.catalog import get_catalog, parse_catalog, read_catalog_document, validate_entries
from osget.config import Settings, load_settings
from osget.constants import WIRE_ARTIFACT_KINDS
from osget.drivers import DriverParameters, get_driver, registered_families
from osget.exceptions import OsgetError
from osget.models import ReleaseSelector, WebSource
from osget.orchestrator import Orchestrator
from osget.publish import publish, url_errors
from osget.utils import format_size, get_env, log, normalize_arch


def list_catalog(settings: Settings, arch_filter: Optional[str] = None) -> int:
    """Print available operating systems, optionally filtered by arch."""
    catalog = get_catalog(settings.catalog_path)
    arch_norm = normalize_arch(arch_filter) if arch_filter else None
    rows = []
    for entry in catalog:
        releases = [r for r in entry.releases if arch_norm is None or normalize_arch(r.arch) == arch_norm]
        if arch_norm is not None and not releases:
            continue
        rows.append((entry.os, entry.pretty_name, len(releases)))
    if not rows:
        log("WARN", f"No operating systems found for arch '{arch_filter}'" if arch_filter else "Catalog is empty")
        return 0
    if arch_norm:
        log("INFO", f"Showing operating systems for arch: {arch_norm}")

    max_key = max(len(key) for key, _, _ in rows)
    for key, name, count in sorted(rows):
        print(f"  {key:<{max_key}}  {name}  ({count} release{'s' if count != 1 else ''})")
    return 0


def show_os(settings: Settings, os_id: str) -> int:
    catalog = get_catalog(settings.catalog_path)
    entry = catalog.get(os_id)
    if entry is None:
        log("ERROR", f"'{os_id}' is not in the catalog")
        return 1
    print(f"  {entry.pretty_name} ({entry.os})")
    if entry.homepage:
        print(f"  homepage: {entry.homepage}")
    if entry.description:
        print(f"  {entry.description}")
    for record in entry.releases:
        print(f"  - {record.label}  (guestOS={record.guest_os})")
        for kind, artifact in record.artifacts():
            size = f", {format_size(artifact.size_bytes)}" if artifact.size_bytes else ""
            origin = artifact.source.url if isinstance(artifact.source, WebSource) else artifact.describe()
            print(f"      {WIRE_ARTIFACT_KINDS[kind]}: {origin}{size}")
    return 0


def build_os(settings: Settings, args: argparse.Namespace) -> int:
    selector = ReleaseSelector(
        release=args.release,
        edition=args.edition,
        arch=args.arch,
        guest_os=args.guest_os,
    )
    orchestrator = Orchestrator(get_catalog(settings.catalog_path), settings)
    path = orchestrator.build(args.os, selector, output_dir=args.output_dir)
    print(path)
    return 0


def validate_catalog(settings: Settings, path: Optional[Path], check_urls: bool = False) -> int:
    path = path or settings.catalog_path
    entries = parse_catalog(read_catalog_document(path))
    errors = validate_entries(entries)
    if errors:
        for error in errors:
            log("ERROR", error)
        log("ERROR", f"Schema validation failed with {len(errors)} error(s)")
        return 1
    log("SUCCESS", f"{len(entries)} operating systems, all schemas valid")

    if check_urls:
        unreachable = url_errors(entries)
        if unreachable:
            for error in unreachable:
                log("ERROR", error)
            log("ERROR", f"URL validation failed: {len(unreachable)} unreachable")
            return 1
        log("SUCCESS", "All URLs reachable")
    return 0


def run_driver(settings: Settings, args: argparse.Namespace) -> int:
    """Run a single Build Driver; parameters fall back to ARCH/RELEASE/EDITION/OUTPUT_DIR."""
    driver = get_driver(args.family, settings)
    if driver is None:
        log("ERROR", f"No build driver for '{args.family}'. Available: {', '.join(registered_families())}")
        return 1
    arch = args.arch or get_env("ARCH")
    release = args.release or get_env("RELEASE")
    if not arch or not release:
        log("ERROR", "Both an architecture (--arch/ARCH) and a release (--release/RELEASE) are required")
        return 1
    params = DriverParameters(arch=arch, release=release, edition=args.edition or get_env("EDITION") or None)
    output = args.output or settings.output_dir
    try:
        driver.run(params, output)
    except OsgetError as exc:
        log("ERROR", str(exc))
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="osget", description="Operating system image catalog and builder")
    parser.add_argument("--catalog", type=Path, default=None, help="Catalog file (default: $OSGET_CATALOG)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List operating systems in the catalog")
    p_list.add_argument("--arch", help="Only show releases for this arch (x86_64, aarch64, arm64, amd64, ...)")

    p_show = sub.add_parser("show", help="Show every release of one operating system")
    p_show.add_argument("os")

    p_build = sub.add_parser("build", help="Download or build one release")
    p_build.add_argument("os")
    p_build.add_argument("--release")
    p_build.add_argument("--edition")
    p_build.add_argument("--arch")
    p_build.add_argument("--guest-os", dest="guest_os")
    p_build.add_argument("--output-dir", dest="output_dir", type=Path, help="Where build drivers place images")

    p_validate = sub.add_parser("validate", help="Validate a catalog document")
    p_validate.add_argument("path", nargs="?", type=Path)
    p_validate.add_argument("--check-urls", action="store_true", help="Also check Web URL reachability")

    p_publish = sub.add_parser("publish", help="Write the sorted catalog as JSON with gzip and zstd copies")
    p_publish.add_argument("path", nargs="?", type=Path)
    p_publish.add_argument("--output-dir", dest="output_dir", type=Path, required=True)
    p_publish.add_argument("--name", default="catalog")
    p_publish.add_argument("--check-urls", action="store_true", help="Drop releases with unreachable URLs")

    p_driver = sub.add_parser("driver", help="Run a Build Driver directly")
    p_driver.add_argument("family")
    p_driver.add_argument("--arch")
    p_driver.add_argument("--release")
    p_driver.add_argument("--edition")
    p_driver.add_argument("--output", type=Path, help="Output directory (default: $OUTPUT_DIR)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings().with_overrides(catalog_path=args.catalog)
        if args.command == "list":
            return list_catalog(settings, args.arch)
        if args.command == "show":
            return show_os(settings, args.os)
        if args.command == "build":
            return build_os(settings, args)
        if args.command == "validate":
            return validate_catalog(settings, args.path, args.check_urls)
        if args.command == "publish":
            publish(args.path or settings.catalog_path, args.output_dir, args.name, args.check_urls)
            return 0
        return run_driver(settings, args)
    except OsgetError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        traceback.print_exc()
        return 1
