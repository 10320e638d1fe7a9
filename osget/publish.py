"""Prepare a catalog for publication: URL reachability, ordering, output files."""

from __future__ import annotations

import functools
import gzip
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import requests
import zstandard

from osget.catalog import dump_catalog, parse_catalog, read_catalog_document, validate_entries
from osget.constants import URL_CHECK_CONCURRENCY, URL_CHECK_HOST_LIMITS, USER_AGENT
from osget.exceptions import CatalogError
from osget.models import OSEntry, ReleaseRecord, WebSource
from osget.utils import ensure_directory, log

REQUEST_TIMEOUT = 30
ZSTD_LEVEL = 22

UrlChecker = Callable[[str], Optional[str]]


# ── URL reachability ─────────────────────────────────────────────────


def check_url(url: str) -> Optional[str]:
    """Return an error string if the URL is unreachable, else None."""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT

    try:
        resp = session.head(url, timeout=REQUEST_TIMEOUT, allow_redirects=True)
        # Rate limited means the server is there.
        if resp.status_code < 400 or resp.status_code == 429:
            return None
        # Some servers reject HEAD; fall back to GET with streaming
        if resp.status_code in (403, 405):
            resp = session.get(url, timeout=REQUEST_TIMEOUT, allow_redirects=True, stream=True)
            resp.close()
            if resp.status_code < 400 or resp.status_code == 429:
                return None
        return f"HTTP {resp.status_code} for {url}"
    except requests.RequestException as exc:
        return f"{exc.__class__.__name__}: {exc} for {url}"
    finally:
        session.close()


def release_urls(record: ReleaseRecord) -> List[str]:
    return [artifact.source.url for _, artifact in record.artifacts() if isinstance(artifact.source, WebSource)]


def _host_limit(url: str) -> Optional[str]:
    host = (urlparse(url).hostname or "").lower()
    for limited in URL_CHECK_HOST_LIMITS:
        if host == limited or host.endswith("." + limited):
            return limited
    return None


def check_urls(
    urls: Iterable[str],
    checker: UrlChecker = check_url,
    concurrency: int = URL_CHECK_CONCURRENCY,
) -> Dict[str, Optional[str]]:
    """Check each distinct URL once, with per-host caps for throttling hosts."""
    unique = sorted(set(urls))
    if not unique:
        return {}
    host_slots = {host: threading.Semaphore(limit) for host, limit in URL_CHECK_HOST_LIMITS.items()}

    def _check(url: str) -> Tuple[str, Optional[str]]:
        limited = _host_limit(url)
        if limited is None:
            return url, checker(url)
        with host_slots[limited]:
            return url, checker(url)

    with ThreadPoolExecutor(max_workers=min(concurrency, len(unique)), thread_name_prefix="osget-url") as executor:
        return dict(executor.map(_check, unique))


def url_errors(entries: Iterable[OSEntry], checker: UrlChecker = check_url) -> List[str]:
    """Describe every unreachable Web URL in the catalog."""
    located: List[Tuple[str, str]] = []
    for entry in entries:
        for record in entry.releases:
            for url in release_urls(record):
                located.append((f"[{entry.os}] {record.label}", url))
    results = check_urls((url for _, url in located), checker)
    return [f"{where} {results[url]}" for where, url in located if results[url]]


def prune_unreachable(entries: Iterable[OSEntry], checker: UrlChecker = check_url) -> List[OSEntry]:
    """Drop releases with an unreachable Web URL; entries left empty are dropped too."""
    entries = list(entries)
    results = check_urls(
        (url for entry in entries for record in entry.releases for url in release_urls(record)),
        checker,
    )
    pruned: List[OSEntry] = []
    for entry in entries:
        kept = []
        for record in entry.releases:
            broken = [results[url] for url in release_urls(record) if results[url]]
            if broken:
                log("WARN", f"[{entry.os}] dropping {record.label}: {broken[0]}")
                continue
            kept.append(record)
        if entry.releases and not kept:
            log("WARN", f"[{entry.os}] dropping entry, no reachable releases")
            continue
        pruned.append(replace(entry, releases=tuple(kept)))
    return pruned


# ── Ordering ─────────────────────────────────────────────────────────


def compare_releases(a: ReleaseRecord, b: ReleaseRecord) -> int:
    """Order two records newest first.

    Dotted numeric components (a leading ``v`` is ignored) are compared
    pairwise until one side stops being a number. Ties then fall back to
    the release strings in descending order, so ``rolling`` lands before
    ``24.04``, and finally to the edition in ascending order. A record
    without a release sorts last; a missing edition sorts first.
    """
    if a.release is not None and b.release is not None:
        for part_a, part_b in zip(a.release.lstrip("v").split("."), b.release.lstrip("v").split(".")):
            if not (_is_number(part_a) and _is_number(part_b)):
                break
            if int(part_a) != int(part_b):
                return -1 if int(part_a) > int(part_b) else 1
    result = _compare_optional(b.release, a.release)
    if result:
        return result
    return _compare_optional(a.edition, b.edition)


def _is_number(part: str) -> bool:
    return part.isascii() and part.isdigit()


def _compare_optional(a: Optional[str], b: Optional[str]) -> int:
    # A missing value orders before any present one.
    if a == b:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    return -1 if a < b else 1


def sort_releases(releases: Iterable[ReleaseRecord]) -> Tuple[ReleaseRecord, ...]:
    return tuple(sorted(releases, key=functools.cmp_to_key(compare_releases)))


def sort_catalog(entries: Iterable[OSEntry]) -> List[OSEntry]:
    return [replace(entry, releases=sort_releases(entry.releases)) for entry in sorted(entries, key=lambda e: e.os)]


# ── Output ───────────────────────────────────────────────────────────


def write_catalog(entries: Iterable[OSEntry], output_dir: Path, name: str) -> Tuple[Path, Path, Path]:
    """Write ``<name>.json`` (compact) plus its ``.gz`` and ``.zst`` copies into ``output_dir``."""
    ensure_directory(output_dir)
    payload = dump_catalog(entries).encode("utf-8")
    json_path = output_dir / f"{name}.json"
    gz_path = output_dir / f"{name}.json.gz"
    zst_path = output_dir / f"{name}.json.zst"
    json_path.write_bytes(payload)
    with gzip.GzipFile(gz_path, "wb", compresslevel=9, mtime=0) as f:
        f.write(payload)
    zst_path.write_bytes(zstandard.ZstdCompressor(level=ZSTD_LEVEL).compress(payload))
    return json_path, gz_path, zst_path


def publish(
    source: Path,
    output_dir: Path,
    name: str = "catalog",
    check_reachability: bool = False,
    checker: UrlChecker = check_url,
) -> Tuple[Path, Path, Path]:
    entries = parse_catalog(read_catalog_document(source))
    errors = validate_entries(entries)
    if errors:
        listed = "\n  ".join(errors)
        raise CatalogError(f"Catalog validation failed with {len(errors)} error(s):\n  {listed}")
    log("INFO", f"Loaded {len(entries)} operating systems from {source}")

    if check_reachability:
        log("INFO", "Checking URL reachability")
        entries = prune_unreachable(entries, checker)

    written = write_catalog(sort_catalog(entries), output_dir, name)
    log("SUCCESS", "Published " + ", ".join(str(path) for path in written))
    return written
