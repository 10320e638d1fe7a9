"""Checksum parsing and verification for osget."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Dict, Tuple

from osget.constants import CHECKSUM_ALGORITHMS, CHECKSUM_HEX_LENGTHS, HEX_DIGEST_RE

BSD_SHA256_RE = re.compile(r"SHA256 \(([^)]+)\) = ([0-9a-fA-F]+)")
BSD_MD5_RE = re.compile(r"MD5 \(([^)]+)\) = ([0-9a-fA-F]+)")

CHECKSUM_LIST_STYLES = ("whitespace", "bsd-sha256", "bsd-md5")


def parse_checksum(value: str) -> Tuple[str, str]:
    """Split an ``algo:hexdigest`` string into its parts.

    Untagged digests are accepted and the algorithm is inferred from the
    digest length. Raises ``ValueError`` on anything else.
    """
    raw = value.strip()
    if ":" in raw:
        algo, digest = raw.split(":", 1)
        algo = algo.strip().lower().replace("-", "")
        digest = digest.strip()
        if algo not in CHECKSUM_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm '{algo}'")
        expected_len = next(length for length, name in CHECKSUM_HEX_LENGTHS.items() if name == algo)
        if len(digest) != expected_len or not HEX_DIGEST_RE.match(digest):
            raise ValueError(f"Malformed {algo} digest '{digest}'")
        return algo, digest.lower()

    if not HEX_DIGEST_RE.match(raw):
        raise ValueError(f"Malformed checksum '{value}'")
    algo = CHECKSUM_HEX_LENGTHS.get(len(raw))
    if algo is None:
        raise ValueError(f"Cannot infer checksum algorithm from a {len(raw)}-character digest")
    return algo, raw.lower()


def file_digest(path: Path, algo: str) -> str:
    hasher = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify_file(path: Path, checksum: str) -> Tuple[bool, str]:
    """Return ``(matches, actual_digest)`` for ``path`` against ``checksum``."""
    algo, expected = parse_checksum(checksum)
    actual = file_digest(path, algo)
    return actual == expected, actual


def parse_checksum_list(text: str, style: str = "whitespace") -> Dict[str, str]:
    """Map file names to digests from a vendor checksum file.

    ``whitespace`` reads ``<digest> <file>`` lines (GNU coreutils output, with
    the optional ``*`` binary marker); ``bsd-sha256`` and ``bsd-md5`` read
    ``SHA256 (file) = digest`` style lines.
    """
    if style == "bsd-sha256":
        return {m.group(1): m.group(2) for m in BSD_SHA256_RE.finditer(text)}
    if style == "bsd-md5":
        return {m.group(1): m.group(2) for m in BSD_MD5_RE.finditer(text)}
    if style != "whitespace":
        raise ValueError(f"Unknown checksum list style '{style}'. Supported: {', '.join(CHECKSUM_LIST_STYLES)}")

    result: Dict[str, str] = {}
    for line in text.splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) != 2:
            continue
        digest, name = parts
        if not HEX_DIGEST_RE.match(digest):
            continue
        result[name.strip().lstrip("*")] = digest
    return result
