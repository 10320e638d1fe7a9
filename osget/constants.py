"""Global constants and path configuration for osget."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_CATALOG_PATH = Path("/config/catalog.json")
DEFAULT_WORK_DIR = Path("/var/cache/osget")
DEFAULT_OUTPUT_DIR = Path("/output")
DEFAULT_UUP_CONVERTER_DIR = Path("/build/uupdump_converter")
DEFAULT_ELEMENTARY_BUILD_DIR = Path("/build/os")

TRUTHY = {"1", "true", "yes", "on"}
USER_AGENT = "osget/1.0"

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in {"1", "true", "yes", "on"}

DEFAULT_GUEST_OS = "Linux"
DEFAULT_ARCH = "x86_64"

# Values seen in published catalogs, compared case-insensitively. Anything
# else is accepted on read.
KNOWN_GUEST_OS = {
    "linux",
    "linux_old",
    "windows",
    "windows_server",
    "macos",
    "freebsd",
    "ghostbsd",
    "dragonflybsd",
    "gnu_hurd",
    "haiku",
    "solaris",
    "kolibrios",
    "reactos",
    "freedos",
    "batocera",
}
KNOWN_ARCHES = {"x86_64", "aarch64", "riscv64"}
KNOWN_DISK_FORMATS = {"qcow2", "raw", "qed", "vdi", "vpc", "vhdx", "vmdk"}

ARCH_ALIASES = {
    "amd64": "x86_64",
    "arm64": "aarch64",
    "riscv": "riscv64",
}

ARTIFACT_KINDS = ("iso", "img", "fixed_iso", "floppy", "disk_images")
WIRE_ARTIFACT_KINDS = {
    "iso": "iso",
    "img": "img",
    "fixed_iso": "fixedIso",
    "floppy": "floppy",
    "disk_images": "diskImages",
}

# Releases produced by a Build Driver rather than downloaded directly.
BUILD_RELEASE_SUFFIX = "-build"

CHECKSUM_ALGORITHMS = ("md5", "sha1", "sha224", "sha256", "sha384", "sha512")
CHECKSUM_HEX_LENGTHS = {
    32: "md5",
    40: "sha1",
    56: "sha224",
    64: "sha256",
    96: "sha384",
    128: "sha512",
}
HEX_DIGEST_RE = re.compile(r"^[0-9a-fA-F]+$")

SINGLE_STREAM_FORMATS = {"gz": ".gz", "xz": ".xz", "bz2": ".bz2"}
CONTAINER_FORMATS = {"zip", "tar", "tar.gz", "tar.xz", "tar.bz2", "7z"}
ARCHIVE_FORMATS = set(SINGLE_STREAM_FORMATS) | CONTAINER_FORMATS

PART_SUFFIX = ".part"
DOWNLOAD_CHUNK_SIZE = 1024 * 256  # 256 KiB

# Hosts that throttle aggressively get their own concurrency cap when
# URLs are checked during publishing.
URL_CHECK_CONCURRENCY = 150
URL_CHECK_HOST_LIMITS = {"sourceforge.net": 5}

OUTPUT_FILE_MODE = 0o666
