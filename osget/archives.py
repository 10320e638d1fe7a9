"""Archive extraction for resolved downloads."""

from __future__ import annotations

import bz2
import gzip
import lzma
import os
import shutil
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import List, Optional

from osget.constants import ARCHIVE_FORMATS, PART_SUFFIX, SINGLE_STREAM_FORMATS
from osget.exceptions import ArchiveError
from osget.utils import log, run

_STREAM_OPENERS = {
    "gz": gzip.open,
    "xz": lzma.open,
    "bz2": bz2.open,
}

_TAR_MODES = {
    "tar": "r:",
    "tar.gz": "r:gz",
    "tar.xz": "r:xz",
    "tar.bz2": "r:bz2",
}

_DECODE_ERRORS = (OSError, EOFError, lzma.LZMAError, zlib.error, tarfile.TarError, zipfile.BadZipFile)


def stream_member_name(archive_path: Path, archive_format: str) -> str:
    """Name of the payload of a single-stream archive (``disk.raw.xz`` -> ``disk.raw``)."""
    suffix = SINGLE_STREAM_FORMATS[archive_format]
    name = archive_path.name
    if name.lower().endswith(suffix):
        return name[: -len(suffix)] or archive_path.stem
    return archive_path.stem if archive_path.suffix else f"{name}.out"


def extract_archive(
    archive_path: Path,
    archive_format: str,
    dest_dir: Path,
    member_name: Optional[str] = None,
) -> Path:
    """Unpack ``archive_path`` inside ``dest_dir`` and return the wanted member.

    For container formats the member is the one named ``member_name`` (by
    relative path or base name) or, when no name is given, the only file in
    the archive.
    """
    fmt = archive_format.lower()
    if fmt not in ARCHIVE_FORMATS:
        supported = ", ".join(sorted(ARCHIVE_FORMATS))
        raise ArchiveError(f"Unsupported archive format '{archive_format}'. Supported: {supported}")

    if fmt in SINGLE_STREAM_FORMATS:
        return _extract_stream(archive_path, fmt, dest_dir, member_name)

    scratch = Path(tempfile.mkdtemp(prefix=".extract-", dir=dest_dir))
    try:
        if fmt == "zip":
            _extract_zip(archive_path, scratch)
        elif fmt == "7z":
            _extract_7z(archive_path, scratch)
        else:
            _extract_tar(archive_path, _TAR_MODES[fmt], scratch)

        member = _select_member(scratch, member_name, archive_path)
        final = dest_dir / member.name
        os.replace(member, final)
    finally:
        shutil.rmtree(scratch, ignore_errors=True)
    log("SUCCESS", f"Extracted {final.name} from {archive_path.name}")
    return final


def _extract_stream(archive_path: Path, fmt: str, dest_dir: Path, member_name: Optional[str]) -> Path:
    final = dest_dir / (member_name or stream_member_name(archive_path, fmt))
    if final == archive_path:
        raise ArchiveError(f"Extracted name for {archive_path.name} collides with the archive itself")
    partial = final.with_name(final.name + PART_SUFFIX)
    opener = _STREAM_OPENERS[fmt]
    log("INFO", f"Decompressing {archive_path.name} ({fmt})...")
    try:
        with opener(archive_path, "rb") as src, open(partial, "wb") as dst:
            shutil.copyfileobj(src, dst, 1024 * 1024)
    except _DECODE_ERRORS as exc:
        partial.unlink(missing_ok=True)
        raise ArchiveError(f"Corrupt {fmt} stream {archive_path.name}: {exc}") from exc
    os.replace(partial, final)
    log("SUCCESS", f"Decompressed {final.name}")
    return final


def _extract_zip(archive_path: Path, scratch: Path) -> None:
    try:
        with zipfile.ZipFile(archive_path) as zf:
            bad = zf.testzip()
            if bad is not None:
                raise ArchiveError(f"Corrupt member {bad} in {archive_path.name}")
            zf.extractall(scratch)
    except _DECODE_ERRORS as exc:
        raise ArchiveError(f"Corrupt zip archive {archive_path.name}: {exc}") from exc


def _extract_tar(archive_path: Path, mode: str, scratch: Path) -> None:
    if not hasattr(tarfile, "data_filter"):
        # Extraction filters arrived in 3.9.17, 3.10.12, 3.11.4 and 3.12.
        raise ArchiveError(f"Cannot safely extract {archive_path.name}: this Python lacks tarfile extraction filters")
    try:
        with tarfile.open(archive_path, mode) as tf:
            tf.extractall(scratch, filter="data")
    except _DECODE_ERRORS as exc:
        raise ArchiveError(f"Corrupt tar archive {archive_path.name}: {exc}") from exc


def _extract_7z(archive_path: Path, scratch: Path) -> None:
    try:
        result = run(
            ["7z", "x", "-y", f"-o{scratch}", str(archive_path)],
            check=False,
            capture_output=True,
        )
    except FileNotFoundError as exc:
        raise ArchiveError("7z is required to extract .7z archives but was not found on PATH") from exc
    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip().splitlines()
        reason = detail[-1] if detail else f"exit code {result.returncode}"
        raise ArchiveError(f"7z failed to extract {archive_path.name}: {reason}")


def _select_member(scratch: Path, member_name: Optional[str], archive_path: Path) -> Path:
    members: List[Path] = sorted(p for p in scratch.rglob("*") if p.is_file())
    if not members:
        raise ArchiveError(f"Archive {archive_path.name} is empty")

    if member_name:
        wanted = member_name.strip("/")
        matches = [
            p for p in members if p.relative_to(scratch).as_posix() == wanted or p.name == Path(wanted).name
        ]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise ArchiveError(f"Member '{member_name}' not found in {archive_path.name}")
        raise ArchiveError(f"Member '{member_name}' is ambiguous in {archive_path.name}")

    if len(members) == 1:
        return members[0]
    listed = ", ".join(p.relative_to(scratch).as_posix() for p in members[:5])
    raise ArchiveError(
        f"Archive {archive_path.name} holds {len(members)} files ({listed}); a file name is required to pick one"
    )
