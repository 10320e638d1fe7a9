"""Turn source descriptors into files on local disk."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import requests

from osget.archives import extract_archive
from osget.checksums import verify_file
from osget.constants import PART_SUFFIX
from osget.download import download_file
from osget.exceptions import (
    ArchiveError,
    ChecksumMismatch,
    ManualResolutionRequired,
    MissingLocalFile,
)
from osget.models import Artifact, CustomSource, FileSource, Source, WebSource
from osget.utils import ensure_directory, format_size, log


class Resolver:
    """Fetch, verify and unpack artifacts into a destination directory.

    Nothing is written outside ``dest_dir`` and a file only appears under its
    final name once it has been fully downloaded and verified.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 60,
        progress: bool = True,
    ) -> None:
        self.session = session
        self.timeout = timeout
        self.progress = progress

    def resolve_artifact(self, artifact: Artifact, dest_dir: Path) -> Path:
        return self.resolve(artifact.source, dest_dir, size_bytes=artifact.size_bytes)

    def resolve(self, source: Source, dest_dir: Path, *, size_bytes: Optional[int] = None) -> Path:
        if isinstance(source, WebSource):
            return self.resolve_web(source, dest_dir, size_bytes=size_bytes)
        if isinstance(source, FileSource):
            return self.resolve_file(source, dest_dir)
        if isinstance(source, CustomSource):
            raise ManualResolutionRequired(
                "No automated download exists for this artifact; it must be obtained manually"
            )
        raise TypeError(f"Unhandled source descriptor {type(source).__name__}")

    def resolve_file(self, source: FileSource, dest_dir: Path, checksum: Optional[str] = None) -> Path:
        path = dest_dir / source.file_name
        if not path.is_file():
            raise MissingLocalFile(f"Expected pre-staged file {path} is missing", artifact=source.file_name)
        if checksum:
            self._verify(path, checksum, source.file_name, discard=False)
        log("INFO", f"Using local file {path}")
        return path

    def resolve_web(self, source: WebSource, dest_dir: Path, *, size_bytes: Optional[int] = None) -> Path:
        ensure_directory(dest_dir)
        archive_format = source.archive_format
        download_name = source.url_file_name if archive_format else (source.file_name or source.url_file_name)
        label = source.file_name or download_name

        cached = self._cached(source, dest_dir, download_name)
        if cached is not None:
            return cached

        partial = dest_dir / (download_name + PART_SUFFIX)
        download_file(
            source.url,
            partial,
            session=self.session,
            timeout=self.timeout,
            expected_size=None if archive_format else size_bytes,
            label=f"Downloading {label}",
            progress=self.progress,
        )
        if source.checksum:
            self._verify(partial, source.checksum, label, discard=True)

        downloaded = dest_dir / download_name
        os.replace(partial, downloaded)
        if not archive_format:
            _check_size(downloaded, size_bytes)
            return downloaded

        try:
            extracted = extract_archive(downloaded, archive_format, dest_dir, source.file_name)
        except ArchiveError as exc:
            downloaded.unlink(missing_ok=True)
            exc.annotate(artifact=label)
            raise
        if extracted != downloaded:
            downloaded.unlink(missing_ok=True)
        _check_size(extracted, size_bytes)
        return extracted

    def _cached(self, source: WebSource, dest_dir: Path, download_name: str) -> Optional[Path]:
        """Return a previously resolved file when it can be trusted."""
        if source.archive_format:
            if source.file_name and (dest_dir / source.file_name).is_file():
                existing = dest_dir / source.file_name
                log("INFO", f"Using cached extraction: {existing}")
                return existing
            return None

        existing = dest_dir / download_name
        if not existing.is_file():
            return None
        if source.checksum:
            matches, _ = verify_file(existing, source.checksum)
            if not matches:
                log("WARN", f"Cached {existing.name} fails checksum verification; downloading again")
                existing.unlink()
                return None
        log("INFO", f"Using cached download: {existing}")
        return existing

    def _verify(self, path: Path, checksum: str, label: str, discard: bool) -> None:
        try:
            matches, actual = verify_file(path, checksum)
        except ValueError as exc:
            if discard:
                path.unlink(missing_ok=True)
            raise ChecksumMismatch(f"Unusable checksum '{checksum}': {exc}", artifact=label) from exc
        if matches:
            log("SUCCESS", f"Checksum verified for {label}")
            return
        if discard:
            path.unlink(missing_ok=True)
        raise ChecksumMismatch(f"Expected {checksum} but got digest {actual}", artifact=label)


def _check_size(path: Path, size_bytes: Optional[int]) -> None:
    if size_bytes is None:
        return
    actual = path.stat().st_size
    if actual != size_bytes:
        log(
            "WARN",
            f"{path.name} is {format_size(actual)} ({actual} bytes) but the catalog lists {size_bytes} bytes",
        )
