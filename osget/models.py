"""Data models for osget.

The catalog is built from these frozen dataclasses and is never mutated
after load; every collection is a tuple.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterator, Optional, Tuple, Union
from urllib.parse import unquote, urlparse

from osget.constants import ARTIFACT_KINDS, BUILD_RELEASE_SUFFIX, DEFAULT_ARCH, DEFAULT_GUEST_OS
from osget.utils import normalize_arch


@dataclass(frozen=True)
class WebSource:
    url: str
    checksum: Optional[str] = None
    archive_format: Optional[str] = None
    file_name: Optional[str] = None

    @property
    def url_file_name(self) -> str:
        """Last path segment of the URL, or ``download`` when there is none."""
        name = PurePosixPath(unquote(urlparse(self.url).path)).name
        return name or "download"


@dataclass(frozen=True)
class FileSource:
    file_name: str


@dataclass(frozen=True)
class CustomSource:
    """No automated way to obtain the bytes."""


Source = Union[WebSource, FileSource, CustomSource]


@dataclass(frozen=True)
class Artifact:
    source: Source
    size_bytes: Optional[int] = None
    format: Optional[str] = None

    def describe(self) -> str:
        source = self.source
        if isinstance(source, WebSource):
            return source.file_name or source.url_file_name
        if isinstance(source, FileSource):
            return source.file_name
        return "custom"


@dataclass(frozen=True)
class ReleaseRecord:
    release: Optional[str] = None
    edition: Optional[str] = None
    guest_os: str = DEFAULT_GUEST_OS
    arch: str = DEFAULT_ARCH
    iso: Tuple[Artifact, ...] = ()
    img: Tuple[Artifact, ...] = ()
    fixed_iso: Tuple[Artifact, ...] = ()
    floppy: Tuple[Artifact, ...] = ()
    disk_images: Tuple[Artifact, ...] = ()

    def artifacts(self) -> Iterator[Tuple[str, Artifact]]:
        """Yield ``(kind, artifact)`` in iso, img, fixed_iso, floppy, disk_images order."""
        for kind in ARTIFACT_KINDS:
            for artifact in getattr(self, kind):
                yield kind, artifact

    def has_artifacts(self) -> bool:
        return any(getattr(self, kind) for kind in ARTIFACT_KINDS)

    @property
    def is_build_release(self) -> bool:
        return bool(self.release and self.release.endswith(BUILD_RELEASE_SUFFIX))

    @property
    def label(self) -> str:
        parts = [self.release or "-"]
        if self.edition:
            parts.append(self.edition)
        parts.append(self.arch)
        return " ".join(parts)


@dataclass(frozen=True)
class OSEntry:
    os: str
    pretty_name: str
    homepage: Optional[str] = None
    description: Optional[str] = None
    releases: Tuple[ReleaseRecord, ...] = ()


@dataclass(frozen=True)
class ReleaseSelector:
    """Filter used by the orchestrator; unset fields match anything."""

    release: Optional[str] = None
    edition: Optional[str] = None
    arch: Optional[str] = None
    guest_os: Optional[str] = None

    def matches(self, record: ReleaseRecord) -> bool:
        if self.release is not None and record.release != self.release:
            return False
        if self.edition is not None and record.edition != self.edition:
            return False
        if self.arch is not None and normalize_arch(record.arch) != normalize_arch(self.arch):
            return False
        if self.guest_os is not None and record.guest_os.lower() != self.guest_os.lower():
            return False
        return True

    def describe(self) -> str:
        fields = [
            f"{name}={value}"
            for name, value in (
                ("release", self.release),
                ("edition", self.edition),
                ("arch", self.arch),
                ("guest_os", self.guest_os),
            )
            if value is not None
        ]
        return ", ".join(fields) or "any release"
