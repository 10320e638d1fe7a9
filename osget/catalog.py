"""Catalog loading, validation and wire-format (de)serialization for osget."""

from __future__ import annotations

import functools
import gzip
import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from osget.checksums import parse_checksum
from osget.constants import (
    ARCHIVE_FORMATS,
    ARTIFACT_KINDS,
    DEFAULT_ARCH,
    DEFAULT_CATALOG_PATH,
    DEFAULT_GUEST_OS,
    KNOWN_ARCHES,
    KNOWN_DISK_FORMATS,
    KNOWN_GUEST_OS,
    WIRE_ARTIFACT_KINDS,
)
from osget.exceptions import CatalogError
from osget.models import Artifact, CustomSource, FileSource, OSEntry, ReleaseRecord, Source, WebSource
from osget.utils import log, normalize_arch


class Catalog:
    """Read-only view over every OS entry, indexed by ``os`` id."""

    def __init__(self, entries: Iterable[OSEntry]) -> None:
        self._entries: Tuple[OSEntry, ...] = tuple(entries)
        self._index: Mapping[str, OSEntry] = MappingProxyType({entry.os: entry for entry in self._entries})

    @classmethod
    def from_entries(cls, entries: Iterable[OSEntry]) -> "Catalog":
        """Build a catalog, rejecting it if validation reports any error."""
        entries = tuple(entries)
        errors = validate_entries(entries)
        if errors:
            listed = "\n  ".join(errors)
            raise CatalogError(f"Catalog validation failed with {len(errors)} error(s):\n  {listed}")
        return cls(entries)

    @property
    def entries(self) -> Tuple[OSEntry, ...]:
        return self._entries

    def get(self, os_id: str) -> Optional[OSEntry]:
        return self._index.get(os_id)

    def os_ids(self) -> List[str]:
        return sorted(self._index)

    def __contains__(self, os_id: object) -> bool:
        return os_id in self._index

    def __iter__(self) -> Iterator[OSEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# ── Parsing ──────────────────────────────────────────────────────────


def parse_catalog(data: Any) -> List[OSEntry]:
    if isinstance(data, dict) and "catalog" in data:
        data = data["catalog"]
    if not isinstance(data, list):
        raise CatalogError("Catalog document must be a list of OS entries")
    return [parse_os_entry(item, f"[{index}]") for index, item in enumerate(data)]


def parse_os_entry(data: Any, where: str = "entry") -> OSEntry:
    if not isinstance(data, dict):
        raise CatalogError(f"{where}: OS entry must be a mapping")
    os_id = _required_str(data, "os", where)
    where = f"[{os_id}]"
    releases_raw = data.get("releases") or []
    if not isinstance(releases_raw, list):
        raise CatalogError(f"{where}: 'releases' must be a list")
    return OSEntry(
        os=os_id,
        pretty_name=_required_str(data, "prettyName", where),
        homepage=_optional_str(data, "homepage", where),
        description=_optional_str(data, "description", where),
        releases=tuple(
            parse_release(item, f"{where} releases[{index}]") for index, item in enumerate(releases_raw)
        ),
    )


def parse_release(data: Any, where: str = "release") -> ReleaseRecord:
    if not isinstance(data, dict):
        raise CatalogError(f"{where}: release must be a mapping")
    artifacts: Dict[str, Tuple[Artifact, ...]] = {}
    for kind in ARTIFACT_KINDS:
        wire_key = WIRE_ARTIFACT_KINDS[kind]
        raw = data.get(wire_key) or []
        if not isinstance(raw, list):
            raise CatalogError(f"{where}: '{wire_key}' must be a list")
        artifacts[kind] = tuple(
            parse_artifact(item, f"{where} {wire_key}[{index}]") for index, item in enumerate(raw)
        )
    guest_os = _optional_str(data, "guestOS", where) or DEFAULT_GUEST_OS
    if guest_os.lower() == DEFAULT_GUEST_OS.lower():
        guest_os = DEFAULT_GUEST_OS
    arch = _optional_str(data, "arch", where) or DEFAULT_ARCH
    return ReleaseRecord(
        release=_optional_str(data, "release", where),
        edition=_optional_str(data, "edition", where),
        guest_os=guest_os,
        arch=normalize_arch(arch),
        **artifacts,
    )


def parse_artifact(data: Any, where: str = "artifact") -> Artifact:
    # Bare source descriptors are accepted as artifacts without metadata.
    if not isinstance(data, dict) or "source" not in data:
        return Artifact(source=parse_source(data, where))

    size = data.get("sizeBytes")
    if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
        raise CatalogError(f"{where}: 'sizeBytes' must be a non-negative integer")
    return Artifact(
        source=parse_source(data["source"], where),
        size_bytes=size,
        format=_optional_str(data, "format", where),
    )


def parse_source(data: Any, where: str = "source") -> Source:
    if data == "custom":
        return CustomSource()
    if not isinstance(data, dict) or len(data) != 1:
        raise CatalogError(f"{where}: source must be \"custom\" or a mapping with one of web, file, custom")

    (tag, body), = data.items()
    if tag == "custom":
        return CustomSource()
    if tag == "file":
        if isinstance(body, str):
            return FileSource(file_name=body)
        if isinstance(body, dict):
            return FileSource(file_name=_required_str(body, "fileName", where))
        raise CatalogError(f"{where}: file source must be a mapping")
    if tag == "web":
        if isinstance(body, str):
            return WebSource(url=body)
        if not isinstance(body, dict):
            raise CatalogError(f"{where}: web source must be a mapping")
        return WebSource(
            url=_required_str(body, "url", where),
            checksum=_optional_str(body, "checksum", where),
            archive_format=_optional_str(body, "archiveFormat", where),
            file_name=_optional_str(body, "fileName", where),
        )
    raise CatalogError(f"{where}: unknown source type '{tag}'")


def _required_str(data: Dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise CatalogError(f"{where}: missing required field '{key}'")
    return value


def _optional_str(data: Dict[str, Any], key: str, where: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        # YAML authors write `release: 12` unquoted.
        return str(value)
    if isinstance(value, float):
        # 22.10 would come back as "22.1".
        raise CatalogError(f"{where}: '{key}' is a number ({value!r}); quote it as a string")
    if not isinstance(value, str):
        raise CatalogError(f"{where}: '{key}' must be a string")
    return value


# ── Serialization ────────────────────────────────────────────────────


def serialize_catalog(entries: Iterable[OSEntry]) -> List[Dict[str, Any]]:
    return [serialize_os_entry(entry) for entry in entries]


def serialize_os_entry(entry: OSEntry) -> Dict[str, Any]:
    data: Dict[str, Any] = {"os": entry.os, "prettyName": entry.pretty_name}
    if entry.homepage is not None:
        data["homepage"] = entry.homepage
    if entry.description is not None:
        data["description"] = entry.description
    data["releases"] = [serialize_release(record) for record in entry.releases]
    return data


def serialize_release(record: ReleaseRecord) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if record.release is not None:
        data["release"] = record.release
    if record.edition is not None:
        data["edition"] = record.edition
    if record.guest_os.lower() != DEFAULT_GUEST_OS.lower():
        data["guestOS"] = record.guest_os
    if record.arch != DEFAULT_ARCH:
        data["arch"] = record.arch
    for kind in ARTIFACT_KINDS:
        artifacts = getattr(record, kind)
        if artifacts:
            data[WIRE_ARTIFACT_KINDS[kind]] = [serialize_artifact(a) for a in artifacts]
    return data


def serialize_artifact(artifact: Artifact) -> Dict[str, Any]:
    data: Dict[str, Any] = {"source": serialize_source(artifact.source)}
    if artifact.size_bytes is not None:
        data["sizeBytes"] = artifact.size_bytes
    if artifact.format is not None:
        data["format"] = artifact.format
    return data


def serialize_source(source: Source) -> Any:
    if isinstance(source, WebSource):
        body: Dict[str, Any] = {"url": source.url}
        if source.checksum is not None:
            body["checksum"] = source.checksum
        if source.archive_format is not None:
            body["archiveFormat"] = source.archive_format
        if source.file_name is not None:
            body["fileName"] = source.file_name
        return {"web": body}
    if isinstance(source, FileSource):
        return {"file": {"fileName": source.file_name}}
    if isinstance(source, CustomSource):
        return "custom"
    raise TypeError(f"Unhandled source descriptor {type(source).__name__}")


def dump_catalog(entries: Iterable[OSEntry], pretty: bool = False) -> str:
    payload = serialize_catalog(entries)
    if pretty:
        return json.dumps(payload, indent=2, ensure_ascii=False)
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


# ── Validation ───────────────────────────────────────────────────────


def validate_entries(entries: Iterable[OSEntry]) -> List[str]:
    """Collect every invariant violation; unknown enum values only warn."""
    errors: List[str] = []
    seen: Dict[str, int] = {}

    for entry in entries:
        key = entry.os
        if key in seen:
            errors.append(f"[{key}] duplicate os id")
        seen[key] = seen.get(key, 0) + 1
        if not entry.pretty_name.strip():
            errors.append(f"[{key}] 'prettyName' must not be empty")
        if not entry.releases:
            log("WARN", f"[{key}] has no releases")

        for index, record in enumerate(entry.releases):
            where = f"[{key}] releases[{index}] ({record.label})"
            if not record.has_artifacts():
                errors.append(f"{where} has no artifacts; at least one artifact list must be non-empty")
            if record.guest_os.lower() not in KNOWN_GUEST_OS:
                log("WARN", f"{where} unknown guestOS '{record.guest_os}'")
            if record.arch not in KNOWN_ARCHES:
                log("WARN", f"{where} unknown arch '{record.arch}'")
            for kind, artifact in record.artifacts():
                errors.extend(_validate_artifact(artifact, f"{where} {WIRE_ARTIFACT_KINDS[kind]}"))

    return errors


def _validate_artifact(artifact: Artifact, where: str) -> List[str]:
    errors: List[str] = []
    if artifact.format is not None and artifact.format not in KNOWN_DISK_FORMATS:
        log("WARN", f"{where} unknown format '{artifact.format}'")
    source = artifact.source
    if isinstance(source, WebSource):
        if not source.url.startswith(("http://", "https://")):
            errors.append(f"{where} url must start with http:// or https:// (got '{source.url}')")
        if source.checksum is not None:
            try:
                parse_checksum(source.checksum)
            except ValueError as exc:
                errors.append(f"{where} {exc}")
        if source.archive_format is not None and source.archive_format.lower() not in ARCHIVE_FORMATS:
            errors.append(f"{where} unsupported archiveFormat '{source.archive_format}'")
    elif isinstance(source, FileSource):
        if "/" in source.file_name or source.file_name in ("", ".", ".."):
            errors.append(f"{where} fileName '{source.file_name}' must be a plain file name")
    return errors


# ── Loading ──────────────────────────────────────────────────────────


def read_catalog_document(path: Path) -> Any:
    if not path.exists():
        raise CatalogError(f"Catalog file missing: {path}")
    name = path.name.lower()
    try:
        if name.endswith(".gz"):
            with gzip.open(path, "rt", encoding="utf-8") as f:
                text = f.read()
            name = name[: -len(".gz")]
        else:
            text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CatalogError(f"Cannot read catalog {path}: {exc}") from exc

    try:
        if name.endswith((".yaml", ".yml")):
            return yaml.safe_load(text)
        return json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise CatalogError(f"Catalog {path} is not valid: {exc}") from exc


def load_catalog(path: Path) -> Catalog:
    catalog = Catalog.from_entries(parse_catalog(read_catalog_document(path)))
    releases = sum(len(entry.releases) for entry in catalog)
    log("DEBUG", f"Loaded catalog {path}: {len(catalog)} operating systems, {releases} releases")
    return catalog


@functools.lru_cache(maxsize=None)
def get_catalog(path: Path = DEFAULT_CATALOG_PATH) -> Catalog:
    """Load the catalog once per process and share it between builds."""
    return load_catalog(path)
