"""Pick a release from the catalog and turn it into a file on disk."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from osget.catalog import Catalog
from osget.config import Settings
from osget.drivers import CooldownPolicy, DriverParameters, get_driver
from osget.exceptions import BuildError, OsgetError, ReleaseNotFound, UnknownOS
from osget.models import CustomSource, OSEntry, ReleaseRecord, ReleaseSelector
from osget.resolver import Resolver
from osget.utils import ensure_directory, log, normalize_arch, safe_name_component


@dataclass(frozen=True)
class BuildOutcome:
    """Result of one request in :meth:`Orchestrator.build_many`."""

    os_id: str
    selector: ReleaseSelector
    path: Optional[Path] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Orchestrator:
    def __init__(
        self,
        catalog: Catalog,
        settings: Settings,
        resolver: Optional[Resolver] = None,
        cooldown: Optional[CooldownPolicy] = None,
    ) -> None:
        self.catalog = catalog
        self.settings = settings
        self.resolver = resolver or Resolver(timeout=settings.download_timeout)
        self.cooldown = cooldown

    def select_release(self, os_id: str, selector: ReleaseSelector) -> Tuple[OSEntry, ReleaseRecord]:
        entry = self.catalog.get(os_id)
        if entry is None:
            raise UnknownOS(f"'{os_id}' is not in the catalog", os_id=os_id)
        matches = [record for record in entry.releases if selector.matches(record)]
        if not matches:
            raise ReleaseNotFound(f"No release of {entry.pretty_name} matches {selector.describe()}", os_id=os_id)
        if len(matches) > 1:
            candidates = "; ".join(record.label for record in matches)
            raise ReleaseNotFound(
                f"{len(matches)} releases of {entry.pretty_name} match {selector.describe()}: {candidates}",
                os_id=os_id,
            )
        return entry, matches[0]

    def work_dir_for(self, os_id: str, record: ReleaseRecord) -> Path:
        name = safe_name_component(record.release or "default")
        if record.edition:
            name += f"-{safe_name_component(record.edition)}"
        name += f"-{normalize_arch(record.arch)}"
        return self.settings.work_dir / safe_name_component(os_id) / name

    def resolve_release(self, os_id: str, selector: ReleaseSelector) -> List[Path]:
        """Resolve every artifact of the selected release, in catalog order."""
        _, record = self.select_release(os_id, selector)
        return self._resolve_record(os_id, record, skip_custom=False)

    def build(self, os_id: str, selector: ReleaseSelector, output_dir: Optional[Path] = None) -> Path:
        entry, record = self.select_release(os_id, selector)
        log("INFO", f"Building {entry.pretty_name} ({record.label})")

        driver = get_driver(os_id, self.settings, **self._driver_kwargs()) if record.is_build_release else None
        if driver is None:
            paths = self._resolve_record(os_id, record, skip_custom=False)
            if not paths:
                raise ReleaseNotFound(f"{entry.pretty_name} {record.label} lists no artifacts", os_id=os_id)
            log("SUCCESS", f"{entry.pretty_name} ready at {paths[0]}")
            return paths[0]

        inputs = self._resolve_record(os_id, record, skip_custom=True)
        params = DriverParameters(
            arch=normalize_arch(record.arch),
            release=record.release or "",
            edition=record.edition,
            inputs=tuple(inputs),
        )
        target = Path(output_dir) if output_dir is not None else self.settings.output_dir
        try:
            return driver.run(params, target)
        except BuildError as exc:
            exc.annotate(os_id=os_id, release=record.release)
            raise

    def build_many(
        self,
        requests: Iterable[Tuple[str, ReleaseSelector]],
        max_parallel: int = 2,
        output_dir: Optional[Path] = None,
    ) -> List[BuildOutcome]:
        """Run independent builds side by side; failures are reported, not raised."""
        requests = list(requests)

        def _one(request: Tuple[str, ReleaseSelector]) -> BuildOutcome:
            os_id, selector = request
            try:
                return BuildOutcome(os_id, selector, path=self.build(os_id, selector, output_dir))
            except (OsgetError, OSError) as exc:
                log("ERROR", f"{os_id}: {exc}")
                return BuildOutcome(os_id, selector, error=exc)

        with ThreadPoolExecutor(max_workers=max(1, max_parallel), thread_name_prefix="osget-build") as executor:
            return list(executor.map(_one, requests))

    def _driver_kwargs(self) -> dict:
        kwargs = {"resolver": self.resolver}
        if self.cooldown is not None:
            kwargs["cooldown"] = self.cooldown
        return kwargs

    def _resolve_record(self, os_id: str, record: ReleaseRecord, skip_custom: bool) -> List[Path]:
        dest = self.work_dir_for(os_id, record)
        ensure_directory(dest)
        paths: List[Path] = []
        for kind, artifact in record.artifacts():
            if skip_custom and isinstance(artifact.source, CustomSource):
                log("DEBUG", f"{os_id}: {kind} artifact is produced by the build driver")
                continue
            try:
                paths.append(self.resolver.resolve_artifact(artifact, dest))
            except BuildError as exc:
                exc.annotate(os_id=os_id, release=record.release, artifact=artifact.describe())
                raise
        return paths
