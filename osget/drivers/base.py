"""Build Driver state machine shared by every OS family.

A driver turns ``{arch, release, edition}`` plus an output directory into
exactly one image file. Families fill in the hooks; the base class owns the
state transitions, cancellation, the bounded download pool and the output
contract.
"""

from __future__ import annotations

import enum
import errno
import os
import shutil
import tempfile
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Type

from osget.config import Settings
from osget.constants import BUILD_RELEASE_SUFFIX, PART_SUFFIX
from osget.exceptions import (
    AssemblyFailed,
    BuildError,
    Cancelled,
    ChecksumMismatch,
    DownloadFailed,
    MissingOutputMount,
    OutputMissing,
    SourceNotFound,
    UnsupportedParameter,
)
from osget.models import WebSource
from osget.resolver import Resolver
from osget.utils import ensure_directory, log, relax_permissions, run, safe_name_component


class DriverState(enum.Enum):
    PARAMETERS_RESOLVED = "ParametersResolved"
    SOURCE_IDENTIFIED = "SourceIdentified"
    DOWNLOADING = "Downloading"
    ASSEMBLING = "Assembling"
    NORMALIZING = "Normalizing"
    DONE = "Done"
    ABORTED = "Aborted"


@dataclass(frozen=True)
class DriverParameters:
    arch: str
    release: str
    edition: Optional[str] = None
    inputs: Tuple[Path, ...] = ()

    @property
    def release_name(self) -> str:
        """Release without the catalog's ``-build`` marker."""
        if self.release.endswith(BUILD_RELEASE_SUFFIX):
            return self.release[: -len(BUILD_RELEASE_SUFFIX)]
        return self.release


@dataclass(frozen=True)
class DownloadItem:
    url: str
    file_name: str
    checksum: Optional[str] = None


@dataclass
class SourcePlan:
    """What source identification found: an opaque id and the files to fetch."""

    source_id: str
    items: List[DownloadItem] = field(default_factory=list)


@dataclass
class CooldownPolicy:
    delay: float = 5.0
    sleep: Callable[[float], None] = time.sleep

    def wait(self, reason: str) -> None:
        if self.delay <= 0:
            return
        log("INFO", f"Waiting {self.delay:g}s before {reason} (vendor rate limit)")
        self.sleep(self.delay)


class CompletionLedger:
    """Append-only record of finished downloads, shared by worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done: List[Tuple[str, Path]] = []

    def record(self, name: str, path: Path) -> None:
        with self._lock:
            self._done.append((name, path))

    def completed(self) -> Tuple[Tuple[str, Path], ...]:
        with self._lock:
            return tuple(self._done)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return any(done == name for done, _ in self._done)

    def __len__(self) -> int:
        with self._lock:
            return len(self._done)


_REGISTRY: Dict[str, Type["BuildDriver"]] = {}


def register_driver(cls: Type["BuildDriver"]) -> Type["BuildDriver"]:
    if not cls.family:
        raise ValueError(f"{cls.__name__} must set a family")
    _REGISTRY[cls.family] = cls
    return cls


def get_driver_class(family: str) -> Optional[Type["BuildDriver"]]:
    return _REGISTRY.get(family)


def registered_families() -> List[str]:
    return sorted(_REGISTRY)


def get_driver(os_id: str, settings: Settings, **kwargs) -> Optional["BuildDriver"]:
    """Instantiate the driver registered for ``os_id``, if any."""
    cls = _REGISTRY.get(os_id)
    return cls(settings, **kwargs) if cls else None


class BuildDriver:
    family = ""
    output_extension = "iso"
    # Names left out when the tooling is copied into a build workspace:
    # downloads and images from earlier runs.
    workspace_excludes: Tuple[str, ...] = ()

    def __init__(
        self,
        settings: Settings,
        *,
        cooldown: Optional[CooldownPolicy] = None,
        resolver: Optional[Resolver] = None,
    ) -> None:
        self.settings = settings
        self.cooldown = cooldown or CooldownPolicy(settings.vendor_cooldown)
        self.resolver = resolver or Resolver(timeout=settings.download_timeout, progress=False)
        self.workers = settings.download_workers
        self.state: Optional[DriverState] = None
        self.abort_reason: Optional[str] = None
        self.history: List[DriverState] = []
        self.ledger = CompletionLedger()
        self._cancel = threading.Event()
        self._work_dir: Optional[Path] = None

    @property
    def work_dir(self) -> Path:
        """Scratch directory private to this run."""
        if self._work_dir is None:
            raise RuntimeError(f"{self.family}: no workspace before the source is identified")
        return self._work_dir

    # ── Hooks ────────────────────────────────────────────────────────

    @property
    def tooling_dir(self) -> Optional[Path]:
        """Directory holding the assembly tooling, copied into each workspace."""
        return None

    def resolve_parameters(self, params: DriverParameters) -> Dict[str, str]:
        """Map parameters to family tokens; raise ``UnsupportedParameter``."""
        raise NotImplementedError

    def identify_source(self, tokens: Dict[str, str]) -> Optional[SourcePlan]:
        return SourcePlan(source_id="local")

    def download_dir(self) -> Path:
        return self.work_dir / "downloads"

    def assemble_command(self, tokens: Dict[str, str]) -> List[str]:
        raise NotImplementedError

    def locate_output(self) -> Optional[Path]:
        raise NotImplementedError

    def output_name(self, params: DriverParameters) -> str:
        parts = [self.family, safe_name_component(params.release_name)]
        if params.edition:
            parts.append(safe_name_component(params.edition))
        return "-".join(parts) + f".{self.output_extension}"

    # ── State machine ────────────────────────────────────────────────

    def cancel(self) -> None:
        """Stop at the next state boundary."""
        self._cancel.set()

    def run(self, params: DriverParameters, output_dir: Optional[Path]) -> Path:
        if self.state is not None:
            raise RuntimeError("Build drivers are single-use; create a new instance per build")
        try:
            output_dir = self._check_output_mount(output_dir)
            tokens = self.resolve_parameters(params)
            self._enter(DriverState.PARAMETERS_RESOLVED)
            log("INFO", f"{self.family}: parameters {tokens}")
            if params.inputs:
                log("DEBUG", f"{self.family}: resolved inputs {[str(p) for p in params.inputs]}")

            self._checkpoint()
            plan = self.identify_source(tokens)
            if plan is None or not plan.source_id:
                raise SourceNotFound(f"{self.family}: no source found for {tokens}")
            self._enter(DriverState.SOURCE_IDENTIFIED)
            log("INFO", f"{self.family}: source {plan.source_id} ({len(plan.items)} file(s))")
            self._prepare_workspace(params)

            self._checkpoint()
            self._enter(DriverState.DOWNLOADING)
            self._download_all(plan.items)

            self._checkpoint()
            self._enter(DriverState.ASSEMBLING)
            self._assemble(tokens)

            self._checkpoint()
            self._enter(DriverState.NORMALIZING)
            final = self._normalize(params, output_dir)

            self._enter(DriverState.DONE)
            log("SUCCESS", f"{self.family}: wrote {final}")
            shutil.rmtree(self.work_dir, ignore_errors=True)
            return final
        except BuildError as exc:
            self._abort(exc.kind)
            exc.annotate(os_id=self.family, release=params.release)
            raise
        except Exception as exc:
            self._abort(type(exc).__name__)
            raise

    def _enter(self, state: DriverState) -> None:
        log("DEBUG", f"{self.family}: {self.state.value if self.state else 'Start'} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _abort(self, reason: str) -> None:
        self.abort_reason = reason
        self._enter(DriverState.ABORTED)
        log("ERROR", f"{self.family}: aborted ({reason})")
        if self._work_dir is not None:
            log("INFO", f"{self.family}: workspace kept at {self._work_dir}")

    def _checkpoint(self) -> None:
        if self._cancel.is_set():
            raise Cancelled(f"{self.family}: build cancelled")

    def _prepare_workspace(self, params: DriverParameters) -> None:
        root = self.settings.work_dir / "builds"
        prefix = f"{self.family}-{safe_name_component(params.release_name)}-"
        tooling = self.tooling_dir
        try:
            ensure_directory(root)
            self._work_dir = Path(tempfile.mkdtemp(prefix=prefix, dir=root))
            if tooling is None:
                return
            if not tooling.is_dir():
                log("WARN", f"{self.family}: tooling directory {tooling} not found")
                return
            log("DEBUG", f"{self.family}: copying {tooling} into {self._work_dir}")
            shutil.copytree(
                tooling,
                self._work_dir,
                symlinks=True,
                ignore=shutil.ignore_patterns(*self.workspace_excludes),
                dirs_exist_ok=True,
            )
        except OSError as exc:
            raise AssemblyFailed(f"Cannot prepare workspace from {tooling}: {exc}") from exc

    def _check_output_mount(self, output_dir: Optional[Path]) -> Path:
        if output_dir is None or not Path(output_dir).is_dir():
            raise MissingOutputMount(
                f"A directory must be provided for the output (got {output_dir}); "
                "bind-mount one before invoking the driver"
            )
        return Path(output_dir)

    def _unsupported(self, name: str, value: Optional[str], choices) -> UnsupportedParameter:
        supported = ", ".join(sorted(choices))
        return UnsupportedParameter(f"Unsupported {name} '{value}' for {self.family}. Supported: {supported}")

    # ── Downloading ──────────────────────────────────────────────────

    def _download_all(self, items: List[DownloadItem]) -> None:
        if not items:
            return
        target = self.download_dir()
        ensure_directory(target)
        log("INFO", f"Downloading {len(items)} file(s) with {self.workers} worker(s) into {target}")

        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=f"{self.family}-dl")
        try:
            futures = [executor.submit(self._download_one, item, target) for item in items]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                exc = future.exception()
                if exc is not None:
                    raise exc
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
        log("SUCCESS", f"Downloaded {len(self.ledger)} file(s)")

    def _download_one(self, item: DownloadItem, target: Path) -> Path:
        if self._cancel.is_set():
            raise Cancelled(f"{self.family}: build cancelled")
        source = WebSource(url=item.url, checksum=item.checksum, file_name=item.file_name)
        try:
            path = self.resolver.resolve_web(source, target)
        except ChecksumMismatch as exc:
            raise DownloadFailed(f"{item.file_name}: {exc.message}", artifact=item.file_name) from exc
        except DownloadFailed as exc:
            exc.annotate(artifact=item.file_name)
            raise
        self.ledger.record(item.file_name, path)
        return path

    # ── Assembling / normalizing ─────────────────────────────────────

    def _assemble(self, tokens: Dict[str, str]) -> None:
        cmd = self.assemble_command(tokens)
        log("INFO", f"{self.family}: assembling image ({' '.join(cmd)})")
        try:
            result = run(cmd, check=False, cwd=self.work_dir)
        except OSError as exc:
            raise AssemblyFailed(f"Cannot run {cmd[0]} in {self.work_dir}: {exc}") from exc
        if result.returncode != 0:
            raise AssemblyFailed(f"{cmd[0]} exited with status {result.returncode}")

    def _normalize(self, params: DriverParameters, output_dir: Path) -> Path:
        produced = self.locate_output()
        if produced is None or not produced.is_file():
            raise OutputMissing(f"{self.family}: assembly finished but produced no image in {self.work_dir}")
        final = output_dir / self.output_name(params)
        try:
            relax_permissions(produced)
            _move_into_place(produced, final)
        except OSError as exc:
            raise OutputMissing(f"Could not place {produced.name} at {final}: {exc}") from exc
        return final


def _move_into_place(produced: Path, final: Path) -> None:
    """Move ``produced`` to ``final`` without ever exposing a partial file there."""
    try:
        os.replace(produced, final)
        return
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
    staging = final.with_name(final.name + PART_SUFFIX)
    try:
        shutil.copyfile(produced, staging)
        relax_permissions(staging)
        os.replace(staging, final)
    except OSError:
        staging.unlink(missing_ok=True)
        raise
    produced.unlink()
