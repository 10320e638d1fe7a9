"""Custom exceptions for osget."""

from __future__ import annotations

from typing import Optional


class OsgetError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class ConfigError(OsgetError):
    """Invalid environment or command-line configuration."""


class CatalogError(OsgetError):
    """The catalog document is malformed or violates an invariant."""


class BuildError(OsgetError):
    """Terminal failure of one build attempt.

    ``kind`` names the failure in the error taxonomy. ``transient`` tells
    automation whether re-invoking the build later may succeed; nothing in
    osget retries on its own.
    """

    kind = "BuildError"
    transient = False

    def __init__(
        self,
        message: str,
        *,
        os_id: Optional[str] = None,
        release: Optional[str] = None,
        artifact: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.os_id = os_id
        self.release = release
        self.artifact = artifact

    def annotate(
        self,
        *,
        os_id: Optional[str] = None,
        release: Optional[str] = None,
        artifact: Optional[str] = None,
    ) -> "BuildError":
        """Fill in context that was unknown where the error was raised."""
        self.os_id = self.os_id or os_id
        self.release = self.release or release
        self.artifact = self.artifact or artifact
        return self

    def __str__(self) -> str:
        context = []
        if self.os_id:
            context.append(f"os={self.os_id}")
        if self.release:
            context.append(f"release={self.release}")
        if self.artifact:
            context.append(f"artifact={self.artifact}")
        suffix = f" [{', '.join(context)}]" if context else ""
        return f"{self.kind}: {self.message}{suffix}"


class UnknownOS(BuildError):
    kind = "UnknownOS"


class ReleaseNotFound(BuildError):
    kind = "ReleaseNotFound"


class ChecksumMismatch(BuildError):
    kind = "ChecksumMismatch"


class ArchiveError(BuildError):
    kind = "ArchiveError"


class MissingLocalFile(BuildError):
    kind = "MissingLocalFile"


class ManualResolutionRequired(BuildError):
    kind = "ManualResolutionRequired"


class UnsupportedParameter(BuildError):
    kind = "UnsupportedParameter"


class SourceNotFound(BuildError):
    kind = "SourceNotFound"
    transient = True


class DownloadFailed(BuildError):
    kind = "DownloadFailed"
    transient = True


class AssemblyFailed(BuildError):
    kind = "AssemblyFailed"


class OutputMissing(BuildError):
    kind = "OutputMissing"


class MissingOutputMount(BuildError):
    kind = "MissingOutputMount"


class Cancelled(BuildError):
    kind = "Cancelled"
