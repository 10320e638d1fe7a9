"""Configuration loading and environment variable parsing for osget."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

from osget.constants import (
    DEFAULT_CATALOG_PATH,
    DEFAULT_ELEMENTARY_BUILD_DIR,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_UUP_CONVERTER_DIR,
    DEFAULT_WORK_DIR,
)
from osget.utils import get_env, parse_float_env, parse_int_env


@dataclass(frozen=True)
class Settings:
    catalog_path: Path = DEFAULT_CATALOG_PATH
    work_dir: Path = DEFAULT_WORK_DIR
    output_dir: Path = DEFAULT_OUTPUT_DIR
    download_workers: int = 5
    download_timeout: int = 60
    # Pause before hitting a vendor API twice in a row.
    vendor_cooldown: float = 5.0
    uup_converter_dir: Path = DEFAULT_UUP_CONVERTER_DIR
    elementary_build_dir: Path = DEFAULT_ELEMENTARY_BUILD_DIR

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **{key: value for key, value in changes.items() if value is not None})


def _path_env(name: str, default: Path) -> Path:
    raw = (get_env(name) or "").strip()
    return Path(raw).expanduser() if raw else default


def load_settings() -> Settings:
    """Read every osget setting from the environment."""
    return Settings(
        catalog_path=_path_env("OSGET_CATALOG", DEFAULT_CATALOG_PATH),
        work_dir=_path_env("OSGET_WORK_DIR", DEFAULT_WORK_DIR),
        output_dir=_path_env("OUTPUT_DIR", DEFAULT_OUTPUT_DIR),
        download_workers=parse_int_env("DOWNLOAD_WORKERS", "5", min_val=1, max_val=16),
        download_timeout=parse_int_env("DOWNLOAD_TIMEOUT", "60", min_val=1),
        vendor_cooldown=parse_float_env("VENDOR_COOLDOWN", "5"),
        uup_converter_dir=_path_env("UUP_CONVERTER_DIR", DEFAULT_UUP_CONVERTER_DIR),
        elementary_build_dir=_path_env("ELEMENTARY_BUILD_DIR", DEFAULT_ELEMENTARY_BUILD_DIR),
    )
