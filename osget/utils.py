"""Utility functions for osget."""

from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path
from typing import List, Optional

from osget.constants import _LOG_VERBOSE, ARCH_ALIASES, OUTPUT_FILE_MODE, TRUTHY
from osget.exceptions import ConfigError


def log(level: str, message: str) -> None:
    """Lightweight structured logging with coloured level tags."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ConfigError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ConfigError(f"{name} must be <= {max_val} (got {value})")
    return value


def parse_float_env(name: str, default: str, min_val: float = 0.0) -> float:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got '{raw}')")
    if value < min_val:
        raise ConfigError(f"{name} must be >= {min_val} (got {value})")
    return value


def normalize_arch(arch: str) -> str:
    lowered = arch.strip().lower()
    return ARCH_ALIASES.get(lowered, lowered)


def safe_name_component(value: str) -> str:
    """Turn a release/edition label into a filename component.

    Spaces become underscores and parentheses are dropped, so
    ``"Chinese (Simplified)"`` becomes ``"Chinese_Simplified"``.
    """
    cleaned = value.replace(" ", "_")
    cleaned = re.sub(r"[()]", "", cleaned)
    return re.sub(r"[^0-9A-Za-z._+-]", "-", cleaned)


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def relax_permissions(path: Path) -> None:
    """Make an output artifact world readable and writable."""
    os.chmod(path, OUTPUT_FILE_MODE)


def format_size(num_bytes: int) -> str:
    return f"{num_bytes / (1024 * 1024):.1f} MiB"


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
