"""osget package."""

__all__ = [
    "archives",
    "catalog",
    "checksums",
    "cli",
    "config",
    "constants",
    "download",
    "drivers",
    "exceptions",
    "models",
    "orchestrator",
    "publish",
    "resolver",
    "utils",
]
