"""Build Drivers, registered by OS family."""

from osget.drivers.base import (
    BuildDriver,
    CompletionLedger,
    CooldownPolicy,
    DownloadItem,
    DriverParameters,
    DriverState,
    SourcePlan,
    get_driver,
    get_driver_class,
    register_driver,
    registered_families,
)
from osget.drivers import elementary, windows  # noqa: F401  (registers families)

__all__ = [
    "BuildDriver",
    "CompletionLedger",
    "CooldownPolicy",
    "DownloadItem",
    "DriverParameters",
    "DriverState",
    "SourcePlan",
    "get_driver",
    "get_driver_class",
    "register_driver",
    "registered_families",
]
