"""nanoFramework Flash Module.

This module resolves, downloads and caches nanoFramework firmware
packages and flashes them to ESP32, STM32, TI CC13x2 and Silabs
devices, or updates devices already running nanoFramework.

The orchestration lives in modules.nanoff_flash.flash_service; it isn't
re-exported here because it pulls in the tool adapters, which in turn
import this package.
"""

from modules.nanoff_flash.errors import FlashError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.package_fetcher import PackageFetcher
from modules.nanoff_flash.package_resolver import PackageResolver

__version__ = "0.1.0"

__all__ = [
    "ExitCode",
    "FlashError",
    "PackageFetcher",
    "PackageResolver",
]
