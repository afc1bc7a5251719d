"""Elección del target ESP32 a partir de los datos del chip.

La tabla de decisión se conserva tal cual por familia: los nombres de
target que produce son los que los usuarios ya usan.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from core.entities.device import Esp32DeviceInfo, PSRamAvailability
from modules.nanoff_flash.errors import InvalidArgumentsError


logger = logging.getLogger(__name__)


SUPPORTED_ESP32_CHIPS = ("ESP32", "ESP32-C3", "ESP32-C6", "ESP32-H2", "ESP32-S2", "ESP32-S3")


@dataclass
class TargetGuess:
    target_name: str
    warnings: List[str] = field(default_factory=list)


def is_supported_chip(chip_type: str) -> bool:
    return chip_type in SUPPORTED_ESP32_CHIPS


def guess_esp32_target(info: Esp32DeviceInfo) -> TargetGuess:
    """Target que mejor encaja con el chip conectado.

    Raises:
        InvalidArgumentsError: Si la revisión no está soportada o la
            familia no permite adivinar (ESP32-S2).
    """
    chip = info.chip_type
    name = info.chip_name

    if chip == "ESP32":
        if "PICO" in name:
            return TargetGuess("ESP32_PICO")

        revision = "_REV3" if "revision v3" in name else "_REV0"
        psram = "_PSRAM" if info.psram_available == PSRamAvailability.YES else ""
        other = ""

        if info.crystal.startswith("26"):
            # solo hay build de 26MHz con PSRAM y REV0
            other = "_XTAL26"
            psram = "_PSRAM"
            revision = "_REV0"

        return TargetGuess(f"ESP32{psram}{other}{revision}")

    if chip == "ESP32-C3":
        if "revision v0.2" in name:
            return TargetGuess("ESP32_C3")
        if "revision v0.3" in name or "revision v0.4" in name:
            return TargetGuess("ESP32_C3_REV3")
        raise InvalidArgumentsError(detail="Unsupported ESP32_C3 revision.")

    if chip == "ESP32-C6":
        if "revision v0.0" in name or "revision v0.1" in name:
            return TargetGuess("ESP32_C6")
        raise InvalidArgumentsError(detail="Unsupported ESP32_C6 revision.")

    if chip == "ESP32-H2":
        if "revision v0.1" in name or "revision v0.2" in name:
            return TargetGuess("ESP32_H2")
        raise InvalidArgumentsError(detail="Unsupported ESP32_H2 revision.")

    if chip == "ESP32-S2":
        raise InvalidArgumentsError(
            detail=(
                "For ESP32-S2 series it isn't possible to make an educated guess on the best target to use. "
                "Please provide a valid target name using '--target MY_ESP32_S2_TARGET' instead of '--platform esp32'."
            )
        )

    if chip == "ESP32-S3":
        if any(f"revision v0.{n}" in name for n in (0, 1, 2)):
            return TargetGuess("ESP32_S3")
        raise InvalidArgumentsError(detail="Unsupported ESP32_S3 revision.")

    raise InvalidArgumentsError(detail=f"Can't guess a target for {chip}.")


def fit_check(target_name: str, info: Esp32DeviceInfo) -> List[str]:
    """Avisos cuando el target no parece encajar con el chip ESP32 conectado."""
    warnings = []

    if target_name.endswith("REV3") and any(f"revision v{n}" in info.chip_name for n in (0, 1, 2)):
        warnings.append(
            "The firmware image that's about to be used is for a revision 3 device, "
            f"but the connected device is {info.chip_name}."
        )

    if "BLE" in target_name and ", BT," not in info.features:
        warnings.append(
            "The firmware image that's about to be used includes Bluetooth features, but the "
            "connected device does not have support for it. You should use a target without BLE in the name."
        )

    return warnings
