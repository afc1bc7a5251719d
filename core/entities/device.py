"""Device domain entities."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TransportKind(Enum):
    """How a device is reached for flashing."""
    DFU = "dfu"
    JTAG = "jtag"
    JLINK = "jlink"
    SERIAL = "serial"
    UNIFLASH = "uniflash"
    WIRE = "wire"


class DeviceRuntimeState(Enum):
    """What a device reachable over the debug wire protocol is running."""
    UNINITIALIZED = "uninitialized"
    RUNNING_BOOTER = "booter"
    RUNNING_INTERPRETER = "interpreter"


class PSRamAvailability(Enum):
    """PSRAM detection outcome for ESP32 devices."""
    YES = "yes"
    NO = "no"
    UNDETERMINED = "undetermined"


@dataclass(frozen=True)
class DeviceConnection:
    """Resolved device handle for one transport."""
    transport: TransportKind
    device_id: str
    description: Optional[str] = None

    def __str__(self) -> str:
        if self.description:
            return f"{self.transport.value}:{self.device_id} ({self.description})"
        return f"{self.transport.value}:{self.device_id}"


ONE_MEGABYTE = 0x100000
ONE_KILOBYTE = 0x400


def flash_size_label(size: int) -> str:
    """Human label of a flash size in bytes: 4MB, 512KB..."""
    if size >= ONE_MEGABYTE and size % ONE_MEGABYTE == 0:
        return f"{size // ONE_MEGABYTE}MB"
    return f"{size // ONE_KILOBYTE}KB"


@dataclass
class Esp32DeviceInfo:
    """Details reported by esptool for a connected ESP32 device."""
    chip_type: str
    chip_name: str
    features: str
    crystal: str
    mac_address: str
    flash_manufacturer_id: int
    flash_device_id: int
    flash_size: int
    psram_available: PSRamAvailability = PSRamAvailability.UNDETERMINED
    psram_size: int = 0

    @property
    def flash_size_label(self) -> str:
        return flash_size_label(self.flash_size)

    def __str__(self) -> str:
        lines = [
            f"Connected to: {self.chip_name} ({self.chip_type})",
            f"Features: {self.features}",
            f"Flash size: {self.flash_size_label}",
            f"MAC: {self.mac_address}",
        ]
        if self.psram_available == PSRamAvailability.YES:
            lines.append(f"PSRAM: {self.psram_size}MB")
        elif self.psram_available == PSRamAvailability.NO:
            lines.append("PSRAM: not available")
        return "\n".join(lines)


@dataclass
class StmDeviceInfo:
    """Details reported by the STM32 Programmer CLI for a connected device."""
    device_id: str
    board: Optional[str] = None
    device_name: Optional[str] = None
    device_cpu: Optional[str] = None

    def __str__(self) -> str:
        lines = []
        if self.board:
            lines.append(f"Board: {self.board}")
        if self.device_name:
            lines.append(f"Device: {self.device_name}")
        lines.append(f"CPU: {self.device_cpu}")
        return "\n".join(lines)
