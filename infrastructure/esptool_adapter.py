"""ESPTool adapter for flashing ESP32 devices."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional, List, Mapping, Tuple

import serial

from adapters.interfaces.services import ToolRunner
from core.entities.device import (
    DeviceConnection,
    Esp32DeviceInfo,
    ONE_KILOBYTE,
    ONE_MEGABYTE,
    PSRamAvailability,
    TransportKind,
)
from infrastructure.device_session import BaseDeviceSession
from infrastructure.tool_runner import python_module_command
from modules.nanoff_flash.detector import DeviceDetector
from modules.nanoff_flash.errors import FlashError, ToolExecutionError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.result import Result, Ok, Err
from modules.nanoff_flash.tool_output import (
    ESPTOOL_ERASE_FLASH_MARKER,
    ESPTOOL_READ_MARKER,
    ESPTOOL_WRITE_MARKER,
    Failure,
    ToolOutcome,
    parse_esptool,
)


logger = logging.getLogger(__name__)


DEFAULT_BAUD_RATE = 921600
BOOTLOADER_BAUD_RATE = 115200

# these series have no PSRAM
NO_PSRAM_CHIPS = ("esp32c3", "esp32c6", "esp32h2")

_FLASH_ID_FIELDS = {
    "chip_type": re.compile(r"Detecting chip type\.\.\. (?P<value>[\w-]+)"),
    "chip_name": re.compile(r"Chip is (?P<value>.*)"),
    "features": re.compile(r"Features: (?P<value>.*)"),
    "crystal": re.compile(r"Crystal is (?P<value>.*)"),
    "mac": re.compile(r"MAC: (?P<value>.*)"),
    "manufacturer": re.compile(r"Manufacturer: (?P<value>.*)"),
    "device": re.compile(r"Device: (?P<value>.*)"),
    "flash_size": re.compile(r"Detected flash size: (?P<value>.*)"),
}
_PSRAM_SIZE = re.compile(r"Found (?P<size>\d+)MB PSRAM device")


def parse_flash_id(output: str) -> Esp32DeviceInfo:
    """Parse the output of ``esptool flash_id``.

    Raises:
        ToolExecutionError: If a field is missing or the flash size is unreadable.
    """
    values = {}
    for key, pattern in _FLASH_ID_FIELDS.items():
        match = pattern.search(output)
        if not match:
            raise ToolExecutionError("esptool", ExitCode.E4000, f"Can't read '{key}' from device.", output)
        values[key] = match.group("value").strip()

    size = values["flash_size"]
    unit = size[-2:].upper()
    try:
        flash_size = int(size[:-2]) * {"MB": ONE_MEGABYTE, "KB": ONE_KILOBYTE}.get(unit, 1)
        manufacturer = int(values["manufacturer"], 16)
        device = int(values["device"], 16)
    except ValueError:
        raise ToolExecutionError("esptool", ExitCode.E4000, "Can't read flash size from device.", output)

    return Esp32DeviceInfo(
        chip_type=values["chip_type"],
        chip_name=values["chip_name"],
        features=values["features"],
        crystal=values["crystal"],
        mac_address=values["mac"].upper(),
        flash_manufacturer_id=manufacturer,
        flash_device_id=device,
        flash_size=flash_size,
    )


def classify_psram_output(boot_log: str) -> Tuple[PSRamAvailability, int]:
    """PSRAM availability from the boot log of a nanoFramework image."""
    if "PSRAM initialized" in boot_log:
        match = _PSRAM_SIZE.search(boot_log)
        return PSRamAvailability.YES, int(match.group("size")) if match else 0
    if "PSRAM ID read error" in boot_log:
        return PSRamAvailability.NO, 0
    return PSRamAvailability.UNDETERMINED, 0


def flash_size_argument(flash_size: int) -> str:
    if flash_size >= ONE_MEGABYTE:
        return f"{flash_size // ONE_MEGABYTE}MB"
    if flash_size > 0:
        return f"{flash_size // ONE_KILOBYTE}KB"
    return "detect"


class EspToolSession(BaseDeviceSession):
    """Flashing session for ESP32 devices on a serial port, driven by esptool."""

    transport = TransportKind.SERIAL
    tool_name = "esptool"
    tool_error_code = ExitCode.E4000
    mismatch_code = ExitCode.E6000
    mass_erase_error_code = ExitCode.E4002
    write_error_code = ExitCode.E4003
    reset_error_code = ExitCode.E4003

    def __init__(
        self,
        runner: ToolRunner,
        baud_rate: int = DEFAULT_BAUD_RATE,
        chip_type: str = "auto",
        detect_psram: bool = True,
    ):
        executable, self._module_args = python_module_command("esptool")
        super().__init__(runner, executable)
        self.baud_rate = baud_rate
        self.chip_type = chip_type
        self.detect_psram = detect_psram
        self.port: Optional[str] = None
        self.device_info: Optional[Esp32DeviceInfo] = None
        self.detector = DeviceDetector()

    @property
    def flash_size(self) -> int:
        return self.device_info.flash_size if self.device_info else 0

    async def list_devices(self) -> List[str]:
        """Serial ports, the ones that look like an ESP board first."""
        ports = [entry["port"] for entry in self.detector.scan_ports()]
        esp_ports = [entry["port"] for entry in self.detector.scan_ports(esp_only=True)]
        return esp_ports + [port for port in ports if port not in esp_ports]

    async def _open(self, device_id: str) -> DeviceConnection:
        self.port = device_id
        self.device_info = await self.read_device_details()
        return DeviceConnection(TransportKind.SERIAL, device_id, self.device_info.chip_name)

    async def read_device_details(self, require_flash_size: bool = True) -> Esp32DeviceInfo:
        """Run flash_id and detect PSRAM.

        Raises:
            ToolExecutionError: E4000 if esptool can't talk to the chip.
        """
        outcome = await self._esptool(["flash_id"], hard_reset=False, standard_baud=True)
        if isinstance(outcome, Failure):
            raise ToolExecutionError(self.tool_name, ExitCode.E4000, outcome.message, outcome.output)

        output = outcome.output
        if require_flash_size and "Detected flash size: Unknown" in output:
            # sin el stub el ROM suele reportar el tamaño
            outcome = await self._esptool(["flash_id"], no_stub=True, hard_reset=False)
            if isinstance(outcome, Failure):
                raise ToolExecutionError(self.tool_name, ExitCode.E4000, outcome.message, outcome.output)
            output = outcome.output

        info = parse_flash_id(output)
        self.chip_type = info.chip_type.lower().replace("-", "")

        if self.chip_type in NO_PSRAM_CHIPS:
            info.psram_available = PSRamAvailability.NO
        elif self.detect_psram:
            info.psram_available, info.psram_size = await self._detect_psram()

        return info

    async def _detect_psram(self) -> Tuple[PSRamAvailability, int]:
        outcome = await self._esptool(["run"], no_stub=True, hard_reset=True)
        if isinstance(outcome, Failure) or "can not exit the download mode over USB" in outcome.output:
            return PSRamAvailability.UNDETERMINED, 0

        def _open_port():
            return serial.Serial(self.port, BOOTLOADER_BAUD_RATE, timeout=1)

        # pyserial bloquea: apertura y lectura en el thread pool
        loop = asyncio.get_event_loop()
        try:
            with await loop.run_in_executor(None, _open_port) as port:
                await asyncio.sleep(2)
                data = await loop.run_in_executor(None, port.read, port.in_waiting or 1)
            boot_log = data.decode(errors="replace")
        except serial.SerialException as e:
            logger.debug(f"No se pudo leer el log de arranque en {self.port}: {e}")
            return PSRamAvailability.UNDETERMINED, 0

        return classify_psram_output(boot_log)

    async def _mass_erase(self) -> ToolOutcome:
        logger.info("Borrando la flash...")
        return await self._esptool(["erase_flash"], ESPTOOL_ERASE_FLASH_MARKER, standard_baud=True)

    async def _write_partitions(self, partitions: Mapping[int, Path]) -> List[ToolOutcome]:
        parts = []
        for address, file_path in partitions.items():
            parts += [f"0x{address:X}", str(file_path)]

        logger.info(f"Escribiendo {len(partitions)} partes en la flash...")
        outcome = await self._esptool(
            ["write_flash", "--flash_size", flash_size_argument(self.flash_size)] + parts,
            ESPTOOL_WRITE_MARKER,
            expected_count=len(partitions),
            hard_reset=self.reset_after_write,
        )
        return [outcome]

    async def backup_config_partition(self, backup_file: Path, address: int, size: int) -> "Result[Path]":
        """Read the config partition into a file; errors are returned, not raised."""
        try:
            outcome = await self._esptool(
                ["read_flash", f"0x{address:X}", f"0x{size:X}", str(backup_file)],
                ESPTOOL_READ_MARKER,
                standard_baud=True,
            )
        except FlashError as e:
            return Err(e)

        if isinstance(outcome, Failure):
            return Err(ToolExecutionError(self.tool_name, ExitCode.E4004, outcome.message, outcome.output))
        return Ok(backup_file)

    async def backup_flash(self, backup_file: Path) -> None:
        """Read the whole flash into a file.

        Raises:
            ToolExecutionError: E4004 if the read fails.
        """
        outcome = await self._esptool(
            ["read_flash", "0", f"0x{self.flash_size:X}", str(backup_file)],
            ESPTOOL_READ_MARKER,
            no_stub=True,
        )
        self._accept(outcome, ExitCode.E4004, [])

    async def _esptool(
        self,
        command: List[str],
        marker=None,
        expected_count: int = 1,
        no_stub: bool = False,
        standard_baud: bool = False,
        hard_reset: bool = False,
    ) -> ToolOutcome:
        args = self._module_args + ["--port", self.port]

        if no_stub:
            args += ["--chip", self.chip_type, "--no-stub"]
        else:
            if not standard_baud:
                args += ["--baud", str(self.baud_rate)]
            args += ["--chip", self.chip_type]

        args += ["--after", "hard_reset" if hard_reset else "no_reset_stub"]
        args += command

        result = await self._run(args, watch_connect=True)
        return parse_esptool(result.output, result.return_code, marker, expected_count)
