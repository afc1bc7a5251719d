"""Clasificación de la salida de las herramientas de los fabricantes.

Las herramientas externas (esptool, STM32 Programmer CLI, J-Link, DSLite)
se consideran exitosas solo si su salida contiene el marcador esperado;
el código de salida del proceso no es suficiente. Cada herramienta tiene
aquí su parser, que devuelve un ToolOutcome:

- Success: el marcador está presente.
- SuccessWithWarning(reason): la operación se completó pero hay algo que
  el usuario debe saber (no se pudo resetear, el contenido ya coincidía).
- Failure(message): falta el marcador o la herramienta reportó un error.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Union, List


@dataclass(frozen=True)
class Success:
    output: str = ""

    @property
    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class SuccessWithWarning:
    reason: str
    output: str = ""

    @property
    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    message: str
    output: str = ""

    @property
    def is_success(self) -> bool:
        return False


ToolOutcome = Union[Success, SuccessWithWarning, Failure]


# esptool

ESPTOOL_ERASE_FLASH_MARKER = re.compile(r"Chip erase completed successfully")
ESPTOOL_WRITE_MARKER = re.compile(r"Wrote.*[\r\n]*Hash of data verified\.")
ESPTOOL_READ_MARKER = re.compile(r"Read .*")

ESPTOOL_BENIGN_EXIT = (
    "esptool.py can not exit the download mode over USB",
    "Staying in bootloader.",
)
ESPTOOL_COULDNT_RESET = "To run the app, reset the chip manually"
ESPTOOL_NO_SERIAL_DATA = "No serial data received."

COULDNT_RESET_WARNING = (
    "The device couldn't be reset automatically. "
    "To run the new firmware, reset the board manually."
)
BOOTLOADER_MODE_HINT = (
    "Can't connect to ESP32 bootloader. Try to put the board in bootloader manually. "
    "For troubleshooting steps visit: https://docs.espressif.com/projects/esptool/en/latest/troubleshooting.html."
)


def parse_esptool(
    output: str,
    return_code: int,
    marker: Optional[Pattern] = None,
    expected_count: int = 1,
) -> ToolOutcome:
    """Clasifica la salida de una invocación de esptool.

    Args:
        output: stdout y stderr combinados.
        return_code: Código de salida del proceso.
        marker: Patrón de éxito; None si basta con el código de salida.
        expected_count: Número mínimo de apariciones del marcador
            (write_flash escribe una vez por parte).
    """
    benign = next((b for b in ESPTOOL_BENIGN_EXIT if b in output), None)

    if return_code != 0 and benign is None:
        if ESPTOOL_NO_SERIAL_DATA in output:
            return Failure(BOOTLOADER_MODE_HINT, output)
        return Failure(_last_error_line(output) or f"esptool exited with code {return_code}", output)

    if marker is not None and len(marker.findall(output)) < expected_count:
        return Failure("esptool output doesn't confirm the operation", output)

    if ESPTOOL_COULDNT_RESET in output:
        return SuccessWithWarning(COULDNT_RESET_WARNING, output)

    if return_code != 0:
        return SuccessWithWarning(f"esptool reported: {benign}", output)

    return Success(output)


# STM32 Programmer CLI

STM32_ERROR = re.compile(r"Error: (?P<error>.+)\.", re.IGNORECASE)
STM32_USB_COMM_ERROR = "DEV_USB_COMM_ERR"
STM32_USB_COMM_MESSAGE = "USB communication error. Please unplug and plug again the ST device."

STM32_MASS_ERASE_MARKER = "Mass erase successfully achieved"
STM32_HEX_WRITE_MARKER = "File download complete"
STM32_BIN_WRITE_MARKER = "Programming Complete."
STM32_RESET_MARKER = "MCU Reset"
STM32_START_MARKER = "Start operation achieved successfully"

STM32_JTAG_SERIAL = re.compile(r"(?<=ST-LINK SN  :\s)(?P<serial>.{24})", re.MULTILINE)
STM32_DFU_DEVICE = re.compile(
    r"Device Index\s+: (?P<device>\w+).*?Serial number\s+: (?P<serial>\w+)",
    re.DOTALL,
)
STM32_DETAILS = {
    "board": re.compile(r"Board\s+:(?P<value>.*)"),
    "device_id": re.compile(r"Device ID\s+:(?P<value>.*)"),
    "device_name": re.compile(r"Device name :(?P<value>.*)"),
    "device_cpu": re.compile(r"Device CPU  :(?P<value>.*)"),
}


def stm32_error_message(output: str) -> str:
    """Mensaje de error reportado por STM32 Programmer CLI, o cadena vacía."""
    match = STM32_ERROR.search(output)
    if match:
        return match.group("error")
    if STM32_USB_COMM_ERROR in output:
        return STM32_USB_COMM_MESSAGE
    return ""


def parse_stm32(output: str, marker: str) -> ToolOutcome:
    """Clasifica la salida de STM32 Programmer CLI contra un marcador."""
    if marker in output:
        return Success(output)
    return Failure(stm32_error_message(output) or f"'{marker}' not found in STM32 Programmer CLI output", output)


def parse_stm32_connect(output: str) -> ToolOutcome:
    """Conexión: cualquier 'Error' en la salida es un fallo."""
    if "Error" in output:
        return Failure(stm32_error_message(output) or "STM32 Programmer CLI reported an error", output)
    return Success(output)


def parse_stm32_details(output: str) -> dict:
    details = {}
    for key, pattern in STM32_DETAILS.items():
        match = pattern.search(output)
        details[key] = match.group("value").strip() if match else None
    return details


def parse_stm32_jtag_list(output: str) -> List[str]:
    return [m.group("serial").strip() for m in STM32_JTAG_SERIAL.finditer(output)]


def parse_stm32_dfu_list(output: str) -> List[tuple]:
    """Dispositivos DFU como pares (índice, número de serie)."""
    return [(m.group("device"), m.group("serial")) for m in STM32_DFU_DEVICE.finditer(output)]


# J-Link

JLINK_PROGRAMMING_FAILED = "Programming failed."
JLINK_WRITE_OK = re.compile(r"Flash download: Program & Verify.*?^O\.K\.", re.DOTALL | re.MULTILINE)
JLINK_ALREADY_MATCH = "Skipped. Contents already match"
JLINK_ERASE_MARKER = "Erasing done."
JLINK_PROBE_SERIAL = re.compile(r"(?<=Connection: USB, Serial number:\s)(?P<serial>\d+)", re.MULTILINE)
JLINK_CPU = re.compile(r"Found (?P<cpu>.*?),")
JLINK_FIRMWARE = re.compile(r"Firmware: (?P<firmware>.*)")
JLINK_HARDWARE = re.compile(r"Hardware version: (?P<hardware>.*)")


def parse_jlink_write(output: str) -> ToolOutcome:
    """LoadFile: solo el marcador de programación y verificación indica éxito."""
    if JLINK_PROGRAMMING_FAILED in output:
        return Failure("J-Link reported: Programming failed.", output)
    if JLINK_ALREADY_MATCH in output:
        return SuccessWithWarning("Flash contents already match the file, nothing was written.", output)
    if JLINK_WRITE_OK.search(output):
        return Success(output)
    return Failure(_last_error_line(output) or "J-Link didn't report a verified flash download", output)


def parse_jlink_erase(output: str) -> ToolOutcome:
    if JLINK_ERASE_MARKER in output:
        return Success(output)
    return Failure(f"'{JLINK_ERASE_MARKER}' not found in J-Link output", output)


def parse_jlink_connect(output: str) -> ToolOutcome:
    if "Error" in output:
        return Failure(_last_error_line(output) or "J-Link reported an error", output)
    return Success(output)


def parse_jlink_list(output: str) -> List[str]:
    return [m.group("serial") for m in JLINK_PROBE_SERIAL.finditer(output)]


# TI Uniflash (DSLite)

UNIFLASH_VERIFY_MARKER = "Program verification successful"
UNIFLASH_RESET_MARKER = "CPU Reset is issued"


def parse_uniflash(output: str, marker: str) -> ToolOutcome:
    if marker in output:
        return Success(output)
    return Failure(_last_error_line(output) or f"'{marker}' not found in DSLite output", output)


def _last_error_line(output: str) -> Optional[str]:
    for line in reversed(output.splitlines()):
        if "error" in line.lower():
            return line.strip()
    return None
