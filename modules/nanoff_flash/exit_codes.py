"""Códigos de salida numerados del flasher.

Cada código agrupa errores por subsistema (1xxx DFU, 2xxx dispositivo
en ejecución, 4xxx esptool, 5xxx STM32 CLI, 6xxx puerto COM, 7xxx TI,
8xxx J-Link, 9xxx general/paquetes) y tiene un mensaje fijo para el
usuario. Los números son estables: los scripts de los usuarios dependen
de ellos.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Código de salida del proceso."""

    OK = 0

    # DFU
    E1000 = 1000
    E1002 = 1002
    E1003 = 1003
    E1004 = 1004
    E1005 = 1005
    E1006 = 1006

    # dispositivo en ejecución (protocolo de depuración)
    E2000 = 2000
    E2001 = 2001
    E2002 = 2002

    # esptool
    E4000 = 4000
    E4001 = 4001
    E4002 = 4002
    E4003 = 4003
    E4004 = 4004
    E4005 = 4005

    # STM32 Programmer CLI
    E5000 = 5000
    E5001 = 5001
    E5002 = 5002
    E5003 = 5003
    E5004 = 5004
    E5005 = 5005
    E5006 = 5006
    E5007 = 5007
    E5008 = 5008
    E5009 = 5009
    E5010 = 5010

    # puerto COM
    E6000 = 6000
    E6001 = 6001

    # TI
    E7000 = 7000

    # J-Link
    E8000 = 8000
    E8001 = 8001
    E8002 = 8002
    E8003 = 8003

    # general / paquetes
    E9000 = 9000
    E9002 = 9002
    E9003 = 9003
    E9004 = 9004
    E9005 = 9005
    E9006 = 9006
    E9007 = 9007
    E9008 = 9008
    E9009 = 9009
    E9010 = 9010
    E9011 = 9011
    E9012 = 9012
    E9013 = 9013
    E9014 = 9014
    E9015 = 9015

    @property
    def message(self) -> str:
        """Mensaje fijo asociado al código."""
        return _MESSAGES.get(self, "")

    def __str__(self) -> str:
        if self is ExitCode.OK:
            return "OK"
        return f"{self.name}: {self.message}"


_MESSAGES = {
    ExitCode.OK: "",
    ExitCode.E1000: "No DFU device found. Make sure it's connected and has booted in DFU mode",
    ExitCode.E1002: "Couldn't find DFU file. Check the path.",
    ExitCode.E1003: "Error flashing DFU device.",
    ExitCode.E1004: "Firmware package doesn't have a DFU package.",
    ExitCode.E1005: "Can't connect to specified DFU device. Make sure it's connected and that the ID is correct.",
    ExitCode.E1006: "Failed to start execution on the connected device.",
    ExitCode.E2000: "Error connecting to nano device.",
    ExitCode.E2001: "Error occurred with listing nano devices.",
    ExitCode.E2002: "Error executing operation with nano device.",
    ExitCode.E4000: "Error executing esptool command.",
    ExitCode.E4001: "Unsupported flash size for ESP32 target.",
    ExitCode.E4002: "Failed to erase ESP32 flash.",
    ExitCode.E4003: "Failed to write new firmware to ESP32.",
    ExitCode.E4004: "Failed to read from ESP32 flash.",
    ExitCode.E4005: "Failed to open specified COM port.",
    ExitCode.E5000: "Error executing STM32 Programmer CLI command.",
    ExitCode.E5001: "No JTAG device found. Make sure it's connected",
    ExitCode.E5002: "Can't connect to specified JTAG device. Make sure it's connected and that the ID is correct.",
    ExitCode.E5003: "Couldn't find HEX file. Check the path.",
    ExitCode.E5004: "Couldn't find BIN file. Check the path.",
    ExitCode.E5005: "Failed to perform mass erase on device.",
    ExitCode.E5006: "Failed to write new firmware to device.",
    ExitCode.E5007: "Can't program BIN file without specifying an address.",
    ExitCode.E5008: "Invalid address specified. Hexadecimal (0x0000F000) format required.",
    ExitCode.E5009: "Address count doesn't match BIN files count. An address needs to be specified for each BIN file.",
    ExitCode.E5010: "Failed to reset MCU on connected device.",
    ExitCode.E6000: "Couldn't open serial device. Make sure the COM port exists, that the device is connected and that it's not being used by another application.",
    ExitCode.E6001: "Need to specify a COM port.",
    ExitCode.E7000: "Unsupported device.",
    ExitCode.E8000: "Error executing J-Link CLI command.",
    ExitCode.E8001: "No J-Link device found. Make sure it's connected.",
    ExitCode.E8002: "Error executing silink CLI command.",
    ExitCode.E8003: "Path of BIN file contains spaces or diacritic characters.",
    ExitCode.E9000: "Invalid or missing arguments.",
    ExitCode.E9002: "Can't access or create backup directory.",
    ExitCode.E9003: "Can't delete existing backup file.",
    ExitCode.E9004: "Backup file specified without backup path. Specify backup path with --backuppath.",
    ExitCode.E9005: "Can't find the target in Cloudsmith repository.",
    ExitCode.E9006: "Can't create temporary directory to download firmware.",
    ExitCode.E9007: "Error downloading firmware file.",
    ExitCode.E9008: "Couldn't find application file. Check the path.",
    ExitCode.E9009: "Can't program deployment BIN file without specifying a valid deployment address.",
    ExitCode.E9010: "Couldn't find any device connected.",
    ExitCode.E9011: "Couldn't find CLR image file. Check the path.",
    ExitCode.E9012: "CLR image file has wrong format. It has to be a binary file.",
    ExitCode.E9013: "Unsupported platform. Valid options are: esp32, stm32, cc13x2, efm32",
    ExitCode.E9014: "Error occurred when clearing the firmware cache location.",
    ExitCode.E9015: "Couldn't find the requested firmware package in the archive.",
}
