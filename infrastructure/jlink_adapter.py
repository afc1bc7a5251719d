"""J-Link Commander adapter for Silabs Giant Gecko devices."""

import logging
import shutil
import sys
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, List, Iterator

from adapters.interfaces.services import ToolRunner
from core.entities.device import DeviceConnection, TransportKind
from infrastructure.device_session import BaseDeviceSession
from infrastructure.tool_runner import find_executable
from modules.nanoff_flash.errors import BinaryPathError, ToolExecutionError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.tool_output import (
    JLINK_CPU,
    JLINK_FIRMWARE,
    JLINK_HARDWARE,
    Failure,
    ToolOutcome,
    parse_jlink_connect,
    parse_jlink_erase,
    parse_jlink_list,
    parse_jlink_write,
)


logger = logging.getLogger(__name__)


JLINK_EXE_NAME = "JLink.exe" if sys.platform == "win32" else "JLinkExe"
JLINK_TIMEOUT = 30.0

LIST_PROBES_COMMANDS = "ShowEmuList\nExit\n"
FLASH_FILE_TEMPLATE = """USB {serial}
speed auto
Halt
LoadFile {file_path} {address}
Reset
Go
Exit
"""
CONNECT_TEMPLATE = """USB {serial}
speed auto
connect
Exit
"""
ERASE_TEMPLATE = """USB {serial}
speed auto
Halt
Erase
Exit
"""


def needs_shadow_copy(file_path: Path) -> bool:
    """J-Link can't load files whose path has spaces or non ASCII chars."""
    text = str(file_path)
    return " " in text or not text.isascii()


@contextmanager
def shadow_copy(file_path: Path) -> Iterator[Path]:
    """Yield a path J-Link can load, copying the file to a temp name if needed.

    Raises:
        BinaryPathError: If the temp directory itself isn't usable by J-Link.
    """
    if not needs_shadow_copy(file_path):
        yield file_path
        return

    temp_dir = Path(tempfile.gettempdir())
    shadow = temp_dir / f"{uuid.uuid4().hex}{file_path.suffix}"
    if needs_shadow_copy(shadow):
        raise BinaryPathError(str(file_path))

    shutil.copyfile(file_path, shadow)
    logger.debug(f"{file_path} copiado a {shadow} para J-Link")
    try:
        yield shadow
    finally:
        shadow.unlink(missing_ok=True)


class JLinkSession(BaseDeviceSession):
    """J-Link adapter identified by its USB serial number."""

    transport = TransportKind.JLINK
    tool_name = "JLinkExe"
    tool_error_code = ExitCode.E8000
    not_present_code = ExitCode.E8001
    mismatch_code = ExitCode.E8001
    mass_erase_error_code = ExitCode.E5005
    write_error_code = ExitCode.E5006

    def __init__(self, runner: ToolRunner, tools_path: Optional[Path] = None):
        super().__init__(runner, find_executable(JLINK_EXE_NAME, tools_path))
        self.adapter_id: Optional[str] = None
        self.device_cpu: Optional[str] = None
        self.firmware = "N.A."
        self.hardware = "N.A."

    async def list_devices(self) -> List[str]:
        return parse_jlink_list(await self._commander(LIST_PROBES_COMMANDS))

    async def _open(self, device_id: str) -> DeviceConnection:
        self.adapter_id = device_id

        output = await self._commander(CONNECT_TEMPLATE.format(serial=device_id))
        outcome = parse_jlink_connect(output)
        if isinstance(outcome, Failure):
            raise ToolExecutionError(self.tool_name, ExitCode.E8001, outcome.message, output)

        cpu = JLINK_CPU.search(output)
        firmware = JLINK_FIRMWARE.search(output)
        hardware = JLINK_HARDWARE.search(output)
        self.device_cpu = cpu.group("cpu").strip() if cpu else None
        if firmware:
            self.firmware = firmware.group("firmware").strip()
        if hardware:
            self.hardware = hardware.group("hardware").strip()

        return DeviceConnection(TransportKind.JLINK, device_id, self.device_cpu)

    async def _mass_erase(self) -> ToolOutcome:
        logger.info("Ejecutando borrado masivo...")
        return parse_jlink_erase(await self._commander(ERASE_TEMPLATE.format(serial=self.adapter_id)))

    async def _write_file(self, address: int, file_path: Path) -> ToolOutcome:
        with shadow_copy(file_path) as loadable:
            commands = FLASH_FILE_TEMPLATE.format(serial=self.adapter_id, file_path=loadable, address=f"0x{address:08X}")
            output = await self._commander(commands)
        return parse_jlink_write(output)

    async def _commander(self, commands: str) -> str:
        """Write a command file, run J-Link Commander on it and delete it."""
        command_file = Path(tempfile.gettempdir()) / f"{uuid.uuid4()}.jlink"
        command_file.write_text(commands)
        try:
            result = await self._run(
                ["-nogui", "1", "-device", "default", "-si", "swd", "-CommandFile", str(command_file)]
            )
        finally:
            command_file.unlink(missing_ok=True)
        return result.output
