"""TI Uniflash (DSLite) adapter for CC13x2 devices."""

import logging
import sys
from pathlib import Path
from typing import Optional, List

from adapters.interfaces.services import ToolRunner
from core.entities.device import DeviceConnection, TransportKind
from infrastructure.device_session import BaseDeviceSession
from infrastructure.tool_runner import find_executable
from modules.nanoff_flash.errors import InvalidArgumentsError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.tool_output import (
    UNIFLASH_RESET_MARKER,
    UNIFLASH_VERIFY_MARKER,
    SuccessWithWarning,
    ToolOutcome,
    parse_uniflash,
)


logger = logging.getLogger(__name__)


DSLITE_NAME = "DSLite.exe" if sys.platform == "win32" else "DSLite"

# target name fragment -> target configuration file
CCXML_FILES = {
    "CC1352R": "CC1352R1F3.ccxml",
    "CC1352P": "CC1352P1F3.ccxml",
}

# DSLite talks to the XDS110 debugger it finds; there's nothing to enumerate
DEFAULT_PROBE = "XDS110"


def ccxml_for_target(target_name: str, tools_path: Optional[Path] = None) -> Path:
    """Target configuration file for a CC13x2 target.

    Raises:
        InvalidArgumentsError: E7000 for targets without a configuration.
    """
    for fragment, file_name in CCXML_FILES.items():
        if fragment in target_name:
            return (Path(tools_path) if tools_path else Path.cwd()) / file_name
    raise InvalidArgumentsError(ExitCode.E7000, f"({target_name})")


class UniflashSession(BaseDeviceSession):
    """CC13x2 device programmed through DSLite."""

    transport = TransportKind.UNIFLASH
    tool_name = "DSLite"
    tool_error_code = ExitCode.E7000
    mismatch_code = ExitCode.E7000
    write_error_code = ExitCode.E5006
    reset_error_code = ExitCode.E5010

    def __init__(self, runner: ToolRunner, ccxml_file: Path, tools_path: Optional[Path] = None):
        super().__init__(runner, find_executable(DSLITE_NAME, tools_path))
        self.ccxml_file = Path(ccxml_file)

    async def list_devices(self) -> List[str]:
        return [DEFAULT_PROBE]

    async def _open(self, device_id: str) -> DeviceConnection:
        return DeviceConnection(TransportKind.UNIFLASH, device_id, self.ccxml_file.stem)

    async def _mass_erase(self) -> ToolOutcome:
        # DSLite borra los sectores que escribe
        return SuccessWithWarning("Mass erase isn't available for this device; only written sectors are erased.")

    async def _write_file(self, address: int, file_path: Path) -> ToolOutcome:
        target = str(file_path) if file_path.suffix.lower() == ".hex" else f"{file_path},0x{address:08X}"
        result = await self._run(["flash", "-c", str(self.ccxml_file), "-f", "-v", target])
        return parse_uniflash(result.output, UNIFLASH_VERIFY_MARKER)

    async def _reset(self) -> ToolOutcome:
        result = await self._run(["flash", "-c", str(self.ccxml_file), "-r", "0"])
        return parse_uniflash(result.output, UNIFLASH_RESET_MARKER)
