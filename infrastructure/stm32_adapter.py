"""STM32 Programmer CLI adapters for JTAG (ST-LINK) and DFU devices."""

import logging
import sys
from pathlib import Path
from typing import Optional, List, Dict

from adapters.interfaces.services import ToolRunner
from core.entities.device import DeviceConnection, StmDeviceInfo, TransportKind
from infrastructure.device_session import BaseDeviceSession
from infrastructure.tool_runner import find_executable
from modules.nanoff_flash.errors import ToolExecutionError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.tool_output import (
    STM32_BIN_WRITE_MARKER,
    STM32_HEX_WRITE_MARKER,
    STM32_MASS_ERASE_MARKER,
    STM32_RESET_MARKER,
    STM32_START_MARKER,
    Failure,
    Success,
    ToolOutcome,
    parse_stm32,
    parse_stm32_connect,
    parse_stm32_details,
    parse_stm32_dfu_list,
    parse_stm32_jtag_list,
)


logger = logging.getLogger(__name__)


STM32_CLI_NAME = "STM32_Programmer_CLI.exe" if sys.platform == "win32" else "STM32_Programmer_CLI"
STM32_CLI_TIMEOUT = 60.0


class _Stm32Session(BaseDeviceSession):
    """Common STM32 Programmer CLI plumbing."""

    tool_name = "STM32_Programmer_CLI"
    tool_error_code = ExitCode.E5000

    def __init__(self, runner: ToolRunner, tools_path: Optional[Path] = None):
        super().__init__(runner, find_executable(STM32_CLI_NAME, tools_path))
        self.device_id: Optional[str] = None
        self.device_info: Optional[StmDeviceInfo] = None

    def _connection_args(self) -> List[str]:
        raise NotImplementedError

    async def _cli(self, args: List[str]) -> str:
        result = await self._run(args)
        return result.output

    async def _write_file(self, address: int, file_path: Path) -> ToolOutcome:
        if file_path.suffix.lower() == ".hex":
            output = await self._cli(self._connection_args() + ["-w", str(file_path)])
            return parse_stm32(output, STM32_HEX_WRITE_MARKER)

        output = await self._cli(self._connection_args() + ["mode=UR", "-w", str(file_path), f"0x{address:08X}"])
        return parse_stm32(output, STM32_BIN_WRITE_MARKER)


class StmJtagSession(_Stm32Session):
    """ST-LINK adapter connected over SWD, identified by its serial number."""

    transport = TransportKind.JTAG
    not_present_code = ExitCode.E5001
    mismatch_code = ExitCode.E5002
    mass_erase_error_code = ExitCode.E5005
    write_error_code = ExitCode.E5006
    reset_error_code = ExitCode.E5010

    async def list_devices(self) -> List[str]:
        return parse_stm32_jtag_list(await self._cli(["--list"]))

    def _connection_args(self) -> List[str]:
        return ["-c", f"port=SWD sn={self.device_id}"]

    async def _open(self, device_id: str) -> DeviceConnection:
        self.device_id = device_id

        output = await self._cli(self._connection_args() + ["HOTPLUG"])
        outcome = parse_stm32_connect(output)
        if isinstance(outcome, Failure):
            raise ToolExecutionError(self.tool_name, self.mismatch_code, outcome.message, output)

        details = parse_stm32_details(output)
        self.device_info = StmDeviceInfo(
            device_id=details["device_id"] or device_id,
            board=details["board"],
            device_name=details["device_name"],
            device_cpu=details["device_cpu"],
        )
        return DeviceConnection(TransportKind.JTAG, device_id, self.device_info.device_name)

    async def _mass_erase(self) -> ToolOutcome:
        logger.info("Ejecutando borrado masivo...")
        output = await self._cli(self._connection_args() + ["mode=UR", "-e", "all"])
        return parse_stm32(output, STM32_MASS_ERASE_MARKER)

    async def _reset(self) -> ToolOutcome:
        output = await self._cli(self._connection_args() + ["mode=UR", "-rst"])
        outcome = parse_stm32_connect(output)
        if isinstance(outcome, Failure):
            return outcome
        return parse_stm32(output, STM32_RESET_MARKER)


class StmDfuSession(_Stm32Session):
    """Device in DFU mode, identified by its USB serial number.

    DFU has no reset command; after writing, execution is started at
    ``start_address`` when one is set.
    """

    transport = TransportKind.DFU
    not_present_code = ExitCode.E1000
    mismatch_code = ExitCode.E1005
    mass_erase_error_code = ExitCode.E5005
    write_error_code = ExitCode.E1003
    reset_error_code = ExitCode.E1006

    def __init__(self, runner: ToolRunner, tools_path: Optional[Path] = None):
        super().__init__(runner, tools_path)
        self.start_address: Optional[int] = None
        self._ports: Dict[str, str] = {}

    async def list_devices(self) -> List[str]:
        self._ports = {serial: device for device, serial in parse_stm32_dfu_list(await self._cli(["--list"]))}
        return list(self._ports)

    def _connection_args(self) -> List[str]:
        return ["-c", f"port={self._ports.get(self.device_id, self.device_id)}"]

    async def _open(self, device_id: str) -> DeviceConnection:
        self.device_id = device_id

        output = await self._cli(self._connection_args())
        outcome = parse_stm32_connect(output)
        if isinstance(outcome, Failure):
            raise ToolExecutionError(self.tool_name, self.mismatch_code, outcome.message, output)

        details = parse_stm32_details(output)
        self.device_info = StmDeviceInfo(
            device_id=details["device_id"] or device_id,
            device_name=details["device_name"],
            device_cpu=details["device_cpu"],
        )
        return DeviceConnection(TransportKind.DFU, device_id, self.device_info.device_name)

    async def _mass_erase(self) -> ToolOutcome:
        logger.info("Ejecutando borrado masivo...")
        output = await self._cli(self._connection_args() + ["-e", "all"])
        return parse_stm32(output, STM32_MASS_ERASE_MARKER)

    async def _write_file(self, address: int, file_path: Path) -> ToolOutcome:
        if file_path.suffix.lower() == ".hex":
            output = await self._cli(self._connection_args() + ["-w", str(file_path)])
            return parse_stm32(output, STM32_HEX_WRITE_MARKER)

        output = await self._cli(self._connection_args() + ["-w", str(file_path), f"0x{address:08X}"])
        return parse_stm32(output, STM32_BIN_WRITE_MARKER)

    async def _reset(self) -> ToolOutcome:
        if self.start_address is None:
            return Success()

        output = await self._cli(self._connection_args() + ["--start", f"0x{self.start_address:08X}"])
        outcome = parse_stm32_connect(output)
        if isinstance(outcome, Failure):
            return outcome
        return parse_stm32(output, STM32_START_MARKER)
