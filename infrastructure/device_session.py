"""Base flashing session shared by the vendor tool adapters.

States: DISCONNECTED -> IDENTIFIED -> (MASS_ERASING) -> WRITING -> VERIFIED
-> (RESETTING) -> DONE, with ERROR reachable from any step. A failed step
aborts the session; nothing is retried or resumed.
"""

import logging
from abc import abstractmethod
from pathlib import Path
from typing import List, Optional, Mapping, Sequence

from adapters.interfaces.services import DeviceSession, SessionState, ToolResult, ToolRunner
from core.entities.device import DeviceConnection
from modules.nanoff_flash.errors import (
    DeviceMismatchError,
    DeviceNotPresentError,
    FlashError,
    ToolExecutionError,
    map_tool_error,
)
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.tool_output import Failure, Success, SuccessWithWarning, ToolOutcome


logger = logging.getLogger(__name__)


class BaseDeviceSession(DeviceSession):
    """Template for a transport session driven by a vendor tool."""

    tool_name = "tool"
    tool_error_code = ExitCode.E5000
    not_present_code = ExitCode.E9010
    mismatch_code = ExitCode.E5002
    mass_erase_error_code = ExitCode.E5005
    write_error_code = ExitCode.E5006
    reset_error_code = ExitCode.E5010

    def __init__(self, runner: ToolRunner, executable: str, cwd: Optional[Path] = None):
        self.runner = runner
        self.executable = executable
        self.cwd = cwd
        self.state = SessionState.DISCONNECTED
        self.connection: Optional[DeviceConnection] = None
        self.do_mass_erase = False
        self.reset_after_write = True

    async def identify(self, device_id: Optional[str] = None) -> DeviceConnection:
        """Pick the device to work with.

        Raises:
            DeviceMismatchError: If the requested id isn't enumerated.
            DeviceNotPresentError: If nothing is enumerated at all.
        """
        devices = await self.list_devices()

        if device_id:
            if device_id not in devices:
                self.state = SessionState.ERROR
                raise DeviceMismatchError(None, None, self.mismatch_code)
        else:
            if not devices:
                self.state = SessionState.ERROR
                raise DeviceNotPresentError(None, None, self.not_present_code)
            device_id = devices[0]

        try:
            self.connection = await self._open(device_id)
        except FlashError:
            self.state = SessionState.ERROR
            raise

        self.state = SessionState.IDENTIFIED
        logger.info(f"Conectado a {self.connection}")
        return self.connection

    async def flash(
        self,
        partitions: Mapping[int, Path],
        mass_erase: bool = False,
        reset: bool = True,
    ) -> List[str]:
        """Erase if requested, write every partition, then reset.

        Returns:
            Warnings collected from the tool outputs.

        Raises:
            FlashError: On the first failed step.
        """
        if self.state not in (SessionState.IDENTIFIED, SessionState.DONE):
            raise FlashError(f"{self.tool_name} session isn't connected to a device.")

        warnings: List[str] = []
        self.do_mass_erase = mass_erase
        self.reset_after_write = reset

        try:
            if self.do_mass_erase:
                self.state = SessionState.MASS_ERASING
                self._accept(await self._mass_erase(), self.mass_erase_error_code, warnings)
                # solo una vez por sesión
                self.do_mass_erase = False

            self.state = SessionState.WRITING
            for outcome in await self._write_partitions(partitions):
                self._accept(outcome, self.write_error_code, warnings)
            self.state = SessionState.VERIFIED

            if reset:
                self.state = SessionState.RESETTING
                self._accept(await self._reset(), self.reset_error_code, warnings)

            self.state = SessionState.DONE

        except FlashError:
            self.state = SessionState.ERROR
            raise

        return warnings

    async def _write_partitions(self, partitions: Mapping[int, Path]) -> List[ToolOutcome]:
        outcomes = []
        for address, file_path in partitions.items():
            logger.info(f"Escribiendo {Path(file_path).name} en 0x{address:X}")
            outcome = await self._write_file(address, Path(file_path))
            # un fallo aborta el resto: no se puede reanudar a medias
            if isinstance(outcome, Failure):
                return outcomes + [outcome]
            outcomes.append(outcome)
        return outcomes

    async def _run(self, args: Sequence[str], watch_connect: bool = False) -> ToolResult:
        try:
            return await self.runner.run(self.executable, args, cwd=self.cwd, watch_connect=watch_connect)
        except (OSError, TimeoutError) as e:
            raise map_tool_error(e, self.tool_name, self.tool_error_code)

    def _accept(self, outcome: ToolOutcome, exit_code: ExitCode, warnings: List[str]) -> None:
        if isinstance(outcome, Failure):
            logger.error(f"{self.tool_name}: {outcome.message}")
            raise ToolExecutionError(self.tool_name, exit_code, outcome.message, outcome.output)
        if isinstance(outcome, SuccessWithWarning):
            logger.warning(outcome.reason)
            warnings.append(outcome.reason)

    @abstractmethod
    async def _open(self, device_id: str) -> DeviceConnection:
        """Connect to the device and read its details."""
        pass

    @abstractmethod
    async def _mass_erase(self) -> ToolOutcome:
        pass

    async def _write_file(self, address: int, file_path: Path) -> ToolOutcome:
        raise NotImplementedError

    async def _reset(self) -> ToolOutcome:
        return Success()
