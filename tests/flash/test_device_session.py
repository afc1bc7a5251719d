"""Tests para la máquina de estados de las sesiones de flasheo."""

from pathlib import Path
from typing import List, Optional

import pytest

from adapters.interfaces.services import SessionState, ToolResult, ToolRunner
from core.entities.device import DeviceConnection, TransportKind
from infrastructure.device_session import BaseDeviceSession
from infrastructure.stm32_adapter import StmJtagSession
from modules.nanoff_flash.errors import (
    DeviceMismatchError,
    DeviceNotPresentError,
    FlashError,
    ToolExecutionError,
)
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.tool_output import Failure, Success, SuccessWithWarning


class ScriptedRunner(ToolRunner):
    """ToolRunner que devuelve salidas preparadas y registra las llamadas."""

    def __init__(self, outputs: List[str] = None, error: Optional[Exception] = None):
        self.outputs = list(outputs or [])
        self.error = error
        self.calls = []

    async def run(self, executable, args, cwd=None, watch_connect=False):
        self.calls.append(list(args))
        if self.error:
            raise self.error
        return ToolResult(return_code=0, output=self.outputs.pop(0) if self.outputs else "")


class FakeSession(BaseDeviceSession):
    """Sesión con pasos configurables."""

    transport = TransportKind.JTAG
    tool_name = "fake"

    def __init__(self, devices=("A",), erase=None, writes=None, reset=None):
        super().__init__(ScriptedRunner(), "fake")
        self.devices = list(devices)
        self.erase_outcome = erase or Success()
        self.write_outcomes = list(writes or [])
        self.reset_outcome = reset or Success()
        self.written = []
        self.erased = 0

    async def list_devices(self):
        return self.devices

    async def _open(self, device_id):
        return DeviceConnection(self.transport, device_id)

    async def _mass_erase(self):
        self.erased += 1
        return self.erase_outcome

    async def _write_file(self, address, file_path):
        self.written.append(address)
        return self.write_outcomes.pop(0) if self.write_outcomes else Success()

    async def _reset(self):
        return self.reset_outcome


PARTITIONS = {0x1000: Path("a.bin"), 0x2000: Path("b.bin"), 0x3000: Path("c.bin")}


class TestBaseDeviceSession:
    """Tests para BaseDeviceSession."""

    @pytest.mark.asyncio
    async def test_identify_first_device(self):
        """Test selección del primer dispositivo enumerado."""
        session = FakeSession(devices=["A", "B"])

        connection = await session.identify()

        assert connection.device_id == "A"
        assert session.state == SessionState.IDENTIFIED

    @pytest.mark.asyncio
    async def test_identify_unknown_id(self):
        """Test id pedido que no está enumerado."""
        session = FakeSession(devices=["A"])

        with pytest.raises(DeviceMismatchError):
            await session.identify("B")

        assert session.state == SessionState.ERROR

    @pytest.mark.asyncio
    async def test_identify_nothing_connected(self):
        """Test sin dispositivos."""
        session = FakeSession(devices=[])

        with pytest.raises(DeviceNotPresentError):
            await session.identify()

    @pytest.mark.asyncio
    async def test_flash_requires_identify(self):
        """Test flasheo sin dispositivo identificado."""
        with pytest.raises(FlashError):
            await FakeSession().flash(PARTITIONS)

    @pytest.mark.asyncio
    async def test_flash_full_sequence(self):
        """Test borrado, escritura y reset."""
        session = FakeSession(reset=SuccessWithWarning("reset manually"))
        await session.identify()

        warnings = await session.flash(PARTITIONS, mass_erase=True)

        assert session.erased == 1
        assert session.written == [0x1000, 0x2000, 0x3000]
        assert warnings == ["reset manually"]
        assert session.state == SessionState.DONE
        assert session.do_mass_erase is False

    @pytest.mark.asyncio
    async def test_failed_write_aborts_rest(self):
        """Test que un fallo de escritura detiene las siguientes."""
        session = FakeSession(writes=[Success(), Failure("Programming failed.")])
        await session.identify()

        with pytest.raises(ToolExecutionError) as exc_info:
            await session.flash(PARTITIONS)

        assert session.written == [0x1000, 0x2000]
        assert exc_info.value.exit_code == ExitCode.E5006
        assert session.state == SessionState.ERROR

    @pytest.mark.asyncio
    async def test_failed_erase(self):
        """Test fallo del borrado masivo."""
        session = FakeSession(erase=Failure("erase failed"))
        await session.identify()

        with pytest.raises(ToolExecutionError) as exc_info:
            await session.flash(PARTITIONS, mass_erase=True)

        assert exc_info.value.exit_code == ExitCode.E5005
        assert session.written == []

    @pytest.mark.asyncio
    async def test_no_reset(self):
        """Test sin reset al final."""
        session = FakeSession(reset=Failure("should not run"))
        await session.identify()

        await session.flash(PARTITIONS, reset=False)

        assert session.state == SessionState.DONE

    @pytest.mark.asyncio
    async def test_tool_launch_error_is_mapped(self):
        """Test ejecutable ausente mapeado al código de la herramienta."""
        session = StmJtagSession(ScriptedRunner(error=FileNotFoundError("STM32_Programmer_CLI")))

        with pytest.raises(ToolExecutionError) as exc_info:
            await session.identify()

        assert exc_info.value.exit_code == ExitCode.E5000


class TestJtagSelection:
    """Tests para la selección de la sonda JTAG."""

    @pytest.mark.asyncio
    async def test_requested_device_not_connected(self):
        """Test id de sonda pedido que no está conectado: E5002 sin flashear."""
        runner = ScriptedRunner(outputs=["ST-LINK SN  : 0671FF495057717867124827\n"])
        session = StmJtagSession(runner)

        with pytest.raises(DeviceMismatchError) as exc_info:
            await session.identify("066CFF535752877167012515")

        assert exc_info.value.exit_code == ExitCode.E5002
        assert runner.calls == [["--list"]]
