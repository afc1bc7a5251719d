"""Tests para la actualización por el protocolo de depuración."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from adapters.interfaces.services import DebugEngine, RebootMode
from core.entities.device import DeviceRuntimeState
from core.entities.firmware import ExtractedFirmwareSet
from modules.nanoff_flash.errors import DeviceMismatchError, DeviceTimeoutError, FlashError, FormatError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.wire_session import DeviceWireSession, is_newer


def make_engine(version="1.9.0.12", states=None):
    """Motor simulado: CLR en ejecución que pasa al booter al pedírselo."""
    engine = AsyncMock(spec=DebugEngine)
    engine.connect.return_value = True
    engine.get_clr_version.return_value = version
    engine.is_device_in_initialize_state.return_value = False
    engine.ping.side_effect = list(states or [
        DeviceRuntimeState.RUNNING_INTERPRETER,
        DeviceRuntimeState.RUNNING_BOOTER,
    ])
    engine.connect_to_booter.return_value = True
    engine.get_clr_start_address.return_value = 0x08040000
    engine.get_deployment_start_address.return_value = 0x08100000
    engine.deploy_binary_file.return_value = True
    return engine


def firmware_set(tmp_path, address=0x08040000):
    return ExtractedFirmwareSet(
        location_path=tmp_path,
        interpreter_bin_file=tmp_path / "nanoCLR.bin",
        interpreter_start_address=address,
    )


class TestIsNewer:
    """Tests para la comparación de versiones."""

    def test_comparisons(self):
        """Test versiones más nuevas, iguales y antiguas."""
        assert is_newer("1.9.0.13", "1.9.0.12")
        assert not is_newer("1.9.0.12", "1.9.0.12")
        assert not is_newer("1.9.0.11", "1.9.0.12")

    def test_unparsable_counts_as_newer(self):
        """Test versión ilegible."""
        assert is_newer(None, "1.9.0.12")
        assert is_newer("1.9.0.12", "unknown")


class TestDeviceWireSession:
    """Tests para DeviceWireSession."""

    @pytest.fixture(autouse=True)
    def _no_sleep(self):
        """Evita las esperas reales de los reintentos."""
        with patch('modules.nanoff_flash.backoff.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            self.mock_sleep = mock_sleep
            yield

    @pytest.mark.asyncio
    async def test_same_version_not_updated(self, tmp_path):
        """Test dispositivo con la misma versión: no se despliega nada."""
        engine = make_engine(version="1.9.0.12")
        session = DeviceWireSession(engine)

        updated = await session.update_clr(firmware_set(tmp_path), requested_version="1.9.0.12")

        assert updated is False
        engine.deploy_binary_file.assert_not_awaited()
        engine.connect_to_booter.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_newer_version_deployed(self, tmp_path):
        """Test despliegue del CLR en la dirección del dispositivo y reinicio."""
        engine = make_engine(version="1.9.0.9")
        session = DeviceWireSession(engine)

        updated = await session.update_clr(firmware_set(tmp_path), requested_version="1.9.0.12")

        assert updated is True
        engine.connect_to_booter.assert_awaited_once()
        engine.deploy_binary_file.assert_awaited_once_with(tmp_path / "nanoCLR.bin", 0x08040000)
        engine.reboot_device.assert_awaited_once_with(RebootMode.NORMAL)

    @pytest.mark.asyncio
    async def test_address_mismatch(self, tmp_path):
        """Test dirección del CLR distinta a la del paquete (E2002)."""
        engine = make_engine(version="1.9.0.9")
        session = DeviceWireSession(engine)

        with pytest.raises(DeviceMismatchError) as exc_info:
            await session.update_clr(firmware_set(tmp_path, address=0x08080000), requested_version="1.9.0.12")

        assert exc_info.value.exit_code == ExitCode.E2002
        engine.deploy_binary_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_local_clr_always_written(self, tmp_path):
        """Test archivo CLR local sin comprobar versión."""
        engine = make_engine(version="9.9.9.9")
        session = DeviceWireSession(engine)
        clr_file = tmp_path / "custom_nanoCLR.bin"

        assert await session.update_clr(None, clr_file=clr_file) is True
        engine.get_clr_version.assert_not_awaited()
        engine.deploy_binary_file.assert_awaited_once_with(clr_file, 0x08040000)

    @pytest.mark.asyncio
    async def test_device_already_in_booter(self, tmp_path):
        """Test dispositivo en el booter: se despliega sin consultar la versión."""
        engine = make_engine(states=[DeviceRuntimeState.RUNNING_BOOTER])
        session = DeviceWireSession(engine)

        assert await session.update_clr(firmware_set(tmp_path), requested_version="1.9.0.12") is True

        engine.get_clr_version.assert_not_awaited()
        engine.connect_to_booter.assert_not_awaited()
        engine.deploy_binary_file.assert_awaited_once_with(tmp_path / "nanoCLR.bin", 0x08040000)

    @pytest.mark.asyncio
    async def test_uninitialized_device_sent_to_booter(self, tmp_path):
        """Test CLR sin inicializar: se pide el booter antes de desplegar."""
        engine = make_engine(version="1.9.0.9", states=[DeviceRuntimeState.RUNNING_BOOTER])
        engine.is_device_in_initialize_state.return_value = True
        session = DeviceWireSession(engine)

        assert await session.runtime_state() == DeviceRuntimeState.UNINITIALIZED
        assert await session.update_clr(firmware_set(tmp_path), requested_version="1.9.0.12") is True

        engine.connect_to_booter.assert_awaited_once()
        engine.deploy_binary_file.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_package_without_clr_bin(self, tmp_path):
        """Test paquete sin nanoCLR.bin."""
        engine = make_engine(version="1.9.0.9")
        session = DeviceWireSession(engine)

        with pytest.raises(FormatError):
            await session.update_clr(ExtractedFirmwareSet(location_path=tmp_path), requested_version="1.9.0.12")

    @pytest.mark.asyncio
    async def test_deploy_failure(self, tmp_path):
        """Test despliegue rechazado por el dispositivo."""
        engine = make_engine(version="1.9.0.9")
        engine.deploy_binary_file.return_value = False
        session = DeviceWireSession(engine)

        with pytest.raises(FlashError) as exc_info:
            await session.update_clr(firmware_set(tmp_path), requested_version="1.9.0.12")

        assert exc_info.value.exit_code == ExitCode.E2002

    @pytest.mark.asyncio
    async def test_connect_timeout(self):
        """Test dispositivo que no responde: 5 intentos y E2000."""
        engine = make_engine()
        engine.connect.return_value = False
        session = DeviceWireSession(engine)

        with pytest.raises(DeviceTimeoutError) as exc_info:
            await session.connect()

        assert exc_info.value.exit_code == ExitCode.E2000
        assert engine.connect.await_count == 5
        assert [c.args[0] for c in self.mock_sleep.await_args_list] == [0.1, 0.1, 0.1, 0.1]

    @pytest.mark.asyncio
    async def test_booter_never_ready(self):
        """Test booter que no responde: esperas crecientes y E2002."""
        engine = make_engine(states=[DeviceRuntimeState.RUNNING_INTERPRETER] * 6)
        session = DeviceWireSession(engine)

        with pytest.raises(DeviceTimeoutError) as exc_info:
            await session.enter_booter()

        assert exc_info.value.exit_code == ExitCode.E2002
        assert [c.args[0] for c in self.mock_sleep.await_args_list] == [1.0, 2.0, 3.0, 4.0]

    @pytest.mark.asyncio
    async def test_booter_request_error_is_not_fatal(self):
        """Test que un fallo al pedir el booter no aborta si el booter responde."""
        engine = make_engine()
        engine.connect_to_booter.side_effect = OSError("port closed")
        session = DeviceWireSession(engine)

        await session.enter_booter()

        assert engine.ping.await_count == 2

    @pytest.mark.asyncio
    async def test_deploy_application(self, tmp_path):
        """Test despliegue de una aplicación tras la inicialización."""
        engine = make_engine()
        engine.is_device_in_initialize_state.side_effect = [True, False]
        session = DeviceWireSession(engine)

        address = await session.deploy_application(tmp_path / "app.bin")

        assert address == 0x08100000
        engine.resume_execution.assert_awaited_once()
        engine.deploy_binary_file.assert_awaited_once_with(tmp_path / "app.bin", 0x08100000)

    @pytest.mark.asyncio
    async def test_close(self):
        """Test desconexión."""
        engine = make_engine()
        session = DeviceWireSession(engine)
        await session.connect()

        await session.close()

        engine.disconnect.assert_awaited_once()
        assert not session.connected
