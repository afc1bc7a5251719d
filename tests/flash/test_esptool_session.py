"""Tests para la sesión de esptool con ESP32."""

import sys
import threading
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
import serial

from adapters.interfaces.services import SessionState, ToolResult, ToolRunner
from core.entities.device import PSRamAvailability
from infrastructure.esptool_adapter import (
    EspToolSession,
    classify_psram_output,
    flash_size_argument,
    parse_flash_id,
)
from modules.nanoff_flash.errors import ToolExecutionError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.result import Err, Ok
from modules.nanoff_flash.tool_output import COULDNT_RESET_WARNING


FLASH_ID_OUTPUT = """esptool.py v4.7.0
Serial port /dev/ttyUSB0
Connecting....
Detecting chip type... ESP32
Chip is ESP32-D0WD-V3 (revision v3.0)
Features: WiFi, BT, Dual Core, 240MHz, VRef calibration in efuse, Coding Scheme None
Crystal is 40MHz
MAC: 24:0a:c4:12:34:56
Uploading stub...
Running stub...
Stub running...
Manufacturer: 20
Device: 4016
Detected flash size: 4MB
Staying in bootloader.
"""

C3_FLASH_ID_OUTPUT = (
    FLASH_ID_OUTPUT
    .replace("Detecting chip type... ESP32", "Detecting chip type... ESP32-C3")
    .replace("Chip is ESP32-D0WD-V3 (revision v3.0)", "Chip is ESP32-C3 (QFN32) (revision v0.4)")
)

WRITE_OUTPUT = """Wrote 24000 bytes (15000 compressed) at 0x00001000 in 0.5 seconds...
Hash of data verified.
Wrote 1500000 bytes (900000 compressed) at 0x00010000 in 20.1 seconds...
Hash of data verified.
Wrote 3072 bytes (128 compressed) at 0x00008000 in 0.1 seconds...
Hash of data verified.
Leaving...
Hard resetting via RTS pin...
"""


class QueueRunner(ToolRunner):
    """ToolRunner con respuestas (código, salida) en orden."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def run(self, executable, args, cwd=None, watch_connect=False):
        self.calls.append(list(args))
        return_code, output = self.results.pop(0)
        return ToolResult(return_code=return_code, output=output)


class TestFlashIdParsing:
    """Tests para parse_flash_id y utilidades."""

    def test_parse_flash_id(self):
        """Test datos del chip a partir de flash_id."""
        info = parse_flash_id(FLASH_ID_OUTPUT)

        assert info.chip_type == "ESP32"
        assert info.chip_name == "ESP32-D0WD-V3 (revision v3.0)"
        assert info.crystal == "40MHz"
        assert info.mac_address == "24:0A:C4:12:34:56"
        assert info.flash_manufacturer_id == 0x20
        assert info.flash_device_id == 0x4016
        assert info.flash_size == 0x400000

    def test_missing_field(self):
        """Test salida incompleta."""
        with pytest.raises(ToolExecutionError) as exc_info:
            parse_flash_id(FLASH_ID_OUTPUT.replace("Crystal is 40MHz\n", ""))
        assert exc_info.value.exit_code == ExitCode.E4000

    def test_unknown_flash_size(self):
        """Test tamaño de flash ilegible."""
        with pytest.raises(ToolExecutionError):
            parse_flash_id(FLASH_ID_OUTPUT.replace("4MB", "Unknown"))

    @pytest.mark.parametrize("boot_log,expected", [
        ("I (100) psram: Found 8MB PSRAM device\nPSRAM initialized\n", (PSRamAvailability.YES, 8)),
        ("E (95) psram: PSRAM ID read error: 0xffffffff\n", (PSRamAvailability.NO, 0)),
        ("rst:0x1 (POWERON_RESET)\n", (PSRamAvailability.UNDETERMINED, 0)),
    ])
    def test_classify_psram(self, boot_log, expected):
        """Test clasificación del log de arranque."""
        assert classify_psram_output(boot_log) == expected

    def test_flash_size_argument(self):
        """Test argumento --flash_size."""
        assert flash_size_argument(0x400000) == "4MB"
        assert flash_size_argument(0x80000) == "512KB"
        assert flash_size_argument(0) == "detect"


class TestEspToolSession:
    """Tests para EspToolSession."""

    def _session(self, *results, detect_psram=False):
        runner = QueueRunner(*results)
        session = EspToolSession(runner, detect_psram=detect_psram)
        session.detector = Mock()
        session.detector.scan_ports.side_effect = lambda esp_only=False: (
            [{"port": "/dev/ttyUSB0"}] if esp_only else [{"port": "/dev/ttyS0"}, {"port": "/dev/ttyUSB0"}]
        )
        return session, runner

    @pytest.mark.asyncio
    async def test_esp_ports_listed_first(self):
        """Test que los puertos de placas ESP van primero."""
        session, _ = self._session()

        assert await session.list_devices() == ["/dev/ttyUSB0", "/dev/ttyS0"]

    @pytest.mark.asyncio
    async def test_identify_reads_details(self):
        """Test identificación con flash_id a la velocidad estándar."""
        session, runner = self._session((0, FLASH_ID_OUTPUT))

        connection = await session.identify()

        assert connection.device_id == "/dev/ttyUSB0"
        assert session.chip_type == "esp32"
        assert session.flash_size == 0x400000
        assert runner.calls[0] == [
            "-m", "esptool", "--port", "/dev/ttyUSB0", "--chip", "auto",
            "--after", "no_reset_stub", "flash_id",
        ]

    @pytest.mark.asyncio
    async def test_unknown_flash_size_retried_without_stub(self):
        """Test reintento sin stub cuando el tamaño es desconocido."""
        unknown = FLASH_ID_OUTPUT.replace("Detected flash size: 4MB", "Detected flash size: Unknown")
        session, runner = self._session((0, unknown), (0, FLASH_ID_OUTPUT))

        await session.identify()

        assert "--no-stub" in runner.calls[1]
        assert session.flash_size == 0x400000

    @pytest.mark.asyncio
    async def test_identify_failure(self):
        """Test esptool que no conecta con el chip."""
        session, _ = self._session((2, "A fatal error occurred: Failed to connect to ESP32\n"))

        with pytest.raises(ToolExecutionError) as exc_info:
            await session.identify()

        assert exc_info.value.exit_code == ExitCode.E4000
        assert session.state == SessionState.ERROR

    @pytest.mark.asyncio
    async def test_no_psram_series_skips_detection(self):
        """Test series sin PSRAM: no se prueba."""
        session, runner = self._session((0, C3_FLASH_ID_OUTPUT), detect_psram=True)

        await session.identify()

        assert session.device_info.psram_available == PSRamAvailability.NO
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_psram_detection_reads_boot_log(self):
        """Test detección de PSRAM con el log de arranque."""
        session, _ = self._session((0, FLASH_ID_OUTPUT), (0, "Hard resetting via RTS pin...\n"), detect_psram=True)

        mock_serial = MagicMock()
        mock_serial.__enter__.return_value.in_waiting = 64
        mock_serial.__enter__.return_value.read.return_value = b"Found 4MB PSRAM device\nPSRAM initialized\n"
        opened_in = []

        def open_port(*args, **kwargs):
            opened_in.append(threading.get_ident())
            return mock_serial

        with patch('infrastructure.esptool_adapter.serial.Serial', side_effect=open_port), \
                patch('infrastructure.esptool_adapter.asyncio.sleep', new_callable=AsyncMock):
            await session.identify()

        assert session.device_info.psram_available == PSRamAvailability.YES
        assert session.device_info.psram_size == 4
        mock_serial.__enter__.return_value.read.assert_called_once_with(64)
        # el puerto se abre fuera del hilo del event loop
        assert opened_in and opened_in[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_psram_detection_port_error(self):
        """Test puerto que no se puede abrir: PSRAM indeterminada."""
        session, _ = self._session((0, FLASH_ID_OUTPUT), (0, "Hard resetting via RTS pin...\n"), detect_psram=True)

        with patch('infrastructure.esptool_adapter.serial.Serial', side_effect=serial.SerialException("busy")), \
                patch('infrastructure.esptool_adapter.asyncio.sleep', new_callable=AsyncMock):
            await session.identify()

        assert session.device_info.psram_available == PSRamAvailability.UNDETERMINED

    @pytest.mark.asyncio
    async def test_write_all_parts_in_one_call(self):
        """Test write_flash con todas las partes y reset."""
        session, runner = self._session((0, FLASH_ID_OUTPUT), (0, WRITE_OUTPUT))
        await session.identify()
        partitions = {0x1000: Path("/fw/bootloader.bin"), 0x10000: Path("/fw/nanoCLR.bin"), 0x8000: Path("/fw/p.bin")}

        warnings = await session.flash(partitions)

        args = runner.calls[1]
        assert warnings == []
        assert args[args.index("--baud") + 1] == "921600"
        assert args[args.index("--after") + 1] == "hard_reset"
        assert args[args.index("write_flash"):] == [
            "write_flash", "--flash_size", "4MB",
            "0x1000", str(Path("/fw/bootloader.bin")),
            "0x10000", str(Path("/fw/nanoCLR.bin")),
            "0x8000", str(Path("/fw/p.bin")),
        ]
        assert session.state == SessionState.DONE

    @pytest.mark.asyncio
    async def test_write_missing_verification(self):
        """Test que falte una verificación es un fallo (E4003)."""
        partial = WRITE_OUTPUT.split("Wrote 3072")[0]
        session, _ = self._session((0, FLASH_ID_OUTPUT), (0, partial))
        await session.identify()

        with pytest.raises(ToolExecutionError) as exc_info:
            await session.flash({0x1000: Path("a.bin"), 0x10000: Path("b.bin"), 0x8000: Path("c.bin")})

        assert exc_info.value.exit_code == ExitCode.E4003

    @pytest.mark.asyncio
    async def test_write_couldnt_reset(self):
        """Test aviso cuando la placa no se puede resetear."""
        output = WRITE_OUTPUT + "To run the app, reset the chip manually.\n"
        session, _ = self._session((0, FLASH_ID_OUTPUT), (0, output))
        await session.identify()

        warnings = await session.flash({0x1000: Path("a.bin"), 0x10000: Path("b.bin"), 0x8000: Path("c.bin")})

        assert warnings == [COULDNT_RESET_WARNING]

    @pytest.mark.asyncio
    async def test_write_without_reset(self):
        """Test --after sin reset cuando no se pide reiniciar."""
        session, runner = self._session((0, FLASH_ID_OUTPUT), (0, WRITE_OUTPUT))
        await session.identify()

        await session.flash({0x1000: Path("a.bin"), 0x10000: Path("b.bin"), 0x8000: Path("c.bin")}, reset=False)

        args = runner.calls[1]
        assert args[args.index("--after") + 1] == "no_reset_stub"
        assert session.state == SessionState.DONE

    @pytest.mark.asyncio
    async def test_mass_erase(self):
        """Test erase_flash antes de escribir."""
        session, runner = self._session(
            (0, FLASH_ID_OUTPUT),
            (0, "Erasing flash (this may take a while)...\nChip erase completed successfully in 5.2s\n"),
            (0, WRITE_OUTPUT),
        )
        await session.identify()

        await session.flash({0x1000: Path("a.bin"), 0x10000: Path("b.bin"), 0x8000: Path("c.bin")}, mass_erase=True)

        assert runner.calls[1][-1] == "erase_flash"
        assert "--baud" not in runner.calls[1]

    @pytest.mark.asyncio
    async def test_config_backup_result(self, tmp_path):
        """Test respaldo de la partición de configuración como Result."""
        session, runner = self._session(
            (0, FLASH_ID_OUTPUT),
            (0, "Read 524288 bytes at 0x00380000 in 45.3 seconds...\n"),
            (2, "A fatal error occurred: Timed out\n"),
        )
        await session.identify()
        backup_file = tmp_path / "config.bin"

        ok = await session.backup_config_partition(backup_file, 0x380000, 0x80000)
        err = await session.backup_config_partition(backup_file, 0x380000, 0x80000)

        assert ok == Ok(backup_file)
        assert isinstance(err, Err)
        assert err.error.exit_code == ExitCode.E4004
        assert runner.calls[1][-4:] == ["read_flash", "0x380000", "0x80000", str(backup_file)]

    @pytest.mark.asyncio
    async def test_backup_flash(self, tmp_path):
        """Test lectura completa de la flash sin stub."""
        session, runner = self._session((0, FLASH_ID_OUTPUT), (0, "Read 4194304 bytes at 0x00000000\n"))
        await session.identify()

        await session.backup_flash(tmp_path / "full.bin")

        assert "--no-stub" in runner.calls[1]
        assert runner.calls[1][-3:-1] == ["0", "0x400000"]

    def test_runs_esptool_module(self):
        """Test que esptool se ejecuta como módulo del intérprete actual."""
        session, _ = self._session()

        assert session.executable == sys.executable
