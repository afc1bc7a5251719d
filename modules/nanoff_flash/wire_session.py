"""Actualización de dispositivos en ejecución por el protocolo de depuración.

Secuencia para el CLR: conectar (5 intentos, 100 ms) -> detectar si
responde el booter o el CLR -> pedir reinicio al booter (mejor
esfuerzo) -> esperar al booter (5 intentos, timeout * (intento + 1)) ->
desplegar la imagen -> reinicio normal.
"""

import logging
from pathlib import Path
from typing import Optional

from adapters.interfaces.services import DebugEngine, RebootMode
from core.entities.device import DeviceRuntimeState
from core.entities.firmware import ExtractedFirmwareSet, FirmwareVersion
from modules.nanoff_flash.backoff import Backoff, CONNECT_BACKOFF, ready_backoff, retry_until
from modules.nanoff_flash.errors import DeviceMismatchError, FlashError, FormatError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.result import Result, Ok, Err, discard_error


logger = logging.getLogger(__name__)


CONNECT_TIMEOUT_MS = 1000
READY_TIMEOUT_SECONDS = 1.0


def is_newer(requested: Optional[str], running: Optional[str]) -> bool:
    """True si ``requested`` es estrictamente más nueva que ``running``.

    Si alguna de las dos no se puede interpretar se considera más nueva.
    """
    requested_version = FirmwareVersion.try_parse(requested)
    running_version = FirmwareVersion.try_parse(running)
    if requested_version is None or running_version is None:
        return True
    return requested_version > running_version


class DeviceWireSession:
    """Sesión sobre un DebugEngine ya creado para un puerto."""

    def __init__(
        self,
        engine: DebugEngine,
        connect_backoff: Backoff = CONNECT_BACKOFF,
        ready_backoff_policy: Optional[Backoff] = None,
    ):
        self.engine = engine
        self.connect_backoff = connect_backoff
        self.ready_backoff = ready_backoff_policy or ready_backoff(READY_TIMEOUT_SECONDS)
        self.connected = False

    async def connect(self) -> None:
        """Conecta con el dispositivo.

        Raises:
            DeviceTimeoutError: E2000 si no responde tras los reintentos.
        """
        if self.connected:
            return

        result = await retry_until(
            lambda: self.engine.connect(CONNECT_TIMEOUT_MS, force=True),
            self.connect_backoff,
            "connect",
            ExitCode.E2000,
        )
        if isinstance(result, Err):
            raise result.error

        self.connected = True
        logger.info("Conectado al dispositivo")

    async def close(self) -> None:
        if self.connected:
            await self.engine.disconnect()
            self.connected = False

    async def runtime_state(self) -> DeviceRuntimeState:
        """Estado actual: CLR inicializándose, booter o CLR en ejecución."""
        if await self.engine.is_device_in_initialize_state():
            return DeviceRuntimeState.UNINITIALIZED
        return await self.engine.ping()

    async def enter_booter(self, state: Optional[DeviceRuntimeState] = None) -> None:
        """Deja al dispositivo ejecutando nanoBooter.

        Args:
            state: Estado ya detectado; si falta se consulta al dispositivo

        Raises:
            DeviceTimeoutError: E2002 si el booter no responde a tiempo.
        """
        if state is None:
            state = await self.runtime_state()
        if state == DeviceRuntimeState.RUNNING_BOOTER:
            return
        if state == DeviceRuntimeState.UNINITIALIZED:
            logger.info("El CLR no ha terminado de inicializarse, se pide el booter")

        # si falla la petición, el sondeo decide
        discard_error(await self._request_booter(), logger, "Reinicio al booter")

        result = await retry_until(
            self._booter_ready,
            self.ready_backoff,
            "enter booter",
            ExitCode.E2002,
        )
        if isinstance(result, Err):
            raise result.error

    async def wait_until_initialized(self) -> None:
        """Espera a que el CLR salga del estado de inicialización.

        Raises:
            DeviceTimeoutError: E2002 si no lo hace dentro del presupuesto.
        """
        if not await self.engine.is_device_in_initialize_state():
            return

        await self.engine.resume_execution()

        async def initialized() -> bool:
            return not await self.engine.is_device_in_initialize_state()

        result = await retry_until(initialized, self.ready_backoff, "initialize", ExitCode.E2002)
        if isinstance(result, Err):
            raise result.error

    async def update_clr(
        self,
        firmware: Optional[ExtractedFirmwareSet],
        requested_version: Optional[str] = None,
        clr_file: Optional[Path] = None,
    ) -> bool:
        """Actualiza la imagen del CLR.

        Un archivo local siempre se escribe; un paquete solo si su versión
        es más nueva que la que ejecuta el dispositivo. Con el dispositivo ya
        en el booter no hay CLR que consultar y se escribe siempre.

        Returns:
            True si se escribió la imagen, False si ya estaba actualizado.

        Raises:
            DeviceMismatchError: Si la dirección del CLR del dispositivo no
                coincide con la del paquete.
            FlashError: E2002 si el despliegue falla.
        """
        await self.connect()
        state = await self.runtime_state()
        logger.debug(f"Estado del dispositivo: {state.value}")

        if clr_file is None and state != DeviceRuntimeState.RUNNING_BOOTER:
            running = await self.engine.get_clr_version()
            if not is_newer(requested_version, running):
                logger.info(f"El dispositivo ya ejecuta la versión {running}, nada que actualizar")
                return False

        await self.enter_booter(state)

        device_address = await self.engine.get_clr_start_address()

        if clr_file is not None:
            image = Path(clr_file)
        else:
            if firmware is None or firmware.interpreter_bin_file is None:
                raise FormatError("package doesn't include nanoCLR.bin", firmware.location_path if firmware else None)
            image = firmware.interpreter_bin_file

            package_address = firmware.interpreter_start_address
            if package_address is not None and package_address != device_address:
                raise DeviceMismatchError(
                    f"CLR address mismatch: device expects 0x{device_address:X}, package has 0x{package_address:X}. "
                    "Update nanoBooter manually.",
                    None,
                    ExitCode.E2002,
                )

        logger.info(f"Desplegando {image.name} en 0x{device_address:X}")
        if not await self.engine.deploy_binary_file(image, device_address):
            raise FlashError(f"Failed to deploy {image.name} to the device.", None, ExitCode.E2002)

        await self.engine.reboot_device(RebootMode.NORMAL)
        return True

    async def deploy_application(self, image: Path) -> int:
        """Despliega una imagen de aplicación en la región de despliegue.

        Returns:
            Dirección usada.

        Raises:
            FlashError: E2002 si el despliegue falla.
        """
        await self.connect()
        await self.wait_until_initialized()

        address = await self.engine.get_deployment_start_address()
        logger.info(f"Desplegando {Path(image).name} en 0x{address:X}")

        if not await self.engine.deploy_binary_file(Path(image), address):
            raise FlashError(f"Failed to deploy {Path(image).name} to the device.", None, ExitCode.E2002)

        await self.engine.reboot_device(RebootMode.NORMAL)
        return address

    async def _request_booter(self) -> "Result[bool]":
        try:
            return Ok(await self.engine.connect_to_booter())
        except (FlashError, OSError) as e:
            return Err(e)

    async def _booter_ready(self) -> bool:
        return await self.engine.ping() == DeviceRuntimeState.RUNNING_BOOTER
