"""Interfaz de línea de comandos del flasher (nanoff-py).

El proceso termina con el código numérico de ExitCode; en caso de error
se imprime su mensaje fijo.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from core.entities.device import TransportKind
from core.entities.firmware import SupportedPlatform
from infrastructure.esptool_adapter import DEFAULT_BAUD_RATE
from modules.nanoff_config.validators import FlasherSettings
from modules.nanoff_flash.errors import FlashError, InvalidArgumentsError, exit_code_for
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.flash_service import FlashRequest, FlashService
from modules.nanoff_flash.http_client import HttpClient
from modules.nanoff_flash.progress import ProgressPrinter, SilentProgressDelegate


logger = logging.getLogger(__name__)


VERBOSITY_LEVELS = {
    "q": logging.ERROR,
    "quiet": logging.ERROR,
    "m": logging.WARNING,
    "minimal": logging.WARNING,
    "n": logging.INFO,
    "normal": logging.INFO,
    "d": logging.INFO,
    "detailed": logging.INFO,
    "diag": logging.DEBUG,
    "diagnostic": logging.DEBUG,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nanoff-py",
        description="Flashea firmware de nanoFramework y despliega aplicaciones en placas ESP32, STM32, TI y Silabs",
    )

    firmware = parser.add_argument_group("firmware")
    firmware.add_argument('--target', help='Nombre del target')
    firmware.add_argument('--fwversion', help='Versión del firmware; por defecto la más reciente')
    firmware.add_argument('--preview', action='store_true', help='Usar paquetes preview')
    firmware.add_argument('--platform', help='Plataforma: esp32, stm32, cc13x2, efm32')
    firmware.add_argument('--update', action='store_true', help='Actualizar el firmware del dispositivo')
    firmware.add_argument('--masserase', action='store_true', help='Borrado completo antes de escribir')
    firmware.add_argument('--noreset', action='store_true', help='No reiniciar el dispositivo después de escribir')
    firmware.add_argument('--deploy', action='store_true', help='Desplegar una imagen de aplicación')
    firmware.add_argument('--image', help='Imagen de aplicación a desplegar')
    firmware.add_argument('--address', help='Dirección de despliegue (0x...)')
    firmware.add_argument('--binfile', action='append', default=[], help='Archivo BIN a escribir (repetible)')
    firmware.add_argument('--binaddress', action='append', default=[], help='Dirección de cada --binfile')
    firmware.add_argument('--clrfile', help='Imagen local del CLR en lugar de la del paquete')
    firmware.add_argument('--fromarchive', action='store_true', help='Usar solo el archivo local de paquetes')
    firmware.add_argument('--archivepath', type=Path, help='Directorio del archivo local de paquetes')
    firmware.add_argument('--cachepath', type=Path, help='Raíz de la caché de paquetes')
    firmware.add_argument('--usecachedfallback', action='store_true',
                          help='Usar el paquete en caché si falla la descarga')

    esp32 = parser.add_argument_group("esp32")
    esp32.add_argument('--serialport', help='Puerto serie del dispositivo')
    esp32.add_argument('--baud', type=int, default=DEFAULT_BAUD_RATE, help='Velocidad del puerto serie')
    esp32.add_argument('--nobackupconfig', action='store_true', help='No preservar la partición de configuración')
    esp32.add_argument('--partitiontablesize', type=int, choices=[2, 4, 8, 16],
                       help='Tamaño de flash (MB) para elegir la tabla de particiones')
    esp32.add_argument('--nofitcheck', action='store_true', help='No comprobar si el target encaja con el chip')
    esp32.add_argument('--backup', action='store_true', help='Respaldar toda la flash')
    esp32.add_argument('--backuppath', help='Directorio del respaldo')
    esp32.add_argument('--backupfile', help='Nombre del archivo de respaldo')

    debuggers = parser.add_argument_group("stm32 / silabs")
    debuggers.add_argument('--jtagid', help='Número de serie de la sonda ST-LINK')
    debuggers.add_argument('--dfu', action='store_true', help='Usar el dispositivo en modo DFU')
    debuggers.add_argument('--dfuid', help='Número de serie del dispositivo DFU')
    debuggers.add_argument('--jlinkid', help='Número de serie de la sonda J-Link')

    nano = parser.add_argument_group("nano device")
    nano.add_argument('--nanodevice', action='store_true', help='Operar sobre un dispositivo en ejecución')
    nano.add_argument('--devicedetails', action='store_true', help='Mostrar detalles del dispositivo')
    nano.add_argument('--filedeployment', type=Path, help='Descriptor JSON de despliegue de archivos')
    nano.add_argument('--networkdeployment', type=Path, help='Descriptor JSON de configuración de red')

    listing = parser.add_argument_group("listing")
    listing.add_argument('--listports', action='store_true', help='Listar puertos serie')
    listing.add_argument('--listjtag', action='store_true', help='Listar sondas JTAG')
    listing.add_argument('--listdfu', action='store_true', help='Listar dispositivos DFU')
    listing.add_argument('--listjlink', action='store_true', help='Listar sondas J-Link')
    listing.add_argument('--listtargets', action='store_true', help='Listar targets disponibles')
    listing.add_argument('--listdevices', action='store_true', help='Listar dispositivos nano conectados')

    maintenance = parser.add_argument_group("maintenance")
    maintenance.add_argument('--updatearchive', action='store_true', help='Actualizar el archivo local de paquetes')
    maintenance.add_argument('--clearcache', action='store_true', help='Borrar la caché de paquetes')

    parser.add_argument(
        '-v', '--verbosity',
        choices=sorted(VERBOSITY_LEVELS),
        default='n',
        help='Nivel de detalle: q, m, n, d, diag'
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> FlasherSettings:
    """Configuración del flasher a partir de las opciones.

    Raises:
        InvalidArgumentsError: Si la configuración no es válida.
    """
    values = {}
    if args.cachepath:
        values['cache_root'] = args.cachepath
    if args.archivepath:
        values['archive_path'] = args.archivepath

    try:
        return FlasherSettings(**values)
    except ValidationError as e:
        raise InvalidArgumentsError(detail=str(e))


def request_from_args(args: argparse.Namespace) -> FlashRequest:
    platform = None
    if args.platform:
        try:
            platform = SupportedPlatform.parse(args.platform)
        except ValueError:
            raise InvalidArgumentsError(ExitCode.E9013)

    return FlashRequest(
        target_name=args.target,
        platform=platform,
        version=args.fwversion,
        preview=args.preview,
        from_archive=args.fromarchive,
        update=args.update,
        mass_erase=args.masserase,
        deploy=args.deploy,
        image_file=args.image,
        deployment_address=args.address,
        bin_files=args.binfile,
        addresses=args.binaddress,
        clr_file=args.clrfile,
        serial_port=args.serialport,
        baud_rate=args.baud,
        jtag_id=args.jtagid,
        dfu=args.dfu,
        dfu_id=args.dfuid,
        jlink_id=args.jlinkid,
        backup_config=not args.nobackupconfig,
        partition_table_size=args.partitiontablesize,
        fit_check=not args.nofitcheck,
        reset=not args.noreset,
        use_existing_if_download_fails=args.usecachedfallback,
        backup_path=args.backuppath,
        backup_file=args.backupfile,
    )


async def run(args: argparse.Namespace) -> ExitCode:
    """Ejecuta la operación pedida.

    Raises:
        FlashError: En cualquier error terminal.
    """
    settings = settings_from_args(args)
    request = request_from_args(args)
    progress = SilentProgressDelegate() if args.verbosity in ('q', 'quiet') else ProgressPrinter()

    async with HttpClient(timeout=settings.http_timeout) as client:
        service = FlashService(settings, client, progress=progress)

        if args.clearcache:
            service.clear_cache()
            print(f"Firmware cache cleared: {settings.cache_root}")
            return ExitCode.OK

        if args.listports:
            for port in service.list_serial_ports():
                print(f"{port['port']} - {port['description']}")
            return ExitCode.OK

        if args.listtargets:
            targets = await service.list_targets(request.preview, request.platform, request.from_archive)
            for descriptor in targets:
                print(f"{descriptor.name:40} {descriptor.version}")
            return ExitCode.OK

        if args.updatearchive:
            downloaded = await service.update_archive(request.preview, request.platform, request.target_name)
            print(f"{len(downloaded)} package(s) added to the archive")
            return ExitCode.OK

        for flag, transport in (
            (args.listjtag, TransportKind.JTAG),
            (args.listdfu, TransportKind.DFU),
            (args.listjlink, TransportKind.JLINK),
        ):
            if flag:
                devices = await service.list_devices(transport)
                for device in devices:
                    print(device)
                if not devices:
                    print("No devices found")
                return ExitCode.OK

        if args.listdevices:
            for port in await service.list_nano_devices():
                print(port)
            return ExitCode.OK

        if args.filedeployment:
            report = await service.deploy_files(args.filedeployment, request.serial_port)
            print(f"{len(report.succeeded)} file operation(s) completed")
            return ExitCode.OK

        if args.networkdeployment:
            updated = await service.deploy_network(args.networkdeployment, request.serial_port)
            print(f"Network configuration updated: {', '.join(updated) or 'nothing to update'}")
            return ExitCode.OK

        if args.nanodevice:
            return await _run_nano_device(service, request, args)

        if args.backup:
            backup_file = await service.backup_esp32(request)
            print(f"Flash backup saved to {backup_file}")
            return ExitCode.OK

        if request.update or request.deploy or request.clr_file or request.bin_files or request.mass_erase:
            for warning in await service.run(request):
                print(f"WARNING: {warning}")
            return ExitCode.OK

    print("No operation was performed with the options supplied.")
    return ExitCode.OK


async def _run_nano_device(service: FlashService, request: FlashRequest, args: argparse.Namespace) -> ExitCode:
    if args.devicedetails:
        for key, value in (await service.nano_device_details(request.serial_port)).items():
            print(f"{key}: {value}")
        return ExitCode.OK

    if request.update or request.clr_file:
        if not await service.update_nano_device(request):
            print("Nothing to update: the device is already running that version.")
        return ExitCode.OK

    if request.deploy:
        address = await service.deploy_to_nano_device(request)
        print(f"Application deployed at 0x{address:X}")
        return ExitCode.OK

    raise InvalidArgumentsError(detail="Nothing to do with --nanodevice: use --update, --clrfile, --deploy or --devicedetails.")


def main(argv: Optional[List[str]] = None) -> None:
    """Función principal del CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=VERBOSITY_LEVELS[args.verbosity],
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        exit_code = asyncio.run(run(args))
    except FlashError as e:
        exit_code = exit_code_for(e)
        logger.debug("Detalle del error", exc_info=True)
        print(f"Error {exit_code.name}: {e}", file=sys.stderr)
    except KeyboardInterrupt:
        exit_code = ExitCode.E9000
        print("Operation cancelled", file=sys.stderr)
    except Exception as e:
        exit_code = exit_code_for(e)
        logger.debug("Error inesperado", exc_info=True)
        print(f"Error {exit_code.name}: {exit_code.message} ({e})", file=sys.stderr)

    sys.exit(int(exit_code))


if __name__ == '__main__':
    main()
