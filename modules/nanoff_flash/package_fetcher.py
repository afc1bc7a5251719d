"""Obtención y extracción de paquetes de firmware.

Orden de decisión para un paquete resuelto:

1. paquete del archivo local: se copia a la caché si aún no está;
2. paquete ya presente en la caché con la misma versión: no se usa la red;
3. descarga a la caché; si falla y se permite, se usa el paquete más
   reciente que haya en la caché para ese target y canal.

Después se extrae el zip (plano, sin subdirectorios) en el directorio del
target y se calculan las direcciones de carga de los archivos HEX.
"""

import logging
import shutil
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import Optional

from core.entities.firmware import (
    CachedArchive,
    ExtractedFirmwareSet,
    PackageDescriptor,
    SupportedPlatform,
)
from modules.nanoff_config.validators import FlasherSettings
from modules.nanoff_flash.errors import DownloadFailedError, FormatError
from modules.nanoff_flash.http_client import HttpClient, HttpClientError
from modules.nanoff_flash.intel_hex import find_start_address
from modules.nanoff_flash.package_cache import PackageCache
from modules.nanoff_flash.package_resolver import PackageResolver
from modules.nanoff_flash.progress import DownloadProgress, ProgressDelegate, SilentProgressDelegate
from modules.nanoff_flash.result import discard_error


logger = logging.getLogger(__name__)


BOOTLOADER_FILE = "bootloader.bin"
BOOTER_HEX_FILE = "nanoBooter.hex"
INTERPRETER_HEX_FILE = "nanoCLR.hex"
INTERPRETER_BIN_FILE = "nanoCLR.bin"


class PackageFetcher:
    """Descarga, cachea y extrae paquetes de firmware."""

    def __init__(
        self,
        settings: FlasherSettings,
        client: HttpClient,
        cache: Optional[PackageCache] = None,
        progress: Optional[ProgressDelegate] = None,
    ):
        self.settings = settings
        self.client = client
        self.cache = cache or PackageCache(settings)
        self.progress = progress or SilentProgressDelegate()

    async def obtain(
        self,
        resolver: PackageResolver,
        target_name: str,
        version: Optional[str] = None,
        preview: bool = False,
        platform: Optional[SupportedPlatform] = None,
        from_archive: bool = False,
        use_existing_if_download_fails: bool = False,
    ) -> ExtractedFirmwareSet:
        """Resuelve y obtiene el paquete de un target.

        Con versión explícita y el paquete ya en la caché no se consulta
        el índice. Si la consulta al índice falla, se aplica el mismo
        respaldo que para una descarga fallida.
        """
        if version and not from_archive:
            cached = self.cache.find(target_name, version, preview)
            if cached is not None:
                logger.info(f"Paquete {cached.local_path.name} ya en la caché")
                return self.extract(cached)

        try:
            descriptor = await resolver.resolve(target_name, version, preview, platform, from_archive)
        except DownloadFailedError as e:
            if not use_existing_if_download_fails or version:
                raise
            return self.extract(self._fallback(target_name, preview, e))

        return await self.fetch(descriptor, use_existing_if_download_fails)

    async def fetch(
        self,
        descriptor: PackageDescriptor,
        use_existing_if_download_fails: bool = False,
    ) -> ExtractedFirmwareSet:
        """Obtiene el paquete de un descriptor y lo extrae.

        Raises:
            DownloadFailedError: Si la descarga falla y no hay respaldo.
            FormatError: Si el paquete o sus HEX están mal formados.
        """
        archive = self.cache.find(descriptor.name, descriptor.version, descriptor.is_preview)

        if archive is not None:
            logger.info(f"Paquete {archive.local_path.name} ya en la caché")
        elif descriptor.is_archived:
            archive = self.cache.store_copy(
                descriptor.local_path, descriptor.name, descriptor.version, descriptor.is_preview
            )
        else:
            try:
                archive = await self._download(descriptor)
            except DownloadFailedError as e:
                if not use_existing_if_download_fails:
                    raise
                archive = self._fallback(descriptor.name, descriptor.is_preview, e)

        return self.extract(archive)

    def extract(self, archive: CachedArchive) -> ExtractedFirmwareSet:
        """Extrae un paquete de la caché y localiza sus archivos conocidos."""
        location = self.cache.location_for(archive.target_name)
        self.cache.purge_extracted(archive.target_name)

        try:
            # se extrae a un directorio temporal para no dejar un conjunto a medias
            with tempfile.TemporaryDirectory(dir=location, prefix=".extract-") as staging:
                staging_path = Path(staging)
                with zipfile.ZipFile(archive.local_path) as package:
                    for member in package.infolist():
                        if member.is_dir():
                            continue
                        name = Path(member.filename).name
                        with package.open(member) as src, open(staging_path / name, 'wb') as dst:
                            shutil.copyfileobj(src, dst)

                for extracted in staging_path.iterdir():
                    shutil.move(str(extracted), str(location / extracted.name))

        except (zipfile.BadZipFile, zlib.error) as e:
            raise FormatError("package isn't a valid zip archive", archive.local_path, e)
        except OSError as e:
            raise FormatError(f"couldn't extract package: {e}", archive.local_path, e)

        discard_error(self.cache.prune(archive), logger, "Limpieza de paquetes antiguos")

        firmware = self.post_process(location)
        firmware.target_name = archive.target_name
        firmware.version = archive.version
        return firmware

    @staticmethod
    def post_process(location: Path) -> ExtractedFirmwareSet:
        """Localiza los archivos conocidos y calcula sus direcciones de carga.

        Raises:
            FormatError: Si un HEX no empieza con un registro reconocido.
        """
        firmware = ExtractedFirmwareSet(location_path=location)

        bootloader = location / BOOTLOADER_FILE
        if bootloader.is_file():
            firmware.bootloader_file = bootloader

        booter_hex = location / BOOTER_HEX_FILE
        if booter_hex.is_file():
            firmware.booter_hex_file = booter_hex
            firmware.booter_start_address = find_start_address(booter_hex)

        interpreter_hex = location / INTERPRETER_HEX_FILE
        if interpreter_hex.is_file():
            firmware.interpreter_hex_file = interpreter_hex
            firmware.interpreter_start_address = find_start_address(interpreter_hex)

        interpreter_bin = location / INTERPRETER_BIN_FILE
        if interpreter_bin.is_file():
            firmware.interpreter_bin_file = interpreter_bin

        known = {BOOTLOADER_FILE, BOOTER_HEX_FILE, INTERPRETER_HEX_FILE, INTERPRETER_BIN_FILE}
        firmware.extra_files = sorted(
            p for p in location.iterdir()
            if p.is_file() and p.name not in known and p.suffix.lower() != ".zip"
        )
        return firmware

    async def _download(self, descriptor: PackageDescriptor) -> CachedArchive:
        self.cache.location_for(descriptor.name)
        target_path = self.cache.archive_path(descriptor.name, descriptor.version, descriptor.is_preview)
        progress = DownloadProgress(self.progress, f"Downloading {descriptor.name}")

        logger.info(f"Descargando {descriptor.name} v{descriptor.version} desde {descriptor.download_url}")
        try:
            written = await self.client.download(descriptor.download_url, target_path, on_chunk=progress)
        except (HttpClientError, OSError) as e:
            progress.finish(False, str(e))
            raise DownloadFailedError(descriptor.download_url, e)

        progress.finish(True)
        logger.info(f"Descarga completada: {target_path.name} ({written} bytes)")
        return self.cache.find(descriptor.name, descriptor.version, descriptor.is_preview)

    def _fallback(self, target_name: str, preview: bool, error: DownloadFailedError) -> CachedArchive:
        archive = self.cache.newest(target_name, preview)
        if archive is None:
            raise error

        logger.warning(
            f"No se pudo descargar el paquete ({error}); usando el paquete en caché {archive.local_path.name}"
        )
        return archive

