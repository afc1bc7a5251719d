"""Gestor del archivo local de paquetes de firmware.

El archivo permite flashear sin red: guarda `{target}-{version}[-preview].zip`
en un subdirectorio por target junto con un sidecar JSON que describe el
paquete, para poder listarlo sin abrir el zip.
"""

import logging
from pathlib import Path
from typing import Optional, List, Dict

from config.paths import ArchivePaths
from core.entities.firmware import PackageDescriptor, SupportedPlatform
from modules.nanoff_config.validators import ArchivePackageInfo, FlasherSettings
from modules.nanoff_flash.errors import InvalidArgumentsError, PackageNotFoundError
from modules.nanoff_flash.http_client import HttpClient, HttpClientError
from modules.nanoff_flash.package_resolver import PackageResolver
from modules.nanoff_flash.result import Ok, Err, Result, discard_error


logger = logging.getLogger(__name__)


class FirmwareArchiveManager:
    """Lista y actualiza el archivo local de paquetes."""

    def __init__(
        self,
        settings: FlasherSettings,
        client: Optional[HttpClient] = None,
        resolver: Optional[PackageResolver] = None,
    ):
        if settings.archive_path is None:
            raise InvalidArgumentsError(detail="An archive path is required to use the firmware archive.")

        self.settings = settings
        self.client = client
        self.paths = ArchivePaths(settings.archive_path)
        self.resolver = resolver or PackageResolver(settings, client)

    def get_target_list(
        self,
        preview: bool,
        platform: Optional[SupportedPlatform] = None,
    ) -> List[PackageDescriptor]:
        """Paquetes archivados, ordenados por nombre y versión."""
        descriptors = self.resolver.list_archived(preview, platform)
        return sorted(descriptors, key=lambda d: (d.name, _sortable_version(d)))

    def get_latest_version(self, target_name: str, preview: bool) -> Optional[str]:
        """Versión más reciente archivada de un target, o None."""
        latest = self.resolver.latest_archived(target_name, preview)
        return latest.version if latest else None

    async def update_archive(
        self,
        preview: bool,
        platform: Optional[SupportedPlatform] = None,
        target_name: Optional[str] = None,
        keep_all_versions: bool = False,
    ) -> List[PackageDescriptor]:
        """Descarga al archivo la versión más reciente de cada target remoto.

        Las versiones anteriores de un target se borran solo después de
        que la nueva haya llegado; si su descarga falla se conservan.

        Returns:
            Paquetes descargados en esta ejecución.

        Raises:
            PackageNotFoundError: Si el índice no devuelve ningún target.
            DownloadFailedError: Si falla el listado remoto.
        """
        if self.client is None:
            raise InvalidArgumentsError(detail="Updating the archive requires network access.")

        remote = await self.resolver.list_targets(preview, platform)
        if target_name:
            remote = [d for d in remote if d.name == target_name]

        if not remote:
            raise PackageNotFoundError(target_name or "*", reason="No packages found in the repository.")

        stale: Dict[str, List[Path]] = {}
        if not keep_all_versions:
            for archived in self.resolver.list_archived(preview, platform):
                stale.setdefault(archived.name, []).append(archived.local_path)

        downloaded = []
        for descriptor in remote:
            package_path = self.paths.package_path(descriptor.name, descriptor.archive_file_name)
            target_stale = stale.get(descriptor.name, [])
            if package_path in target_stale:
                target_stale.remove(package_path)

            if package_path.is_file():
                logger.info(f"{package_path.name} ya está en el archivo")
                self._write_sidecar(package_path, descriptor)
                continue

            package_path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Archivando {descriptor.name} v{descriptor.version}")
            try:
                await self.client.download(descriptor.download_url, package_path)
            except (HttpClientError, OSError) as e:
                logger.error(f"Error descargando {descriptor.name} v{descriptor.version}: {e}")
                stale.pop(descriptor.name, None)
                continue

            self._write_sidecar(package_path, descriptor)
            downloaded.append(descriptor)

        remote_names = {d.name for d in remote}
        for name, old_packages in stale.items():
            if name not in remote_names:
                continue
            for old_package in old_packages:
                discard_error(
                    self._delete_package(old_package),
                    logger,
                    f"Borrado de {old_package.name}",
                )

        logger.info(f"Archivo actualizado: {len(downloaded)} paquetes descargados")
        return downloaded

    def _write_sidecar(self, package_path: Path, descriptor: PackageDescriptor) -> None:
        sidecar = self.paths.sidecar_path(package_path)
        if sidecar.exists():
            return

        info = ArchivePackageInfo(
            name=descriptor.name,
            version=descriptor.version,
            platform=descriptor.platform.value if descriptor.platform else None,
            is_preview=descriptor.is_preview,
        )
        sidecar.write_text(info.to_json(), encoding="utf-8")

    def _delete_package(self, package_path: Path) -> "Result[Path]":
        try:
            package_path.unlink(missing_ok=True)
            self.paths.sidecar_path(package_path).unlink(missing_ok=True)
            logger.info(f"Eliminado del archivo: {package_path.name}")
            return Ok(package_path)
        except OSError as e:
            return Err(e)


def _sortable_version(descriptor: PackageDescriptor):
    version = descriptor.parsed_version
    return (version is not None, version or descriptor.version)
