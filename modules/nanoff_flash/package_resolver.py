"""Resolución de paquetes de firmware contra el índice remoto y el archivo local.

El índice remoto es la API de Cloudsmith. Se consulta primero el
repositorio de referencia del canal (estable o preview) y, si no hay
resultados y no se pidió preview, el repositorio de targets de la
comunidad. En modo archivo no se usa la red: el paquete tiene que estar
en el directorio de archivo con el nombre exacto.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any

from pydantic import ValidationError

from config.paths import ArchivePaths
from core.entities.firmware import (
    FirmwareVersion,
    PackageDescriptor,
    SupportedPlatform,
    package_file_name,
)
from modules.nanoff_config.validators import ArchivePackageInfo, ConfigValidator, FlasherSettings
from modules.nanoff_flash.errors import (
    DeviceMismatchError,
    DownloadFailedError,
    InvalidArgumentsError,
    PackageNotFoundError,
)
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.http_client import HttpClient, HttpClientError


logger = logging.getLogger(__name__)


LATEST = "latest"
PAGE_SIZE = 100
INVALID_PAGE_MARKER = '"Invalid page."'

# ventana de publicación para los listados, en meses
PREVIEW_LISTING_MONTHS = 6
STABLE_LISTING_MONTHS = 1


class PackageResolver:
    """Selecciona exactamente un PackageDescriptor para un target."""

    def __init__(self, settings: FlasherSettings, client: HttpClient):
        """Inicializa el resolver.

        Args:
            settings: Configuración del flasher (repositorios, umbrales).
            client: Cliente HTTP ya abierto; se reutiliza en todas las consultas.
        """
        self.settings = settings
        self.client = client

    async def resolve(
        self,
        target_name: str,
        version: Optional[str] = None,
        preview: bool = False,
        platform: Optional[SupportedPlatform] = None,
        from_archive: bool = False,
    ) -> PackageDescriptor:
        """Resuelve el paquete a usar.

        Args:
            target_name: Nombre exacto del target.
            version: Versión explícita; None para la más reciente.
            preview: Canal preview en lugar de estable.
            platform: Plataforma esperada, si se conoce.
            from_archive: Resolver solo contra el archivo local.

        Returns:
            El descriptor seleccionado.

        Raises:
            PackageNotFoundError: Si no hay paquete (E9005, o E9015 en modo archivo).
            DeviceMismatchError: E9005 si el índice devuelve otro target.
            DownloadFailedError: Si falla la consulta al índice.
        """
        if from_archive:
            return self.resolve_from_archive(target_name, version, preview)

        records = await self._query(self.settings.repository_for(preview), target_name, version)
        is_community = False

        if not records and not preview:
            logger.info(f"'{target_name}' no está en el repositorio de referencia, probando targets de la comunidad")
            records = await self._query(self.settings.repository_for(preview, community=True), target_name, version)
            is_community = True

        if not records:
            raise PackageNotFoundError(target_name, version)

        candidates = [
            PackageDescriptor.from_index_record(record, is_preview=preview, is_community=is_community)
            for record in records
        ]
        descriptor = self._select(candidates, target_name, version)

        if descriptor.name != target_name:
            raise DeviceMismatchError(
                f"Package index returned '{descriptor.name}' for target '{target_name}'.",
                None,
                ExitCode.E9005,
            )

        if platform is not None and descriptor.platform is not None and descriptor.platform != platform:
            logger.warning(
                f"El paquete {descriptor.name} es para la plataforma {descriptor.platform.value}, "
                f"no {platform.value}"
            )

        self._warn_if_stale(descriptor)
        logger.info(f"Paquete resuelto: {descriptor.name} v{descriptor.version} ({descriptor.channel.value})")
        return descriptor

    def resolve_from_archive(
        self,
        target_name: str,
        version: Optional[str] = None,
        preview: bool = False,
    ) -> PackageDescriptor:
        """Resuelve contra el directorio de archivo, sin red ni caché.

        Raises:
            InvalidArgumentsError: Si no hay directorio de archivo configurado.
            PackageNotFoundError: E9015 si falta el paquete exacto.
        """
        archive = self._archive_paths()

        if not version:
            latest = self.latest_archived(target_name, preview)
            if latest is None:
                raise PackageNotFoundError(target_name, None, exit_code=ExitCode.E9015)
            version = latest.version

        package_path = archive.package_path(target_name, package_file_name(target_name, version, preview))
        if not package_path.is_file():
            raise PackageNotFoundError(target_name, version, exit_code=ExitCode.E9015)

        platform = None
        sidecar = archive.sidecar_path(package_path)
        if sidecar.is_file():
            info = self._read_sidecar(sidecar)
            if info is not None:
                platform = SupportedPlatform.from_tag(info.platform)

        logger.info(f"Paquete del archivo: {package_path}")
        return PackageDescriptor(
            name=target_name,
            version=version,
            download_url=package_path.as_uri(),
            is_preview=preview,
            platform=platform,
            local_path=package_path,
        )

    def list_archived(
        self,
        preview: bool,
        platform: Optional[SupportedPlatform] = None,
        target_name: Optional[str] = None,
    ) -> List[PackageDescriptor]:
        """Paquetes del archivo local según sus sidecars."""
        archive = self._archive_paths()
        descriptors = []

        for sidecar in archive.sidecars(target_name):
            info = self._read_sidecar(sidecar)
            if info is None or info.is_preview != preview:
                continue
            if target_name and info.name != target_name:
                continue

            info_platform = SupportedPlatform.from_tag(info.platform)
            if platform is not None and info_platform != platform:
                continue

            package_path = archive.package_for_sidecar(sidecar)
            descriptors.append(PackageDescriptor(
                name=info.name,
                version=info.version,
                download_url=package_path.as_uri(),
                is_preview=info.is_preview,
                platform=info_platform,
                local_path=package_path,
            ))

        return descriptors

    def latest_archived(self, target_name: str, preview: bool) -> Optional[PackageDescriptor]:
        """Versión más reciente de un target en el archivo local."""
        archived = self.list_archived(preview, target_name=target_name)
        if not archived:
            return None
        return max(archived, key=_version_key)

    async def list_packages(
        self,
        preview: bool,
        platform: Optional[SupportedPlatform] = None,
        community: bool = False,
    ) -> List[PackageDescriptor]:
        """Enumera los paquetes publicados recientemente en un repositorio.

        Recorre las páginas hasta una vacía, un 404 o "Invalid page.".
        """
        repository = self.settings.repository_for(preview, community)
        months = PREVIEW_LISTING_MONTHS if preview else STABLE_LISTING_MONTHS
        query = f"uploaded:'>{months} month ago'"
        if platform is not None:
            query += f" AND tag:{platform.value}"

        url = f"{self.settings.repository_base_url}{repository}/"
        descriptors = []
        page = 1

        while True:
            params = {"page_size": PAGE_SIZE, "q": query, "page": page}
            try:
                response = await self.client.get(url, accept_status=(404,), params=params)
            except HttpClientError as e:
                raise DownloadFailedError(url, e)

            body = response.text.strip()
            if response.status_code == 404 or body == "[]" or INVALID_PAGE_MARKER in body:
                break

            records = self._parse_records(url, response)
            if not records:
                break

            descriptors.extend(
                PackageDescriptor.from_index_record(record, is_preview=preview, is_community=community)
                for record in records
            )
            page += 1

        logger.debug(f"{len(descriptors)} paquetes listados en {repository}")
        return descriptors

    async def list_targets(
        self,
        preview: bool,
        platform: Optional[SupportedPlatform] = None,
    ) -> List[PackageDescriptor]:
        """Targets disponibles: la versión más reciente de cada nombre.

        Incluye los targets de la comunidad salvo en preview.
        """
        descriptors = await self.list_packages(preview, platform)
        if not preview:
            descriptors += await self.list_packages(preview, platform, community=True)

        newest: Dict[str, PackageDescriptor] = {}
        for descriptor in descriptors:
            current = newest.get(descriptor.name)
            if current is None or _version_key(descriptor) > _version_key(current):
                newest[descriptor.name] = descriptor

        return [newest[name] for name in sorted(newest)]

    async def _query(self, repository: str, target_name: str, version: Optional[str]) -> List[Dict[str, Any]]:
        url = f"{self.settings.repository_base_url}{repository}/"
        params = {"query": f"name:^{target_name}$ version:^{version or LATEST}$"}

        try:
            response = await self.client.get(url, params=params)
        except HttpClientError as e:
            raise DownloadFailedError(url, e)

        if response.text.strip() == "[]":
            return []
        return self._parse_records(url, response)

    @staticmethod
    def _parse_records(url: str, response) -> List[Dict[str, Any]]:
        try:
            records = response.json()
        except ValueError as e:
            raise DownloadFailedError(url, e)

        if not isinstance(records, list):
            raise DownloadFailedError(url, ValueError("unexpected package index response"))
        return records

    @staticmethod
    def _select(
        candidates: List[PackageDescriptor],
        target_name: str,
        version: Optional[str],
    ) -> PackageDescriptor:
        if version:
            matches = [c for c in candidates if c.version == version]
            if not matches:
                raise PackageNotFoundError(target_name, version)
            if len(matches) > 1:
                raise PackageNotFoundError(
                    target_name,
                    version,
                    reason=f"Package index returned {len(matches)} matching packages.",
                )
            return matches[0]

        # max() conserva el primero entre iguales: el orden del índice decide
        return max(candidates, key=_version_key)

    def _warn_if_stale(self, descriptor: PackageDescriptor) -> None:
        published = descriptor.published_date
        if published is None:
            return

        now = datetime.now(timezone.utc) if published.tzinfo else datetime.now()
        if now - published > timedelta(days=self.settings.stale_package_days):
            logger.warning(
                f"El paquete {descriptor.name} v{descriptor.version} se publicó el "
                f"{published:%Y-%m-%d}; la entrada del índice puede estar desactualizada"
            )

    def _archive_paths(self) -> ArchivePaths:
        if self.settings.archive_path is None:
            raise InvalidArgumentsError(detail="An archive path is required to use the firmware archive.")
        return ArchivePaths(self.settings.archive_path)

    @staticmethod
    def _read_sidecar(sidecar: Path) -> Optional[ArchivePackageInfo]:
        try:
            return ConfigValidator.load_archive_package_info(sidecar)
        except (OSError, ValidationError) as e:
            logger.warning(f"Sidecar inválido {sidecar}: {e}")
            return None


def _version_key(descriptor: PackageDescriptor) -> FirmwareVersion:
    return descriptor.parsed_version or FirmwareVersion(0, 0, 0)
