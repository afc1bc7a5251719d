"""Caché local de paquetes de firmware.

Los paquetes se guardan como `{cache_root}/{target}/{target}-{version}[-preview].zip`.
La cadena de versión en el nombre es la única garantía de confianza: un
archivo cuyo nombre coincide se reutiliza indefinidamente, sin revalidar
su contenido.
"""

import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional, List

from config.paths import CachePaths
from core.entities.firmware import (
    CachedArchive,
    FirmwareVersion,
    PackageChannel,
    package_file_name,
)
from modules.nanoff_config.validators import FlasherSettings
from modules.nanoff_flash.errors import FlashError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.result import Result, Ok, Err


logger = logging.getLogger(__name__)


PACKAGE_EXTENSION = ".zip"

# archivos sueltos que deja una extracción previa
EXTRACTED_EXTENSIONS = (".bin", ".hex", ".s19", ".dfu", ".csv")

_VERSION_IN_NAME = re.compile(r"(?<![\d.])(\d+\.\d+\.\d+(?:\.\d+)?(?:-.+)?)$")


class PackageCache:
    """Caché en disco de paquetes descargados, por target y canal."""

    def __init__(self, settings: FlasherSettings):
        """Inicializa la caché.

        Args:
            settings: Configuración con la raíz de la caché.
        """
        self.paths = CachePaths(settings.cache_root)

    @property
    def root(self) -> Path:
        return self.paths.ROOT

    def location_for(self, target_name: str) -> Path:
        """Directorio del target; lo crea junto con la raíz si hace falta.

        Raises:
            FlashError: E9006 si no se puede crear.
        """
        try:
            self.paths.ensure_root()
            location = self.paths.location_for(target_name)
            location.mkdir(parents=True, exist_ok=True)
            return location
        except OSError as e:
            raise FlashError(None, e, ExitCode.E9006)

    def archive_path(self, target_name: str, version: str, preview: bool) -> Path:
        return self.paths.location_for(target_name) / package_file_name(target_name, version, preview)

    def find(self, target_name: str, version: str, preview: bool) -> Optional[CachedArchive]:
        """Busca un paquete exacto {target, versión, canal}."""
        path = self.archive_path(target_name, version, preview)
        if not path.is_file():
            return None
        return self._describe(path, target_name, preview)

    def list_archives(self, target_name: str, preview: bool) -> List[CachedArchive]:
        """Paquetes del target en el canal, del más reciente al más antiguo.

        El canal se deduce del nombre ('-preview.' en el nombre).
        """
        location = self.paths.location_for(target_name)
        if not location.is_dir():
            return []

        archives = []
        for path in location.glob(f"*{PACKAGE_EXTENSION}"):
            if not path.is_file():
                continue
            if ("-preview." in path.name) != preview:
                continue
            archives.append(self._describe(path, target_name, preview))

        archives.sort(key=_archive_sort_key, reverse=True)
        return archives

    def newest(self, target_name: str, preview: bool) -> Optional[CachedArchive]:
        archives = self.list_archives(target_name, preview)
        return archives[0] if archives else None

    def store_copy(self, source: Path, target_name: str, version: str, preview: bool) -> CachedArchive:
        """Copia un paquete (p. ej. desde el archivo local) a la caché."""
        self.location_for(target_name)
        destination = self.archive_path(target_name, version, preview)
        shutil.copyfile(source, destination)
        logger.info(f"Paquete copiado a la caché: {destination}")
        return self._describe(destination, target_name, preview)

    def purge_extracted(self, target_name: str) -> int:
        """Borra archivos sueltos de extracciones anteriores.

        Returns:
            Número de archivos borrados.
        """
        location = self.paths.location_for(target_name)
        if not location.is_dir():
            return 0

        removed = 0
        for path in location.iterdir():
            if path.is_file() and path.suffix.lower() in EXTRACTED_EXTENSIONS:
                path.unlink()
                removed += 1

        if removed:
            logger.debug(f"Eliminados {removed} archivos extraídos previamente en {location}")
        return removed

    def prune(self, keep: CachedArchive) -> "Result[int]":
        """Borra paquetes más antiguos del mismo target y canal.

        Es limpieza de mejor esfuerzo: el error se devuelve, no se lanza.
        """
        try:
            preview = keep.channel == PackageChannel.PREVIEW
            keep_key = _archive_sort_key(keep)
            removed = 0
            for archive in self.list_archives(keep.target_name, preview):
                if archive.local_path == keep.local_path:
                    continue
                if _archive_sort_key(archive) < keep_key:
                    archive.local_path.unlink()
                    removed += 1
            return Ok(removed)
        except OSError as e:
            return Err(e)

    def clear(self) -> None:
        """Elimina toda la caché.

        Raises:
            FlashError: E9014 si no se puede borrar.
        """
        if not self.root.exists():
            return
        try:
            shutil.rmtree(self.root)
            logger.info(f"Caché eliminada: {self.root}")
        except OSError as e:
            raise FlashError(None, e, ExitCode.E9014)

    @staticmethod
    def version_from_file_name(file_name: str) -> Optional[str]:
        """Recupera la versión embebida en el nombre de un paquete."""
        stem = file_name
        if stem.lower().endswith(PACKAGE_EXTENSION):
            stem = stem[: -len(PACKAGE_EXTENSION)]
        if stem.endswith("-preview"):
            stem = stem[: -len("-preview")]

        match = _VERSION_IN_NAME.search(stem)
        return match.group(1) if match else None

    def _describe(self, path: Path, target_name: str, preview: bool) -> CachedArchive:
        return CachedArchive(
            target_name=target_name,
            version=self.version_from_file_name(path.name),
            channel=PackageChannel.PREVIEW if preview else PackageChannel.STABLE,
            local_path=path,
            last_write_time=datetime.fromtimestamp(path.stat().st_mtime),
        )


def _archive_sort_key(archive: CachedArchive) -> tuple:
    # orden por versión cuando el nombre la contiene; si no, por nombre
    version = FirmwareVersion.try_parse(archive.version)
    if version is None:
        return (0, FirmwareVersion(0, 0, 0), archive.local_path.name)
    return (1, version, archive.local_path.name)
